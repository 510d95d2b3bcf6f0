from .core.errors import (
    AlreadyPrepared, AlreadyTerminal, LifecycleError, NotPrepared, PathConflict,
    SandboxError, UnsupportedLanguage, WorkspaceError,
)
from .core.models import (
    ExecutionResult, ExecutionStatus, SandboxOutcome, SandboxRequest, SandboxState,
    SandboxTest, SandboxTestResult,
)
from .services.orchestrator import Sandbox, SandboxService

__version__ = "0.1.0"
