from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import LifecycleError
from .utils import output_lines, split_source


class ExecutionStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    RUNTIME_ERROR = "RuntimeError"
    COMPILE_ERROR = "CompileError"
    TIMED_OUT = "TimedOut"
    IO_ERROR = "IOError"


class SandboxTestResult(str, Enum):
    NOT_RUN = "NotRun"
    PASSED = "Passed"
    FAILED = "Failed"


class SandboxState(str, Enum):
    CREATED = "Created"
    PREPARED = "Prepared"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"

    @property
    def terminal(self) -> bool:
        return self in (SandboxState.COMPLETED, SandboxState.FAILED, SandboxState.TIMED_OUT)


class SandboxTest(BaseModel):
    id: str
    stdin_lines: Optional[List[str]] = None
    expected_stdout_lines: Optional[List[str]] = None
    result: SandboxTestResult = SandboxTestResult.NOT_RUN

    def record(self, result: SandboxTestResult) -> None:
        """Store the verification result. Allowed exactly once."""
        if self.result is not SandboxTestResult.NOT_RUN:
            raise LifecycleError(f"test {self.id} already recorded as {self.result.value}")
        if result is SandboxTestResult.NOT_RUN:
            raise ValueError("a test cannot be recorded as NotRun")
        self.result = result


class SandboxRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    # wall-clock limit shared by the host watchdog and the isolation provider
    timeout_seconds: float = Field(gt=0, le=255)
    workspace_path: Path
    source_lines: List[str]
    line_separator: Literal["\n", "\r\n"] = "\n"
    language: str = Field(min_length=1)
    test: Optional[SandboxTest] = None

    @classmethod
    def from_source(cls, source: str, **kwargs) -> "SandboxRequest":
        lines, sep = split_source(source)
        return cls(source_lines=lines, line_separator=sep, **kwargs)

    @property
    def source(self) -> str:
        return self.line_separator.join(self.source_lines)


@dataclass
class ExecutionResult:
    status: ExecutionStatus
    exit_code: Optional[int]
    stdout: str
    stderr: str
    duration_s: float

    @property
    def stdout_lines(self) -> List[str]:
        return output_lines(self.stdout)

    @property
    def stderr_lines(self) -> List[str]:
        return output_lines(self.stderr)


class SandboxOutcome(BaseModel):
    """What the request layer receives for one request."""
    request_id: str
    status: ExecutionStatus
    exit_code: Optional[int] = None
    stdout_lines: List[str] = []
    stderr_lines: List[str] = []
    duration_s: float = 0.0
    test_result: Optional[SandboxTestResult] = None

    @classmethod
    def from_result(cls, request_id: str, res: ExecutionResult,
                    test_result: Optional[SandboxTestResult] = None) -> "SandboxOutcome":
        return cls(
            request_id=request_id,
            status=res.status,
            exit_code=res.exit_code,
            stdout_lines=res.stdout_lines,
            stderr_lines=res.stderr_lines,
            duration_s=res.duration_s,
            test_result=test_result,
        )
