from __future__ import annotations


class SandboxError(Exception):
    """Base class for everything the sandbox core raises."""


class UnsupportedLanguage(SandboxError):
    def __init__(self, language: str):
        super().__init__(f"unsupported language: {language!r}")
        self.language = language


class PathConflict(SandboxError):
    def __init__(self, path, owner: str):
        super().__init__(f"workspace {path} is in use by request {owner}")
        self.path = path
        self.owner = owner


class WorkspaceError(SandboxError):
    """Staging or cleanup of a workspace failed (reported as IOError)."""

    def __init__(self, message: str, handle=None):
        super().__init__(message)
        # set when staging got far enough to claim the path; the caller cleans it up
        self.handle = handle


# ---- lifecycle misuse (programmer errors, never retried) ----

class LifecycleError(SandboxError):
    pass


class NotPrepared(LifecycleError):
    pass


class AlreadyPrepared(LifecycleError):
    pass


class AlreadyTerminal(LifecycleError):
    pass
