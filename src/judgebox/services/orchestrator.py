from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional

import structlog

from ..core.errors import AlreadyPrepared, AlreadyTerminal, LifecycleError, NotPrepared, PathConflict, WorkspaceError
from ..core.models import (
    ExecutionResult, ExecutionStatus, SandboxOutcome, SandboxRequest, SandboxState,
    SandboxTest, SandboxTestResult,
)
from ..core.utils import new_request_id
from ..executor.base import IsolationProvider
from ..executor.docker import DockerProvider
from ..executor.driver import Cancellation, ExecutionDriver
from ..executor.local import LocalProvider
from ..runners.compilers import DEFAULT_REGISTRY, CompilerRegistry, LanguageCompiler
from ..settings import Settings, load_settings
from .verifier import verify
from .workspace import WorkspaceHandle, WorkspaceManager

log = structlog.get_logger()

_TERMINAL = {
    ExecutionStatus.SUCCEEDED: SandboxState.COMPLETED,
    ExecutionStatus.TIMED_OUT: SandboxState.TIMED_OUT,
    ExecutionStatus.RUNTIME_ERROR: SandboxState.FAILED,
    ExecutionStatus.COMPILE_ERROR: SandboxState.FAILED,
    ExecutionStatus.IO_ERROR: SandboxState.FAILED,
}


class Sandbox:
    """
    One request, one sandbox. Created -> Prepared -> Running -> Completed |
    Failed | TimedOut. The workspace is removed exactly once, after the
    terminal state is set. Not shared between threads, except for cancel().
    """

    def __init__(self, request: SandboxRequest, compiler: LanguageCompiler,
                 workspaces: WorkspaceManager, driver: ExecutionDriver):
        self.request = request
        self.compiler = compiler
        self.workspaces = workspaces
        self.driver = driver

        self.state = SandboxState.CREATED
        # private copy, the request itself stays untouched
        self.test: Optional[SandboxTest] = request.test.model_copy(deep=True) if request.test else None
        self.handle: Optional[WorkspaceHandle] = None
        self.result: Optional[ExecutionResult] = None
        self.outcome: Optional[SandboxOutcome] = None

        self._cancel = Cancellation()
        self._cleaned = False

    def __enter__(self) -> "Sandbox":
        return self

    def __exit__(self, *exc) -> None:
        if not self.state.terminal:
            self.state = SandboxState.FAILED
        self._cleanup()

    # ------------ lifecycle ------------

    def _ensure_live(self) -> None:
        if self.state.terminal:
            raise AlreadyTerminal(f"sandbox {self.request.id} is {self.state.value}")

    def prepare(self) -> WorkspaceHandle:
        self._ensure_live()
        if self.state is not SandboxState.CREATED:
            raise AlreadyPrepared(f"sandbox {self.request.id} is {self.state.value}")

        try:
            self.handle = self.workspaces.prepare(self.request, self.compiler)
        except PathConflict:
            # the directory belongs to someone else, leave it alone
            self.state = SandboxState.FAILED
            raise
        except WorkspaceError as e:
            self.state = SandboxState.FAILED
            self.handle = e.handle
            self._cleanup()
            raise

        self.state = SandboxState.PREPARED
        return self.handle

    def run(self) -> SandboxOutcome:
        self._ensure_live()
        if self.state is SandboxState.CREATED:
            raise NotPrepared(f"sandbox {self.request.id} was not prepared")
        if self.state is not SandboxState.PREPARED:
            raise LifecycleError(f"sandbox {self.request.id} is {self.state.value}")

        self.state = SandboxState.RUNNING
        try:
            res = self.driver.run(self.handle, self.compiler, self.request.timeout_seconds, self._cancel)
        except BaseException:
            self.state = SandboxState.FAILED
            self._cleanup()
            raise

        self.result = res
        self.state = _TERMINAL[res.status]
        test_result = self._verify(res)
        self._cleanup()

        self.outcome = SandboxOutcome.from_result(self.request.id, res, test_result)
        log.info("sandbox.finished", request_id=self.request.id, state=self.state.value,
                 status=res.status.value, test_result=test_result.value if test_result else None)
        return self.outcome

    def cancel(self) -> None:
        """Abort from another thread. The sandbox ends as TimedOut."""
        log.warning("sandbox.cancel", request_id=self.request.id, state=self.state.value)
        self._cancel.cancel()

    # ------------ helpers ------------

    def _verify(self, res: ExecutionResult) -> Optional[SandboxTestResult]:
        if self.test is None:
            return None
        if res.status is ExecutionStatus.SUCCEEDED:
            r = verify(self.test, res.stdout_lines)
        else:
            r = SandboxTestResult.FAILED
        self.test.record(r)
        return r

    def _cleanup(self) -> None:
        if self._cleaned or self.handle is None:
            return
        self._cleaned = True
        try:
            self.workspaces.cleanup(self.handle)
        except WorkspaceError as e:
            # never overrides the execution result
            log.error("sandbox.cleanup_failed", request_id=self.request.id, error=str(e))


def make_provider(s: Settings) -> IsolationProvider:
    if s.provider == "docker":
        return DockerProvider(s.docker)
    if s.provider == "local":
        return LocalProvider()
    raise ValueError(f"unknown isolation provider: {s.provider!r}")


class SandboxService:
    """
    Entry point for the request layer: resolve compiler, stage, run, verify,
    clean up.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 registry: Optional[CompilerRegistry] = None,
                 provider: Optional[IsolationProvider] = None):
        self.s = settings or load_settings()
        self.registry = registry or DEFAULT_REGISTRY
        self.workspaces = WorkspaceManager(self.s.launcher_script)
        self.driver = ExecutionDriver(provider or make_provider(self.s), self.s.max_output_bytes)

    def new_request(self, source: str, language: str, timeout_s: Optional[float] = None,
                    test: Optional[SandboxTest] = None) -> SandboxRequest:
        rid = new_request_id()
        return SandboxRequest.from_source(
            source,
            id=rid,
            timeout_seconds=timeout_s if timeout_s is not None else self.s.default_timeout_s,
            workspace_path=self.s.workspace_root / rid,
            language=language,
            test=test,
        )

    def sandbox(self, request: SandboxRequest) -> Sandbox:
        # UnsupportedLanguage surfaces here, before anything touches the disk
        compiler = self.registry.lookup(request.language)
        return Sandbox(request, compiler, self.workspaces, self.driver)

    def execute(self, request: SandboxRequest) -> SandboxOutcome:
        sb = self.sandbox(request)
        try:
            sb.prepare()
        except WorkspaceError as e:
            return SandboxOutcome(
                request_id=request.id,
                status=ExecutionStatus.IO_ERROR,
                stderr_lines=[str(e)],
                test_result=SandboxTestResult.NOT_RUN if request.test else None,
            )
        return sb.run()

    def execute_many(self, requests: Iterable[SandboxRequest], max_workers: int = 4) -> List[SandboxOutcome]:
        """Run independent requests concurrently. Outcomes keep request order."""
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(self.execute, requests))
