from __future__ import annotations
import re, threading, time, uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import structlog

from ..core.models import ExecutionResult, ExecutionStatus
from ..runners.compilers import LanguageCompiler
from ..services.workspace import LAUNCHER_NAME, WorkspaceHandle
from .base import IsolatedProcess, IsolationProvider

log = structlog.get_logger()

TRUNCATED_MARK = "[output truncated]"


class Watchdog:
    """
    Kills an isolated process once its deadline passes. `expire()` is also the
    entry point for external cancellation, both end up as a timeout.
    """

    def __init__(self, seconds: float, proc: IsolatedProcess, label: str):
        self.proc = proc
        self.label = label
        self.fired = threading.Event()
        self._timer = threading.Timer(max(0.0, seconds), self.expire)
        self._timer.daemon = True

    def expire(self) -> None:
        if self.fired.is_set():
            return
        self.fired.set()
        log.warning("driver.watchdog_fired", name=self.label)
        self.proc.kill()

    def __enter__(self) -> "Watchdog":
        self._timer.start()
        return self

    def __exit__(self, *exc) -> None:
        self._timer.cancel()


class Cancellation:
    """Lets another thread abort a running sandbox. One per sandbox."""

    def __init__(self):
        self._lock = threading.Lock()
        self._cancelled = False
        self._watchdog: Optional[Watchdog] = None

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            wd = self._watchdog
        if wd is not None:
            wd.expire()

    def bind(self, wd: Optional[Watchdog]) -> None:
        with self._lock:
            self._watchdog = wd
            cancelled = self._cancelled
        if wd is not None and cancelled:
            wd.expire()


@dataclass
class _Phase:
    exit_code: Optional[int]
    timed_out: bool


def _container_name(request_id: str, phase: str) -> str:
    safe = re.sub(r"[^a-zA-Z0-9_.-]", "-", request_id)[:40]
    return f"sbx-{safe}-{phase}-{uuid.uuid4().hex[:8]}"


def _fmt_seconds(s: float) -> str:
    # "timeout 0" means no limit at all, never let a tiny budget round down to it
    s = max(s, 0.001)
    return f"{s:.3f}".rstrip("0").rstrip(".")


class ExecutionDriver:
    def __init__(self, provider: IsolationProvider, max_output_bytes: int = 1024 * 1024):
        self.provider = provider
        self.max_output_bytes = max_output_bytes

    # ---------- output ----------

    def _read(self, p: Path) -> tuple[str, bool]:
        try:
            with open(p, "rb") as f:
                data = f.read(self.max_output_bytes + 1)
        except FileNotFoundError:
            return "", False
        truncated = len(data) > self.max_output_bytes
        return data[: self.max_output_bytes].decode("utf-8", errors="replace"), truncated

    def _collect(self, handle: WorkspaceHandle) -> tuple[str, str]:
        out, out_cut = self._read(handle.stdout)
        err, err_cut = self._read(handle.stderr)
        if out_cut or err_cut:
            if err and not err.endswith("\n"):
                err += "\n"
            err += TRUNCATED_MARK + "\n"
        return out, err

    # ---------- phases ----------

    def _phase(self, handle: WorkspaceHandle, compiler: LanguageCompiler, cmd: List[str],
               deadline: float, label: str, stdin: Optional[Path],
               cancel: Optional[Cancellation]) -> _Phase:
        remaining = deadline - time.monotonic()
        if remaining <= 0 or (cancel is not None and cancel.cancelled):
            return _Phase(exit_code=None, timed_out=True)

        # provider limit and watchdog both come from the same remaining budget
        argv = [
            LAUNCHER_NAME,
            _fmt_seconds(remaining),
            stdin.name if stdin is not None else "-",
            handle.stdout.name,
            handle.stderr.name,
            *cmd,
        ]
        name = _container_name(handle.request_id, label)
        proc = self.provider.launch(compiler.image_name, handle.path, argv, remaining, name)
        log.info("driver.started", request_id=handle.request_id, phase=label,
                 provider=self.provider.name, timeout_s=round(remaining, 3))

        with Watchdog(remaining, proc, name) as wd:
            if cancel is not None:
                cancel.bind(wd)
            try:
                rc = proc.wait()
            except BaseException:
                proc.kill()
                raise
            finally:
                if cancel is not None:
                    cancel.bind(None)

        timed_out = wd.fired.is_set() or time.monotonic() >= deadline
        return _Phase(exit_code=rc, timed_out=timed_out)

    # ---------- run ----------

    def run(self, handle: WorkspaceHandle, compiler: LanguageCompiler, timeout_s: float,
            cancel: Optional[Cancellation] = None) -> ExecutionResult:
        """
        Compile (when needed) and run the staged source under one wall-clock
        deadline. Output is read from the workspace files after the process
        has exited.
        """
        start = time.monotonic()
        deadline = start + timeout_s

        def result(status: ExecutionStatus, rc: Optional[int], out: str = "", err: str = "") -> ExecutionResult:
            dur = time.monotonic() - start
            log.info("driver.finished", request_id=handle.request_id, status=status.value,
                     exit_code=rc, duration_s=round(dur, 3))
            return ExecutionResult(status=status, exit_code=rc, stdout=out, stderr=err, duration_s=dur)

        def timed_out(rc: Optional[int]) -> ExecutionResult:
            try:
                out, err = self._collect(handle)
            except OSError:
                out, err = "", ""
            if err and not err.endswith("\n"):
                err += "\n"
            err += f"[timeout] exceeded {_fmt_seconds(timeout_s)}s\n"
            return result(ExecutionStatus.TIMED_OUT, rc, out, err)

        try:
            if not compiler.is_interpreter:
                ph = self._phase(handle, compiler, compiler.compile_argv(), deadline, "compile", None, cancel)
                if ph.timed_out:
                    return timed_out(ph.exit_code)
                if ph.exit_code != 0:
                    out, err = self._collect(handle)
                    return result(ExecutionStatus.COMPILE_ERROR, ph.exit_code, out, err)
                # the run phase writes into the same files
                for p in (handle.stdout, handle.stderr):
                    p.write_bytes(b"")

            ph = self._phase(handle, compiler, compiler.run_argv(), deadline, "run", handle.stdin, cancel)
        except OSError as e:
            log.error("driver.launch_failed", request_id=handle.request_id, error=str(e))
            return result(ExecutionStatus.IO_ERROR, None, "", f"cannot start isolated runtime: {e}\n")

        if ph.timed_out:
            return timed_out(ph.exit_code)

        try:
            out, err = self._collect(handle)
        except OSError as e:
            return result(ExecutionStatus.IO_ERROR, ph.exit_code, "", f"cannot read output: {e}\n")

        status = ExecutionStatus.SUCCEEDED if ph.exit_code == 0 else ExecutionStatus.RUNTIME_ERROR
        return result(status, ph.exit_code, out, err)
