from __future__ import annotations
import os, shutil, threading, uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

import structlog

from ..core.errors import PathConflict, WorkspaceError
from ..core.models import SandboxRequest
from ..runners.compilers import LanguageCompiler

log = structlog.get_logger()

DEFAULT_LAUNCHER = Path(__file__).resolve().parent.parent / "resources" / "script.sh"
LAUNCHER_NAME = "script.sh"

# workspace path -> (claim token, request id) for every workspace currently staged in this process
_claims: Dict[Path, Tuple[str, str]] = {}
_claims_lock = threading.Lock()


@dataclass(frozen=True)
class WorkspaceHandle:
    """
    Staged workspace of one request:
      <path>/
        ├─ <language>.source
        ├─ <language>.stdin   (only when the test has stdin)
        ├─ <stdout_file_name>
        ├─ <stderr_file_name>
        └─ script.sh
    """
    request_id: str
    path: Path
    source: Path
    stdin: Optional[Path]
    stdout: Path
    stderr: Path
    launcher: Path
    # identifies this prepare() call, two requests sharing an id still get different tokens
    token: str = ""


class WorkspaceManager:
    def __init__(self, launcher: Optional[Path] = None):
        self.launcher = Path(launcher) if launcher else DEFAULT_LAUNCHER

    # ---- claims ----

    @staticmethod
    def _claim(path: Path, request_id: str) -> str:
        with _claims_lock:
            held = _claims.get(path)
            if held is not None:
                raise PathConflict(path, held[1])
            token = uuid.uuid4().hex
            _claims[path] = (token, request_id)
            return token

    @staticmethod
    def _release(path: Path, token: str) -> None:
        with _claims_lock:
            held = _claims.get(path)
            if held is not None and held[0] == token:
                del _claims[path]

    @staticmethod
    def in_use(path: Path) -> bool:
        with _claims_lock:
            return Path(path).resolve() in _claims

    # ---- lifecycle ----

    def prepare(self, request: SandboxRequest, compiler: LanguageCompiler) -> WorkspaceHandle:
        path = Path(request.workspace_path).resolve()
        token = self._claim(path, request.id)

        handle = WorkspaceHandle(
            request_id=request.id,
            path=path,
            source=path / compiler.source_file_name,
            stdin=path / compiler.stdin_file_name if request.test and request.test.stdin_lines is not None else None,
            stdout=path / compiler.stdout_file_name,
            stderr=path / compiler.stderr_file_name,
            launcher=path / LAUNCHER_NAME,
            token=token,
        )

        try:
            if path.exists():
                log.warning("workspace.reused", request_id=request.id, path=str(path))
            path.mkdir(parents=True, exist_ok=True)

            # newline="" keeps the request's own separator untouched
            handle.source.write_text(request.source, encoding="utf-8", newline="")

            if handle.stdin is not None:
                data = "".join(line + "\n" for line in request.test.stdin_lines)
                handle.stdin.write_text(data, encoding="utf-8", newline="")

            # the runtime redirects into these, so they must exist before launch
            for p in (handle.stdout, handle.stderr):
                p.write_bytes(b"")

            shutil.copyfile(self.launcher, handle.launcher)
            os.chmod(handle.launcher, 0o755)
        except OSError as e:
            log.error("workspace.prepare_failed", request_id=request.id, path=str(path), error=str(e))
            raise WorkspaceError(f"cannot stage workspace {path}: {e}", handle=handle) from e

        log.info("workspace.prepared", request_id=request.id, path=str(path), language=compiler.language)
        return handle

    def cleanup(self, handle: WorkspaceHandle) -> None:
        """Remove the workspace tree. Calling it again is a no-op."""
        try:
            shutil.rmtree(handle.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise WorkspaceError(f"cannot remove workspace {handle.path}: {e}") from e
        finally:
            self._release(handle.path, handle.token)
        log.info("workspace.cleaned", request_id=handle.request_id, path=str(handle.path))

    @contextmanager
    def workspace(self, request: SandboxRequest, compiler: LanguageCompiler) -> Iterator[WorkspaceHandle]:
        try:
            handle = self.prepare(request, compiler)
        except WorkspaceError as e:
            if e.handle is not None:
                self.cleanup(e.handle)
            raise
        try:
            yield handle
        finally:
            self.cleanup(handle)
