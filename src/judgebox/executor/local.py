from __future__ import annotations
import os, signal, subprocess
from pathlib import Path
from typing import List

import structlog

from .base import IsolatedProcess, IsolationProvider

log = structlog.get_logger()


class LocalProcess(IsolatedProcess):
    def __init__(self, proc: subprocess.Popen):
        self.proc = proc

    @property
    def pid(self) -> int:
        return self.proc.pid

    def wait(self) -> int:
        return self.proc.wait()

    def kill(self) -> None:
        if self.proc.poll() is not None:
            return
        try:
            # the launcher runs in its own session, take the whole group down
            os.killpg(self.proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass


class LocalProvider(IsolationProvider):
    """
    Runs the launcher directly on the host, no isolation at all. The image is
    ignored. Meant for development and tests where Docker is not available.
    """
    name = "local"

    def __init__(self, shell: str = "/bin/sh"):
        self.shell = shell

    def launch(self, image: str, workspace: Path, argv: List[str],
               timeout_s: float, name: str) -> LocalProcess:
        cmd = [self.shell, *argv]
        log.debug("local.launch", name=name, cmd=cmd, workspace=str(workspace))
        p = subprocess.Popen(
            cmd,
            cwd=str(workspace),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        return LocalProcess(p)
