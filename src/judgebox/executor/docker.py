from __future__ import annotations
import math, os, subprocess
from pathlib import Path
from typing import List, Optional

import structlog

from ..settings import DockerOptions
from .base import IsolatedProcess, IsolationProvider

log = structlog.get_logger()

MOUNT_POINT = "/sandbox"


class DockerProcess(IsolatedProcess):
    def __init__(self, proc: subprocess.Popen, name: str, opts: DockerOptions):
        self.proc = proc
        self.name = name
        self.opts = opts

    def wait(self) -> int:
        return self.proc.wait()

    def kill(self) -> None:
        # killing the client alone leaves the container running, ask the daemon first
        try:
            r = subprocess.run(
                [self.opts.binary, "kill", self.name],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.opts.kill_timeout_s,
            )
            if r.returncode != 0:
                log.warning("docker.kill_failed", name=self.name, stderr=(r.stderr or "").strip())
        except (OSError, subprocess.TimeoutExpired) as e:
            log.warning("docker.kill_failed", name=self.name, error=str(e))
        if self.proc.poll() is None:
            self.proc.kill()


class DockerProvider(IsolationProvider):
    name = "docker"

    def __init__(self, opts: Optional[DockerOptions] = None):
        self.opts = opts or DockerOptions()

    def _user(self) -> Optional[str]:
        if self.opts.user:
            return self.opts.user
        if hasattr(os, "getuid"):
            # files written in the mount stay removable by the service
            return f"{os.getuid()}:{os.getgid()}"
        return None

    def build_argv(self, image: str, workspace: Path, argv: List[str],
                   timeout_s: float, name: str) -> List[str]:
        o = self.opts
        cmd = [
            o.binary, "run", "--rm",
            "--name", name,
            "--network", o.network,
            "--memory", o.memory,
            "--memory-swap", o.memory,
            "--cpus", str(o.cpus),
            "--pids-limit", str(o.pids_limit),
            # CPU-time cap from the same timeout the host watchdog uses
            "--ulimit", f"cpu={max(1, math.ceil(timeout_s))}",
            "--security-opt", "no-new-privileges",
            "-v", f"{Path(workspace).resolve()}:{MOUNT_POINT}",
            "-w", MOUNT_POINT,
        ]
        user = self._user()
        if user:
            cmd += ["--user", user]
        launcher, *rest = argv
        return cmd + [image, "sh", f"{MOUNT_POINT}/{launcher}", *rest]

    def launch(self, image: str, workspace: Path, argv: List[str],
               timeout_s: float, name: str) -> DockerProcess:
        cmd = self.build_argv(image, workspace, argv, timeout_s, name)
        log.debug("docker.launch", name=name, cmd=cmd)
        p = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        return DockerProcess(p, name, self.opts)
