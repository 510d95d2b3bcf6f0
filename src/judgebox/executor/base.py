from __future__ import annotations
from pathlib import Path
from typing import List


class IsolatedProcess:
    """Handle to one running isolated environment."""

    def wait(self) -> int: ...
    def kill(self) -> None: ...


class IsolationProvider:
    name = "abstract"

    def launch(self, image: str, workspace: Path, argv: List[str],
               timeout_s: float, name: str) -> IsolatedProcess:
        """
        Start `argv` (launcher + command, relative to the workspace) inside the
        isolated runtime built from `image`, with `workspace` mounted as its
        working directory. `timeout_s` is the provider-side limit and must
        match the host watchdog. Raises OSError when the runtime cannot start.
        """
        raise NotImplementedError
