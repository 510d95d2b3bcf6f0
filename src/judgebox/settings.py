from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class DockerOptions(BaseModel):
    binary: str = "docker"
    memory: str = "128m"
    cpus: float = 0.5
    pids_limit: int = 64
    network: str = "none"
    # "uid:gid" for the container user; None means the host service's own ids
    user: Optional[str] = None
    kill_timeout_s: float = 5.0


class Settings(BaseSettings):
    # ---- core paths / flags ----
    workspace_root: Path = Path("/srv/sbx/workspaces")
    provider: str = "docker"   # docker | local
    default_timeout_s: float = 8
    max_output_bytes: int = 1024 * 1024

    # None -> the script.sh shipped inside the package
    launcher_script: Optional[Path] = None

    docker: DockerOptions = DockerOptions()

    # env prefix SBX_*, nested keys as SBX_DOCKER__MEMORY
    model_config = SettingsConfigDict(env_prefix="SBX_", env_nested_delimiter="__", extra="ignore")


def load_settings(path: Optional[Path] = None) -> Settings:
    # 0) base from env SBX_*
    s = Settings()

    # 1) conf/sandbox.yaml (or SANDBOX_CONF)
    sbx_yaml = Path(path or os.environ.get("SANDBOX_CONF", "conf/sandbox.yaml"))
    try:
        data = yaml.safe_load(sbx_yaml.read_text(encoding="utf-8")) or {}
    except FileNotFoundError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    defaults = data.get("defaults") or {}
    if not isinstance(defaults, dict):
        defaults = {}

    docker = data.get("docker") or {}
    if not isinstance(docker, dict):
        docker = {}

    launcher = data.get("launcher_script", s.launcher_script)

    # 2) merge, YAML wins over env defaults but keeps the field types
    return s.model_copy(
        update={
            "workspace_root": Path(str(data.get("workspace_root", s.workspace_root))),
            "provider": str(data.get("provider", s.provider)).lower(),
            "default_timeout_s": float(defaults.get("timeout_s", s.default_timeout_s)),
            "max_output_bytes": int(defaults.get("max_output_bytes", s.max_output_bytes)),
            "launcher_script": Path(str(launcher)) if launcher else None,
            "docker": DockerOptions(**{**s.docker.model_dump(), **docker}),
        }
    )
