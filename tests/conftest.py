from __future__ import annotations
import os, stat, sys

import pytest

from judgebox.executor.local import LocalProvider
from judgebox.runners.compilers import CompilerRegistry, LanguageCompiler
from judgebox.services.orchestrator import SandboxService
from judgebox.settings import Settings

# stands in for a real compiler: "compiles" a shell snippet into an executable
FAKE_CC = """#!/bin/sh
# fakecc -o <out> <src>
out="$2"; src="$3"
if grep -q BROKEN "$src"; then
    echo "fakecc: syntax error in $src" >&2
    exit 1
fi
{ echo '#!/bin/sh'; cat "$src"; } > "$out"
chmod +x "$out"
"""


@pytest.fixture
def py_compiler() -> LanguageCompiler:
    # the interpreter running the tests, so no python3 on PATH is needed
    return LanguageCompiler(
        language="python", command=sys.executable, is_interpreter=True,
        image_name="local", stdout_file_name="python.out", stderr_file_name="python.err",
        additional_arguments=("-u",),
    )


@pytest.fixture
def fake_cc(tmp_path) -> LanguageCompiler:
    cc = tmp_path / "bin" / "fakecc"
    cc.parent.mkdir()
    cc.write_text(FAKE_CC)
    cc.chmod(cc.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return LanguageCompiler(
        language="shc", command=str(cc), is_interpreter=False,
        image_name="local", stdout_file_name="shc.out", stderr_file_name="shc.err",
    )


@pytest.fixture
def registry(py_compiler, fake_cc) -> CompilerRegistry:
    return CompilerRegistry([py_compiler, fake_cc])


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(workspace_root=tmp_path / "ws", provider="local", default_timeout_s=5)


@pytest.fixture
def service(settings, registry) -> SandboxService:
    return SandboxService(settings=settings, registry=registry, provider=LocalProvider())


@pytest.fixture(autouse=True)
def _no_sandbox_conf(monkeypatch, tmp_path):
    # keep a developer's conf/sandbox.yaml or SBX_* env out of the tests
    monkeypatch.setenv("SANDBOX_CONF", str(tmp_path / "absent.yaml"))
    for k in list(os.environ):
        if k.startswith("SBX_"):
            monkeypatch.delenv(k)
