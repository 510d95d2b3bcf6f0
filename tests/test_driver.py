import threading
import time

import pytest

from judgebox.core.models import ExecutionStatus, SandboxRequest, SandboxTest
from judgebox.executor.base import IsolatedProcess, IsolationProvider
from judgebox.executor.driver import TRUNCATED_MARK, Cancellation, ExecutionDriver, _fmt_seconds
from judgebox.services.workspace import WorkspaceManager


class FakeProcess(IsolatedProcess):
    def __init__(self, rc=0, hang=False):
        self.rc = rc
        self.hang = hang
        self.killed = threading.Event()

    def wait(self):
        if self.hang:
            # no deadline of its own, only kill() ends it
            self.killed.wait(30)
            return -9
        return self.rc

    def kill(self):
        self.killed.set()


class FakeProvider(IsolationProvider):
    name = "fake"

    def __init__(self, *scripts):
        # one callable per launch: (workspace, argv) -> FakeProcess
        self.scripts = list(scripts)
        self.calls = []

    def launch(self, image, workspace, argv, timeout_s, name):
        self.calls.append(dict(image=image, workspace=workspace, argv=argv, timeout_s=timeout_s, name=name))
        return self.scripts.pop(0)(workspace, argv)


def _write(workspace, argv, out="", err=""):
    # argv = script.sh <timeout> <stdin> <stdout> <stderr> <cmd...>
    (workspace / argv[3]).write_text(out)
    (workspace / argv[4]).write_text(err)


@pytest.fixture
def staged(tmp_path):
    m = WorkspaceManager()
    handles = []

    def _stage(compiler, test=None):
        req = SandboxRequest(id="req-1", timeout_seconds=2, workspace_path=tmp_path / "w",
                             source_lines=["x"], language=compiler.language, test=test)
        h = m.prepare(req, compiler)
        handles.append(h)
        return h

    yield _stage
    for h in handles:
        m.cleanup(h)


def test_success_reads_output_from_files(staged, py_compiler):
    h = staged(py_compiler)

    def ok(ws, argv):
        _write(ws, argv, out="hello\n")
        return FakeProcess(rc=0)

    prov = FakeProvider(ok)
    res = ExecutionDriver(prov).run(h, py_compiler, 2)

    assert res.status is ExecutionStatus.SUCCEEDED
    assert res.exit_code == 0
    assert res.stdout_lines == ["hello"]
    call = prov.calls[0]
    assert call["image"] == "local"
    assert call["workspace"] == h.path
    assert call["argv"][0] == "script.sh"
    assert call["argv"][2:5] == ["-", "python.out", "python.err"]
    assert call["argv"][5:] == py_compiler.run_argv()


def test_provider_and_watchdog_share_the_timeout(staged, py_compiler):
    h = staged(py_compiler)
    prov = FakeProvider(lambda ws, argv: FakeProcess())
    ExecutionDriver(prov).run(h, py_compiler, 3)
    call = prov.calls[0]
    assert 2.5 < call["timeout_s"] <= 3
    assert float(call["argv"][1]) == pytest.approx(call["timeout_s"], abs=0.01)


def test_stdin_file_is_passed(staged, py_compiler):
    h = staged(py_compiler, test=SandboxTest(id="t", stdin_lines=["5"]))
    prov = FakeProvider(lambda ws, argv: FakeProcess())
    ExecutionDriver(prov).run(h, py_compiler, 2)
    assert prov.calls[0]["argv"][2] == "python.stdin"


def test_nonzero_exit_is_runtime_error(staged, py_compiler):
    h = staged(py_compiler)

    def boom(ws, argv):
        _write(ws, argv, err="ZeroDivisionError: division by zero\n")
        return FakeProcess(rc=3)

    res = ExecutionDriver(FakeProvider(boom)).run(h, py_compiler, 2)
    assert res.status is ExecutionStatus.RUNTIME_ERROR
    assert res.exit_code == 3
    assert "ZeroDivisionError" in res.stderr


def test_watchdog_kills_hanging_process(staged, py_compiler):
    h = staged(py_compiler)
    proc = FakeProcess(hang=True)
    t0 = time.monotonic()
    res = ExecutionDriver(FakeProvider(lambda ws, argv: proc)).run(h, py_compiler, 0.3)
    assert res.status is ExecutionStatus.TIMED_OUT
    assert proc.killed.is_set()
    assert time.monotonic() - t0 < 5
    assert "[timeout]" in res.stderr


def test_zero_budget_never_launches(staged, py_compiler):
    h = staged(py_compiler)
    prov = FakeProvider()
    res = ExecutionDriver(prov).run(h, py_compiler, 0)
    assert res.status is ExecutionStatus.TIMED_OUT
    assert prov.calls == []


def test_cancellation_ends_as_timeout(staged, py_compiler):
    h = staged(py_compiler)
    proc = FakeProcess(hang=True)
    cancel = Cancellation()
    threading.Timer(0.2, cancel.cancel).start()
    res = ExecutionDriver(FakeProvider(lambda ws, argv: proc)).run(h, py_compiler, 20, cancel)
    assert res.status is ExecutionStatus.TIMED_OUT
    assert proc.killed.is_set()


def test_launch_failure_is_io_error(staged, py_compiler):
    h = staged(py_compiler)

    def broken(ws, argv):
        raise FileNotFoundError("docker")

    res = ExecutionDriver(FakeProvider(broken)).run(h, py_compiler, 2)
    assert res.status is ExecutionStatus.IO_ERROR
    assert res.exit_code is None
    assert "docker" in res.stderr


def test_compile_failure_short_circuits(staged, fake_cc):
    h = staged(fake_cc)

    def cc(ws, argv):
        _write(ws, argv, err="fakecc: syntax error\n")
        return FakeProcess(rc=1)

    prov = FakeProvider(cc)
    res = ExecutionDriver(prov).run(h, fake_cc, 2)
    assert res.status is ExecutionStatus.COMPILE_ERROR
    assert res.exit_code == 1
    assert res.stderr_lines == ["fakecc: syntax error"]
    assert len(prov.calls) == 1
    assert prov.calls[0]["argv"][5:] == fake_cc.compile_argv()


def test_compile_then_run(staged, fake_cc):
    h = staged(fake_cc)

    def cc(ws, argv):
        _write(ws, argv, err="warning: unused\n")
        return FakeProcess(rc=0)

    def run(ws, argv):
        # compiler noise must not leak into the program's output
        assert (ws / argv[4]).read_text() == ""
        _write(ws, argv, out="42\n")
        return FakeProcess(rc=0)

    prov = FakeProvider(cc, run)
    res = ExecutionDriver(prov).run(h, fake_cc, 2)
    assert res.status is ExecutionStatus.SUCCEEDED
    assert res.stdout_lines == ["42"]
    assert res.stderr == ""
    assert prov.calls[1]["argv"][5:] == ["./shc.bin"]
    assert prov.calls[0]["name"] != prov.calls[1]["name"]


def test_output_is_capped(staged, py_compiler):
    h = staged(py_compiler)

    def chatty(ws, argv):
        _write(ws, argv, out="x" * 100)
        return FakeProcess(rc=0)

    res = ExecutionDriver(FakeProvider(chatty), max_output_bytes=10).run(h, py_compiler, 2)
    assert res.stdout == "x" * 10
    assert TRUNCATED_MARK in res.stderr


@pytest.mark.parametrize("seconds,text", [
    (2.5, "2.5"),
    (3.0, "3"),
    (0.0004, "0.001"),
    (0.0, "0.001"),
])
def test_launcher_timeout_never_rounds_to_zero(seconds, text):
    # "timeout 0" would disable the limit altogether
    assert _fmt_seconds(seconds) == text
