"""
Run one source file through the sandbox and print the outcome as JSON.

    python -m judgebox hello.py --language python --timeout 5
    python -m judgebox sum.c -l c --stdin in.txt --expect out.txt --provider local
"""
from __future__ import annotations
import argparse, sys
from pathlib import Path

from .core.errors import SandboxError
from .core.models import ExecutionStatus, SandboxTest, SandboxTestResult
from .logging import setup_logging
from .runners.compilers import DEFAULT_REGISTRY
from .services.orchestrator import SandboxService
from .settings import load_settings


def _lines(p: str | None):
    if not p:
        return None
    return Path(p).read_text(encoding="utf-8").splitlines()


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(prog="judgebox")
    ap.add_argument("source", help="source file to run")
    ap.add_argument("-l", "--language", required=True, choices=DEFAULT_REGISTRY.languages())
    ap.add_argument("-t", "--timeout", type=float, default=None, help="seconds, default from settings")
    ap.add_argument("--stdin", help="file fed to the program's standard input")
    ap.add_argument("--expect", help="file with the expected standard output")
    ap.add_argument("--provider", choices=["docker", "local"], help="override the configured provider")
    ap.add_argument("--config", help="YAML config, default conf/sandbox.yaml")
    args = ap.parse_args(argv)

    setup_logging()
    s = load_settings(Path(args.config) if args.config else None)
    if args.provider:
        s = s.model_copy(update={"provider": args.provider})

    test = None
    if args.stdin or args.expect:
        test = SandboxTest(id="cli", stdin_lines=_lines(args.stdin), expected_stdout_lines=_lines(args.expect))

    svc = SandboxService(settings=s)
    try:
        source = Path(args.source).read_text(encoding="utf-8")
        req = svc.new_request(source, args.language, timeout_s=args.timeout, test=test)
        outcome = svc.execute(req)
    except (SandboxError, OSError, ValueError) as e:
        print(f"judgebox: {e}", file=sys.stderr)
        return 2

    print(outcome.model_dump_json(indent=2))
    ok = outcome.status is ExecutionStatus.SUCCEEDED and outcome.test_result in (None, SandboxTestResult.PASSED)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
