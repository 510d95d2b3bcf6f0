from __future__ import annotations
from typing import Optional, Sequence

from ..core.models import SandboxTest, SandboxTestResult


def verify(test: Optional[SandboxTest], actual_stdout_lines: Sequence[str]) -> Optional[SandboxTestResult]:
    """
    Exact, ordered, line-by-line comparison. Whitespace is significant and
    the line counts must agree. No test means nothing to verify.
    """
    if test is None:
        return None
    expected = test.expected_stdout_lines
    if expected is None:
        return SandboxTestResult.PASSED
    if list(expected) == list(actual_stdout_lines):
        return SandboxTestResult.PASSED
    return SandboxTestResult.FAILED
