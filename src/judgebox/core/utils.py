from __future__ import annotations
import random, string, time
from typing import List, Tuple


def new_request_id() -> str:
    suf = "".join(random.choice(string.hexdigits.lower()) for _ in range(6))
    return f"{int(time.time())}-{suf}"


def split_source(source: str) -> Tuple[List[str], str]:
    """
    Split source text into lines and report the separator it uses, so the
    workspace can write the file back byte-for-byte.
    """
    sep = "\r\n" if "\r\n" in source else "\n"
    lines = source.split(sep)
    return lines, sep


def output_lines(text: str) -> List[str]:
    """
    Split program output on line feeds only. Carriage returns, form feeds
    and every other character stay part of their line. One trailing line
    feed does not start an extra empty line.
    """
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines
