from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, List, Tuple

from ..core.errors import UnsupportedLanguage


@dataclass(frozen=True)
class LanguageCompiler:
    language: str
    command: str            # executable inside the image, e.g. python3, node, gcc
    is_interpreter: bool
    image_name: str
    stdout_file_name: str
    stderr_file_name: str
    additional_arguments: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.language or not self.command or not self.image_name:
            raise ValueError("language, command and image_name must be non-empty")
        if self.stdout_file_name == self.stderr_file_name:
            raise ValueError(f"{self.language}: stdout and stderr files must differ")

    @property
    def source_file_name(self) -> str:
        return f"{self.language}.source"

    @property
    def stdin_file_name(self) -> str:
        return f"{self.language}.stdin"

    @property
    def binary_file_name(self) -> str:
        return f"{self.language}.bin"

    # ---- argv builders ----
    # additional_arguments always sit right after the executable and before
    # the operands appended here.

    def compile_argv(self) -> List[str]:
        if self.is_interpreter:
            raise ValueError(f"{self.language} is interpreted, no compile step")
        return [self.command, *self.additional_arguments,
                "-o", self.binary_file_name, self.source_file_name]

    def run_argv(self) -> List[str]:
        if self.is_interpreter:
            return [self.command, *self.additional_arguments, self.source_file_name]
        return [f"./{self.binary_file_name}"]


class Compiler(Enum):
    """Built-in runtimes. Extend by adding a member."""

    PYTHON = LanguageCompiler(
        language="python", command="python3", is_interpreter=True,
        image_name="python:3.12-slim",
        stdout_file_name="python.out", stderr_file_name="python.err",
        additional_arguments=("-u",),
    )
    NODE = LanguageCompiler(
        language="node", command="node", is_interpreter=True,
        image_name="node:20-slim",
        stdout_file_name="node.out", stderr_file_name="node.err",
    )
    BASH = LanguageCompiler(
        language="bash", command="bash", is_interpreter=True,
        image_name="bash:5",
        stdout_file_name="bash.out", stderr_file_name="bash.err",
    )
    C = LanguageCompiler(
        language="c", command="gcc", is_interpreter=False,
        image_name="gcc:13",
        stdout_file_name="c.out", stderr_file_name="c.err",
        additional_arguments=("-x", "c", "-O2"),
    )
    RUST = LanguageCompiler(
        language="rust", command="rustc", is_interpreter=False,
        image_name="rust:1-slim",
        stdout_file_name="rust.out", stderr_file_name="rust.err",
        additional_arguments=("--edition", "2021", "-O"),
    )


class CompilerRegistry:
    """Read-only catalog keyed by language name. Safe to share between threads."""

    def __init__(self, compilers: Iterable[LanguageCompiler]):
        entries = {}
        for c in compilers:
            key = c.language.lower()
            if key in entries:
                raise ValueError(f"duplicate compiler for {c.language}")
            entries[key] = c
        self._entries = MappingProxyType(entries)

    def lookup(self, language: str) -> LanguageCompiler:
        try:
            return self._entries[(language or "").strip().lower()]
        except KeyError:
            raise UnsupportedLanguage(language) from None

    def languages(self) -> List[str]:
        return sorted(self._entries)

    def __contains__(self, language: str) -> bool:
        return (language or "").strip().lower() in self._entries

    def __len__(self) -> int:
        return len(self._entries)


DEFAULT_REGISTRY = CompilerRegistry(member.value for member in Compiler)


def lookup(language: str) -> LanguageCompiler:
    return DEFAULT_REGISTRY.lookup(language)
