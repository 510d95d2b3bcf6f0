from .compilers import Compiler, CompilerRegistry, DEFAULT_REGISTRY, LanguageCompiler, lookup

__all__ = ["Compiler", "CompilerRegistry", "DEFAULT_REGISTRY", "LanguageCompiler", "lookup"]
