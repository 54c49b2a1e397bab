from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from enum import Enum


class LanguageKind(str, Enum):
    """Execution pipeline a language needs.

    Example:
        ```python
        kind = LanguageKind.COMPILED
        ```
    """

    INTERPRETED = "interpreted"
    COMPILED = "compiled"


@dataclass(frozen=True, slots=True)
class LanguageSpec:
    """Toolchain description for one supported language.

    Argument templates may reference ``{source}``, ``{binary}``, ``{outdir}``,
    ``{classname}`` and ``{scratch}``; they are expanded per execution and
    passed to the engine as an argv list, never through a shell.

    Example:
        ```python
        spec = LanguageSpec("lua", LanguageKind.INTERPRETED, ".lua", run=("lua", "{source}"))
        ```
    """

    name: str
    kind: LanguageKind
    extension: str
    run: tuple[str, ...]
    compile: tuple[str, ...] = ()
    uses_outdir: bool = False
    class_named_source: bool = False
    env: dict[str, str] = field(default_factory=dict)

    @property
    def toolchain(self) -> str:
        """Return the executable that does the heavy lifting for this language.

        Example:
            ```python
            name = get_language("cpp").toolchain  # "g++"
            ```
        """
        return self.compile[0] if self.compile else self.run[0]

    @property
    def required_tools(self) -> tuple[str, ...]:
        """Return executables that must exist on the host for this language.

        Example:
            ```python
            tools = get_language("java").required_tools  # ("javac", "java")
            ```
        """
        heads = [argv[0] for argv in (self.compile, self.run) if argv]
        return tuple(head for head in dict.fromkeys(heads) if not head.startswith("{"))


_BUILTIN_LANGUAGES: tuple[LanguageSpec, ...] = (
    LanguageSpec("python", LanguageKind.INTERPRETED, ".py", run=("python3", "-u", "{source}")),
    LanguageSpec("javascript", LanguageKind.INTERPRETED, ".js", run=("node", "{source}")),
    LanguageSpec("ruby", LanguageKind.INTERPRETED, ".rb", run=("ruby", "{source}")),
    LanguageSpec("bash", LanguageKind.INTERPRETED, ".sh", run=("bash", "{source}")),
    LanguageSpec("r", LanguageKind.INTERPRETED, ".R", run=("Rscript", "{source}")),
    LanguageSpec("haskell", LanguageKind.INTERPRETED, ".hs", run=("runhaskell", "{source}")),
    LanguageSpec(
        "c",
        LanguageKind.COMPILED,
        ".c",
        compile=("gcc", "{source}", "-O2", "-o", "{binary}", "-lm"),
        run=("{binary}",),
    ),
    LanguageSpec(
        "cpp",
        LanguageKind.COMPILED,
        ".cpp",
        compile=("g++", "{source}", "-O2", "-o", "{binary}"),
        run=("{binary}",),
    ),
    LanguageSpec(
        "java",
        LanguageKind.COMPILED,
        ".java",
        compile=("javac", "-d", "{outdir}", "{source}"),
        run=("java", "-cp", "{outdir}", "{classname}"),
        uses_outdir=True,
        class_named_source=True,
    ),
    LanguageSpec(
        "go",
        LanguageKind.COMPILED,
        ".go",
        compile=("go", "build", "-o", "{binary}", "{source}"),
        run=("{binary}",),
        env={"GO111MODULE": "off"},
    ),
    LanguageSpec(
        "rust",
        LanguageKind.COMPILED,
        ".rs",
        compile=("rustc", "-O", "-o", "{binary}", "{source}"),
        run=("{binary}",),
    ),
    LanguageSpec(
        "typescript",
        LanguageKind.COMPILED,
        ".ts",
        compile=("tsc", "--pretty", "false", "--outDir", "{outdir}", "{source}"),
        run=("node", "{outdir}/{classname}.js"),
        uses_outdir=True,
    ),
    LanguageSpec(
        "csharp",
        LanguageKind.COMPILED,
        ".cs",
        compile=("mcs", "-out:{outdir}/{classname}.exe", "{source}"),
        run=("mono", "{outdir}/{classname}.exe"),
        uses_outdir=True,
    ),
)

_LOCK = threading.Lock()
_LANGUAGES: dict[str, LanguageSpec] = {spec.name: spec for spec in _BUILTIN_LANGUAGES}


def register_language(spec: LanguageSpec) -> None:
    """Add or replace a language in the supported vocabulary.

    Example:
        ```python
        register_language(LanguageSpec("lua", LanguageKind.INTERPRETED, ".lua", run=("lua", "{source}")))
        ```
    """
    if spec.kind is LanguageKind.COMPILED and not spec.compile:
        raise ValueError(f"Compiled language '{spec.name}' needs a compile command")
    with _LOCK:
        _LANGUAGES[spec.name] = spec


def unregister_language(name: str) -> None:
    """Remove a language from the supported vocabulary.

    Example:
        ```python
        unregister_language("lua")
        ```
    """
    with _LOCK:
        _LANGUAGES.pop(name, None)


def get_language(name: str) -> LanguageSpec | None:
    """Return the spec for a language name, or None when unsupported.

    Example:
        ```python
        spec = get_language("python")
        ```
    """
    with _LOCK:
        return _LANGUAGES.get(name)


def supported_languages() -> list[LanguageSpec]:
    """Return every supported language sorted by name.

    Example:
        ```python
        names = [spec.name for spec in supported_languages()]
        ```
    """
    with _LOCK:
        return sorted(_LANGUAGES.values(), key=lambda spec: spec.name)


def expand(template: tuple[str, ...], values: dict[str, str]) -> list[str]:
    """Expand an argv template with per-execution paths.

    Example:
        ```python
        argv = expand(("gcc", "{source}"), {"source": "/tmp/a.c"})
        ```
    """
    return [part.format(**values) for part in template]


# string and char literals and comments are skipped; only bare identifiers are renamed
_JAVA_TOKENS = re.compile(
    r'"(?:\\.|[^"\\\n])*"'
    r"|'(?:\\.|[^'\\\n])*'"
    r"|//[^\n]*"
    r"|/\*.*?\*/"
    r"|[A-Za-z_$][A-Za-z0-9_$]*",
    re.DOTALL,
)
_JAVA_PUBLIC_CLASS = re.compile(r"\bpublic\s+(?:(?:final|abstract|strictfp)\s+)*class\s+([A-Za-z_$][\w$]*)")
_JAVA_ANY_CLASS = re.compile(r"^\s*(?:(?:final|abstract|strictfp)\s+)*class\s+([A-Za-z_$][\w$]*)", re.MULTILINE)


def java_class_name(source: str) -> str | None:
    """Return the class whose name must match the file name, if any.

    The public class is preferred; without one the first top-level class is used.

    Example:
        ```python
        name = java_class_name("public class Main { }")  # "Main"
        ```
    """
    match = _JAVA_PUBLIC_CLASS.search(source) or _JAVA_ANY_CLASS.search(source)
    return match.group(1) if match else None


def rewrite_java_class(source: str, new_name: str) -> str:
    """Rename the file-defining Java class so it can live in ``<new_name>.java``.

    Every bare occurrence of the old identifier is renamed, so constructors and
    static references keep compiling; text inside literals and comments is kept.

    Example:
        ```python
        code = rewrite_java_class("public class Main { }", "Main1a2b")
        ```
    """
    old_name = java_class_name(source)
    if old_name is None or old_name == new_name:
        return source

    def _swap(match: re.Match[str]) -> str:
        """Rename identifier tokens equal to the old class name.

        Example:
            ```python
            _JAVA_TOKENS.sub(_swap, source)
            ```
        """
        token = match.group(0)
        return new_name if token == old_name else token

    return _JAVA_TOKENS.sub(_swap, source)
