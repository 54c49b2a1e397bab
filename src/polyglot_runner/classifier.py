from __future__ import annotations

import re
import signal
import threading
from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Named kinds of runtime failure recognised in process output.

    Example:
        ```python
        kind = ErrorKind.DIVISION_BY_ZERO
        ```
    """

    DIVISION_BY_ZERO = "DivisionByZero"
    SYNTAX_ERROR = "SyntaxError"
    NAME_ERROR = "NameError"
    TYPE_ERROR = "TypeError"
    INDEX_ERROR = "IndexError"
    NULL_REFERENCE = "NullReference"
    END_OF_INPUT = "EndOfInput"
    STACK_OVERFLOW = "StackOverflow"
    OUT_OF_MEMORY = "OutOfMemory"
    SEGMENTATION_FAULT = "SegmentationFault"
    ABORTED = "Aborted"
    UNCAUGHT_EXCEPTION = "UncaughtException"
    UNKNOWN_RUNTIME_ERROR = "UnknownRuntimeError"


def _signal_exit_codes(sig: signal.Signals) -> frozenset[int]:
    """Return the exit codes a signal death shows up as on host and in a container.

    Example:
        ```python
        codes = _signal_exit_codes(signal.SIGSEGV)  # {-11, 139}
        ```
    """
    return frozenset({-int(sig), 128 + int(sig)})


@dataclass(frozen=True, slots=True)
class ClassifierRule:
    """One row of the classification table.

    Empty ``languages`` matches every language; a rule without a pattern
    matches on exit code alone.

    Example:
        ```python
        rule = ClassifierRule(ErrorKind.NAME_ERROR, r"\\bNameError\\b", frozenset({"python"}))
        ```
    """

    kind: ErrorKind
    pattern: str | None = None
    languages: frozenset[str] = frozenset()
    exit_codes: frozenset[int] = frozenset()

    def matches(self, exit_code: int | None, stderr: str, language: str) -> bool:
        """Return True when every criterion of this rule holds.

        Example:
            ```python
            hit = rule.matches(1, "NameError: name 'x' is not defined", "python")
            ```
        """
        if self.languages and language not in self.languages:
            return False
        if self.exit_codes and exit_code not in self.exit_codes:
            return False
        if self.pattern is not None and re.search(self.pattern, stderr) is None:
            return False
        return bool(self.pattern is not None or self.exit_codes)


_PY = frozenset({"python"})
_JS = frozenset({"javascript", "typescript"})
_JAVA = frozenset({"java"})
_CS = frozenset({"csharp"})
_HS = frozenset({"haskell"})
_R = frozenset({"r"})
_NATIVE = frozenset({"c", "cpp", "rust", "go"})
_SIGFPE = _signal_exit_codes(signal.SIGFPE)
_SIGSEGV = _signal_exit_codes(signal.SIGSEGV)
_SIGABRT = _signal_exit_codes(signal.SIGABRT)

DEFAULT_RULES: tuple[ClassifierRule, ...] = (
    # python
    ClassifierRule(ErrorKind.DIVISION_BY_ZERO, r"\bZeroDivisionError\b", _PY),
    ClassifierRule(ErrorKind.SYNTAX_ERROR, r"\b(SyntaxError|IndentationError|TabError)\b", _PY),
    ClassifierRule(ErrorKind.NAME_ERROR, r"\b(NameError|UnboundLocalError)\b", _PY),
    ClassifierRule(ErrorKind.END_OF_INPUT, r"\bEOFError\b", _PY),
    ClassifierRule(ErrorKind.INDEX_ERROR, r"\b(IndexError|KeyError)\b", _PY),
    ClassifierRule(ErrorKind.TYPE_ERROR, r"\bTypeError\b", _PY),
    ClassifierRule(ErrorKind.NULL_REFERENCE, r"'NoneType' object", _PY),
    ClassifierRule(ErrorKind.STACK_OVERFLOW, r"\bRecursionError\b", _PY),
    ClassifierRule(ErrorKind.OUT_OF_MEMORY, r"\bMemoryError\b", _PY),
    ClassifierRule(ErrorKind.UNCAUGHT_EXCEPTION, r"Traceback \(most recent call last\)", _PY),
    # javascript / typescript
    ClassifierRule(ErrorKind.DIVISION_BY_ZERO, r"RangeError: Division by zero", _JS),
    ClassifierRule(ErrorKind.STACK_OVERFLOW, r"Maximum call stack size exceeded", _JS),
    ClassifierRule(ErrorKind.OUT_OF_MEMORY, r"heap out of memory", _JS),
    ClassifierRule(ErrorKind.SYNTAX_ERROR, r"\bSyntaxError\b", _JS),
    ClassifierRule(ErrorKind.NAME_ERROR, r"\bReferenceError\b", _JS),
    ClassifierRule(ErrorKind.NULL_REFERENCE, r"Cannot read propert(y|ies) of (null|undefined)", _JS),
    ClassifierRule(ErrorKind.TYPE_ERROR, r"\bTypeError\b", _JS),
    ClassifierRule(ErrorKind.UNCAUGHT_EXCEPTION, r"(Uncaught|\bthrow\b|\b\w*Error\b)", _JS),
    # java
    ClassifierRule(ErrorKind.DIVISION_BY_ZERO, r"ArithmeticException: / by zero", _JAVA),
    ClassifierRule(ErrorKind.NULL_REFERENCE, r"\bNullPointerException\b", _JAVA),
    ClassifierRule(ErrorKind.INDEX_ERROR, r"\b\w*IndexOutOfBoundsException\b", _JAVA),
    ClassifierRule(ErrorKind.TYPE_ERROR, r"\b(ClassCastException|NumberFormatException)\b", _JAVA),
    ClassifierRule(ErrorKind.END_OF_INPUT, r"\bNoSuchElementException\b", _JAVA),
    ClassifierRule(ErrorKind.STACK_OVERFLOW, r"\bStackOverflowError\b", _JAVA),
    ClassifierRule(ErrorKind.OUT_OF_MEMORY, r"\bOutOfMemoryError\b", _JAVA),
    ClassifierRule(ErrorKind.UNCAUGHT_EXCEPTION, r"Exception in thread \"", _JAVA),
    # ruby
    ClassifierRule(ErrorKind.DIVISION_BY_ZERO, r"\bZeroDivisionError\b", frozenset({"ruby"})),
    ClassifierRule(ErrorKind.SYNTAX_ERROR, r"\bSyntaxError\b|syntax error", frozenset({"ruby"})),
    ClassifierRule(ErrorKind.NAME_ERROR, r"\b(NameError|NoMethodError)\b", frozenset({"ruby"})),
    # bash
    ClassifierRule(ErrorKind.DIVISION_BY_ZERO, r"division by 0", frozenset({"bash"})),
    ClassifierRule(ErrorKind.SYNTAX_ERROR, r"syntax error", frozenset({"bash"})),
    ClassifierRule(ErrorKind.NAME_ERROR, r"command not found", frozenset({"bash"})),
    # c#
    ClassifierRule(ErrorKind.DIVISION_BY_ZERO, r"\bDivideByZeroException\b", _CS),
    ClassifierRule(ErrorKind.NULL_REFERENCE, r"\bNullReferenceException\b", _CS),
    ClassifierRule(ErrorKind.INDEX_ERROR, r"\b(IndexOutOfRangeException|ArgumentOutOfRangeException)\b", _CS),
    ClassifierRule(ErrorKind.TYPE_ERROR, r"\b(InvalidCastException|FormatException)\b", _CS),
    ClassifierRule(ErrorKind.END_OF_INPUT, r"\bArgumentNullException\b", _CS),
    ClassifierRule(ErrorKind.STACK_OVERFLOW, r"\bStackOverflowException\b|Stack overflow", _CS),
    ClassifierRule(ErrorKind.OUT_OF_MEMORY, r"\bOutOfMemoryException\b", _CS),
    ClassifierRule(ErrorKind.UNCAUGHT_EXCEPTION, r"Unhandled [Ee]xception", _CS),
    # haskell (runhaskell type-checks at start-up, so compile errors surface here)
    ClassifierRule(ErrorKind.DIVISION_BY_ZERO, r"\bdivide by zero\b", _HS),
    ClassifierRule(ErrorKind.END_OF_INPUT, r"end of file", _HS),
    ClassifierRule(ErrorKind.INDEX_ERROR, r"empty list|index too large|negative index", _HS),
    ClassifierRule(ErrorKind.STACK_OVERFLOW, r"stack overflow", _HS),
    ClassifierRule(ErrorKind.OUT_OF_MEMORY, r"[Hh]eap exhausted|out of memory", _HS),
    ClassifierRule(ErrorKind.SYNTAX_ERROR, r"\bparse error\b", _HS),
    ClassifierRule(ErrorKind.NAME_ERROR, r"not in scope", _HS),
    ClassifierRule(ErrorKind.TYPE_ERROR, r"Couldn't match|No instance for", _HS),
    ClassifierRule(ErrorKind.UNCAUGHT_EXCEPTION, r"\*\*\* Exception:", _HS),
    # r
    ClassifierRule(ErrorKind.SYNTAX_ERROR, r"Error: unexpected ", _R),
    ClassifierRule(ErrorKind.NAME_ERROR, r"object '[^']*' not found|could not find function", _R),
    ClassifierRule(ErrorKind.INDEX_ERROR, r"subscript out of bounds", _R),
    ClassifierRule(ErrorKind.TYPE_ERROR, r"non-numeric argument|invalid 'type'", _R),
    ClassifierRule(ErrorKind.STACK_OVERFLOW, r"infinite recursion|evaluation nested too deeply", _R),
    ClassifierRule(ErrorKind.OUT_OF_MEMORY, r"cannot allocate vector", _R),
    ClassifierRule(ErrorKind.UNCAUGHT_EXCEPTION, r"(?m)^Error", _R),
    # native code: panics first, then signal deaths
    ClassifierRule(ErrorKind.DIVISION_BY_ZERO, r"attempt to divide by zero|integer divide by zero", _NATIVE),
    ClassifierRule(ErrorKind.INDEX_ERROR, r"index out of (bounds|range)", _NATIVE),
    ClassifierRule(ErrorKind.NULL_REFERENCE, r"nil pointer dereference", _NATIVE),
    ClassifierRule(ErrorKind.UNCAUGHT_EXCEPTION, r"terminate called after throwing", _NATIVE),
    ClassifierRule(ErrorKind.UNCAUGHT_EXCEPTION, r"(?m)panicked at|^panic:", _NATIVE),
    ClassifierRule(ErrorKind.DIVISION_BY_ZERO, exit_codes=_SIGFPE),
    ClassifierRule(ErrorKind.SEGMENTATION_FAULT, exit_codes=_SIGSEGV),
    ClassifierRule(ErrorKind.ABORTED, exit_codes=_SIGABRT),
)

_RULES_LOCK = threading.Lock()
_RULES: list[ClassifierRule] = list(DEFAULT_RULES)


def register_rule(rule: ClassifierRule, *, first: bool = False) -> None:
    """Add a rule to the classification table.

    ``first=True`` puts the rule ahead of every existing rule so it wins ties.

    Example:
        ```python
        register_rule(ClassifierRule(ErrorKind.OUT_OF_MEMORY, r"std::bad_alloc", frozenset({"cpp"})), first=True)
        ```
    """
    with _RULES_LOCK:
        if first:
            _RULES.insert(0, rule)
        else:
            _RULES.append(rule)


def reset_rules() -> None:
    """Restore the built-in classification table.

    Example:
        ```python
        reset_rules()
        ```
    """
    with _RULES_LOCK:
        _RULES[:] = DEFAULT_RULES


def rules() -> tuple[ClassifierRule, ...]:
    """Return a snapshot of the active classification table.

    Example:
        ```python
        table = rules()
        ```
    """
    with _RULES_LOCK:
        return tuple(_RULES)


def classify(exit_code: int | None, stderr: str, language: str) -> ErrorKind:
    """Map a failed process's exit code and stderr to an error kind.

    Example:
        ```python
        kind = classify(1, "ZeroDivisionError: division by zero", "python")
        ```
    """
    text = stderr or ""
    for rule in rules():
        if rule.matches(exit_code, text, language):
            return rule.kind
    return ErrorKind.UNKNOWN_RUNTIME_ERROR


def describe(kind: ErrorKind, exit_code: int | None) -> str:
    """Render the caller-facing message for a classified runtime failure.

    Example:
        ```python
        message = describe(ErrorKind.DIVISION_BY_ZERO, 1)
        ```
    """
    if kind is ErrorKind.UNKNOWN_RUNTIME_ERROR:
        return f"Unknown runtime error (exit code {exit_code})"
    return f"Runtime error: {kind.value} (exit code {exit_code})"
