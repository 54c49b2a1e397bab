from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from .classifier import ErrorKind


class RequestValidationError(ValueError):
    """Raised when a request is malformed; nothing has been allocated yet."""


class ExecutionStatus(str, Enum):
    """Terminal (or, for sessions, in-progress) outcome of one execution.

    Example:
        ```python
        status = ExecutionStatus.TIMEOUT
        ```
    """

    SUCCESS = "Success"
    RUNNING = "Running"
    COMPILE_ERROR = "CompileError"
    RUNTIME_ERROR = "RuntimeError"
    TIMEOUT = "Timeout"
    UNSUPPORTED_LANGUAGE = "UnsupportedLanguage"
    SESSION_NOT_FOUND = "SessionNotFound"
    INTERNAL_ERROR = "InternalError"


_HTTP_STATUS = {
    ExecutionStatus.SUCCESS: 200,
    ExecutionStatus.RUNNING: 200,
    ExecutionStatus.UNSUPPORTED_LANGUAGE: 400,
    ExecutionStatus.SESSION_NOT_FOUND: 404,
}


def _lines(value: Any) -> tuple[str, ...]:
    """Normalize the ``input`` field into a tuple of lines.

    Example:
        ```python
        lines = _lines(["1", "2"])
        ```
    """
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(value.split("\n")) if value else ()
    if not isinstance(value, (list, tuple)):
        raise RequestValidationError("'input' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise RequestValidationError("'input' must contain only strings")
        out.append(item)
    return tuple(out)


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One submission: code, language, and the lines fed to stdin.

    ``session_id`` continues an interactive session (``code`` may then be
    empty); ``interactive=True`` starts a new one.

    Example:
        ```python
        req = ExecutionRequest(code="print(input())", language="python", input=("hi",))
        ```
    """

    code: str
    language: str
    input: tuple[str, ...] = ()
    session_id: str | None = None
    interactive: bool = False

    def __post_init__(self) -> None:
        """Validate shape before anything is allocated.

        Example:
            ```python
            ExecutionRequest(code="", language="python")  # raises RequestValidationError
            ```
        """
        if not isinstance(self.code, str):
            raise RequestValidationError("'code' must be a string")
        if not isinstance(self.language, str) or not self.language.strip():
            raise RequestValidationError("'language' must be a non-empty string")
        if self.session_id is None and not self.code.strip():
            raise RequestValidationError("'code' must be a non-empty string")
        if self.session_id is not None and (not isinstance(self.session_id, str) or not self.session_id):
            raise RequestValidationError("'sessionId' must be a non-empty string")
        object.__setattr__(self, "input", _lines(self.input))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ExecutionRequest":
        """Build a request from the JSON body an HTTP layer received.

        Example:
            ```python
            req = ExecutionRequest.from_payload({"code": "print(1)", "language": "python", "input": []})
            ```
        """
        if not isinstance(payload, Mapping):
            raise RequestValidationError("Request body must be a JSON object")
        session_id = payload.get("sessionId", payload.get("session_id"))
        code = payload.get("code")
        if code is None and session_id is not None:
            code = ""
        return cls(
            code=code,  # type: ignore[arg-type]
            language=payload.get("language"),  # type: ignore[arg-type]
            input=_lines(payload.get("input")),
            session_id=session_id,
            interactive=bool(payload.get("interactive", False)),
        )


@dataclass(slots=True)
class ExecutionResult:
    """Normalized outcome returned by the dispatcher and every runner.

    Example:
        ```python
        result = ExecutionResult(ExecutionStatus.SUCCESS, stdout="hi\\n")
        ```
    """

    status: ExecutionStatus
    stdout: str = ""
    stderr: str = ""
    error_kind: ErrorKind | None = None
    exit_code: int | None = None
    message: str | None = None
    session_id: str | None = None
    duration_ms: int = 0
    output_truncated: bool = False
    output_offset: int | None = None
    next_offset: int | None = None
    phases: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return True for a successful run or a live interactive round.

        Example:
            ```python
            if result.ok: ...
            ```
        """
        return self.status in (ExecutionStatus.SUCCESS, ExecutionStatus.RUNNING)

    @property
    def http_status(self) -> int:
        """Return the HTTP status an API layer should answer with.

        Example:
            ```python
            code = result.http_status
            ```
        """
        return _HTTP_STATUS.get(self.status, 500)

    def to_response(self) -> dict[str, Any]:
        """Render the JSON response body for this result.

        Example:
            ```python
            body = result.to_response()
            ```
        """
        output = {"stdout": self.stdout, "stderr": self.stderr}
        body: dict[str, Any]
        if self.ok:
            body = {"output": output}
        else:
            body = {"error": self.message or self.status.value, "output": output}
            if self.error_kind is not None:
                body["kind"] = self.error_kind.value
        body["status"] = self.status.value
        if self.session_id is not None:
            body["sessionId"] = self.session_id
        if self.next_offset is not None:
            body["offset"] = self.output_offset
            body["nextOffset"] = self.next_offset
        return body

    @classmethod
    def unsupported(cls, language: str, detail: str | None = None) -> "ExecutionResult":
        """Build the result for a language outside the vocabulary.

        Example:
            ```python
            result = ExecutionResult.unsupported("cobol")
            ```
        """
        return cls(
            status=ExecutionStatus.UNSUPPORTED_LANGUAGE,
            message=detail or f"Unsupported language: {language}",
        )

    @classmethod
    def internal(cls, message: str, *, stdout: str = "", stderr: str = "") -> "ExecutionResult":
        """Build the result for a platform failure unrelated to the submitted code.

        Example:
            ```python
            result = ExecutionResult.internal("Cannot create scratch directory")
            ```
        """
        return cls(status=ExecutionStatus.INTERNAL_ERROR, message=message, stdout=stdout, stderr=stderr)
