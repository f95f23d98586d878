"""Data model shared by every execution adapter."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic_core import to_jsonable_python


class Language(str, Enum):
    """Languages the sandbox can execute."""

    SNIPPET = "snippet"  # In-process restricted interpreter
    PYTHON = "python"  # Child process (or remote service)
    BASH = "bash"  # Child process (or remote service)

    @property
    def is_interpreted(self) -> bool:
        """Whether this language runs in-process rather than in a child process."""
        return self is Language.SNIPPET

    @classmethod
    def parse(cls, value: str) -> "Language | None":
        """Return the matching language, or None when unsupported."""
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            return None


class ErrorKind(str, Enum):
    """Closed set of failure reasons reported to the orchestrator."""

    MISSING_CODE = "MISSING_CODE"
    UNSUPPORTED_LANGUAGE = "UNSUPPORTED_LANGUAGE"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"
    RUNTIME_FAULT = "RUNTIME_FAULT"
    PROCESS_NOT_FOUND = "PROCESS_NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ExecutionRequest(BaseModel):
    """One code-execution step submitted by the orchestrator.

    ``language`` is kept as a plain string so that an unknown value reaches
    the dispatcher and is reported as ``UNSUPPORTED_LANGUAGE``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    language: str = Field(default=Language.PYTHON.value, description="Target language")
    code: str = Field(default="", description="Source code to execute")
    input: dict[str, Any] = Field(default_factory=dict, description="Input payload")
    packages: frozenset[str] = Field(
        default_factory=frozenset,
        description="Third-party packages the code needs",
    )
    timeout_ms: int = Field(
        default=30000,
        gt=0,
        alias="timeoutMs",
        description="Wall-clock deadline in milliseconds",
    )


class ExecutionError(BaseModel):
    """Typed failure carried by an ExecutionOutcome."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    details: Any = None


class ExecutionOutcome(BaseModel):
    """The sole result returned to the orchestrator."""

    model_config = ConfigDict(frozen=True)

    success: bool
    output: dict[str, Any] | None = None
    error: ExecutionError | None = None

    @classmethod
    def ok(cls, value: Any) -> "ExecutionOutcome":
        """Build a success outcome wrapping ``value`` as ``output.output``."""
        return cls(success=True, output={"output": to_jsonable_python(value, fallback=str)})

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        details: Any = None,
    ) -> "ExecutionOutcome":
        """Build a failure outcome."""
        return cls(
            success=False,
            error=ExecutionError(
                kind=kind,
                message=message,
                details=to_jsonable_python(details, fallback=str),
            ),
        )

    @property
    def error_kind(self) -> ErrorKind | None:
        """Shortcut for ``error.kind``."""
        return self.error.kind if self.error else None


@dataclass(frozen=True)
class ValidationVerdict:
    """Pass/fail decision of the code validator for one request."""

    allowed: bool
    violating_symbol: str | None = None
    reason: str | None = None

    @classmethod
    def accept(cls) -> "ValidationVerdict":
        return cls(allowed=True)

    @classmethod
    def reject(cls, symbol: str, reason: str) -> "ValidationVerdict":
        return cls(allowed=False, violating_symbol=symbol, reason=reason)


@dataclass
class ExecutionArtifact:
    """Temporary files staged for one child-process execution."""

    execution_id: str
    workdir: Path
    script_path: Path
    manifest_path: Path | None = None
