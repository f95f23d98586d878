"""Pydantic schemas for code execution."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from common.config import settings
from executor.models import ErrorKind, ExecutionRequest


class ExecuteRequest(BaseModel):
    """Request body of ``POST /execute`` (the remote wire contract)."""

    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(default="", description="Source code to execute")
    input: dict[str, Any] = Field(default_factory=dict, description="Input payload")
    packages: list[str] = Field(
        default_factory=list,
        description="Third-party packages the code needs",
    )
    timeout_ms: int = Field(
        default_factory=lambda: settings.execution_timeout_ms,
        gt=0,
        alias="timeoutMs",
        description="Maximum execution time in milliseconds",
    )
    language: str = Field(default="python", description="snippet, python or bash")

    def to_execution_request(self) -> ExecutionRequest:
        """Convert to the dispatcher's request model."""
        return ExecutionRequest(
            language=self.language,
            code=self.code,
            input=self.input,
            packages=frozenset(self.packages),
            timeout_ms=self.timeout_ms,
        )


class ExecuteResponse(BaseModel):
    """Successful response: the value the code produced."""

    result: Any = Field(default=None, description="Output of the executed code")


class ExecuteErrorResponse(BaseModel):
    """Failure response carrying the typed error kind."""

    error: str = Field(..., description="Human-readable error message")
    kind: ErrorKind = Field(..., description="Failure category")
    details: Any = Field(default=None, description="Structured error details")
