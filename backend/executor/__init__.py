"""Polyglot code-execution sandbox.

This package executes untrusted code snippets with:
- A static import/call gate for child-process languages
- A restricted in-process interpreter for snippets
- Child-process execution with staged, always-cleaned artifacts
- Timeout enforcement on every path
- Optional delegation to a remote execution service
"""

from executor.dispatcher import CodeDispatcher, execute_code, get_dispatcher
from executor.models import (
    ErrorKind,
    ExecutionError,
    ExecutionOutcome,
    ExecutionRequest,
    Language,
    ValidationVerdict,
)
from executor.policy import DEFAULT_BLOCKED_PACKAGES, PolicySet, get_policy
from executor.security import is_code_safe, validate

__all__ = [
    "CodeDispatcher",
    "execute_code",
    "get_dispatcher",
    "ErrorKind",
    "ExecutionError",
    "ExecutionOutcome",
    "ExecutionRequest",
    "Language",
    "ValidationVerdict",
    "DEFAULT_BLOCKED_PACKAGES",
    "PolicySet",
    "get_policy",
    "is_code_safe",
    "validate",
]
