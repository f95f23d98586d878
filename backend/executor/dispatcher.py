"""Dispatcher: the single public entry point of the sandbox."""

import asyncio
from collections.abc import Iterable
from typing import Any

from common.config import Settings, settings
from common.logging import get_logger
from common.tracing import add_outcome_attributes, sandbox_span
from executor.interpreter import run_snippet
from executor.models import ErrorKind, ExecutionOutcome, ExecutionRequest, Language
from executor.policy import PolicySet, get_policy
from executor.remote import RemoteExecutor
from executor.runner import ProcessRunner
from executor.security import validate

logger = get_logger(__name__)

_USE_SETTINGS: Any = object()


class CodeDispatcher:
    """Route execution requests to an adapter and normalize the result.

    Holds no per-request state, so one instance serves concurrent calls.
    """

    def __init__(
        self,
        config: Settings | None = None,
        policy: PolicySet | None = None,
        service_url: str | None = _USE_SETTINGS,
        runner: ProcessRunner | None = None,
        remote: RemoteExecutor | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            config: Application settings. Defaults to the global settings.
            policy: Deny/allow policy. Defaults to the process-wide policy.
            service_url: Remote execution endpoint. Defaults to the configured
                one; pass None to always execute locally.
            runner: Process adapter (injected for tests).
            remote: Remote adapter (injected for tests).
        """
        self.config = config or settings
        self.policy = policy or get_policy()
        if service_url is _USE_SETTINGS:
            service_url = self.config.resolved_python_service_url
        self.service_url = service_url
        self.runner = runner or ProcessRunner(self.config)
        self.remote = remote or RemoteExecutor(self.config)

    async def execute(self, request: ExecutionRequest) -> ExecutionOutcome:
        """Execute one request. Never raises.

        Args:
            request: The execution request.

        Returns:
            ExecutionOutcome describing success or a typed failure.
        """
        try:
            return await self._dispatch(request)
        except Exception as e:
            logger.exception("Unexpected failure while executing code")
            return ExecutionOutcome.failure(
                ErrorKind.RUNTIME_FAULT,
                str(e) or type(e).__name__,
                details={"type": type(e).__name__},
            )

    async def _dispatch(self, request: ExecutionRequest) -> ExecutionOutcome:
        if not request.code or not request.code.strip():
            return ExecutionOutcome.failure(ErrorKind.MISSING_CODE, "Code is required")

        language = Language.parse(request.language)
        if language is None:
            return ExecutionOutcome.failure(
                ErrorKind.UNSUPPORTED_LANGUAGE,
                f"Unsupported language: {request.language}",
            )

        if len(request.code.encode("utf-8")) > self.config.max_code_size_bytes:
            return ExecutionOutcome.failure(
                ErrorKind.SECURITY_VIOLATION,
                f"Code exceeds maximum size of {self.config.max_code_size_bytes} bytes",
            )

        if language.is_interpreted:
            logger.info(f"Executing snippet in-process (length={len(request.code)})")
            with sandbox_span("interpreter", code_length=len(request.code)) as span:
                outcome = await asyncio.to_thread(
                    run_snippet,
                    request.code,
                    dict(request.input),
                    self.config.snippet_timeout_ms,
                )
                add_outcome_attributes(span, outcome)
            return outcome

        verdict = validate(request.code, request.packages, self.policy, language)
        if not verdict.allowed:
            logger.warning(f"Rejected {language.value} code: {verdict.reason}")
            return ExecutionOutcome.failure(
                ErrorKind.SECURITY_VIOLATION,
                verdict.reason or "Code validation failed",
                details={"symbol": verdict.violating_symbol},
            )

        if self.service_url:
            logger.info(f"Delegating {language.value} execution to {self.service_url}")
            with sandbox_span("remote", language=language.value) as span:
                outcome = await self.remote.run(
                    self.service_url,
                    request.code,
                    dict(request.input),
                    request.packages,
                    request.timeout_ms,
                    language=language,
                )
                add_outcome_attributes(span, outcome)
            return outcome

        logger.info(
            f"Executing {language.value} in a child process "
            f"(length={len(request.code)}, packages={len(request.packages)})"
        )
        with sandbox_span("process", language=language.value) as span:
            outcome = await self.runner.run(
                request.code,
                dict(request.input),
                request.packages,
                request.timeout_ms,
                language=language,
            )
            add_outcome_attributes(span, outcome)
        return outcome


# Singleton instance for dependency injection
_dispatcher: CodeDispatcher | None = None


def get_dispatcher() -> CodeDispatcher:
    """Get the process-wide dispatcher instance."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = CodeDispatcher()
    return _dispatcher


async def execute_code(
    code: str,
    language: str = Language.PYTHON.value,
    input_data: dict[str, Any] | None = None,
    packages: Iterable[str] = (),
    timeout_ms: int | None = None,
) -> ExecutionOutcome:
    """Execute code through the process-wide dispatcher.

    Args:
        code: The source code to execute.
        language: One of ``snippet``, ``python`` or ``bash``.
        input_data: Input payload for the code.
        packages: Third-party packages the code needs.
        timeout_ms: Wall-clock deadline. Defaults to the configured value.

    Returns:
        ExecutionOutcome for the run.
    """
    request = ExecutionRequest(
        language=language,
        code=code,
        input=input_data or {},
        packages=frozenset(packages),
        timeout_ms=timeout_ms or settings.execution_timeout_ms,
    )
    return await get_dispatcher().execute(request)
