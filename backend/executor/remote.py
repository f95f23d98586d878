"""Remote delegation: forward execution to an external execution service.

No local staging, install or supervision happens here; the remote service
owns all of that. Local isolation is traded for operational isolation.
"""

from collections.abc import Iterable
from typing import Any

import httpx

from common.config import Settings, settings
from common.logging import get_logger
from executor.models import ErrorKind, ExecutionOutcome, Language

logger = get_logger(__name__)


def _error_body(response: httpx.Response) -> Any:
    """Parse a structured error body if the service sent one."""
    try:
        return response.json()
    except ValueError:
        return response.text or None


class RemoteExecutor:
    """Client for the remote execution service's ``POST /execute``."""

    def __init__(
        self,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the remote executor.

        Args:
            config: Settings providing the default timeout and network buffer.
            transport: Optional httpx transport (used to stub the network in tests).
        """
        self.config = config or settings
        self.transport = transport

    async def run(
        self,
        endpoint: str,
        code: str,
        input_data: dict[str, Any],
        packages: Iterable[str] = (),
        timeout_ms: int | None = None,
        language: Language = Language.PYTHON,
    ) -> ExecutionOutcome:
        """Execute code on the remote service.

        Args:
            endpoint: Base URL of the execution service.
            code: Source code to execute.
            input_data: Input payload.
            packages: Packages the remote side should make available.
            timeout_ms: Requested execution timeout.
            language: External language to run.

        Returns:
            ExecutionOutcome with the service's ``result``, or SERVICE_UNAVAILABLE.
        """
        timeout_ms = timeout_ms or self.config.execution_timeout_ms
        client_timeout = (timeout_ms + self.config.remote_timeout_buffer_ms) / 1000
        payload = {
            "language": language.value,
            "code": code,
            "input": input_data,
            "packages": sorted(packages),
            "timeoutMs": timeout_ms,
        }
        url = f"{endpoint.rstrip('/')}/execute"

        try:
            async with httpx.AsyncClient(timeout=client_timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            body = _error_body(e.response)
            message = None
            if isinstance(body, dict):
                message = body.get("error")
            logger.warning(f"Execution service returned {e.response.status_code} for {url}")
            return ExecutionOutcome.failure(
                ErrorKind.SERVICE_UNAVAILABLE,
                str(message or f"Execution service error: HTTP {e.response.status_code}"),
                details=body,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Execution service at {url} is unreachable: {e!r}")
            return ExecutionOutcome.failure(
                ErrorKind.SERVICE_UNAVAILABLE,
                str(e) or f"Execution service error: {type(e).__name__}",
            )

        try:
            data = response.json()
        except ValueError:
            return ExecutionOutcome.ok(response.text)

        if isinstance(data, dict) and "result" in data:
            return ExecutionOutcome.ok(data["result"])
        return ExecutionOutcome.ok(data)
