"""
Executor Worker - Processes code execution requests from stdin.

Reads one JSON request per line and writes one JSON outcome per line, so an
orchestrator can drive the sandbox over a pipe without the HTTP service.
"""

import asyncio
import json
import signal
import sys

from pydantic import ValidationError

from common.config import settings
from common.logging import configure_logging, get_logger
from executor.dispatcher import CodeDispatcher
from executor.models import ErrorKind, ExecutionOutcome, ExecutionRequest

logger = get_logger(__name__)


class ExecutorWorker:
    """
    Worker process that handles code execution requests.

    Each request is independent; the dispatcher holds no per-request state.
    """

    def __init__(self, dispatcher: CodeDispatcher | None = None) -> None:
        self.dispatcher = dispatcher or CodeDispatcher()
        self.running = True

    def install_signal_handlers(self) -> None:
        """Register signal handlers for graceful shutdown."""
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

    def _handle_shutdown(self, signum: int, frame: object) -> None:
        """Handle shutdown signals gracefully."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False

    async def process_line(self, line: str) -> dict:
        """
        Process a single request line.

        Args:
            line: JSON object with 'code' and optional 'language', 'input',
                'packages' and 'timeoutMs'.

        Returns:
            The outcome as a JSON-compatible dictionary.
        """
        try:
            data = json.loads(line)
            if not isinstance(data, dict):
                raise ValueError("Request must be a JSON object")
            if "timeoutMs" not in data and "timeout_ms" not in data:
                data["timeoutMs"] = settings.execution_timeout_ms
            request = ExecutionRequest.model_validate(data)
        except (ValueError, ValidationError) as e:
            outcome = ExecutionOutcome.failure(ErrorKind.RUNTIME_FAULT, f"Invalid request: {e}")
            return outcome.model_dump(mode="json")

        logger.info(f"Executing {request.language} code (length={len(request.code)})")
        outcome = await self.dispatcher.execute(request)
        return outcome.model_dump(mode="json")

    async def run(self) -> None:
        """
        Read requests from stdin, write results to stdout.
        """
        logger.info("Starting executor in stdin mode")
        loop = asyncio.get_running_loop()

        while self.running:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if not line.strip():
                continue

            result = await self.process_line(line.strip())
            print(json.dumps(result), flush=True)

        logger.info("Executor worker stopped")


def main() -> None:
    """Entry point for the executor worker."""
    configure_logging()
    logger.info("Executor worker starting...")

    worker = ExecutorWorker()
    worker.install_signal_handlers()

    try:
        asyncio.run(worker.run())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    except Exception as e:
        logger.error(f"Worker crashed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
