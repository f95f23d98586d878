"""Code execution endpoints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.schemas.execution import ExecuteErrorResponse, ExecuteRequest, ExecuteResponse
from common.logging import get_logger
from executor.dispatcher import CodeDispatcher
from executor.models import ErrorKind, ExecutionOutcome

logger = get_logger(__name__)

router = APIRouter()

ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.MISSING_CODE: 400,
    ErrorKind.UNSUPPORTED_LANGUAGE: 400,
    ErrorKind.SECURITY_VIOLATION: 403,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.PROCESS_NOT_FOUND: 503,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.RUNTIME_FAULT: 500,
}

_local_dispatcher: CodeDispatcher | None = None


def get_local_dispatcher() -> CodeDispatcher:
    """Get a dispatcher that always executes on this host.

    The service is itself a delegation target, so it never forwards
    requests to another execution service.
    """
    global _local_dispatcher
    if _local_dispatcher is None:
        _local_dispatcher = CodeDispatcher(service_url=None)
    return _local_dispatcher


@router.post(
    "/execute",
    response_model=ExecuteResponse,
    responses={
        400: {"model": ExecuteErrorResponse},
        403: {"model": ExecuteErrorResponse},
        500: {"model": ExecuteErrorResponse},
        503: {"model": ExecuteErrorResponse},
        504: {"model": ExecuteErrorResponse},
    },
)
async def execute_code(
    request: ExecuteRequest,
    dispatcher: CodeDispatcher = Depends(get_local_dispatcher),
) -> ExecuteResponse | JSONResponse:
    """Execute code in the sandbox and return its result.

    This is the server side of the remote delegation contract: the body
    matches what ``RemoteExecutor`` sends, and a success is answered with
    ``{"result": ...}``.

    Args:
        request: The execution request.
        dispatcher: Local-only dispatcher (injected).

    Returns:
        ExecuteResponse on success, otherwise an error body whose status
        code reflects the failure kind.
    """
    outcome = await dispatcher.execute(request.to_execution_request())
    if outcome.success:
        return ExecuteResponse(result=(outcome.output or {}).get("output"))

    error = outcome.error
    logger.info(f"Execution failed with {error.kind.value}: {error.message}")
    body = ExecuteErrorResponse(error=error.message, kind=error.kind, details=error.details)
    return JSONResponse(
        status_code=ERROR_STATUS.get(error.kind, 500),
        content=body.model_dump(mode="json"),
    )


@router.post("/sandbox/execute", response_model=ExecutionOutcome)
async def execute_code_outcome(
    request: ExecuteRequest,
    dispatcher: CodeDispatcher = Depends(get_local_dispatcher),
) -> ExecutionOutcome:
    """Execute code and return the full outcome.

    Always answers 200; callers branch on ``success`` and ``error.kind``.
    """
    return await dispatcher.execute(request.to_execution_request())
