"""API schemas package."""

from api.schemas.execution import ExecuteErrorResponse, ExecuteRequest, ExecuteResponse

__all__ = [
    "ExecuteErrorResponse",
    "ExecuteRequest",
    "ExecuteResponse",
]
