"""Health check endpoint."""

from fastapi import APIRouter
from pydantic import BaseModel

from common.config import settings

router = APIRouter()

VERSION = "0.1.0"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    environment: str
    remote_execution: bool


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check endpoint.

    Returns the service status and version.
    Used by load balancers and monitoring systems.
    """
    return HealthResponse(
        status="healthy",
        version=VERSION,
        environment=settings.environment,
        remote_execution=settings.resolved_python_service_url is not None,
    )
