"""
AWS X-Ray tracing for sandbox executions.

Simple subsegment wrapper around each adapter invocation.
No-op when running outside Lambda (no active X-Ray segment).
"""

import os
from contextlib import contextmanager
from typing import Any

from aws_xray_sdk.core import patch_all, xray_recorder

# Auto-patch supported libraries (httpx, etc.)
if os.environ.get("AWS_LAMBDA_FUNCTION_NAME"):
    patch_all()
else:
    xray_recorder.configure(context_missing="IGNORE_ERROR")


@contextmanager
def sandbox_span(adapter: str, **attributes: Any):
    """Create an X-Ray subsegment for one adapter invocation.

    Gracefully no-ops when no active segment exists (e.g., in tests or local dev).
    """
    with xray_recorder.in_subsegment(f"sandbox.{adapter}") as subsegment:
        if subsegment is None:
            yield None
        else:
            subsegment.put_annotation("sandbox_adapter", adapter)
            for key, value in attributes.items():
                if isinstance(value, str) and len(value) > 500:
                    value = value[:500] + "..."
                subsegment.put_metadata(key, value)
            yield subsegment


def add_outcome_attributes(subsegment, outcome: Any) -> None:
    """Record the outcome of an execution. No-op if subsegment is None."""
    if subsegment is None:
        return
    subsegment.put_annotation("sandbox_success", bool(outcome.success))
    if outcome.error is not None:
        subsegment.put_annotation("sandbox_error_kind", outcome.error.kind.value)
        message = outcome.error.message
        if len(message) > 500:
            message = message[:500] + "..."
        subsegment.put_metadata("error_message", message)
