"""Pytest configuration and fixtures.

This module sets up test environment variables BEFORE any application
modules are imported, so the global Settings instance is predictable.
"""

import os

# Set test environment variables before any imports that might trigger Settings
# This runs at pytest collection time, before test modules are imported
os.environ.setdefault("APP_NAME", "polyglot-sandbox-test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("HOST", "127.0.0.1")
os.environ.setdefault("PORT", "8000")
os.environ.setdefault("CORS_ORIGINS", '["http://localhost:3000"]')
os.environ.setdefault("EXECUTION_TIMEOUT_MS", "15000")
os.environ.setdefault("SNIPPET_TIMEOUT_MS", "2000")
os.environ.setdefault("MAX_CODE_SIZE_BYTES", "65536")
os.environ.setdefault("PIP_INSTALL_TIMEOUT_SECONDS", "5")
os.environ["PYTHON_SERVICE_URL"] = ""  # Never delegate to a real service in tests

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    # Import here to ensure env vars are set first
    from api.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sandbox_settings(tmp_path):
    """Settings whose staging directory is a private tmp dir."""
    from common.config import Settings

    return Settings(
        _env_file=None,
        sandbox_temp_dir=str(tmp_path),
        execution_timeout_ms=15000,
        snippet_timeout_ms=2000,
        pip_install_timeout_seconds=5.0,
        kill_grace_seconds=0.5,
        python_service_url="",
    )


@pytest.fixture
def mock_env_vars():
    """Fixture providing standard test environment variables."""
    return {
        "APP_NAME": "polyglot-sandbox-test",
        "DEBUG": "false",
        "ENVIRONMENT": "testing",
        "HOST": "127.0.0.1",
        "PORT": "8000",
        "CORS_ORIGINS": '["http://localhost:3000"]',
        "EXECUTION_TIMEOUT_MS": "15000",
        "MAX_CODE_SIZE_BYTES": "65536",
    }
