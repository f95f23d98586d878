"""Application configuration using Pydantic Settings."""

import sys
import tempfile
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_names(value: str) -> set[str]:
    """Parse a comma-separated list of names into a set."""
    if not value:
        return set()
    return {name.strip() for name in value.split(",") if name.strip()}


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Every value has a working default so the sandbox can run with no
    configuration at all. Values are read once at process start.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Polyglot Sandbox"
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"

    # Server (only used by the HTTP execution service)
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: list[str] = ["*"]

    # Execution limits
    execution_timeout_ms: int = 30000
    snippet_timeout_ms: int = 5000
    max_code_size_bytes: int = 65536  # 64KB

    # Policy (comma-separated module / package names)
    # Example: "pandas,numpy" to extend the built-in denylist
    blocked_packages: str = ""
    # Example: "math,json,requests_html" - empty means "all except denylist"
    allowed_packages: str = ""

    # Remote delegation - when set, external languages run on this service
    python_service_url: str = ""
    remote_timeout_buffer_ms: int = 5000  # Network latency allowance

    # Child process execution
    python_executable: str = sys.executable
    bash_executable: str = "bash"
    pip_install_timeout_seconds: float = 10.0
    sandbox_temp_dir: str = tempfile.gettempdir()
    kill_grace_seconds: float = 1.0

    @property
    def blocked_packages_set(self) -> set[str]:
        """Parse blocked_packages into a set of names."""
        return _split_names(self.blocked_packages)

    @property
    def allowed_packages_set(self) -> set[str]:
        """Parse allowed_packages into a set of names."""
        return _split_names(self.allowed_packages)

    @property
    def resolved_python_service_url(self) -> str | None:
        """Get the remote execution endpoint without a trailing slash, or None."""
        url = self.python_service_url.strip()
        return url.rstrip("/") if url else None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
