import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Base paths
BASE_DIR = Path(__file__).parent.parent
DEFAULT_WORKSPACE_ROOT = Path(tempfile.gettempdir()) / "code-execution"


class Settings(BaseSettings):
    # Auth
    api_secret_key: str = "change-me"
    api_key_header: str = "X-API-Key"

    # Workspaces
    workspace_root: Path = DEFAULT_WORKSPACE_ROOT
    workspace_retention_minutes: int = 10
    cleanup_interval_seconds: int = 300

    # Execution limits
    max_execution_time_ms: int = 10000
    max_stdout_bytes: int = 100 * 1024
    max_stderr_bytes: int = 10 * 1024

    # Request limits
    max_code_length: int = 50000
    max_input_length: int = 10000
    max_body_bytes: int = 1024 * 1024
    max_test_cases: int = 100
    rate_limit_window_ms: int = 60000
    rate_limit_max_requests: int = 100

    # Judge settings
    max_concurrent_judges: int = 4  # extra requests queue on a semaphore

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(env_prefix="JUDGE_", env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
