"""Task Manager configuration — settings, execution API, polling."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Auth
    taskmanager_api_key: str = ""  # Empty = auth disabled (dev mode)
    default_user_id: str = "local-user"  # Owner when no X-User-Id header is sent

    # Database
    database_url: str = "sqlite:///data/taskmanager.db"

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:3000"

    # Remote execution API
    execution_api_url: str = "http://localhost:8000"
    execution_api_timeout: float = 30.0

    # Polling
    poll_interval_seconds: float = 5.0
    task_poll_enabled: bool = True
    project_poll_enabled: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
