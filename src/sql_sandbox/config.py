"""Pydantic settings for the SQL sandbox service."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = {"env_prefix": "SQLSANDBOX_"}

    redis_url: str = "redis://localhost:6379/0"
    pg_host: str = "localhost"
    pg_port: int = 5432
    pg_user: str = "postgres"
    pg_password: str = ""
    pg_admin_database: str = "postgres"
    read_timeout_seconds: float = 10.0
    manipulation_timeout_seconds: float = 30.0
    script_timeout_seconds: float = 120.0
    copy_ttl_hours: float = 4.0
    sweep_interval_seconds: float = 300.0
    max_result_rows: int = 1000
    max_script_size_bytes: int = 1_048_576  # 1 MB
    oracle_api_url: str = "https://api.openai.com"
    oracle_api_key: str = ""
    oracle_model: str = "gpt-4o-mini"
    cors_allowed_origins: list[str] = ["http://localhost:4200"]
    log_level: str = "INFO"
