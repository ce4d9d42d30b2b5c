"""Global session settings"""

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Centralized configuration.
    Reads configs from env variables, resolved once at startup.
    """

    app_name: str = "Lovebirds Chat"
    log_level: str = "INFO"

    # Namespace of every room and message key in the backend
    app_id: str = "default-app-id"

    backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://localhost:6379"

    # Optional credential handed to the identity provider at bootstrap
    initial_auth_token: str | None = None

    room_code_length: int = 6
    room_create_attempts: int = 5

    model_config = {"env_file": ".env"}


settings = Settings()
