from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Chatroom Realtime API"
    debug: bool = True
    api_prefix: str = "/api"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"

    database_url: str = "sqlite:///./chatroom.db"
    redis_url: str = "redis://localhost:6379/0"

    secret_key: str = "change-this-secret-key"
    access_token_expire_minutes: int = 60 * 24 * 7
    rate_limit_enabled: bool = True
    rate_limit_global_limit: int = 180
    rate_limit_global_window_seconds: int = 60
    rate_limit_sensitive_limit: int = 60
    rate_limit_sensitive_window_seconds: int = 60
    websocket_connect_limit: int = 20
    websocket_connect_window_seconds: int = 60
    websocket_event_limit: int = 240
    websocket_event_window_seconds: int = 60
    websocket_allow_query_token: bool = True

    chat_bot_install_phrase: str = "/add bot lowcard"
    chat_bot_command_sigil: str = "!"
    chat_max_message_length: int = 2000
    chat_allow_anonymous_send: bool = False
    chat_persistence_queue_size: int = 1000
    room_allowed_capacities: list[int] = Field(default_factory=lambda: [25, 40, 80])
    lowcard_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
