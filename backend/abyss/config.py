"""Application configuration derived from environment."""
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Server and engine settings."""

    model_config = ConfigDict(env_prefix="ABYSS_")

    # Server
    debug: bool = False
    log_level: str = "INFO"
    redis_url: str = "redis://localhost:6379/0"

    # Protocol
    protocol_version: str = "1.0"

    # Game content (None = bundled game_content.json)
    content_path: str | None = None

    # Session rules
    spins_per_level: int = 5
    max_level_discount_percent: int = 90  # keeps the level schedule increasing

    # Redis TTLs
    session_state_ttl_seconds: int = 86400  # 24 hours for session continuation
    idempotency_ttl_seconds: int = 3600
    lock_ttl_seconds: int = 30  # Auto-expire lock after 30s if process crashes


settings = Settings()
