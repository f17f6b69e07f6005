from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from pydantic import field_validator
import sys


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Watch Party"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    # Logging
    LOG_LEVEL: str = "INFO"  # TRACE, DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL
    LOG_TO_FILE: bool = True
    LOG_DIR: str = "logs"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Room Settings
    MAX_USERS_PER_ROOM: int = 6
    MAX_USERNAME_LENGTH: int = 20
    ROOM_CODE_LENGTH: int = 6
    ROOM_CODE_MAX_ATTEMPTS: int = 10
    EMPTY_ROOM_TTL_SECONDS: float = 10 * 60  # Empty rooms are deleted after 10 minutes

    # Playback
    INITIAL_SYNC_DELAY_SECONDS: float = 2.0  # Gives the joiner's player time to load

    # Chat
    CHAT_HISTORY_LIMIT: int = 100
    JOIN_HISTORY_LIMIT: int = 50
    MAX_MESSAGE_LENGTH: int = 500

    # WebSocket
    MAX_WS_PAYLOAD_BYTES: int = 512 * 1024
    SCREEN_FRAME_RELAY_ENABLED: bool = False

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True

    # Metered TURN Server
    METERED_API_KEY: str = ""
    METERED_API_URL: str = "https://openrelay.metered.live/api/v1/turn/credentials"
    STUN_SERVERS: list[str] = ["stun:stun.l.google.com:19302", "stun:stun1.l.google.com:19302"]
    TURN_SERVER: str = ""
    TURN_USERNAME: str = ""
    TURN_CREDENTIAL: str = ""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("CORS_ORIGINS", "STUN_SERVERS", mode="before")
    @classmethod
    def split_comma_separated(cls, v):
        """Allow comma separated values in addition to JSON lists."""
        if isinstance(v, str) and not v.startswith("["):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("MAX_USERS_PER_ROOM", "ROOM_CODE_MAX_ATTEMPTS", "CHAT_HISTORY_LIMIT")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    def get_cors_origins(self) -> list[str]:
        return self.CORS_ORIGINS


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Exits the process if configuration is invalid.
    """
    try:
        return Settings()
    except Exception as e:
        print(f"\n{'='*70}")
        print(f"CONFIGURATION ERROR: {e}")
        print(f"{'='*70}\n")
        sys.exit(1)


settings = get_settings()
