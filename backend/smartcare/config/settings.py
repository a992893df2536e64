from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # Redis (document store backend)
    REDIS_HOST: str = Field("redis")
    REDIS_PORT: int = Field(6379)
    REDIS_PASSWORD: str | None = Field(None)

    # App
    API_HOST: str = Field("0.0.0.0")
    API_PORT: int = Field(8000)
    DEBUG: bool = Field(True)
    APP_BASE_URL: str = Field("http://localhost:3000")

    # WebRTC
    STUN_SERVERS: List[str] = Field(
        default_factory=lambda: [
            "stun:stun.l.google.com:19302",
            "stun:stun1.l.google.com:19302",
        ]
    )

    # Email delivery endpoint (logged only when unset)
    EMAIL_API_URL: str | None = Field(None)
    EMAIL_TIMEOUT_SEC: float = Field(10.0)
    FROM_EMAIL: str = Field("Smart Care <no-reply@smartcare.app>")

    # Capture devices (passed to aiortc MediaPlayer)
    VIDEO_DEVICE: str = Field("/dev/video0")
    VIDEO_FORMAT: str | None = Field("v4l2")
    AUDIO_DEVICE: str = Field("default")
    AUDIO_FORMAT: str | None = Field("pulse")
    DISPLAY_DEVICE: str = Field(":0.0")
    DISPLAY_FORMAT: str | None = Field("x11grab")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_file_encoding="utf-8"
    )


settings = Settings()
