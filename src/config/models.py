"""Typed configuration models."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field, field_validator

from ..languages import LanguageCode, parse_language


class ProviderConfig(BaseModel):
    """BHASHINI / Dhruva inference pipeline settings."""

    base_url: str = "https://dhruva-api.bhashini.gov.in/services"
    api_key: str = ""
    user_id: str = ""
    pipeline_id: str = "64392f96daac500b55c543cd"
    timeout_sec: float = Field(default=30.0, gt=0)
    default_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    resolve_cache_ttl_sec: float = Field(default=600.0, ge=0)
    audio_format: str = "wav"
    asr_sampling_rate: int = 16000
    tts_sampling_rate: int = 22050
    tts_gender: str = "female"


class RetryConfig(BaseModel):
    max_retries: int = Field(default=1, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)

    @property
    def retry_delay_sec(self) -> float:
        return self.retry_delay_ms / 1000.0


class ConnectivityConfig(BaseModel):
    initial_online: bool = True
    # 0 disables the background probe loop; the signal is then set externally.
    probe_interval_sec: float = Field(default=0.0, ge=0)


class ConversationConfig(BaseModel):
    citizen_language: LanguageCode = LanguageCode.HINDI
    officer_language: LanguageCode = LanguageCode.ENGLISH
    adopt_detected_language: bool = False

    @field_validator("citizen_language", "officer_language", mode="before")
    @classmethod
    def _parse_language(cls, value):
        return parse_language(value)


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        # Comma-separated strings come from env expansion
        if isinstance(value, str):
            raw = value.strip()
            if raw == "*":
                return ["*"]
            return [o.strip() for o in raw.split(",") if o.strip()]
        return value


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"


class AppConfig(BaseModel):
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    connectivity: ConnectivityConfig = Field(default_factory=ConnectivityConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
