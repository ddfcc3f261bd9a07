from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT", ge=0, le=65535)
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    greeting: str = Field(default="Hello, Kubernetes!", alias="GREETING")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    metrics_sample_timeout_seconds: float = Field(default=0.25, alias="METRICS_SAMPLE_TIMEOUT_SECONDS", gt=0)
    instrument_http: bool = Field(default=True, alias="INSTRUMENT_HTTP")
    keep_alive_timeout: int = Field(default=5, alias="KEEP_ALIVE_TIMEOUT", ge=1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
