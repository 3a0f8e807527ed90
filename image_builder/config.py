from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="IMAGE_BUILDER_", env_file=".env", extra="ignore"
    )

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    database_url: str = Field(default="sqlite:///./image_builder.db")

    ovf_locale: str = Field(default="US")
    remote_probe_enabled: bool = Field(default=True)
    remote_probe_timeout_sec: int = Field(default=15, ge=1)

    retry_attempts: int = Field(default=3, ge=1)
    retry_sleep_sec: int = Field(default=2, ge=0)

    driver_factory: str | None = Field(default=None)
    max_concurrent_builds: int = Field(default=2, ge=1)

    shutdown_timeout_sec: int = Field(default=300, ge=1)
    ip_wait_timeout_sec: int = Field(default=1800, ge=1)

    disable_workers: bool = Field(default=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
