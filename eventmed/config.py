"""Application settings loaded from the environment."""

from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_title: str = Field(default="Event Medical Rota API")
    log_level: str = Field(default="INFO")
    # calendar arithmetic for repeats and monthly views
    rota_timezone: str = Field(default="Europe/London")
    assignment_link_template: str = Field(default="/brief/{shift_id}")

    model_config = SettingsConfigDict(
        env_prefix="EVENTMED_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("rota_timezone")
    @classmethod
    def known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown time zone {value!r}") from exc
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.rota_timezone)


@lru_cache
def get_settings() -> Settings:
    return Settings()
