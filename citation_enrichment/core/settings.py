"""Application configuration for the citation enrichment engine."""

from typing import Any, Optional

import requests
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_BATCH_SIZE = 500


class EnrichmentSettings(BaseSettings):  # type: ignore[misc]
    """Settings controlling the catalog endpoint, timeouts and pacing."""

    base_url: Optional[str] = Field(None, description="Override for the catalog API base URL")
    api_key: Optional[str] = Field(None, description="Optional catalog API key")
    user_agent: str = Field("citation-enrichment", description="User-Agent for outbound requests")
    timeout: float = Field(30.0, gt=0, description="Timeout (seconds) for single lookups")
    batch_timeout: float = Field(60.0, gt=0, description="Timeout (seconds) for batch lookups")
    batch_size: int = Field(MAX_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE)
    batch_pacing_delay: float = Field(0.2, ge=0, description="Pause between batch chunks")
    record_pacing_delay: float = Field(0.2, ge=0, description="Pause between sequential records")
    rate_limit_cooldown: float = Field(
        0.0, ge=0, description="Extra pause after a rate-limited record in a sequential pass"
    )
    library_pacing_delay: float = Field(
        0.5, ge=0, description="Pause between records during a whole-library update"
    )
    library_rate_limit_cooldown: float = Field(
        3.0, ge=0, description="Pause after a rate-limited record during a library update"
    )
    retry_floor: float = Field(2.0, gt=0, description="Minimum retry backoff delay")
    retry_ceiling: float = Field(60.0, gt=0, description="Maximum retry backoff delay")
    max_retries: int = Field(5, ge=1, description="Rate-limit cycles before a record is dropped")
    retry_pacing_delay: float = Field(0.5, ge=0, description="Pause after each retry attempt")
    auto_fetch_delay: float = Field(0.5, ge=0, description="Pause before fetching a new record")
    startup_update_delay: float = Field(
        3.0, ge=0, description="Delay before the library update scheduled by start()"
    )
    debug_logging: bool = False

    model_config = SettingsConfigDict(env_prefix="CITATIONS_", env_file=".env", extra="ignore")

    @field_validator("api_key", "base_url")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "EnrichmentSettings":
        if self.retry_ceiling < self.retry_floor:
            raise ValueError("retry_ceiling must not be lower than retry_floor")
        return self

    def build_session(self, session: Optional[requests.Session] = None) -> requests.Session:
        """Return a configured :class:`requests.Session` using the settings."""

        session = session if session is not None else requests.Session()
        if self.user_agent:
            session.headers.setdefault("User-Agent", self.user_agent)
        return session

    def model_post_init(self, __context: Any) -> None:
        if self.base_url:
            self.base_url = self.base_url.rstrip("/")
