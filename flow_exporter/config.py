from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class Settings(BaseSettings):
    """Runtime configuration for the flow-log exporter."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Destination
    axiom_dataset: str = ""
    axiom_org_id: str = ""
    axiom_token: str = ""
    axiom_url: str = "https://api.axiom.co"
    destination_backend: str = "axiom"  # options: axiom, memory, sqlite
    destination_path: str = "data/flowlogs.db"

    # Source
    firewalla_url: str = ""
    firewalla_key: str = ""
    firewalla_auth_scheme: str = "Token"
    api_version: str = "v2"  # options: v1 (offset), v2 (cursor)

    # Extraction
    lookback_hours: int = Field(default=12, gt=0)
    page_size: int = Field(default=500, gt=0)
    request_timeout: float = Field(default=10.0, gt=0)
    watermark_field: str = "event_timestamp"
    watermark_fallback_on_error: bool = False

    # Logging
    log_level: str = "info"
    json_logs: bool = True
    display_timezone: str = "Europe/Amsterdam"

    def require_credentials(self) -> None:
        missing: List[str] = []
        if self.destination_backend.lower() == "axiom":
            for name in ("axiom_dataset", "axiom_org_id", "axiom_token"):
                if not getattr(self, name):
                    missing.append(name.upper())
        for name in ("firewalla_url", "firewalla_key"):
            if not getattr(self, name):
                missing.append(name.upper())
        if any(ch in self.axiom_dataset for ch in "'\\"):
            raise ConfigurationError(
                f"Invalid AXIOM_DATASET {self.axiom_dataset!r}",
                details={"reason": "quotes and backslashes are not allowed"},
            )
        if self.api_version not in ("v1", "v2"):
            raise ConfigurationError(
                f"Unsupported api_version '{self.api_version}'",
                details={"supported": ["v1", "v2"]},
            )
        if missing:
            raise ConfigurationError(
                "Missing required configuration: " + ", ".join(missing),
                details={"missing": missing},
            )

    @property
    def dataset(self) -> str:
        return self.axiom_dataset or "flowlogs"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
