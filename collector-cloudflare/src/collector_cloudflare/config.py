"""Collector configuration read from the environment."""

import os
from typing import List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from analytics_core.schemas import Credentials
from .errors import FatalConfigError
from .metrics import MetricsSet, build_denied_metrics_set


def split_csv(value: Optional[str]) -> List[str]:
    """Split a comma-separated setting, trimming whitespace and dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class CollectorConfig(BaseModel):
    api_token: str = ""
    api_key: str = ""
    api_email: str = ""
    zone_ids: List[str] = []
    request_paths: List[str] = []
    domain_names: List[str] = []
    free_tier: bool = False
    scrape_delay: int = Field(default=300, ge=0)
    scrape_interval: int = Field(default=60, gt=0)
    metrics_denylist: List[str] = []
    query_limit: int = Field(default=9999, gt=0)
    query_timeout: float = Field(default=30.0, gt=0)
    query_concurrency: int = Field(default=1, ge=1)
    prom_port: int = 8080
    prom_addr: str = "0.0.0.0"
    use_mock: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "CollectorConfig":
        env = os.environ if env is None else env
        try:
            return cls(
                api_token=env.get("CF_API_TOKEN", ""),
                api_key=env.get("CF_API_KEY", ""),
                api_email=env.get("CF_API_EMAIL", ""),
                zone_ids=split_csv(env.get("CF_ZONES", "")),
                request_paths=split_csv(env.get("CF_REQUEST_PATHS", "")),
                domain_names=split_csv(env.get("CF_DOMAIN_NAMES", "")),
                free_tier=_bool(env.get("CF_FREE_TIER", "false")),
                scrape_delay=env.get("CF_SCRAPE_DELAY", "300"),
                scrape_interval=env.get("CF_SCRAPE_INTERVAL", "60"),
                metrics_denylist=split_csv(env.get("CF_METRICS_DENYLIST", "")),
                query_limit=env.get("CF_QUERY_LIMIT", "9999"),
                query_timeout=env.get("CF_QUERY_TIMEOUT", "30"),
                query_concurrency=env.get("CF_QUERY_CONCURRENCY", "1"),
                prom_port=env.get("CF_PROM_PORT", "8080"),
                prom_addr=env.get("CF_PROM_ADDR", "0.0.0.0"),
                use_mock=_bool(env.get("CF_USE_MOCK", "false")),
                log_level=env.get("LOG_LEVEL", "INFO"),
            )
        except ValidationError as e:
            raise FatalConfigError(f"invalid configuration: {e}") from e

    @property
    def credentials(self) -> Credentials:
        return Credentials(
            api_token=self.api_token, api_key=self.api_key, api_email=self.api_email
        )

    def validate_startup(self) -> MetricsSet:
        """Check everything that must hold before the first scrape cycle.

        Returns the validated denylist.
        """
        if not self.use_mock and not self.credentials.is_complete:
            raise FatalConfigError(
                "CF_API_TOKEN or both CF_API_KEY and CF_API_EMAIL must be set"
            )
        return build_denied_metrics_set(self.metrics_denylist)

    def redacted(self) -> dict:
        """Settings safe to log: secrets are replaced by their state."""
        data = self.model_dump()
        for key in ("api_token", "api_key"):
            data[key] = "not_set" if not data[key] else f"set ({len(data[key])} chars)"
        return data
