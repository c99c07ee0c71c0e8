"""Runtime configuration for the knowpack services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Reserved token placed between concatenated articles. Consumers split on it, so
# it must stay stable for the lifetime of a deployment.
DEFAULT_SEPARATOR = "\n\n<!-- knowpack-separator-magic-3f9c1e7a5b2d4086 -->\n\n"


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="knowpack_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"
    knowledge_dir: Path = Path("./knowledge")

    # Ranking
    stale_days: int = 365
    freshness_half_life_days: float = 180.0
    min_score: float = 0.0

    # Packing
    separator: str = DEFAULT_SEPARATOR
    max_candidates_scanned: int = 500
    min_document_bytes: int = 1
    default_budget_bytes: int = 16_000
    max_budget_bytes: int = 1_000_000

    # Store access
    fetch_timeout_seconds: float | None = 10.0

    # CORS
    cors_allow_origins: tuple[str, ...] = ()
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header
    rate_limit_requests: int = 120  # per window per client
    rate_limit_window_seconds: int = 60
    trust_forwarded_for: bool = False  # key rate limits on X-Forwarded-For behind a proxy

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def separator_bytes(self) -> int:
        return len(self.separator.encode("utf-8"))


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
