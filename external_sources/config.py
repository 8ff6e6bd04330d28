"""
External Sources - Configuration.

    EXTERNAL_SOURCES_ENABLED           "true" / "false"
    EXTERNAL_ENCLAVE_URL               enclave base URL
    EXTERNAL_SOURCES                   comma list of source names
    EXTERNAL_TIMEOUT_SECONDS           per-source timeout
    EXTERNAL_MAX_BUNDLE_AGE_SECONDS    older bundles are rejected
"""

import os
from dataclasses import dataclass, field


DEFAULT_SOURCES = ["myanimelist", "anilist"]


@dataclass
class FetcherConfig:
    """Configuration for the external metrics fetcher."""

    enabled: bool = True
    enclave_url: str = "http://localhost:3000"
    sources: list[str] = field(default_factory=lambda: list(DEFAULT_SOURCES))
    timeout_seconds: float = 30.0
    max_bundle_age_seconds: float = 3600.0
    max_incidents: int = 100

    @classmethod
    def from_env(cls) -> "FetcherConfig":
        raw_sources = os.getenv("EXTERNAL_SOURCES")
        sources = (
            [s.strip() for s in raw_sources.split(",") if s.strip()]
            if raw_sources is not None
            else list(DEFAULT_SOURCES)
        )
        return cls(
            enabled=os.getenv("EXTERNAL_SOURCES_ENABLED", "true").lower() == "true",
            enclave_url=os.getenv("EXTERNAL_ENCLAVE_URL", "http://localhost:3000"),
            sources=sources,
            timeout_seconds=float(os.getenv("EXTERNAL_TIMEOUT_SECONDS", "30")),
            max_bundle_age_seconds=float(os.getenv("EXTERNAL_MAX_BUNDLE_AGE_SECONDS", "3600")),
        )

    def validate(self) -> list[str]:
        errors = []

        if self.enabled and not self.enclave_url:
            errors.append("EXTERNAL_ENCLAVE_URL is required when external sources are enabled")

        if self.timeout_seconds <= 0:
            errors.append("timeout_seconds must be > 0")

        if self.max_bundle_age_seconds <= 0:
            errors.append("max_bundle_age_seconds must be > 0")

        if len(set(self.sources)) != len(self.sources):
            errors.append("sources must not contain duplicates")

        return errors
