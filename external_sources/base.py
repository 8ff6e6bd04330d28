"""
Base Truth Source - Abstract interface for external metric providers.

All sources must:
- Return one signed ExternalMetricBundle per call
- Raise SourceUnavailable subclasses on any failure
- Never decide anything about the cycle; the fetcher isolates them
"""

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from core.clock import ClockFactory, ClockProtocol

from .exceptions import SourceResponseError, StaleBundleError
from .models import ExternalMetricBundle, SourceHealth


logger = logging.getLogger(__name__)


HEX_PATTERN = re.compile(r"^[0-9a-fA-F]+$")


class BaseTruthSource(ABC):
    """
    Abstract base class for external truth sources.

    Subclasses implement:
    - name
    - _fetch_bundle() - get and parse one bundle
    - health_check()
    """

    DEFAULT_MAX_BUNDLE_AGE = 3600.0

    def __init__(
        self,
        max_bundle_age_seconds: Optional[float] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self.max_bundle_age_seconds = max_bundle_age_seconds or self.DEFAULT_MAX_BUNDLE_AGE
        self._clock = clock

        self._stats = {
            "total_requests": 0,
            "successful_fetches": 0,
            "errors": 0,
            "rejected_bundles": 0,
        }

    @property
    def clock(self) -> ClockProtocol:
        return self._clock or ClockFactory.get_clock()

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name (e.g. "myanimelist")."""
        pass

    @abstractmethod
    async def _fetch_bundle(self, asset_id: str, asset_name: str) -> ExternalMetricBundle:
        """Fetch and parse one bundle. Raises SourceUnavailable."""
        pass

    @abstractmethod
    async def health_check(self) -> SourceHealth:
        pass

    # ─────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────

    async def fetch(self, asset_id: str, asset_name: str) -> ExternalMetricBundle:
        """
        Fetch a sanity-checked bundle for an asset.

        Raises SourceUnavailable (or a subclass) on any failure.
        """
        self._stats["total_requests"] += 1
        try:
            bundle = await self._fetch_bundle(asset_id, asset_name)
            self.validate_bundle(bundle)
        except (SourceResponseError, StaleBundleError):
            self._stats["rejected_bundles"] += 1
            raise
        except Exception:
            self._stats["errors"] += 1
            raise

        self._stats["successful_fetches"] += 1
        return bundle

    def validate_bundle(self, bundle: ExternalMetricBundle, now: Optional[datetime] = None) -> None:
        """
        Basic sanity check; full signature verification happens on
        the ledger side.

        - signature must be a hex string
        - bundle must be at most max_bundle_age_seconds old
        """
        if not bundle.signature or not HEX_PATTERN.match(bundle.signature):
            raise SourceResponseError(
                "Bundle signature is not a hex string",
                source_name=self.name,
            )

        now = now or self.clock.now()
        age = (now - bundle.timestamp).total_seconds()
        if age > self.max_bundle_age_seconds:
            logger.warning(f"[{self.name}] bundle for {bundle.asset_id} is {age:.0f}s old")
            raise StaleBundleError(
                f"Bundle is older than {self.max_bundle_age_seconds:.0f}s",
                source_name=self.name,
                context={"age_seconds": round(age, 1)},
            )

    async def close(self) -> None:
        pass

    def get_stats(self) -> dict[str, Any]:
        return {"name": self.name, **self._stats}

    async def __aenter__(self) -> "BaseTruthSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name}>"
