"""
Enclave Truth Source.

An attested enclave fetches data from an external provider
(MyAnimeList, AniList, ...) and signs it. One instance per
provider name; instances may share one HTTP session.

    POST {enclave}/process_data
        {"payload": {"ip_token_id", "name", "source", "timestamp"}}
    GET  {enclave}/health_check
"""

import logging
import time
from typing import Any, Optional

import aiohttp
from pydantic import ValidationError

from core.clock import ClockProtocol, from_epoch_millis

from ..base import BaseTruthSource
from ..exceptions import SourceFetchError, SourceResponseError
from ..models import ExternalMetricBundle, SourceHealth, SourceStatus
from ..schemas import (
    HealthCheckResponse,
    ProcessDataPayload,
    ProcessDataRequest,
    ProcessDataResponse,
)


logger = logging.getLogger(__name__)


class EnclaveTruthSource(BaseTruthSource):
    """HTTP client for one provider behind the enclave."""

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        source_name: str,
        enclave_url: str,
        timeout_seconds: Optional[float] = None,
        max_bundle_age_seconds: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        super().__init__(max_bundle_age_seconds=max_bundle_age_seconds, clock=clock)
        self._source_name = source_name
        self.enclave_url = enclave_url.rstrip("/")
        self.timeout_seconds = timeout_seconds or self.DEFAULT_TIMEOUT
        self._session = session
        self._owns_session = session is None
        self.last_latency_ms: Optional[float] = None

    @property
    def name(self) -> str:
        return self._source_name

    async def _fetch_bundle(self, asset_id: str, asset_name: str) -> ExternalMetricBundle:
        request = ProcessDataRequest(
            payload=ProcessDataPayload(
                ip_token_id=asset_id,
                name=asset_name,
                source=self.name,
                timestamp=self.clock.millis(),
            )
        )
        logger.info(f"Fetching external metrics for {asset_name} from {self.name}")

        body = await self._request("POST", "/process_data", json=request.model_dump())

        try:
            parsed = ProcessDataResponse.model_validate(body)
        except ValidationError as e:
            raise SourceResponseError(
                f"Invalid enclave response: {e.error_count()} validation error(s)",
                source_name=self.name,
                raw_data=str(body),
            ) from e

        data = parsed.response.data
        return ExternalMetricBundle(
            source=self.name,
            asset_id=asset_id,
            average_rating=data.resolved_rating(),
            popularity_score=data.resolved_popularity(),
            member_count=data.resolved_member_count(),
            trending_score=data.resolved_trending(),
            signature=parsed.signature,
            timestamp=from_epoch_millis(parsed.response.timestamp_ms),
            intent=parsed.response.intent,
        )

    async def health_check(self) -> SourceHealth:
        now = self.clock.now()
        try:
            body = await self._request("GET", "/health_check")
            health = HealthCheckResponse.model_validate(body)
        except (SourceFetchError, SourceResponseError, ValidationError) as e:
            logger.error(f"Enclave health check failed: {e}")
            return SourceHealth(status=SourceStatus.UNAVAILABLE, last_check=now, error=str(e))

        return SourceHealth(
            status=SourceStatus.HEALTHY,
            last_check=now,
            public_key=health.pk,
            endpoints_status=health.endpoints_status,
        )

    async def close(self) -> None:
        if self._session and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    # ─────────────────────────────────────────────────────────────
    # HTTP
    # ─────────────────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        session = await self._get_session()
        url = f"{self.enclave_url}{path}"

        start_time = time.time()
        try:
            async with session.request(method, url, json=json) as response:
                self.last_latency_ms = (time.time() - start_time) * 1000

                if response.status >= 400:
                    text = await response.text()
                    raise SourceFetchError(
                        f"HTTP {response.status}",
                        source_name=self.name,
                        status_code=response.status,
                        url=url,
                        response_body=text,
                    )

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise SourceResponseError(
                        f"Enclave returned non-JSON body: {e}",
                        source_name=self.name,
                    ) from e
        except aiohttp.ClientError as e:
            raise SourceFetchError(
                f"Connection error: {e}",
                source_name=self.name,
                url=url,
                cause=e,
            ) from e
