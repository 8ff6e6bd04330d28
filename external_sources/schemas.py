"""
Pydantic schemas for the enclave wire format.

Request:
    {"payload": {"ip_token_id", "name", "source", "timestamp"}}

Response:
    {"response": {"intent", "timestamp_ms", "data": {...}}, "signature"}

Health:
    {"pk", "endpoints_status"}
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ProcessDataPayload(BaseModel):
    ip_token_id: str
    name: str
    source: str
    timestamp: int


class ProcessDataRequest(BaseModel):
    payload: ProcessDataPayload


class MetricsData(BaseModel):
    """Metrics signed by the enclave. Alternate key names are accepted."""
    average_rating: Optional[Decimal] = None
    rating: Optional[Decimal] = None
    popularity_score: Optional[Decimal] = None
    popularity: Optional[Decimal] = None
    member_count: Optional[Decimal] = None
    members: Optional[Decimal] = None
    trending_score: Optional[Decimal] = None
    trending: Optional[Decimal] = None

    model_config = {"extra": "allow"}

    @staticmethod
    def _first(*values: Optional[Decimal]) -> Decimal:
        for value in values:
            if value:
                return value
        return Decimal(0)

    def resolved_rating(self) -> Decimal:
        return self._first(self.average_rating, self.rating)

    def resolved_popularity(self) -> Decimal:
        return self._first(self.popularity_score, self.popularity)

    def resolved_member_count(self) -> Decimal:
        return self._first(self.member_count, self.members)

    def resolved_trending(self) -> Decimal:
        return self._first(self.trending_score, self.trending)


class SignedResponse(BaseModel):
    intent: int = 0
    timestamp_ms: int
    data: MetricsData


class ProcessDataResponse(BaseModel):
    response: SignedResponse
    signature: str = Field(min_length=1)


class HealthCheckResponse(BaseModel):
    pk: Optional[str] = None
    endpoints_status: Dict[str, Any] = Field(default_factory=dict)
