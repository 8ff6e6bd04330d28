"""
Contribution Index - Data Models.

============================================================
RESPONSIBILITY
============================================================
Typed view of user-submitted contribution records.

- ContributionRecord: immutable, parsed from the wire JSON
- Category + one payload dataclass per category (tagged union)
- Index-side metadata, filters and result types

============================================================
WIRE FORMAT
============================================================
Records arrive as JSON objects written by the record-creation
flow:

    {
        "ip_token_id": "0xabc...",
        "user_wallet": "0x123...",
        "engagement_type": "rating",
        "rating": 9,
        "timestamp": 1735689600000,
        "public_key": "<hex ed25519 public key>",
        "signature": "<hex or base64>",
        "walrus_cid": "<blob id, added after signing>"
    }

Category-specific fields live at the top level of the object.
The raw dict is retained so the signed bytes can be reproduced.

============================================================
"""

import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from core.clock import ensure_utc, from_epoch_millis, from_iso8601, to_iso8601


# Fields added after signing; never part of the signed message.
STORE_ASSIGNED_FIELDS = ("walrus_cid", "blob_id", "record_id")
SIGNATURE_FIELD = "signature"


# ============================================================
# CATEGORY
# ============================================================

class Category(Enum):
    """Contribution category (engagement_type on the wire)."""
    RATING = "rating"
    MEME = "meme"
    POST = "post"
    EPISODE_PREDICTION = "episode_prediction"
    PRICE_PREDICTION = "price_prediction"
    STAKE = "stake"


# ============================================================
# LENIENT FIELD PARSING
# ============================================================

def _to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a numeric wire value. Returns None when not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not result.is_finite():
        return None
    return result


def _to_count(value: Any) -> Optional[int]:
    """Parse a non-negative counter. Returns None when malformed."""
    number = _to_decimal(value)
    if number is None or number < 0:
        return None
    return int(number)


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a wire timestamp.

    Accepts Unix milliseconds (int/float), ISO 8601 strings and
    datetimes. Raises ValueError on anything else.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        raise ValueError("timestamp must not be a boolean")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("timestamp must be finite")
        return from_epoch_millis(value)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return from_epoch_millis(int(stripped))
        return from_iso8601(stripped)
    raise ValueError(f"Unsupported timestamp value: {value!r}")


# ============================================================
# PAYLOADS
# ============================================================

@dataclass(frozen=True)
class RatingPayload:
    """A 0-10 rating. None when the wire value was malformed."""
    rating: Optional[Decimal] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RatingPayload":
        return cls(rating=_to_decimal(data.get("rating")))


@dataclass(frozen=True)
class MemePayload:
    likes: Optional[int] = None
    shares: Optional[int] = None
    comments: Optional[int] = None
    engagement_count: Optional[int] = None
    caption: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MemePayload":
        return cls(
            likes=_to_count(data.get("likes")),
            shares=_to_count(data.get("shares")),
            comments=_to_count(data.get("comments")),
            engagement_count=_to_count(data.get("engagement_count")),
            caption=_to_text(data.get("caption")),
            image_url=_to_text(data.get("image_url")),
        )

    def engagement_total(self) -> int:
        """like + share + comment counters, else the aggregate count."""
        counters = [c for c in (self.likes, self.shares, self.comments) if c is not None]
        if counters:
            return sum(counters)
        return self.engagement_count or 0


@dataclass(frozen=True)
class PostPayload:
    likes: Optional[int] = None
    shares: Optional[int] = None
    comments: Optional[int] = None
    engagement_count: Optional[int] = None
    title: Optional[str] = None
    content: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PostPayload":
        return cls(
            likes=_to_count(data.get("likes")),
            shares=_to_count(data.get("shares")),
            comments=_to_count(data.get("comments")),
            engagement_count=_to_count(data.get("engagement_count")),
            title=_to_text(data.get("title")),
            content=_to_text(data.get("content")),
        )

    def engagement_total(self) -> int:
        """like + share + comment counters, else the aggregate count."""
        counters = [c for c in (self.likes, self.shares, self.comments) if c is not None]
        if counters:
            return sum(counters)
        return self.engagement_count or 0


@dataclass(frozen=True)
class EpisodePredictionPayload:
    episode: Optional[str] = None
    prediction: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EpisodePredictionPayload":
        return cls(
            episode=_to_text(data.get("episode")),
            prediction=_to_text(data.get("prediction")),
        )


@dataclass(frozen=True)
class PricePredictionPayload:
    target_price: Optional[Decimal] = None
    horizon: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PricePredictionPayload":
        return cls(
            target_price=_to_decimal(data.get("target_price")),
            horizon=_to_text(data.get("horizon")),
        )


@dataclass(frozen=True)
class StakePayload:
    position: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StakePayload":
        return cls(position=_to_text(data.get("position")))


Payload = Union[
    RatingPayload,
    MemePayload,
    PostPayload,
    EpisodePredictionPayload,
    PricePredictionPayload,
    StakePayload,
]

PAYLOAD_TYPES = {
    Category.RATING: RatingPayload,
    Category.MEME: MemePayload,
    Category.POST: PostPayload,
    Category.EPISODE_PREDICTION: EpisodePredictionPayload,
    Category.PRICE_PREDICTION: PricePredictionPayload,
    Category.STAKE: StakePayload,
}


# ============================================================
# CONTRIBUTION RECORD
# ============================================================

@dataclass(frozen=True)
class ContributionRecord:
    """
    One signed user engagement event.

    Immutable once created. Category-specific fields are only
    reachable through `payload`, whose type matches `category`.
    """
    asset_id: str
    author: str
    category: Category
    payload: Payload
    timestamp: datetime
    signature: str
    stake_amount: Optional[Decimal] = None
    public_key: Optional[str] = None
    record_id: Optional[str] = None
    raw: Mapping[str, Any] = field(
        default_factory=dict, compare=False, hash=False, repr=False,
    )

    def __post_init__(self) -> None:
        expected = PAYLOAD_TYPES[self.category]
        if not isinstance(self.payload, expected):
            raise ValueError(
                f"{self.category.value} record requires {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )
        # Freeze the retained wire dict.
        object.__setattr__(self, "raw", MappingProxyType(dict(self.raw)))

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        record_id: Optional[str] = None,
    ) -> "ContributionRecord":
        """
        Parse a wire record.

        Raises ValueError when a structural field is missing or
        malformed. Category-specific numeric fields are parsed
        leniently (None when malformed).
        """
        if not isinstance(data, Mapping):
            raise ValueError("Contribution record must be a JSON object")

        asset_id = data.get("ip_token_id")
        if not asset_id or not isinstance(asset_id, str):
            raise ValueError("ip_token_id is required")

        author = data.get("user_wallet")
        if not author or not isinstance(author, str):
            raise ValueError("user_wallet is required")

        try:
            category = Category(data.get("engagement_type"))
        except ValueError:
            raise ValueError(
                f"Unknown engagement_type: {data.get('engagement_type')!r}"
            ) from None

        if "timestamp" not in data:
            raise ValueError("timestamp is required")
        timestamp = parse_timestamp(data["timestamp"])

        signature = data.get(SIGNATURE_FIELD) or ""
        if not isinstance(signature, str):
            raise ValueError("signature must be a string")

        public_key = data.get("public_key")
        if public_key is not None and not isinstance(public_key, str):
            raise ValueError("public_key must be a string")

        stored_id = record_id
        if stored_id is None:
            for key in STORE_ASSIGNED_FIELDS:
                if data.get(key):
                    stored_id = str(data[key])
                    break

        return cls(
            asset_id=asset_id,
            author=author,
            category=category,
            payload=PAYLOAD_TYPES[category].from_dict(data),
            timestamp=timestamp,
            signature=signature,
            stake_amount=_to_decimal(data.get("stake_amount")),
            public_key=public_key,
            record_id=stored_id,
            raw=data,
        )

    @classmethod
    def from_bytes(
        cls,
        payload: bytes,
        record_id: Optional[str] = None,
    ) -> "ContributionRecord":
        """Parse a record from blob store bytes (UTF-8 JSON)."""
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Record payload is not valid JSON: {e}") from e
        return cls.from_dict(data, record_id=record_id)

    def to_dict(self) -> dict[str, Any]:
        """Wire dict for this record (the retained raw dict when present)."""
        if self.raw:
            return dict(self.raw)
        return {
            "ip_token_id": self.asset_id,
            "user_wallet": self.author,
            "engagement_type": self.category.value,
            "timestamp": to_iso8601(self.timestamp),
            "signature": self.signature,
        }

    def metadata(self) -> "IndexEntryMetadata":
        """Metadata snapshot cached by the index."""
        return IndexEntryMetadata(
            category=self.category,
            timestamp=self.timestamp,
            author=self.author,
        )


# ============================================================
# INDEX TYPES
# ============================================================

@dataclass(frozen=True)
class IndexEntryMetadata:
    """Cached snapshot used for filtering without re-reading payloads."""
    category: Optional[Category] = None
    timestamp: Optional[datetime] = None
    author: Optional[str] = None
    indexed_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value if self.category else None,
            "timestamp": to_iso8601(self.timestamp) if self.timestamp else None,
            "author": self.author,
            "indexed_at": to_iso8601(self.indexed_at) if self.indexed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IndexEntryMetadata":
        category = data.get("category")
        timestamp = data.get("timestamp")
        indexed_at = data.get("indexed_at")
        return cls(
            category=Category(category) if category else None,
            timestamp=parse_timestamp(timestamp) if timestamp is not None else None,
            author=data.get("author"),
            indexed_at=parse_timestamp(indexed_at) if indexed_at is not None else None,
        )


@dataclass(frozen=True)
class IndexFilter:
    """Query filter. Category is exact-match, time range is inclusive."""
    category: Optional[Category] = None
    from_time: Optional[datetime] = None
    to_time: Optional[datetime] = None

    def matches(self, metadata: IndexEntryMetadata) -> bool:
        if self.category is not None and metadata.category != self.category:
            return False
        if self.from_time is None and self.to_time is None:
            return True
        if metadata.timestamp is None:
            return False
        if self.from_time is not None and metadata.timestamp < ensure_utc(self.from_time):
            return False
        if self.to_time is not None and metadata.timestamp > ensure_utc(self.to_time):
            return False
        return True


@dataclass(frozen=True)
class IndexedRecord:
    record_id: str
    metadata: IndexEntryMetadata


@dataclass(frozen=True)
class IndexAck:
    asset_id: str
    record_id: str
    added: bool


@dataclass
class RebuildResult:
    """Outcome of a best-effort index rebuild."""
    asset_id: str
    discovered: int = 0
    indexed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "discovered": self.discovered,
            "indexed": self.indexed,
            "failed": self.failed,
            "complete": self.complete,
            "errors": self.errors[:20],
        }


@dataclass
class LoadResult:
    """Records loaded for an asset, plus what could not be loaded."""
    asset_id: str
    records: list[ContributionRecord] = field(default_factory=list)
    queried: int = 0
    unreadable: int = 0
    unparseable: int = 0
    pruned: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.unreadable or self.unparseable or self.pruned)

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "loaded": len(self.records),
            "queried": self.queried,
            "unreadable": self.unreadable,
            "unparseable": self.unparseable,
            "pruned": list(self.pruned),
            "partial": self.partial,
        }
