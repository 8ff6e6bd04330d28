"""
Verification Engine.

============================================================
RESPONSIBILITY
============================================================
Validates contribution signatures. Fail-closed: any parse or
format problem is a verification failure, never an exception.

============================================================
SIGNED MESSAGE
============================================================
The signed bytes are the record's wire JSON minus `signature`
and the store-assigned id fields, serialised compactly with
sorted keys (UTF-8).

============================================================
KEYS AND ADDRESSES
============================================================
Ed25519. The author address must equal

    "0x" + hex(blake2b-256(0x00 || public_key))

so a record cannot claim someone else's address with its own key.

The signature may be:
- hex (64 bytes), with `public_key` on the record
- base64 (64 bytes), with `public_key` on the record
- base64 serialised form (97 bytes: flag 0x00 || sig || pubkey)

============================================================
"""

import asyncio
import base64
import binascii
import hashlib
import json
import logging
import threading
from typing import Any, Mapping, Optional, Sequence

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from contribution_index.models import (
    SIGNATURE_FIELD,
    STORE_ASSIGNED_FIELDS,
    ContributionRecord,
)
from core.exceptions import RecordUnverifiable

from .models import VerifiedContributionSet


logger = logging.getLogger(__name__)


ED25519_FLAG = 0x00
SIGNATURE_LENGTH = 64
PUBLIC_KEY_LENGTH = 32
SERIALIZED_SIGNATURE_LENGTH = 1 + SIGNATURE_LENGTH + PUBLIC_KEY_LENGTH

DEFAULT_MAX_CONCURRENCY = 16


# ============================================================
# CANONICAL FORM
# ============================================================

def canonical_message(data: Mapping[str, Any]) -> bytes:
    """Signed bytes for a wire dict."""
    excluded = {SIGNATURE_FIELD, *STORE_ASSIGNED_FIELDS}
    unsigned = {k: v for k, v in data.items() if k not in excluded}
    return json.dumps(
        unsigned,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def canonical_bytes(record: ContributionRecord) -> bytes:
    """Signed bytes for a record."""
    return canonical_message(record.to_dict())


# ============================================================
# KEY / SIGNATURE DECODING
# ============================================================

def address_for_public_key(public_key: bytes) -> str:
    """Address derived from an Ed25519 public key."""
    digest = hashlib.blake2b(bytes([ED25519_FLAG]) + public_key, digest_size=32).hexdigest()
    return f"0x{digest}"


def _strip_hex(value: str) -> str:
    return value[2:] if value.lower().startswith("0x") else value


def decode_public_key(value: str) -> bytes:
    """Decode a hex (or base64) public key. Raises ValueError."""
    try:
        raw = bytes.fromhex(_strip_hex(value))
    except ValueError:
        try:
            raw = base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"public key is neither hex nor base64: {e}") from e
    if len(raw) != PUBLIC_KEY_LENGTH:
        raise ValueError(f"public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(raw)}")
    return raw


def decode_signature(value: str) -> tuple[bytes, Optional[bytes]]:
    """
    Decode a signature string.

    Returns (signature, embedded_public_key or None). Raises ValueError.
    """
    if not value:
        raise ValueError("signature is empty")

    raw: Optional[bytes] = None
    stripped = _strip_hex(value)
    if len(stripped) == SIGNATURE_LENGTH * 2:
        try:
            raw = bytes.fromhex(stripped)
        except ValueError:
            raw = None

    if raw is None:
        try:
            raw = base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"signature is neither hex nor base64: {e}") from e

    if len(raw) == SIGNATURE_LENGTH:
        return raw, None

    if len(raw) == SERIALIZED_SIGNATURE_LENGTH:
        if raw[0] != ED25519_FLAG:
            raise ValueError(f"unsupported signature scheme flag: {raw[0]:#04x}")
        return raw[1:1 + SIGNATURE_LENGTH], raw[1 + SIGNATURE_LENGTH:]

    raise ValueError(f"unexpected signature length: {len(raw)}")


def public_key_hex(private_key: Ed25519PrivateKey) -> str:
    raw = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return raw.hex()


# ============================================================
# SIGNING (tooling and tests)
# ============================================================

def sign_record(
    data: Mapping[str, Any],
    private_key: Ed25519PrivateKey,
    set_author: bool = True,
) -> dict[str, Any]:
    """
    Sign a wire record the way the engine verifies it.

    Adds `public_key`, sets `user_wallet` to the key's address
    (unless set_author is False) and adds a hex `signature`.
    """
    signed = {
        k: v for k, v in data.items()
        if k not in (SIGNATURE_FIELD, *STORE_ASSIGNED_FIELDS)
    }
    pk_hex = public_key_hex(private_key)
    signed["public_key"] = pk_hex
    if set_author:
        signed["user_wallet"] = address_for_public_key(bytes.fromhex(pk_hex))

    signature = private_key.sign(canonical_message(signed))
    signed[SIGNATURE_FIELD] = signature.hex()
    return signed


# ============================================================
# ENGINE
# ============================================================

class VerificationEngine:
    """
    Signature verification for contribution records.

    verify_one() is synchronous and never raises. verify_many()
    offloads each check to a worker thread with bounded
    concurrency and preserves input order.
    """

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self._lock = threading.Lock()
        self._stats = {
            "checked": 0,
            "verified": 0,
            "rejected": 0,
        }

    def verify_one(self, record: ContributionRecord) -> bool:
        """True only when the signature is valid for the claimed author."""
        try:
            self._verify(record)
            valid = True
        except RecordUnverifiable as e:
            logger.warning(e.to_log_format())
            valid = False
        except Exception as e:
            logger.warning(
                f"Verification error for record {record.record_id} "
                f"from {getattr(record, 'author', '?')}: {e}"
            )
            valid = False

        with self._lock:
            self._stats["checked"] += 1
            self._stats["verified" if valid else "rejected"] += 1
        return valid

    def _verify(self, record: ContributionRecord) -> None:
        """Raises RecordUnverifiable with the first failed check."""

        def reject(reason: str) -> RecordUnverifiable:
            return RecordUnverifiable(reason, record_id=record.record_id, author=record.author)

        if not record.signature or not record.author:
            raise reject("missing signature or author address")

        # Typed fields must be exactly what the signed wire dict says.
        if not record.raw:
            raise reject("no retained wire record to verify against")
        try:
            reparsed = ContributionRecord.from_dict(record.raw, record_id=record.record_id)
        except ValueError as e:
            raise reject(f"retained wire record does not parse: {e}") from e
        if reparsed != record:
            raise reject("record fields differ from the signed wire record")

        try:
            signature, embedded_key = decode_signature(record.signature)
            declared_key = decode_public_key(record.public_key) if record.public_key else None
        except ValueError as e:
            raise reject(f"malformed signature material: {e}") from e

        if declared_key is not None and embedded_key is not None and declared_key != embedded_key:
            raise reject("embedded key differs from public_key")

        key_bytes = declared_key or embedded_key
        if key_bytes is None:
            raise reject("no public key to verify against")

        if address_for_public_key(key_bytes).lower() != record.author.lower():
            raise reject("public key does not belong to the author address")

        try:
            Ed25519PublicKey.from_public_bytes(key_bytes).verify(signature, canonical_bytes(record))
        except InvalidSignature as e:
            raise reject("invalid signature") from e

    async def verify_many(
        self,
        records: Sequence[ContributionRecord],
    ) -> VerifiedContributionSet:
        """Verified subset of records, in input order."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def check(record: ContributionRecord) -> bool:
            async with semaphore:
                return await asyncio.to_thread(self.verify_one, record)

        results = await asyncio.gather(*(check(r) for r in records))

        verified = VerifiedContributionSet(total=len(records))
        for record, valid in zip(records, results):
            if valid:
                verified.records.append(record)
            else:
                verified.excluded_ids.append(record.record_id or "")

        if verified.excluded:
            logger.warning(f"Rejected {verified.excluded} contributions with invalid signatures")
        logger.info(f"Verified {verified.verified}/{verified.total} contributions")
        return verified

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._stats)
