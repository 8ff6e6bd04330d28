"""
Verification Engine - fail-closed Ed25519 checks on contribution records.
"""

from .engine import (
    VerificationEngine,
    address_for_public_key,
    canonical_bytes,
    canonical_message,
    decode_public_key,
    decode_signature,
    public_key_hex,
    sign_record,
)
from .models import VerifiedContributionSet


__all__ = [
    "VerificationEngine",
    "VerifiedContributionSet",
    "address_for_public_key",
    "canonical_bytes",
    "canonical_message",
    "decode_public_key",
    "decode_signature",
    "public_key_hex",
    "sign_record",
]
