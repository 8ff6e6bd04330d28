"""
Blob Store - Data Models.
"""

import re
from dataclasses import dataclass
from typing import Any, Optional


DEFAULT_EPOCHS = 365


@dataclass(frozen=True)
class StoreOptions:
    """
    Storage options for a blob.

    Contributions are stored permanent (non-deletable) by default.
    `deletable` wins over `permanent` when both are set.
    """
    permanent: bool = True
    deletable: bool = False
    epochs: int = DEFAULT_EPOCHS

    def __post_init__(self) -> None:
        if self.epochs < 1:
            raise ValueError("epochs must be >= 1")

    @property
    def is_permanent(self) -> bool:
        return self.permanent and not self.deletable

    def to_query_params(self) -> dict[str, str]:
        params = {"epochs": str(self.epochs)}
        if self.is_permanent:
            params["permanent"] = "true"
        else:
            params["deletable"] = "true"
        return params

    def to_cli_args(self) -> list[str]:
        args = ["--epochs", str(self.epochs)]
        args.append("--permanent" if self.is_permanent else "--deletable")
        return args


@dataclass(frozen=True)
class BlobStatus:
    """Certification / lifetime status of a stored blob."""
    record_id: str
    certified: bool = False
    deletable: bool = False
    permanent: bool = False
    expiry_epoch: Optional[int] = None
    end_epoch: Optional[int] = None
    event_id: Optional[str] = None

    @classmethod
    def from_json(cls, record_id: str, data: dict[str, Any]) -> "BlobStatus":
        """Parse the JSON form of `blob-status` output."""
        deletable = bool(data.get("deletable", False))
        expiry = data.get("expiryEpoch") or data.get("endEpoch")
        end = data.get("endEpoch") or data.get("expiryEpoch")
        certified = bool(data.get("certified")) or data.get("certifiedEpoch") is not None
        return cls(
            record_id=record_id,
            certified=certified,
            deletable=deletable,
            permanent=not deletable,
            expiry_epoch=int(expiry) if expiry is not None else None,
            end_epoch=int(end) if end is not None else None,
            event_id=data.get("eventId"),
        )

    @classmethod
    def from_text(cls, record_id: str, output: str) -> "BlobStatus":
        """Parse the human-readable form of `blob-status` output."""
        lowered = output.lower()
        epoch = None
        epoch_match = re.search(r"(?:expiry|end)[\s_]*epoch[:\s]+(\d+)", output, re.IGNORECASE)
        if epoch_match:
            epoch = int(epoch_match.group(1))
        event_match = re.search(r"event[:\s]+(0x[a-fA-F0-9]+|[A-Za-z0-9_-]+)", output, re.IGNORECASE)
        return cls(
            record_id=record_id,
            certified="certified" in lowered and "not certified" not in lowered,
            deletable="deletable" in lowered,
            permanent="permanent" in lowered,
            expiry_epoch=epoch,
            end_epoch=epoch,
            event_id=event_match.group(1) if event_match else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "certified": self.certified,
            "deletable": self.deletable,
            "permanent": self.permanent,
            "expiry_epoch": self.expiry_epoch,
            "end_epoch": self.end_epoch,
            "event_id": self.event_id,
        }


def extract_blob_id(result: dict[str, Any]) -> Optional[str]:
    """
    Pull the blob id out of a store response.

    Handles the publisher JSON shapes (newlyCreated / alreadyCertified),
    flat id keys, and the CLI's text output.
    """
    for key in ("blob_id", "blobId", "id"):
        if result.get(key):
            return str(result[key])

    newly_created = result.get("newlyCreated") or {}
    blob_object = newly_created.get("blobObject") or {}
    if blob_object.get("blobId"):
        return str(blob_object["blobId"])
    if blob_object.get("id"):
        return str(blob_object["id"])

    already_certified = result.get("alreadyCertified") or {}
    if already_certified.get("blobId"):
        return str(already_certified["blobId"])

    output = result.get("output")
    if output:
        match = re.search(r"Blob ID[:\s]+([^\s]+)", output, re.IGNORECASE)
        if match:
            return match.group(1).strip()
        match = re.search(r"([A-Za-z0-9_-]{43,})", output)
        if match:
            return match.group(1)
        match = re.search(r"(0x[a-fA-F0-9]{64,})", output)
        if match:
            return match.group(1)

    return None
