"""Blob store implementations."""

from .cli import CliBlobStore
from .http import HttpBlobStore

__all__ = ["CliBlobStore", "HttpBlobStore"]
