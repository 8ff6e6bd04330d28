"""External truth source providers."""

from .enclave import EnclaveTruthSource

__all__ = ["EnclaveTruthSource"]
