"""
Blob Store - Configuration.

Loaded from environment variables:

    BLOB_AGGREGATOR_URL   aggregator base URL (reads)
    BLOB_PUBLISHER_URL    publisher base URL (stores, read fallback)
    BLOB_USE_HTTP         "true" to use the HTTP client, else the CLI
    BLOB_CLI_PATH         path to the walrus binary
    BLOB_CLI_CONFIG       walrus client config file
    BLOB_CLI_CONTEXT      walrus context (testnet / mainnet)
    BLOB_DEFAULT_EPOCHS   storage epochs for new blobs
    BLOB_TIMEOUT_SECONDS  HTTP / subprocess timeout
"""

import os
from dataclasses import dataclass
from typing import Optional

from .models import DEFAULT_EPOCHS


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes")


@dataclass
class BlobStoreConfig:
    """Configuration for blob store clients."""

    aggregator_url: Optional[str] = "https://aggregator.walrus-testnet.walrus.space"
    publisher_url: Optional[str] = "https://publisher.walrus-testnet.walrus.space"
    use_http: bool = True

    cli_path: str = "walrus"
    cli_config: str = os.path.expanduser("~/.config/walrus/client_config.yaml")
    cli_context: str = "testnet"

    default_epochs: int = DEFAULT_EPOCHS
    timeout_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> "BlobStoreConfig":
        """Create configuration from environment variables."""
        defaults = cls()
        return cls(
            aggregator_url=os.getenv("BLOB_AGGREGATOR_URL", defaults.aggregator_url),
            publisher_url=os.getenv("BLOB_PUBLISHER_URL", defaults.publisher_url),
            use_http=_env_bool("BLOB_USE_HTTP", defaults.use_http),
            cli_path=os.getenv("BLOB_CLI_PATH", defaults.cli_path),
            cli_config=os.getenv("BLOB_CLI_CONFIG", defaults.cli_config),
            cli_context=os.getenv("BLOB_CLI_CONTEXT", defaults.cli_context),
            default_epochs=int(os.getenv("BLOB_DEFAULT_EPOCHS", str(defaults.default_epochs))),
            timeout_seconds=float(os.getenv("BLOB_TIMEOUT_SECONDS", str(defaults.timeout_seconds))),
        )

    def validate(self) -> list[str]:
        """Validate configuration. Returns list of errors."""
        errors = []

        if self.use_http and not (self.aggregator_url or self.publisher_url):
            errors.append("BLOB_AGGREGATOR_URL or BLOB_PUBLISHER_URL is required for HTTP mode")

        if not self.use_http and not self.cli_path:
            errors.append("BLOB_CLI_PATH is required for CLI mode")

        if self.default_epochs < 1:
            errors.append("default_epochs must be >= 1")

        if self.timeout_seconds <= 0:
            errors.append("timeout_seconds must be > 0")

        return errors
