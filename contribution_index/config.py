"""
Contribution Index - Configuration.
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class IndexConfig:
    """
    Index configuration.

    Without a database URL the index is in-memory only and is
    lost on restart. With one, entries are persisted through
    SqlIndexStore and the in-memory map acts as a cache.
    """

    database_url: Optional[str] = None
    echo_sql: bool = False

    @classmethod
    def from_env(cls) -> "IndexConfig":
        return cls(
            database_url=os.getenv("INDEX_DATABASE_URL") or None,
            echo_sql=os.getenv("INDEX_ECHO_SQL", "false").lower() == "true",
        )

    @property
    def durable(self) -> bool:
        return bool(self.database_url)

    def validate(self) -> list[str]:
        errors = []
        if self.database_url is not None and "://" not in self.database_url:
            errors.append(f"INDEX_DATABASE_URL is not a database URL: {self.database_url}")
        return errors
