"""
Record sources for index rebuilds.

A record source knows which record ids exist for an asset, without
the in-process index. Rebuild reads each id back from the blob store.
"""

import logging
from pathlib import Path
from typing import Mapping, Protocol, Union

import yaml


logger = logging.getLogger(__name__)


class RecordSource(Protocol):
    """Anything that can list known record ids for an asset."""

    async def known_record_ids(self, asset_id: str) -> list[str]:
        ...


class ManifestRecordSource:
    """
    Record ids from a static manifest.

    Manifest YAML shape:

        assets:
          "0xabc...":
            - <record id>
            - <record id>
    """

    def __init__(self, manifest: Mapping[str, list[str]]) -> None:
        self._manifest = {asset: list(ids) for asset, ids in manifest.items()}

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ManifestRecordSource":
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        assets = data.get("assets") or {}
        logger.info(f"Loaded record manifest from {path}: {len(assets)} assets")
        return cls({str(k): [str(i) for i in (v or [])] for k, v in assets.items()})

    async def known_record_ids(self, asset_id: str) -> list[str]:
        return list(self._manifest.get(asset_id, []))


class CompositeRecordSource:
    """Union of several sources, first-seen order, duplicates dropped."""

    def __init__(self, *sources: RecordSource) -> None:
        self._sources = list(sources)

    async def known_record_ids(self, asset_id: str) -> list[str]:
        seen: dict[str, None] = {}
        for source in self._sources:
            try:
                ids = await source.known_record_ids(asset_id)
            except Exception as e:
                logger.warning(f"Record source {type(source).__name__} failed for {asset_id}: {e}")
                continue
            for record_id in ids:
                seen.setdefault(record_id, None)
        return list(seen)
