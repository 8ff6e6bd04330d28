"""
CLI Blob Store - subprocess wrapper around the `walrus` binary.

    walrus --config <cfg> --context <ctx> [--json] store <file> --epochs N --permanent
    walrus --config <cfg> --context <ctx> read <id> --out <file>
    walrus --config <cfg> --context <ctx> --json blob-status --blob-id <id>
"""

import asyncio
import json
import logging
import os
import re
import tempfile
from typing import Any, Optional

from core.exceptions import BlobNotFound, BlobStoreError

from ..base import BlobStore
from ..config import BlobStoreConfig
from ..models import BlobStatus, StoreOptions, extract_blob_id


logger = logging.getLogger(__name__)


NOT_FOUND_PATTERN = re.compile(r"not found|does not exist|no such blob|blob is not", re.IGNORECASE)


class CliBlobStore(BlobStore):
    """Blob store backed by the walrus client binary."""

    def __init__(self, config: Optional[BlobStoreConfig] = None) -> None:
        super().__init__()
        self.config = config or BlobStoreConfig(use_http=False)

    @property
    def name(self) -> str:
        return "cli"

    # ─────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────

    async def store(
        self,
        data: bytes,
        options: Optional[StoreOptions] = None,
    ) -> str:
        options = options or StoreOptions(epochs=self.config.default_epochs)

        path = self._write_temp(data)
        try:
            result = await self._run(["store", path, *options.to_cli_args()], json_output=True)
        finally:
            self._remove_temp(path)

        blob_id = extract_blob_id(result)
        if not blob_id:
            self._stats["errors"] += 1
            raise BlobStoreError("Could not extract blob id from walrus output", operation="store")

        self._stats["stores"] += 1
        logger.info(f"Blob stored via CLI: {blob_id}")
        return blob_id

    async def read(self, record_id: str) -> bytes:
        self._stats["reads"] += 1
        fd, path = tempfile.mkstemp(prefix="walrus-read-", suffix=".tmp")
        os.close(fd)
        try:
            await self._run(["read", record_id, "--out", path], record_id=record_id)
            with open(path, "rb") as f:
                data = f.read()
        finally:
            self._remove_temp(path)

        logger.debug(f"Blob read via CLI: {record_id} ({len(data)} bytes)")
        return data

    async def status(self, record_id: str) -> BlobStatus:
        self._stats["status_checks"] += 1
        result = await self._run(
            ["blob-status", "--blob-id", record_id],
            json_output=True,
            record_id=record_id,
        )
        if "output" in result and result.get("raw"):
            return BlobStatus.from_text(record_id, result["output"])
        return BlobStatus.from_json(record_id, result)

    # ─────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────

    def build_command(self, args: list[str], json_output: bool = False) -> list[str]:
        command = [
            self.config.cli_path,
            "--config", self.config.cli_config,
            "--context", self.config.cli_context,
        ]
        if json_output:
            command.append("--json")
        command.extend(args)
        return command

    async def _run(
        self,
        args: list[str],
        json_output: bool = False,
        record_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Execute a walrus command and return its parsed output."""
        command = self.build_command(args, json_output=json_output)
        operation = args[0]
        logger.debug(f"Executing walrus command: {' '.join(command)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._stats["errors"] += 1
            raise BlobStoreError(
                f"Could not start walrus binary: {e}",
                record_id=record_id,
                operation=operation,
                cause=e,
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            self._stats["errors"] += 1
            raise BlobStoreError(
                f"walrus {operation} timed out after {self.config.timeout_seconds}s",
                record_id=record_id,
                operation=operation,
            ) from e

        out_text = stdout.decode("utf-8", "replace")
        err_text = stderr.decode("utf-8", "replace")

        if process.returncode != 0:
            if NOT_FOUND_PATTERN.search(err_text) or NOT_FOUND_PATTERN.search(out_text):
                self._stats["not_found"] += 1
                raise BlobNotFound(
                    f"Blob not found: {record_id}",
                    record_id=record_id,
                    operation=operation,
                )
            self._stats["errors"] += 1
            raise BlobStoreError(
                f"walrus {operation} failed with exit code {process.returncode}: {err_text.strip()[:500]}",
                record_id=record_id,
                operation=operation,
            )

        if err_text.strip():
            logger.warning(f"walrus {operation} stderr: {err_text.strip()[:500]}")

        if json_output:
            try:
                parsed = json.loads(out_text)
                if isinstance(parsed, dict):
                    return parsed
            except json.JSONDecodeError as e:
                logger.warning(f"Failed to parse walrus JSON output: {e}")
        return {"output": out_text, "raw": True}

    @staticmethod
    def _write_temp(data: bytes) -> str:
        fd, path = tempfile.mkstemp(prefix="walrus-store-", suffix=".json")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return path

    @staticmethod
    def _remove_temp(path: str) -> None:
        try:
            os.unlink(path)
        except OSError as e:
            logger.warning(f"Failed to delete temp file {path}: {e}")
