"""
Tests for the Blob Store clients.

============================================================
PURPOSE
============================================================
- In-memory store (content addressing, error injection)
- HTTP client against local aggregator / publisher servers
- CLI client against a fake walrus binary
- Store response and status parsing

============================================================
"""

import asyncio
import json
import stat

import pytest
from aiohttp import web
from aiohttp import test_utils

from blob_store import (
    BlobStatus,
    BlobStoreConfig,
    CliBlobStore,
    HttpBlobStore,
    InMemoryBlobConfig,
    InMemoryBlobStore,
    StoreOptions,
    create_blob_store,
    extract_blob_id,
)
from core.exceptions import BlobNotFound, BlobStoreError


# ============================================================
# FIXTURES
# ============================================================

FAKE_WALRUS = """#!/bin/sh
cmd=""
prev=""
blob=""
out=""
for arg in "$@"; do
  if [ "$prev" = "--out" ]; then out="$arg"; fi
  if [ "$prev" = "read" ]; then blob="$arg"; fi
  case "$arg" in
    store|read|blob-status) if [ -z "$cmd" ]; then cmd="$arg"; fi ;;
  esac
  prev="$arg"
done
case "$cmd" in
  store)
    echo '{"newlyCreated": {"blobObject": {"blobId": "cli-blob-1"}}}'
    ;;
  read)
    if [ "$blob" = "gone-blob" ]; then
      echo "Error: blob not found" >&2
      exit 1
    fi
    if [ "$blob" = "broken-blob" ]; then
      echo "Error: rpc failure" >&2
      exit 2
    fi
    printf 'payload-of-%s' "$blob" > "$out"
    ;;
  blob-status)
    echo '{"certified": true, "deletable": false, "endEpoch": 42}'
    ;;
esac
"""


@pytest.fixture
def walrus_config(tmp_path):
    script = tmp_path / "walrus"
    script.write_text(FAKE_WALRUS)
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return BlobStoreConfig(
        use_http=False,
        cli_path=str(script),
        cli_config=str(tmp_path / "client_config.yaml"),
        cli_context="testnet",
        timeout_seconds=10,
    )


def aggregator_app(blobs: dict, fail: bool = False) -> web.Application:
    async def get_blob(request):
        if fail:
            return web.Response(status=500, text="boom")
        blob_id = request.match_info["blob_id"]
        if blob_id not in blobs:
            return web.Response(status=404)
        return web.Response(body=blobs[blob_id])

    app = web.Application()
    app.router.add_get("/v1/blobs/{blob_id}", get_blob)
    return app


def publisher_app(blobs: dict, received: list) -> web.Application:
    async def put_blob(request):
        data = await request.read()
        received.append(dict(request.query))
        blob_id = f"blob-{len(blobs) + 1}"
        blobs[blob_id] = data
        return web.json_response({"newlyCreated": {"blobObject": {"blobId": blob_id}}})

    app = aggregator_app(blobs)
    app.router.add_put("/v1/blobs", put_blob)
    return app


def slow_app(delay: float) -> web.Application:
    async def get_blob(request):
        await asyncio.sleep(delay)
        return web.Response(body=b"late")

    app = web.Application()
    app.router.add_get("/v1/blobs/{blob_id}", get_blob)
    return app


def base_url(server: test_utils.TestServer) -> str:
    return str(server.make_url("/")).rstrip("/")


# ============================================================
# TEST: In-Memory Store
# ============================================================

class TestInMemoryBlobStore:

    @pytest.mark.asyncio
    async def test_store_and_read(self):
        store = InMemoryBlobStore()
        blob_id = await store.store(b"hello")
        assert await store.read(blob_id) == b"hello"
        assert blob_id == InMemoryBlobStore.blob_id_for(b"hello")

    @pytest.mark.asyncio
    async def test_same_bytes_same_id(self):
        store = InMemoryBlobStore()
        assert await store.store(b"x") == await store.store(b"x")
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_missing_blob(self):
        store = InMemoryBlobStore()
        with pytest.raises(BlobNotFound):
            await store.read("nope")
        with pytest.raises(BlobNotFound):
            await store.status("nope")

    @pytest.mark.asyncio
    async def test_injected_failures(self):
        store = InMemoryBlobStore(InMemoryBlobConfig(failing_reads={"bad"}))
        with pytest.raises(BlobStoreError) as exc_info:
            await store.read("bad")
        assert not isinstance(exc_info.value, BlobNotFound)

        failing = InMemoryBlobStore(InMemoryBlobConfig(fail_stores=True))
        with pytest.raises(BlobStoreError):
            await failing.store(b"x")

    @pytest.mark.asyncio
    async def test_status_reflects_options(self):
        store = InMemoryBlobStore()
        permanent = await store.store(b"a")
        deletable = await store.store(b"b", StoreOptions(deletable=True, epochs=3))

        assert (await store.status(permanent)).permanent is True
        status = await store.status(deletable)
        assert status.deletable is True
        assert status.end_epoch == 3

    @pytest.mark.asyncio
    async def test_known_record_ids_scans_payloads(self):
        store = InMemoryBlobStore()
        mine = await store.store(json.dumps({"ip_token_id": "0xasset"}).encode())
        await store.store(json.dumps({"ip_token_id": "0xother"}).encode())
        await store.store(b"\x00binary")
        assert await store.known_record_ids("0xasset") == [mine]


# ============================================================
# TEST: HTTP Store
# ============================================================

class TestHttpBlobStore:

    @pytest.mark.asyncio
    async def test_store_then_read_via_publisher_fallback(self):
        blobs, received = {}, []
        aggregator = test_utils.TestServer(aggregator_app({}))
        publisher = test_utils.TestServer(publisher_app(blobs, received))
        await aggregator.start_server()
        await publisher.start_server()
        store = HttpBlobStore(BlobStoreConfig(
            aggregator_url=base_url(aggregator),
            publisher_url=base_url(publisher),
        ))
        try:
            blob_id = await store.store(b'{"k": 1}', StoreOptions(epochs=5))
            assert blob_id == "blob-1"
            assert received == [{"epochs": "5", "permanent": "true"}]

            # Aggregator has nothing, publisher serves the read.
            assert await store.read(blob_id) == b'{"k": 1}'
            assert (await store.status(blob_id)).certified is True
        finally:
            await store.close()
            await aggregator.close()
            await publisher.close()

    @pytest.mark.asyncio
    async def test_not_found_everywhere(self):
        server = test_utils.TestServer(aggregator_app({}))
        await server.start_server()
        store = HttpBlobStore(BlobStoreConfig(aggregator_url=base_url(server), publisher_url=None))
        try:
            with pytest.raises(BlobNotFound):
                await store.read("missing")
            assert store.get_stats()["not_found"] == 1
        finally:
            await store.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_server_error_is_not_not_found(self):
        server = test_utils.TestServer(aggregator_app({}, fail=True))
        await server.start_server()
        store = HttpBlobStore(BlobStoreConfig(aggregator_url=base_url(server), publisher_url=None))
        try:
            with pytest.raises(BlobStoreError) as exc_info:
                await store.read("anything")
            assert not isinstance(exc_info.value, BlobNotFound)
            assert exc_info.value.context["status_code"] == 500
        finally:
            await store.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_slow_read_times_out_as_store_error(self):
        server = test_utils.TestServer(slow_app(delay=1.0))
        await server.start_server()
        store = HttpBlobStore(BlobStoreConfig(
            aggregator_url=base_url(server), publisher_url=None, timeout_seconds=0.2,
        ))
        try:
            with pytest.raises(BlobStoreError) as exc_info:
                await store.read("slow-blob")
            assert not isinstance(exc_info.value, BlobNotFound)
            assert exc_info.value.context["operation"] == "get"
            assert store.get_stats()["errors"] == 1
        finally:
            await store.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_store_without_publisher(self):
        store = HttpBlobStore(BlobStoreConfig(publisher_url=None))
        with pytest.raises(BlobStoreError):
            await store.store(b"x")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        store = HttpBlobStore(BlobStoreConfig(aggregator_url="http://127.0.0.1:1", publisher_url=None))
        try:
            with pytest.raises(BlobStoreError):
                await store.read("x")
        finally:
            await store.close()


# ============================================================
# TEST: CLI Store
# ============================================================

class TestCliBlobStore:

    def test_build_command(self):
        store = CliBlobStore(BlobStoreConfig(
            use_http=False, cli_path="walrus", cli_config="/etc/w.yaml", cli_context="mainnet",
        ))
        assert store.build_command(["read", "abc"]) == [
            "walrus", "--config", "/etc/w.yaml", "--context", "mainnet", "read", "abc",
        ]
        assert "--json" in store.build_command(["store", "f"], json_output=True)

    @pytest.mark.asyncio
    async def test_store(self, walrus_config):
        store = CliBlobStore(walrus_config)
        assert await store.store(b"data") == "cli-blob-1"

    @pytest.mark.asyncio
    async def test_read(self, walrus_config):
        store = CliBlobStore(walrus_config)
        assert await store.read("abc") == b"payload-of-abc"

    @pytest.mark.asyncio
    async def test_read_missing(self, walrus_config):
        store = CliBlobStore(walrus_config)
        with pytest.raises(BlobNotFound):
            await store.read("gone-blob")

    @pytest.mark.asyncio
    async def test_read_failure(self, walrus_config):
        store = CliBlobStore(walrus_config)
        with pytest.raises(BlobStoreError) as exc_info:
            await store.read("broken-blob")
        assert not isinstance(exc_info.value, BlobNotFound)

    @pytest.mark.asyncio
    async def test_status(self, walrus_config):
        status = await CliBlobStore(walrus_config).status("abc")
        assert status.certified is True
        assert status.permanent is True
        assert status.end_epoch == 42

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        store = CliBlobStore(BlobStoreConfig(use_http=False, cli_path=str(tmp_path / "no-walrus")))
        with pytest.raises(BlobStoreError):
            await store.read("abc")


# ============================================================
# TEST: Models / Factory
# ============================================================

class TestModels:

    @pytest.mark.parametrize("response,expected", [
        ({"blobId": "a1"}, "a1"),
        ({"newlyCreated": {"blobObject": {"blobId": "b2"}}}, "b2"),
        ({"alreadyCertified": {"blobId": "c3"}}, "c3"),
        ({"output": "Success\nBlob ID: d4\n"}, "d4"),
        ({"output": "nothing useful"}, None),
    ])
    def test_extract_blob_id(self, response, expected):
        assert extract_blob_id(response) == expected

    def test_status_from_text(self):
        status = BlobStatus.from_text("x", "Blob is certified and permanent. Expiry epoch: 99")
        assert status.certified is True
        assert status.permanent is True
        assert status.expiry_epoch == 99

    def test_deletable_wins(self):
        options = StoreOptions(permanent=True, deletable=True)
        assert options.to_query_params() == {"epochs": "365", "deletable": "true"}
        assert options.to_cli_args() == ["--epochs", "365", "--deletable"]

    def test_invalid_epochs(self):
        with pytest.raises(ValueError):
            StoreOptions(epochs=0)

    def test_factory(self):
        assert isinstance(create_blob_store(BlobStoreConfig(), dry_run=True), InMemoryBlobStore)
        assert isinstance(create_blob_store(BlobStoreConfig(use_http=True)), HttpBlobStore)
        assert isinstance(create_blob_store(BlobStoreConfig(use_http=False)), CliBlobStore)

    def test_config_validation(self):
        assert BlobStoreConfig(aggregator_url=None, publisher_url=None).validate()
        assert BlobStoreConfig(timeout_seconds=0).validate()
        assert BlobStoreConfig().validate() == []
