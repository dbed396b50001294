"""Unit tests for the HTTP blob store client (transport patched out)."""

from __future__ import annotations

import json

import pytest

from memledger.config import BlobStoreConfig
from memledger.errors import BlobNotFoundError
from memledger.errors import BlobStoreError
from memledger.errors import NotConfiguredError
from memledger.storage.blobstore import build_blob_store
from memledger.storage.blobstore import HttpBlobStore

AGGREGATOR = "https://agg.example"
PUBLISHER = "https://pub.example"


class FakeTransport:
    """Maps ``(method, url)`` to a response body or an exception."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], object] = {}
        self.calls: list[dict] = []

    def __call__(self, method, url, *, data=None, headers=None, timeout):
        self.calls.append(
            {"method": method, "url": url, "data": data, "headers": headers, "timeout": timeout}
        )
        outcome = self.routes.get((method, url))
        if outcome is None:
            raise BlobNotFoundError(f"{method} {url} returned 404")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def store(transport, monkeypatch) -> HttpBlobStore:
    client = HttpBlobStore(
        aggregator_url=AGGREGATOR + "/",
        publisher_url=PUBLISHER,
        fast_read_timeout_seconds=1.5,
    )
    monkeypatch.setattr(client, "_request", transport)
    return client


class TestRead:
    async def test_fast_path_uses_bounded_timeout(self, store, transport) -> None:
        transport.routes[("GET", f"{AGGREGATOR}/v1/blobs/abc")] = (b"payload", {})

        assert await store.read("abc") == b"payload"
        assert transport.calls[0]["timeout"] == 1.5
        assert len(transport.calls) == 1

    async def test_falls_back_to_canonical_without_timeout(self, store, transport) -> None:
        transport.routes[("GET", f"{AGGREGATOR}/v1/blobs/abc")] = BlobStoreError("timed out")
        transport.routes[("GET", f"{PUBLISHER}/v1/blobs/abc")] = (b"payload", {})

        assert await store.read("abc") == b"payload"
        assert [c["timeout"] for c in transport.calls] == [1.5, None]

    async def test_missing_everywhere_raises(self, store) -> None:
        with pytest.raises(BlobNotFoundError):
            await store.read("nope")


class TestWrite:
    async def test_write_sends_policy_and_tags(self, store, transport) -> None:
        url = f"{PUBLISHER}/v1/blobs?epochs=3&deletable=true&identifier=summary"
        transport.routes[("PUT", url)] = (
            json.dumps({"newlyCreated": {"blobObject": {"blobId": "new-ref"}}}).encode(),
            {},
        )

        ref = await store.write(
            b"{}",
            retention=3,
            deletable=True,
            identifier="summary",
            tags={"agent-id": "a1"},
        )

        assert ref == "new-ref"
        assert transport.calls[0]["data"] == b"{}"
        assert transport.calls[0]["headers"] == {"X-Tag-agent-id": "a1"}
        assert transport.calls[0]["timeout"] is None

    async def test_already_certified_ref(self, store, transport) -> None:
        url = f"{PUBLISHER}/v1/blobs?epochs=1&deletable=false"
        transport.routes[("PUT", url)] = (
            json.dumps({"alreadyCertified": {"blobId": "old-ref"}}).encode(),
            {},
        )

        assert await store.write(b"x", retention=1, deletable=False) == "old-ref"

    async def test_unexpected_response_raises(self, store, transport) -> None:
        url = f"{PUBLISHER}/v1/blobs?epochs=1&deletable=false"
        transport.routes[("PUT", url)] = (b'{"error": "full"}', {})

        with pytest.raises(BlobStoreError, match="missing blobId"):
            await store.write(b"x", retention=1, deletable=False)


class TestContainers:
    async def test_list_and_read_parts(self, store, transport) -> None:
        transport.routes[("GET", f"{AGGREGATOR}/v1/quilts/q1/patches")] = (
            json.dumps([{"patch_id": "p1", "identifier": "identity.json"}]).encode(),
            {},
        )
        transport.routes[("GET", f"{AGGREGATOR}/v1/blobs/by-quilt-patch-id/p1")] = (
            b'{"name": "Ada"}',
            {"x-quilt-patch-identifier": "identity.json", "x-tag-kind": "identity"},
        )

        parts = await store.list_parts("q1")
        part = await store.read_part(parts[0].part_id)

        assert [(p.part_id, p.identifier) for p in parts] == [("p1", "identity.json")]
        assert part.identifier == "identity.json"
        assert part.tags == {"kind": "identity"}
        assert part.contents == b'{"name": "Ada"}'

    async def test_malformed_listing_raises(self, store, transport) -> None:
        transport.routes[("GET", f"{AGGREGATOR}/v1/quilts/q1/patches")] = (b'[{"id": "p1"}]', {})

        with pytest.raises(BlobStoreError, match="malformed"):
            await store.list_parts("q1")


class TestDelete:
    async def test_delete_targets_publisher(self, store, transport) -> None:
        transport.routes[("DELETE", f"{PUBLISHER}/v1/blobs/abc")] = (b"", {})

        await store.delete("abc")

        assert transport.calls[0]["method"] == "DELETE"


class TestBuildBlobStore:
    def test_requires_both_urls(self) -> None:
        with pytest.raises(NotConfiguredError):
            build_blob_store(BlobStoreConfig(aggregator_url=AGGREGATOR))

    def test_builds_from_config(self) -> None:
        client = build_blob_store(
            BlobStoreConfig(aggregator_url=AGGREGATOR, publisher_url=PUBLISHER)
        )
        assert isinstance(client, HttpBlobStore)
