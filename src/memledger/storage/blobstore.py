"""Content-addressed blob store collaborators.

``BlobStore`` is the protocol the rest of the package depends on.
``HttpBlobStore`` talks to an aggregator (reads) and a publisher (writes);
``InMemoryBlobStore`` keeps everything in process.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import socket
from typing import Protocol
from typing import runtime_checkable
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.parse import quote
from urllib.parse import urlencode
from urllib.request import Request
from urllib.request import urlopen

from pydantic import BaseModel
from pydantic import Field

from memledger.config import BlobStoreConfig
from memledger.errors import BlobNotFoundError
from memledger.errors import BlobStoreError
from memledger.errors import NotConfiguredError
from memledger.observability import track_latency

logger = logging.getLogger(__name__)


class PartInfo(BaseModel):
    """One entry of a container listing."""

    part_id: str
    identifier: str | None = None


class ContainerPart(BaseModel):
    """A single addressable part of a multi-part container."""

    part_id: str
    identifier: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)
    contents: bytes = b""


@runtime_checkable
class BlobStore(Protocol):
    """Immutable, content-addressed object storage."""

    async def read(self, ref: str) -> bytes: ...

    async def write(
        self,
        data: bytes,
        *,
        retention: int,
        deletable: bool,
        identifier: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> str: ...

    async def list_parts(self, ref: str) -> list[PartInfo]: ...

    async def read_part(self, part_id: str) -> ContainerPart: ...

    async def delete(self, ref: str) -> None: ...


def decode_bytes(data: bytes) -> str:
    """Decode *data* as UTF-8, falling back to base64 for binary content."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return base64.b64encode(data).decode("ascii")


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryBlobStore:
    """Process-local blob store; refs are SHA-256 digests of the content."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._containers: dict[str, list[ContainerPart]] = {}
        self._parts: dict[str, ContainerPart] = {}
        self._deletable: set[str] = set()

    def __contains__(self, ref: object) -> bool:
        return ref in self._blobs or ref in self._containers

    async def read(self, ref: str) -> bytes:
        try:
            return self._blobs[ref]
        except KeyError:
            raise BlobNotFoundError(f"blob {ref} not found") from None

    async def write(
        self,
        data: bytes,
        *,
        retention: int,
        deletable: bool,
        identifier: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> str:
        del retention, identifier, tags
        ref = hashlib.sha256(data).hexdigest()
        self._blobs[ref] = bytes(data)
        if deletable:
            self._deletable.add(ref)
        return ref

    def put_container(self, parts: list[ContainerPart]) -> str:
        """Store *parts* as one container and return its ref."""
        digest = hashlib.sha256()
        for part in parts:
            digest.update(part.part_id.encode("utf-8"))
            digest.update(part.contents)
        ref = f"container-{digest.hexdigest()}"
        self._containers[ref] = list(parts)
        for part in parts:
            self._parts[part.part_id] = part
        return ref

    async def list_parts(self, ref: str) -> list[PartInfo]:
        try:
            parts = self._containers[ref]
        except KeyError:
            raise BlobNotFoundError(f"container {ref} not found") from None
        return [PartInfo(part_id=p.part_id, identifier=p.identifier) for p in parts]

    async def read_part(self, part_id: str) -> ContainerPart:
        try:
            return self._parts[part_id]
        except KeyError:
            raise BlobNotFoundError(f"container part {part_id} not found") from None

    async def delete(self, ref: str) -> None:
        if ref not in self._blobs:
            raise BlobNotFoundError(f"blob {ref} not found")
        if ref not in self._deletable:
            raise BlobStoreError(f"blob {ref} is not deletable")
        del self._blobs[ref]
        self._deletable.discard(ref)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class HttpBlobStore:
    """Aggregator/publisher HTTP client.

    Reads first try the aggregator with a bounded timeout and fall back to
    the publisher (canonical path, no client-side timeout) on any error.
    """

    def __init__(
        self,
        *,
        aggregator_url: str,
        publisher_url: str,
        fast_read_timeout_seconds: float = 5.0,
    ) -> None:
        self._aggregator_url = aggregator_url.rstrip("/")
        self._publisher_url = publisher_url.rstrip("/")
        self._fast_timeout = fast_read_timeout_seconds

    async def read(self, ref: str) -> bytes:
        path = f"/v1/blobs/{quote(ref, safe='')}"
        try:
            with track_latency("blobstore.read.fast"):
                body, _ = await asyncio.to_thread(
                    self._request,
                    "GET",
                    self._aggregator_url + path,
                    timeout=self._fast_timeout,
                )
            return body
        except BlobStoreError as exc:
            logger.info("Fast read of %s failed (%s); using canonical path", ref, exc)

        with track_latency("blobstore.read.canonical"):
            body, _ = await asyncio.to_thread(
                self._request, "GET", self._publisher_url + path, timeout=None
            )
        return body

    async def write(
        self,
        data: bytes,
        *,
        retention: int,
        deletable: bool,
        identifier: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> str:
        query: dict[str, str | int] = {
            "epochs": retention,
            "deletable": "true" if deletable else "false",
        }
        if identifier:
            query["identifier"] = identifier
        headers = {f"X-Tag-{key}": value for key, value in (tags or {}).items()}
        url = f"{self._publisher_url}/v1/blobs?{urlencode(query)}"
        with track_latency("blobstore.write"):
            body, _ = await asyncio.to_thread(
                self._request, "PUT", url, data=data, headers=headers, timeout=None
            )
        return self._parse_write_response(body)

    async def list_parts(self, ref: str) -> list[PartInfo]:
        url = f"{self._aggregator_url}/v1/quilts/{quote(ref, safe='')}/patches"
        body, _ = await asyncio.to_thread(self._request, "GET", url, timeout=None)
        try:
            entries = json.loads(body)
            return [
                PartInfo(
                    part_id=entry["patch_id"],
                    identifier=entry.get("identifier"),
                )
                for entry in entries
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise BlobStoreError(f"malformed part listing for {ref}") from exc

    async def read_part(self, part_id: str) -> ContainerPart:
        url = f"{self._aggregator_url}/v1/blobs/by-quilt-patch-id/{quote(part_id, safe='')}"
        body, headers = await asyncio.to_thread(self._request, "GET", url, timeout=None)
        tags = {
            key[len("x-tag-"):]: value
            for key, value in headers.items()
            if key.lower().startswith("x-tag-")
        }
        return ContainerPart(
            part_id=part_id,
            identifier=headers.get("x-quilt-patch-identifier"),
            tags=tags,
            contents=body,
        )

    async def delete(self, ref: str) -> None:
        url = f"{self._publisher_url}/v1/blobs/{quote(ref, safe='')}"
        await asyncio.to_thread(self._request, "DELETE", url, timeout=None)

    @staticmethod
    def _parse_write_response(body: bytes) -> str:
        try:
            data = json.loads(body)
            if "newlyCreated" in data:
                return data["newlyCreated"]["blobObject"]["blobId"]
            if "alreadyCertified" in data:
                return data["alreadyCertified"]["blobId"]
        except (KeyError, TypeError, ValueError) as exc:
            raise BlobStoreError("publisher response missing blobId") from exc
        raise BlobStoreError("publisher response missing blobId")

    @staticmethod
    def _request(
        method: str,
        url: str,
        *,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None,
    ) -> tuple[bytes, dict[str, str]]:
        request = Request(url=url, data=data, headers=headers or {}, method=method)
        try:
            if timeout is None:
                response_cm = urlopen(request)
            else:
                response_cm = urlopen(request, timeout=timeout)
            with response_cm as response:
                body = response.read()
                response_headers = {k.lower(): v for k, v in response.headers.items()}
        except HTTPError as exc:
            if exc.code == 404:
                raise BlobNotFoundError(f"{method} {url} returned 404") from exc
            raise BlobStoreError(f"{method} {url} returned HTTP {exc.code}") from exc
        except (URLError, socket.timeout) as exc:
            raise BlobStoreError(f"{method} {url} failed: {exc}") from exc
        except OSError as exc:
            raise BlobStoreError(f"{method} {url} IO error: {exc}") from exc
        return body, response_headers


def build_blob_store(config: BlobStoreConfig) -> HttpBlobStore:
    """Create an ``HttpBlobStore`` from ``BlobStoreConfig``."""
    if not config.aggregator_url or not config.publisher_url:
        raise NotConfiguredError(
            "blob_store.aggregator_url and blob_store.publisher_url are required"
        )
    return HttpBlobStore(
        aggregator_url=config.aggregator_url,
        publisher_url=config.publisher_url,
        fast_read_timeout_seconds=config.fast_read_timeout_seconds,
    )
