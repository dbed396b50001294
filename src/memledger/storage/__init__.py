"""Storage domain — blob store and pointer registry collaborators."""

from memledger.storage.blobstore import BlobStore
from memledger.storage.blobstore import build_blob_store
from memledger.storage.blobstore import ContainerPart
from memledger.storage.blobstore import decode_bytes
from memledger.storage.blobstore import HttpBlobStore
from memledger.storage.blobstore import InMemoryBlobStore
from memledger.storage.blobstore import PartInfo
from memledger.storage.registry import build_registry
from memledger.storage.registry import InMemoryRegistry
from memledger.storage.registry import RedisRegistry
from memledger.storage.registry import Registry
from memledger.storage.registry import TxResult

__all__ = [
    "BlobStore",
    "ContainerPart",
    "HttpBlobStore",
    "InMemoryBlobStore",
    "InMemoryRegistry",
    "PartInfo",
    "RedisRegistry",
    "Registry",
    "TxResult",
    "build_blob_store",
    "build_registry",
    "decode_bytes",
]
