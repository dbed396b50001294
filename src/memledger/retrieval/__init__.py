"""Retrieval domain — embeddings, the document store and blob ingestion."""

from memledger.retrieval.blob_ingest import BlobIngestAdapter
from memledger.retrieval.embedding import EmbeddingEngine
from memledger.retrieval.embedding import EmbeddingVector
from memledger.retrieval.embedding import SentenceEncoder
from memledger.retrieval.schemas import AddDocumentOptions
from memledger.retrieval.schemas import BlobReference
from memledger.retrieval.schemas import Document
from memledger.retrieval.schemas import IngestOptions
from memledger.retrieval.schemas import IngestResult
from memledger.retrieval.schemas import SearchResult
from memledger.retrieval.store import RetrievalStore

__all__ = [
    "AddDocumentOptions",
    "BlobIngestAdapter",
    "BlobReference",
    "Document",
    "EmbeddingEngine",
    "EmbeddingVector",
    "IngestOptions",
    "IngestResult",
    "RetrievalStore",
    "SearchResult",
    "SentenceEncoder",
]
