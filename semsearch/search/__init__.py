from .batch import BatchTokenizer, TokenBatch, build_batch
from .core import Document, SemanticSearch
from .engine import EmbeddingEngine
from .ranking import DocumentResult, cosine, rank_documents

__all__ = [
    "BatchTokenizer",
    "Document",
    "DocumentResult",
    "EmbeddingEngine",
    "SemanticSearch",
    "TokenBatch",
    "build_batch",
    "cosine",
    "rank_documents",
]
