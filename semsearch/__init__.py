"""Semantic search and streaming generation over on-device models."""

from .errors import (
    ConcurrentGenerationError,
    DTypeError,
    DuplicateDocumentError,
    EncodingError,
    LoadError,
    NotReadyError,
    SemanticSearchError,
)
from .generation.core import ChatModel, GenerationSession
from .lifecycle.core import LoadKind, LoadState, ModelLifecycle
from .search.core import Document, SemanticSearch
from .search.ranking import DocumentResult

__all__ = [
    "ChatModel",
    "ConcurrentGenerationError",
    "DTypeError",
    "DuplicateDocumentError",
    "Document",
    "DocumentResult",
    "EncodingError",
    "GenerationSession",
    "LoadError",
    "LoadKind",
    "LoadState",
    "ModelLifecycle",
    "NotReadyError",
    "SemanticSearch",
    "SemanticSearchError",
]
