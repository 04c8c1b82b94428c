import asyncio
from typing import List, Optional, Sequence, Union

import numpy as np
from pydantic import BaseModel

from ..config import EMBED_BATCH_SIZE
from ..errors import DuplicateDocumentError, EncodingError
from ..lifecycle.core import ModelLifecycle
from ..logger import get_logger
from .engine import EmbeddingEngine
from .ranking import DocumentResult, rank_documents

logger = get_logger(__name__)


class Document(BaseModel):
    id: str
    text: str


DocumentLike = Union[str, Document]


def as_documents(documents: Sequence[DocumentLike]) -> List[Document]:
    """
    Plain strings get their position as identity. Identities must be unique
    across the whole list, including where a caller-supplied id equals the
    position of a plain string.
    """
    docs = [
        d if isinstance(d, Document) else Document(id=str(i), text=d)
        for i, d in enumerate(documents)
    ]
    seen = set()
    for d in docs:
        if d.id in seen:
            raise DuplicateDocumentError(f"Duplicate document id: {d.id!r}")
        seen.add(d.id)
    return docs


class SemanticSearch:
    """
    Ranks documents against a query with the embedding model behind ``lifecycle``.

    The lifecycle is injected and owned by the caller; this class never
    loads or closes it.
    """

    def __init__(
        self,
        lifecycle: ModelLifecycle[EmbeddingEngine],
        batch_size: Optional[int] = None,
    ):
        self.lifecycle = lifecycle
        self.batch_size = batch_size or EMBED_BATCH_SIZE
        self._embed_lock = asyncio.Lock()

    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        engine = self.lifecycle.require()
        async with self._embed_lock:
            # forward pass is blocking, keep it off the event loop
            return await asyncio.to_thread(engine.embed, list(texts), self.batch_size)

    async def rank(self, query: str, documents: Sequence[DocumentLike]) -> List[DocumentResult]:
        self.lifecycle.require()
        if not query or not query.strip():
            raise EncodingError("Query cannot be empty.")
        docs = as_documents(documents)
        if not docs:
            return []

        embeddings = await self.embed([query] + [d.text for d in docs])
        query_vec, doc_vecs = embeddings[0], embeddings[1:]
        results = rank_documents(
            query_vec, [(d.id, d.text, vec) for d, vec in zip(docs, doc_vecs)]
        )
        logger.debug("Ranked %d documents for query %r", len(results), query)
        return results

    def rank_sync(self, query: str, documents: Sequence[DocumentLike]) -> List[DocumentResult]:
        # For small sync usage (CLI, notebooks); the model must already be loaded
        import anyio

        return anyio.run(self.rank, query, documents)
