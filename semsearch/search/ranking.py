from typing import Hashable, List, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict

EPSILON = 1e-8


class DocumentResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    similarity: float


def cosine(a: np.ndarray, b: np.ndarray) -> float:
    """dot(a, b) / (|a| * |b| + eps); a zero vector scores 0 instead of NaN."""
    a = np.asarray(a, dtype=np.float32).ravel()
    b = np.asarray(b, dtype=np.float32).ravel()
    return float(np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b) + EPSILON))


def cosine_many(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    query = np.asarray(query, dtype=np.float32).ravel()
    matrix = np.asarray(matrix, dtype=np.float32)
    # Norms are recomputed even though the engine already normalizes.
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    return (matrix @ query) / (norms + EPSILON)


def rank_documents(
    query: np.ndarray,
    documents: Sequence[Tuple[Hashable, str, np.ndarray]],
) -> List[DocumentResult]:
    """Score every document against ``query`` and sort by similarity, highest first.

    Ties keep their input order (``sorted`` is stable).
    """
    if not documents:
        return []
    matrix = np.stack([np.asarray(vec, dtype=np.float32).ravel() for _, _, vec in documents])
    scores = cosine_many(query, matrix)
    results = [
        DocumentResult(id=str(doc_id), text=text, similarity=float(score))
        for (doc_id, text, _), score in zip(documents, scores)
    ]
    return sorted(results, key=lambda r: r.similarity, reverse=True)
