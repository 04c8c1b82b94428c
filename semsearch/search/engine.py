import time
from typing import Any, List, Optional, Sequence

import numpy as np

from ..config import EMBED_BATCH_SIZE
from ..errors import DTypeError
from ..logger import get_logger
from ..models.base import EmbeddingModel, Pooling, Tokenizer
from .batch import BatchTokenizer, build_batch

logger = get_logger(__name__)


def l2norm(x: np.ndarray) -> np.ndarray:
    n = np.linalg.norm(x, axis=1, keepdims=True)
    n = np.maximum(n, 1e-12)
    return x / n


def to_host(x: Any) -> np.ndarray:
    """Copy a (possibly device-resident) float32 tensor into a numpy array."""
    if hasattr(x, "detach"):
        try:
            x = x.detach().to("cpu").numpy()
        except TypeError as exc:
            # e.g. bfloat16 has no numpy equivalent
            raise DTypeError(f"Unexpected embedding dtype: {x.dtype}") from exc
    arr = np.asarray(x)
    if arr.dtype != np.float32:
        raise DTypeError(f"Unexpected embedding dtype: {arr.dtype}")
    return arr


class EmbeddingEngine:
    """
    Batch builder -> model forward -> pooling -> L2 normalization.

    Not thread-safe: one engine wraps one model, so callers serialize
    ``embed()`` (SemanticSearch does this with an asyncio.Lock).
    """

    def __init__(
        self,
        tokenizer: Tokenizer,
        model: EmbeddingModel,
        pooling: Pooling,
        apply_layer_norm: bool = True,
        mask_from_pad_id: bool = False,
        max_length: Optional[int] = None,
    ):
        self.tokenizer = BatchTokenizer(tokenizer, max_length=max_length)
        self.model = model
        self.pooling = pooling
        self.apply_layer_norm = apply_layer_norm
        self.mask_from_pad_id = mask_from_pad_id

    def embed(self, texts: Sequence[str], batch_size: Optional[int] = None) -> np.ndarray:
        """Return a read-only float32 array with one row per input text, in order."""
        batch_size = batch_size or EMBED_BATCH_SIZE
        token_ids = self.tokenizer.encode(texts)
        pad_id = self.tokenizer.pad_id
        if not token_ids:
            out = np.empty((0, 0), dtype=np.float32)
            out.flags.writeable = False
            return out

        chunks: List[np.ndarray] = []
        for i in range(0, len(token_ids), batch_size):
            start = time.perf_counter()
            batch = build_batch(token_ids[i : i + batch_size], pad_id, self.mask_from_pad_id)
            hidden = self.model.forward(
                batch.input_ids,
                batch.position_ids,
                batch.token_type_ids,
                batch.attention_mask,
            )
            pooled = self.pooling.pool(
                hidden,
                batch.attention_mask,
                normalize=True,
                apply_layer_norm=self.apply_layer_norm,
            )
            vectors = to_host(pooled)
            if vectors.ndim != 2 or vectors.shape[0] != len(batch.lengths):
                raise RuntimeError(
                    f"pooling output shape {vectors.shape} does not match batch={len(batch.lengths)}"
                )
            chunks.append(l2norm(vectors))
            logger.debug(
                "Embedded batch of %d (max_len=%d) in %.3fs",
                len(batch.lengths), batch.max_len, time.perf_counter() - start,
            )

        out = np.concatenate(chunks, axis=0).astype(np.float32, copy=False)
        out.flags.writeable = False
        return out

    def close(self):
        """Drop the model references so device memory can be reclaimed."""
        self.model = None
        self.pooling = None
