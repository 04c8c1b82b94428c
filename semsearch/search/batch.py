"""
Turning raw strings into a padded batch the embedding model can consume.

BatchTokenizer wraps the external tokenizer (special tokens are always the
tokenizer's business, never added here). build_batch() right-pads the id
sequences to the longest row and derives the attention mask, token type
ids and position ids.
"""

from typing import List, NamedTuple, Optional, Sequence

import numpy as np

from ..errors import EncodingError
from ..logger import get_logger
from ..models.base import Tokenizer

logger = get_logger(__name__)

# Used when the tokenizer has no end-of-sequence id.
FALLBACK_PAD_ID = 0


class TokenBatch(NamedTuple):
    input_ids: np.ndarray  # int32 [batch, max_len]
    attention_mask: np.ndarray  # bool [batch, max_len]
    token_type_ids: np.ndarray  # int32 [batch, max_len], all zero
    position_ids: np.ndarray  # int32 [max_len], shared by every row
    lengths: np.ndarray  # int32 [batch], unpadded row lengths

    @property
    def max_len(self) -> int:
        return int(self.input_ids.shape[1])


def pad_id_for(tokenizer: Tokenizer) -> int:
    # The EOS id stands in for a dedicated pad id. Good enough for the
    # supported models, but a real pad token would be more correct.
    eos = getattr(tokenizer, "eos_token_id", None)
    return FALLBACK_PAD_ID if eos is None else int(eos)


class BatchTokenizer:
    """
    Encodes texts one by one. Sequences longer than ``max_length`` keep their
    first ``max_length - 1`` ids plus the final one, so the closing special
    token survives truncation.
    """

    def __init__(self, tokenizer: Tokenizer, max_length: Optional[int] = None):
        if max_length is not None and max_length < 2:
            raise ValueError(f"max_length must be at least 2, got {max_length}")
        self.tokenizer = tokenizer
        self.max_length = max_length

    @property
    def pad_id(self) -> int:
        return pad_id_for(self.tokenizer)

    def encode(self, texts: Sequence[str]) -> List[List[int]]:
        token_ids: List[List[int]] = []
        for i, text in enumerate(texts):
            if not isinstance(text, str) or not text.strip():
                raise EncodingError(f"Input text #{i} is empty.")
            try:
                ids = self.tokenizer.encode(text, add_special_tokens=True)
            except Exception as exc:
                raise EncodingError(f"Tokenizer failed on input #{i}: {exc}") from exc
            if len(ids) == 0:
                raise EncodingError(f"Input text #{i} produced no tokens.")
            if self.max_length is not None and len(ids) > self.max_length:
                logger.debug("Truncating input #%d from %d to %d tokens", i, len(ids), self.max_length)
                ids = list(ids[: self.max_length - 1]) + [ids[-1]]
            token_ids.append([int(t) for t in ids])
        return token_ids


def build_batch(
    token_ids: Sequence[Sequence[int]],
    pad_id: int,
    mask_from_pad_id: bool = False,
) -> TokenBatch:
    """
    Right-pad ``token_ids`` with ``pad_id`` into a rectangular batch.

    By default the attention mask marks the first ``len(ids)`` positions of
    each row, so real tokens equal to ``pad_id`` (e.g. a trailing EOS when
    EOS doubles as pad) stay visible. With ``mask_from_pad_id=True`` the mask
    is ``input_ids != pad_id`` instead, which hides such tokens.
    """
    if len(token_ids) == 0:
        raise EncodingError("Cannot build a batch from zero inputs.")
    lengths = np.array([len(ids) for ids in token_ids], dtype=np.int32)
    if (lengths == 0).any():
        raise EncodingError(f"Input #{int(np.argmin(lengths))} has no tokens.")

    max_len = int(lengths.max())
    input_ids = np.full((len(token_ids), max_len), pad_id, dtype=np.int32)
    for i, ids in enumerate(token_ids):
        input_ids[i, : len(ids)] = ids

    if mask_from_pad_id:
        attention_mask = input_ids != pad_id
    else:
        attention_mask = np.arange(max_len)[None, :] < lengths[:, None]

    return TokenBatch(
        input_ids=input_ids,
        attention_mask=attention_mask,
        token_type_ids=np.zeros_like(input_ids),
        position_ids=np.arange(max_len, dtype=np.int32),
        lengths=lengths,
    )
