from pathlib import Path
from typing import Optional

import numpy as np
import torch
import torch.nn.functional as F
from sentence_transformers import SentenceTransformer

from ..search.engine import EmbeddingEngine
from .base import BaseBackend


class TorchEncoder:
    """Runs the transformer underneath a SentenceTransformer on padded numpy batches."""

    def __init__(self, auto_model: torch.nn.Module, device: torch.device):
        self.auto_model = auto_model
        self.device = device

    def forward(self, input_ids, position_ids, token_type_ids, attention_mask) -> torch.Tensor:
        def t(x: np.ndarray) -> torch.Tensor:
            return torch.as_tensor(np.asarray(x, dtype=np.int64), device=self.device)

        batch = input_ids.shape[0]
        with torch.inference_mode():
            out = self.auto_model(
                input_ids=t(input_ids),
                attention_mask=t(attention_mask),
                token_type_ids=t(token_type_ids),
                position_ids=t(position_ids).unsqueeze(0).expand(batch, -1),
            )
        return out.last_hidden_state


class MeanPooling:
    def pool(
        self,
        hidden_states: torch.Tensor,
        mask: np.ndarray,
        normalize: bool = True,
        apply_layer_norm: bool = False,
    ) -> torch.Tensor:
        with torch.inference_mode():
            m = torch.as_tensor(np.asarray(mask), device=hidden_states.device)
            m = m.to(hidden_states.dtype).unsqueeze(-1)
            summed = (hidden_states * m).sum(dim=1)
            counts = m.sum(dim=1).clamp(min=1e-9)
            pooled = summed / counts
            if apply_layer_norm:
                pooled = F.layer_norm(pooled, pooled.shape[-1:])
            if normalize:
                pooled = F.normalize(pooled, p=2, dim=-1)
        return pooled


class MiniLML12(BaseBackend):
    repo_id: str = "sentence-transformers/all-MiniLM-L12-v2"
    kind: str = "embedding"

    def __init__(self, device: Optional[str] = None, apply_layer_norm: bool = True):
        super().__init__(device)
        self.apply_layer_norm = apply_layer_norm
        self.model: Optional[SentenceTransformer] = None

    def load(self, local_path: Path) -> EmbeddingEngine:
        self.model = SentenceTransformer(str(local_path), device=self.device)
        self.model.eval()
        transformer = self.model[0]
        return EmbeddingEngine(
            tokenizer=self.model.tokenizer,
            model=TorchEncoder(transformer.auto_model, self.model.device),
            pooling=MeanPooling(),
            apply_layer_norm=self.apply_layer_norm,
            # auto_model sees raw ids, so cap them the way SentenceTransformer.encode does
            max_length=self.model.max_seq_length,
        )
