import threading
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Protocol

import numpy as np

ProgressCallback = Callable[[float], None]


class Tokenizer(Protocol):
    """Anything with a Hugging Face style ``encode`` and ``eos_token_id``."""

    eos_token_id: Optional[int]

    def encode(self, text: str, add_special_tokens: bool = True) -> List[int]:
        ...


class EmbeddingModel(Protocol):
    def forward(
        self,
        input_ids: np.ndarray,
        position_ids: np.ndarray,
        token_type_ids: np.ndarray,
        attention_mask: np.ndarray,
    ) -> Any:
        """Return per-token hidden states, shape (batch, seq_len, hidden)."""
        ...


class Pooling(Protocol):
    def pool(
        self,
        hidden_states: Any,
        mask: np.ndarray,
        normalize: bool = True,
        apply_layer_norm: bool = False,
    ) -> Any:
        """Reduce hidden states to one vector per row, ignoring padding."""
        ...


class Downloader(Protocol):
    def fetch(self, model_id: str, progress: ProgressCallback) -> Path:
        """Make the model files available locally and return their directory."""
        ...


class TextGenerator(Protocol):
    def stream(
        self,
        prompt: str,
        stop: threading.Event,
        temperature: float = 0.7,
        max_tokens: int = 512,
    ) -> Iterator[str]:
        """Yield text fragments until end-of-generation or until ``stop`` is set."""
        ...


class BaseBackend:
    """A model family that knows how to turn a local snapshot into a capability."""

    repo_id: str = ""
    kind: str = ""

    def __init__(self, device: Optional[str] = None):
        self.device = device

    def load(self, local_path: Path) -> Any:
        """Load model into memory (tokenizer, encoder, etc.) and return the capability."""
        raise NotImplementedError
