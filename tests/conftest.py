"""Numpy stand-ins for the tokenizer, model, pooling, downloader and LLM."""

import re
import threading
import zlib
from pathlib import Path
from typing import Callable, Iterator, List, Optional

import numpy as np
import pytest

from semsearch.generation.core import ChatModel
from semsearch.lifecycle.core import ModelLifecycle
from semsearch.search.core import SemanticSearch
from semsearch.search.engine import EmbeddingEngine

DIM = 32
PAD, CLS, SEP = 0, 1, 2
VOCAB_OFFSET = 10

OUTDOORS = {"hike", "hikes", "hiking", "trail", "trails", "mount", "rainier",
            "glaciers", "views", "wildflowers", "scenic", "paradise"}
BAKING = {"baking", "bread", "sourdough", "starter", "dough", "bake"}


def word_id(word: str) -> int:
    return VOCAB_OFFSET + zlib.crc32(word.encode()) % 1_000_000


class FakeTokenizer:
    """Lowercased word tokenizer that wraps every input in [CLS] ... [SEP]."""

    def __init__(self, eos_token_id: Optional[int] = None):
        self.eos_token_id = eos_token_id
        self.words = {}

    def encode(self, text: str, add_special_tokens: bool = True) -> List[int]:
        ids = []
        for w in re.findall(r"[a-z0-9]+", text.lower()):
            self.words[word_id(w)] = w
            ids.append(word_id(w))
        if add_special_tokens:
            ids = [CLS] + ids + [SEP]
        return ids


class FakeModel:
    """Topic words point along axis 0 (outdoors) or 1 (baking); other words are small noise."""

    def __init__(self, tokenizer: FakeTokenizer):
        self.tokenizer = tokenizer
        self.calls = 0
        self.widths: List[int] = []

    def vector(self, token_id: int) -> np.ndarray:
        if token_id < VOCAB_OFFSET:
            return np.zeros(DIM, dtype=np.float32)
        word = self.tokenizer.words.get(token_id, "")
        v = np.zeros(DIM, dtype=np.float32)
        if word in OUTDOORS:
            v[0] = 1.0
        elif word in BAKING:
            v[1] = 1.0
        else:
            rng = np.random.default_rng(token_id)
            noise = rng.standard_normal(DIM).astype(np.float32)
            noise[:2] = 0.0
            v = 0.1 * noise / np.linalg.norm(noise)
        return v

    def forward(self, input_ids, position_ids, token_type_ids, attention_mask):
        self.calls += 1
        self.widths.append(input_ids.shape[1])
        assert position_ids.shape == (input_ids.shape[1],)
        assert token_type_ids.shape == input_ids.shape
        return np.stack([[self.vector(int(t)) for t in row] for row in input_ids])


class FakePooling:
    def __init__(self, dtype=np.float32):
        self.dtype = dtype

    def pool(self, hidden_states, mask, normalize=True, apply_layer_norm=False):
        m = np.asarray(mask, dtype=np.float32)[..., None]
        pooled = (hidden_states * m).sum(axis=1) / np.maximum(m.sum(axis=1), 1e-9)
        if normalize:
            pooled = pooled / np.maximum(np.linalg.norm(pooled, axis=1, keepdims=True), 1e-12)
        return pooled.astype(self.dtype)


class FakeDownloader:
    def __init__(self, fractions=(0.25, 0.5, 1.0), fail: Optional[BaseException] = None,
                 gate: Optional[threading.Event] = None):
        self.fractions = fractions
        self.fail = fail
        self.gate = gate
        self.calls = 0

    def fetch(self, model_id: str, progress: Callable[[float], None]) -> Path:
        self.calls += 1
        for f in self.fractions:
            progress(f)
        if self.gate is not None:
            self.gate.wait(5)
        if self.fail is not None:
            raise self.fail
        return Path("/tmp") / model_id


class FakeGenerator:
    """Yields the prompt's words one by one, optionally blocking before each."""

    def __init__(self, fail_after: Optional[int] = None):
        self.fail_after = fail_after
        self.stopped: List[threading.Event] = []

    def stream(self, prompt: str, stop: threading.Event, temperature: float = 0.7,
               max_tokens: int = 512) -> Iterator[str]:
        self.stopped.append(stop)
        for i, word in enumerate(prompt.split()[:max_tokens]):
            if stop.is_set():
                return
            if self.fail_after is not None and i >= self.fail_after:
                raise RuntimeError("device lost")
            yield word + " "


def make_engine(eos_token_id=None, dtype=np.float32, mask_from_pad_id=False, max_length=None):
    tokenizer = FakeTokenizer(eos_token_id=eos_token_id)
    model = FakeModel(tokenizer)
    engine = EmbeddingEngine(
        tokenizer, model, FakePooling(dtype), mask_from_pad_id=mask_from_pad_id, max_length=max_length
    )
    return engine, model


@pytest.fixture
def engine():
    return make_engine()[0]


@pytest.fixture
def embedding_lifecycle():
    engine, _ = make_engine()
    return ModelLifecycle("fake/embedder", FakeDownloader(), lambda path: engine)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def generation_lifecycle(generator):
    return ModelLifecycle("fake/llm", FakeDownloader(), lambda path: generator)


@pytest.fixture
def search(embedding_lifecycle):
    return SemanticSearch(embedding_lifecycle, batch_size=2)


@pytest.fixture
def chat(generation_lifecycle):
    return ChatModel(generation_lifecycle)
