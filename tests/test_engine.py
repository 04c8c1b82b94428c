import numpy as np
import pytest

from semsearch.errors import DTypeError, EncodingError
from semsearch.search.engine import EmbeddingEngine, l2norm, to_host

from conftest import DIM, FakePooling, FakeTokenizer, make_engine

TEXTS = [
    "The Skyline Trail offers stunning views of glaciers and wildflowers.",
    "Baking sourdough bread requires a mature starter.",
    "Tips for optimizing SwiftUI app performance.",
]


def test_one_unit_vector_per_text():
    engine, _ = make_engine()
    vecs = engine.embed(TEXTS)

    assert vecs.shape == (3, DIM)
    assert vecs.dtype == np.float32
    np.testing.assert_allclose(np.linalg.norm(vecs, axis=1), 1.0, atol=1e-5)


def test_output_is_read_only():
    engine, _ = make_engine()
    vecs = engine.embed(TEXTS[:1])
    with pytest.raises(ValueError):
        vecs[0, 0] = 1.0


def test_chunking_preserves_order():
    engine, model = make_engine()
    whole = engine.embed(TEXTS, batch_size=8)
    chunked = engine.embed(TEXTS, batch_size=1)

    np.testing.assert_allclose(whole, chunked, atol=1e-6)
    assert model.calls == 1 + 3


def test_padding_does_not_change_embedding():
    engine, _ = make_engine()
    alone = engine.embed(["scenic trails"])[0]
    padded = engine.embed(["scenic trails", TEXTS[0]])[0]

    np.testing.assert_allclose(alone, padded, atol=1e-6)


def test_non_float32_output_raises():
    engine, _ = make_engine(dtype=np.float64)
    with pytest.raises(DTypeError):
        engine.embed(TEXTS)


def test_empty_text_propagates():
    engine, model = make_engine()
    with pytest.raises(EncodingError):
        engine.embed(["hello", ""])
    assert model.calls == 0


def test_to_host_accepts_float32_arrays():
    arr = np.ones((2, 3), dtype=np.float32)
    assert to_host(arr) is not None
    with pytest.raises(DTypeError):
        to_host(arr.astype(np.float16))


def test_l2norm_keeps_zero_rows_finite():
    out = l2norm(np.array([[3.0, 4.0], [0.0, 0.0]], dtype=np.float32))
    np.testing.assert_allclose(out, [[0.6, 0.8], [0.0, 0.0]])


def test_close_drops_model():
    engine, _ = make_engine()
    engine.close()
    assert engine.model is None


def test_empty_input_gives_empty_array():
    engine, model = make_engine()
    vecs = engine.embed([])

    assert vecs.shape[0] == 0
    assert vecs.dtype == np.float32
    assert not vecs.flags.writeable
    assert model.calls == 0


def test_long_text_is_capped_at_max_length():
    engine, model = make_engine(max_length=6)
    long_text = " ".join(["trail"] * 50)

    vecs = engine.embed([long_text, "scenic trails"])

    assert vecs.shape == (2, DIM)
    assert model.widths == [6]
