"""Tests for the sentence-transformers embedder."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from devrag.embedding.encoder import DEFAULT_MODEL, EmbeddingConfig, EmbeddingModel
from devrag.search.protocols import Embedder


def _fake_model(dimension: int = 4) -> MagicMock:
    model = MagicMock()
    model.get_sentence_embedding_dimension.return_value = dimension
    model.encode.side_effect = lambda sentences, **kwargs: np.ones(
        (len(sentences), dimension), dtype="float64"
    )
    return model


class TestEmbeddingConfig:
    def test_defaults(self) -> None:
        config = EmbeddingConfig()
        assert config.model_name == DEFAULT_MODEL
        assert config.batch_size == 16
        assert config.normalize is True
        assert config.backend == "torch"


class TestEmbeddingModel:
    """Test EmbeddingModel with a patched SentenceTransformer."""

    @patch("devrag.embedding.encoder.SentenceTransformer")
    def test_load(self, mock_st: MagicMock) -> None:
        mock_st.return_value = _fake_model(8)

        model = EmbeddingModel(EmbeddingConfig(model_name="m", device="cpu"))

        assert model.dimension == 8
        assert model.model_name == "m"
        mock_st.assert_called_once_with("m", backend="torch", device="cpu")
        assert isinstance(model, Embedder)

    @patch("devrag.embedding.encoder.SentenceTransformer")
    def test_embed_returns_float32(self, mock_st: MagicMock) -> None:
        fake = _fake_model(4)
        mock_st.return_value = fake

        vectors = EmbeddingModel().embed(["a", "b", "c"])

        assert vectors.shape == (3, 4)
        assert vectors.dtype == np.float32
        kwargs = fake.encode.call_args.kwargs
        assert kwargs["normalize_embeddings"] is True
        assert kwargs["batch_size"] == 16

    @patch("devrag.embedding.encoder.SentenceTransformer")
    def test_embed_query(self, mock_st: MagicMock) -> None:
        mock_st.return_value = _fake_model(4)

        vector = EmbeddingModel().embed_query("how are chunks ranked")

        assert vector.shape == (4,)

    @patch("devrag.embedding.encoder.SentenceTransformer")
    def test_backend_falls_back_to_torch(self, mock_st: MagicMock) -> None:
        """A failing ONNX load retries with torch."""
        mock_st.side_effect = [RuntimeError("no onnx export"), _fake_model(4)]

        model = EmbeddingModel(EmbeddingConfig(backend="onnx"))

        assert model.config.backend == "torch"
        assert mock_st.call_count == 2
        assert mock_st.call_args.kwargs["backend"] == "torch"

    @patch("devrag.embedding.encoder.SentenceTransformer")
    def test_torch_failure_propagates(self, mock_st: MagicMock) -> None:
        mock_st.side_effect = RuntimeError("download failed")
        with pytest.raises(RuntimeError):
            EmbeddingModel()
