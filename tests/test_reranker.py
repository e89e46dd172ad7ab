"""Cross-encoder reranker tests."""

from unittest.mock import MagicMock, patch

import pytest

from chunkhub.errors import UpstreamFault
from chunkhub.llm.reranker import CrossEncoderReranker


@pytest.fixture
def mock_cross_encoder():
    with patch("sentence_transformers.CrossEncoder") as mock:
        mock.return_value.predict.return_value = [0.2, 0.9]
        yield mock


def test_scores_each_document(mock_cross_encoder):
    reranker = CrossEncoderReranker(device="cpu", batch_size=4)

    scores = reranker.rerank("fox", ["a cat", "a fox"], "some/model")

    assert scores == [0.2, 0.9]
    mock_cross_encoder.assert_called_once_with("some/model", device="cpu")
    mock_cross_encoder.return_value.predict.assert_called_once_with(
        [["fox", "a cat"], ["fox", "a fox"]], batch_size=4
    )


def test_model_loaded_once_per_name(mock_cross_encoder):
    reranker = CrossEncoderReranker()

    reranker.rerank("q", ["d1", "d2"], "model-a")
    reranker.rerank("q", ["d1", "d2"], "model-a")
    reranker.rerank("q", ["d1", "d2"], "model-b")

    assert mock_cross_encoder.call_count == 2


def test_no_documents_skips_model(mock_cross_encoder):
    assert CrossEncoderReranker().rerank("q", [], "model") == []
    mock_cross_encoder.assert_not_called()


def test_load_failure_is_upstream_fault(mock_cross_encoder):
    mock_cross_encoder.side_effect = OSError("model not found")

    with pytest.raises(UpstreamFault) as exc_info:
        CrossEncoderReranker().rerank("q", ["d"], "missing/model")

    assert "model not found" in str(exc_info.value)


def test_inference_failure_is_upstream_fault():
    model = MagicMock()
    model.predict.side_effect = RuntimeError("CUDA out of memory")

    with patch("sentence_transformers.CrossEncoder", return_value=model):
        with pytest.raises(UpstreamFault):
            CrossEncoderReranker().rerank("q", ["d"], "model")
