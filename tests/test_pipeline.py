"""Tests for the end-to-end receipt pipeline."""

import threading
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from receipt_classifier.classification.engine import ClassificationEngine, EngineState
from receipt_classifier.classification.labels import LineLabel
from receipt_classifier.extraction.aggregator import Item, LineAggregator, Receipt
from receipt_classifier.pipeline import ReceiptPipeline, build_pipeline, split_lines
from receipt_classifier.tokenization.wordpiece import WordPieceTokenizer
from receipt_classifier.utils.config import AppConfig, ModelConfig, PipelineConfig
from receipt_classifier.utils.exceptions import (
    ModelNotReadyError,
    ProcessingAbandonedError,
    TextSourceError,
    VocabularyLoadError,
)

from conftest import keyword_model

RECEIPT_TEXT = (
    "STOP & SHOP - 123 MAIN ST\n"
    "01/02/23 14:30\n"
    "\n"
    "MILK 2.50\n"
    "   \n"
    "BALANCE $2.50\n"
)

RULES = {"stop": 1, "balance": 3, "milk": 4}


def _pipeline(
    tokenizer: WordPieceTokenizer, **kwargs: object
) -> ReceiptPipeline:
    model = keyword_model(RULES, tokenizer.vocabulary)
    engine = ClassificationEngine(tokenizer, lambda: model)
    engine.load()
    return ReceiptPipeline(engine, LineAggregator(), **kwargs)  # type: ignore[arg-type]


class TestSplitLines:
    """Tests for splitting OCR text into lines."""

    def test_blank_lines_dropped(self) -> None:
        assert split_lines("a\n\n  \nb\n") == ["a", "b"]

    def test_crlf(self) -> None:
        assert split_lines("a\r\nb\r\n") == ["a", "b"]

    def test_spacing_preserved(self) -> None:
        assert split_lines("  MILK 2.50  ") == ["  MILK 2.50  "]

    def test_empty_text(self) -> None:
        assert split_lines("") == []


class TestReceiptPipeline:
    """Tests for ReceiptPipeline."""

    def test_process(self, tokenizer: WordPieceTokenizer) -> None:
        receipt = _pipeline(tokenizer).process(RECEIPT_TEXT)
        assert receipt.merchant == "STOP & SHOP"
        assert receipt.date == "01/02/23 14:30"
        assert receipt.total == Decimal("2.50")
        assert receipt.items == [Item(name="MILK", price=Decimal("2.50"))]

    def test_classify(self, tokenizer: WordPieceTokenizer) -> None:
        classified = _pipeline(tokenizer).classify(RECEIPT_TEXT)
        assert [cl.label for cl in classified] == [
            LineLabel.MERCHANT,
            LineLabel.OTHER,
            LineLabel.ITEM,
            LineLabel.TOTAL,
        ]

    def test_empty_text_gives_empty_receipt(
        self, tokenizer: WordPieceTokenizer
    ) -> None:
        assert _pipeline(tokenizer).process("\n\n") == Receipt()

    def test_rejects_until_ready(self, tokenizer: WordPieceTokenizer) -> None:
        engine = ClassificationEngine(tokenizer, MagicMock())
        pipeline = ReceiptPipeline(engine, LineAggregator())
        assert pipeline.state is EngineState.LOADING
        with pytest.raises(ModelNotReadyError):
            pipeline.process(RECEIPT_TEXT)

    def test_cancelled_request(self, tokenizer: WordPieceTokenizer) -> None:
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ProcessingAbandonedError, match="cancelled"):
            _pipeline(tokenizer).process(RECEIPT_TEXT, cancel_event=cancel)

    def test_deadline_exceeded(self, tokenizer: WordPieceTokenizer) -> None:
        pipeline = _pipeline(tokenizer, request_timeout_s=-1.0)
        with pytest.raises(ProcessingAbandonedError) as exc_info:
            pipeline.process(RECEIPT_TEXT)
        assert exc_info.value.details == {"lines_done": 0, "lines_total": 4}

    def test_process_image(self, tokenizer: WordPieceTokenizer) -> None:
        text_source = MagicMock(return_value=RECEIPT_TEXT)
        pipeline = _pipeline(tokenizer, text_source=text_source)
        receipt = pipeline.process_image(b"\x89PNG")
        text_source.assert_called_once_with(b"\x89PNG")
        assert receipt.merchant == "STOP & SHOP"

    def test_process_image_without_text_source(
        self, tokenizer: WordPieceTokenizer
    ) -> None:
        with pytest.raises(TextSourceError):
            _pipeline(tokenizer).process_image(b"\x89PNG")


class TestBuildPipeline:
    """Tests for assembling the pipeline from configuration."""

    def _config(self, model_dir: Path, **pipeline: object) -> AppConfig:
        return AppConfig(
            model=ModelConfig(model_dir=str(model_dir), device="cpu"),
            pipeline=PipelineConfig(**pipeline),  # type: ignore[arg-type]
        )

    def test_builds_and_loads(self, model_dir: Path) -> None:
        config = self._config(model_dir)
        pipeline = build_pipeline(config, model_loader=MagicMock(), start=False)
        assert pipeline.state is EngineState.LOADING
        assert pipeline.engine.tokenizer.max_length() == 16

        pipeline.engine.load()
        assert pipeline.wait_until_ready(timeout=1) is EngineState.READY

    def test_starts_background_load(self, model_dir: Path) -> None:
        loader = MagicMock(return_value=MagicMock())
        pipeline = build_pipeline(self._config(model_dir), model_loader=loader)
        assert pipeline.wait_until_ready(timeout=5) is EngineState.READY
        loader.assert_called_once()

    def test_request_timeout_from_config(self, model_dir: Path) -> None:
        config = self._config(model_dir, request_timeout_s=3.0)
        pipeline = build_pipeline(config, model_loader=MagicMock(), start=False)
        assert pipeline.request_timeout_s == 3.0

    @patch("receipt_classifier.pipeline.TorchTokenClassifier")
    def test_default_loader_uses_torch_model(
        self, mock_classifier_cls: MagicMock, model_dir: Path
    ) -> None:
        pipeline = build_pipeline(self._config(model_dir), start=False)
        assert pipeline.engine.load() is EngineState.READY
        mock_classifier_cls.assert_called_once_with(str(model_dir), device="cpu")

    @patch("receipt_classifier.pipeline.TorchTokenClassifier")
    @patch("receipt_classifier.pipeline.OnnxTokenClassifier")
    def test_onnx_backend_selected(
        self,
        mock_onnx_cls: MagicMock,
        mock_torch_cls: MagicMock,
        model_dir: Path,
    ) -> None:
        config = AppConfig(
            model=ModelConfig(
                model_dir=str(model_dir),
                backend="onnx",
                onnx_providers=["CPUExecutionProvider"],
            )
        )
        pipeline = build_pipeline(config, start=False)
        assert pipeline.engine.load() is EngineState.READY
        mock_onnx_cls.assert_called_once_with(
            model_dir / "model.onnx", providers=["CPUExecutionProvider"]
        )
        mock_torch_cls.assert_not_called()

    def test_missing_vocabulary_is_fatal(self, tmp_path: Path) -> None:
        with pytest.raises(VocabularyLoadError):
            build_pipeline(self._config(tmp_path / "nowhere"), start=False)
