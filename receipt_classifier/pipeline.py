"""End-to-end receipt pipeline.

Raw OCR text is split into lines, each line is classified, and the
classified lines are aggregated into a ``Receipt``. ``build_pipeline``
is the composition root that wires the components from configuration.
"""

import threading
import time
from typing import Callable

from receipt_classifier.classification.engine import (
    ClassificationEngine,
    ClassifiedLine,
    EngineState,
)
from receipt_classifier.classification.session import (
    InferenceFunction,
    OnnxTokenClassifier,
    TorchTokenClassifier,
)
from receipt_classifier.extraction.aggregator import LineAggregator, Receipt
from receipt_classifier.tokenization.vocabulary import VocabularyStore
from receipt_classifier.tokenization.wordpiece import WordPieceTokenizer
from receipt_classifier.utils.config import AppConfig, ModelConfig
from receipt_classifier.utils.exceptions import (
    ProcessingAbandonedError,
    TextSourceError,
)
from receipt_classifier.utils.logger import get_logger

logger = get_logger(__name__)

TextSource = Callable[[bytes], str]


def split_lines(raw_text: str) -> list[str]:
    """Split OCR text into non-blank lines, keeping their original spacing."""
    lines = (line.removesuffix("\r") for line in raw_text.split("\n"))
    return [line for line in lines if line.strip()]


class ReceiptPipeline:
    """Turns OCR text into a structured receipt.

    Requests are rejected with ``ModelNotReadyError`` until the engine's
    model has loaded.

    Args:
        engine: Line classification engine.
        aggregator: Receipt field aggregator.
        text_source: Optional OCR collaborator turning image bytes into text.
        request_timeout_s: Per-request deadline, checked between lines.
    """

    def __init__(
        self,
        engine: ClassificationEngine,
        aggregator: LineAggregator,
        text_source: TextSource | None = None,
        request_timeout_s: float | None = None,
    ) -> None:
        self.engine = engine
        self.aggregator = aggregator
        self.text_source = text_source
        self.request_timeout_s = request_timeout_s

    @property
    def state(self) -> EngineState:
        return self.engine.state

    def wait_until_ready(self, timeout: float | None = None) -> EngineState:
        return self.engine.wait_until_ready(timeout)

    def classify(
        self, raw_text: str, cancel_event: threading.Event | None = None
    ) -> list[ClassifiedLine]:
        """Classify every non-blank line of ``raw_text``.

        Args:
            raw_text: OCR output for one receipt.
            cancel_event: Set by the caller to abandon the request.

        Returns:
            The classified lines in document order.

        Raises:
            ModelNotReadyError: If the model is not loaded.
            ProcessingAbandonedError: If cancelled or past the deadline.
        """
        self.engine.ensure_ready()
        lines = split_lines(raw_text)
        deadline = (
            time.monotonic() + self.request_timeout_s
            if self.request_timeout_s is not None
            else None
        )

        classified: list[ClassifiedLine] = []
        for line in lines:
            if cancel_event is not None and cancel_event.is_set():
                raise ProcessingAbandonedError(
                    "cancelled", len(classified), len(lines)
                )
            if deadline is not None and time.monotonic() > deadline:
                raise ProcessingAbandonedError(
                    "deadline exceeded", len(classified), len(lines)
                )
            classified.append(
                ClassifiedLine(text=line, label=self.engine.classify_line(line))
            )
        return classified

    def process(
        self, raw_text: str, cancel_event: threading.Event | None = None
    ) -> Receipt:
        """Extract a receipt from OCR text.

        Args:
            raw_text: OCR output for one receipt.
            cancel_event: Set by the caller to abandon the request.

        Returns:
            The extracted receipt.
        """
        start = time.monotonic()
        receipt = self.aggregator.format_receipt(self.classify(raw_text, cancel_event))
        logger.info("Processed receipt in %.3fs", time.monotonic() - start)
        return receipt

    def process_image(self, data: bytes) -> Receipt:
        """Run the OCR collaborator on image bytes and process its text.

        Raises:
            TextSourceError: If no OCR collaborator was configured.
        """
        if self.text_source is None:
            raise TextSourceError("No OCR text source configured for image input")
        return self.process(self.text_source(data))


def _default_loader(model_cfg: ModelConfig) -> Callable[[], InferenceFunction]:
    def load() -> InferenceFunction:
        if model_cfg.backend == "onnx":
            return OnnxTokenClassifier(
                model_cfg.onnx_path, providers=model_cfg.onnx_providers
            )
        return TorchTokenClassifier(model_cfg.model_dir, device=model_cfg.device)

    return load


def build_pipeline(
    config: AppConfig,
    model_loader: Callable[[], InferenceFunction] | None = None,
    text_source: TextSource | None = None,
    start: bool = True,
) -> ReceiptPipeline:
    """Assemble a pipeline from configuration.

    Loads the vocabulary synchronously (failures are fatal) and starts
    the model load in the background unless ``start`` is false.

    Args:
        config: Application configuration.
        model_loader: Returns the inference function. Defaults to the
            backend named by ``config.model.backend``.
        text_source: Optional OCR collaborator for image input.
        start: Whether to begin loading the model immediately.

    Returns:
        The assembled pipeline.

    Raises:
        VocabularyLoadError: If the vocabulary or configs cannot be loaded.
    """
    model_cfg = config.model
    vocabulary = VocabularyStore(
        model_cfg.vocab_path,
        model_cfg.tokenizer_config_path,
        model_cfg.model_config_path,
    ).load()
    tokenizer = WordPieceTokenizer(vocabulary)

    engine = ClassificationEngine(
        tokenizer, model_loader or _default_loader(model_cfg)
    )
    if start:
        engine.start()

    return ReceiptPipeline(
        engine,
        LineAggregator(config.aggregation.store_markers),
        text_source=text_source,
        request_timeout_s=config.pipeline.request_timeout_s,
    )
