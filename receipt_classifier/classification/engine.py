"""Per-line classification with a token classification model.

Each line is tokenized, run through the model, and its token-level
logits are reduced to a single line label. The model is loaded once in
the background; until it is ready, classification is rejected.
"""

import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable, Sequence

import numpy as np

from receipt_classifier.tokenization.wordpiece import TokenizedLine, WordPieceTokenizer
from receipt_classifier.utils.exceptions import InferenceError, ModelNotReadyError
from receipt_classifier.utils.logger import get_logger

from .labels import LABELS, NUM_LABELS, LineLabel
from .session import InferenceFunction

logger = get_logger(__name__)


class EngineState(StrEnum):
    """Lifecycle of the classification model."""

    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class ClassifiedLine:
    """A receipt line with its predicted label."""

    text: str
    label: LineLabel


def to_feeds(tokenized: TokenizedLine) -> dict[str, np.ndarray]:
    """Convert a tokenized line into a batch of one ``int64`` array per input."""
    return {
        "input_ids": np.asarray([tokenized.input_ids], dtype=np.int64),
        "attention_mask": np.asarray([tokenized.attention_mask], dtype=np.int64),
        "token_type_ids": np.asarray([tokenized.token_type_ids], dtype=np.int64),
    }


def reduce_logits(logits: np.ndarray, input_ids: Sequence[int], sep_id: int) -> int:
    """Reduce token-level logits to a single label index.

    Only positions strictly between ``[CLS]`` and the first ``[SEP]`` are
    considered. The winner is the position whose own best channel has the
    highest logit; ties go to the earliest position and lowest channel.
    Non-finite logits never win.

    Args:
        logits: Array shaped ``[1, max_length, NUM_LABELS]``.
        input_ids: Token ids the logits were computed from.
        sep_id: Id of the ``[SEP]`` token.

    Returns:
        Index into ``LABELS``; 0 when the line has no content tokens.

    Raises:
        InferenceError: If the logits have an unexpected shape.
    """
    expected = (1, len(input_ids), NUM_LABELS)
    if logits.shape != expected:
        raise InferenceError(
            f"Unexpected logits shape {logits.shape}, expected {expected}"
        )

    ids = list(input_ids)
    end = ids.index(sep_id) if sep_id in ids else len(ids)
    span = logits[0, 1:end]
    if span.size == 0:
        return 0

    span = np.where(np.isfinite(span), span, -np.inf)
    best = span.max(axis=1)
    if np.isneginf(best).all():
        return 0

    position = int(np.argmax(best))
    return int(np.argmax(span[position]))


class ClassificationEngine:
    """Classifies receipt lines with a lazily loaded model.

    The engine starts in ``LOADING``. ``start()`` runs ``loader`` on a
    background thread and moves to ``READY`` or ``FAILED``. Calls made
    while not ``READY`` raise ``ModelNotReadyError``; callers that want to
    block use ``wait_until_ready()``.

    Args:
        tokenizer: Tokenizer sharing the model's vocabulary.
        loader: Zero-argument callable returning the inference function.
    """

    def __init__(
        self,
        tokenizer: WordPieceTokenizer,
        loader: Callable[[], InferenceFunction],
    ) -> None:
        self.tokenizer = tokenizer
        self._loader = loader
        self._model: InferenceFunction | None = None
        self._state = EngineState.LOADING
        self._load_error: BaseException | None = None
        self._settled = threading.Event()
        self._start_lock = threading.Lock()
        self._load_claimed = False
        self._session_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def load_error(self) -> BaseException | None:
        return self._load_error

    def is_ready(self) -> bool:
        return self._state is EngineState.READY

    def _claim_load(self) -> bool:
        with self._start_lock:
            if self._load_claimed:
                return False
            self._load_claimed = True
            return True

    def start(self) -> None:
        """Begin loading the model on a background thread (once)."""
        if not self._claim_load():
            return
        self._thread = threading.Thread(
            target=self._load, name="model-loader", daemon=True
        )
        self._thread.start()

    def load(self) -> EngineState:
        """Load the model on the calling thread and settle the state.

        The model is loaded at most once per engine. If a load is already
        running, this waits for it to settle instead of starting another.
        """
        if not self._claim_load():
            self._settled.wait()
            return self._state
        return self._load()

    def _load(self) -> EngineState:
        try:
            model = self._loader()
        except Exception as exc:
            logger.exception("Classifier model failed to load")
            self._load_error = exc
            self._state = EngineState.FAILED
        else:
            self._model = model
            self._state = EngineState.READY
            logger.info("Classifier model ready")
        finally:
            self._settled.set()
        return self._state

    def wait_until_ready(self, timeout: float | None = None) -> EngineState:
        """Block until loading settles or ``timeout`` seconds pass.

        Returns:
            The state after waiting; still ``LOADING`` on timeout.
        """
        self._settled.wait(timeout)
        return self._state

    def ensure_ready(self) -> None:
        """Raise ``ModelNotReadyError`` unless the model is loaded."""
        if self._state is not EngineState.READY:
            raise ModelNotReadyError(self._state.value, self._load_error)

    def _run(self, feeds: dict[str, np.ndarray]) -> np.ndarray:
        if getattr(self._model, "supports_concurrent_calls", False):
            return np.asarray(self._model(feeds))
        with self._session_lock:
            return np.asarray(self._model(feeds))

    def classify_line(self, line: str) -> LineLabel:
        """Predict the label of a single line.

        A failed inference call labels the line ``other`` instead of
        raising.

        Args:
            line: Raw text of the line.

        Returns:
            One of the labels in ``LABELS``.

        Raises:
            ModelNotReadyError: If the model is still loading or failed.
        """
        self.ensure_ready()
        tokenized = self.tokenizer.tokenize(line)
        sep_id = self.tokenizer.special_token_id("[SEP]")

        try:
            logits = self._run(to_feeds(tokenized))
            label = LABELS[reduce_logits(logits, tokenized.input_ids, sep_id)]
        except Exception as exc:
            logger.warning("Inference failed for line %r: %s", line, exc)
            return LineLabel.OTHER

        logger.debug("Classified %r as %s", line, label)
        return label

