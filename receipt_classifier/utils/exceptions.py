"""Exception hierarchy for the receipt classifier.

Hierarchy:
    ReceiptClassifierError
    ├── VocabularyLoadError
    ├── ModelLoadError
    ├── ModelNotReadyError
    ├── InferenceError
    ├── ProcessingAbandonedError
    └── TextSourceError
"""

from typing import Any


class ReceiptClassifierError(Exception):
    """Base exception for all receipt classifier errors.

    Attributes:
        message: Human-readable error message.
        details: Additional context about the failure.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class VocabularyLoadError(ReceiptClassifierError):
    """Raised when the vocabulary or a tokenizer/model config cannot be loaded."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            f"Failed to load '{path}': {reason}", {"path": path, "reason": reason}
        )


class ModelLoadError(ReceiptClassifierError):
    """Raised when the classification model artifact cannot be loaded."""


class ModelNotReadyError(ReceiptClassifierError):
    """Raised when classification is attempted before the model is ready.

    Attributes:
        state: Engine state at the time of the call.
        cause: The load error if the engine failed, otherwise ``None``.
    """

    def __init__(self, state: str, cause: BaseException | None = None) -> None:
        self.state = state
        self.cause = cause
        details: dict[str, Any] = {"state": state}
        if cause is not None:
            details["cause"] = str(cause)
        super().__init__(f"Classification model is not ready (state: {state})", details)


class InferenceError(ReceiptClassifierError):
    """Raised when a single inference call fails or returns malformed logits."""


class ProcessingAbandonedError(ReceiptClassifierError):
    """Raised when a request is cancelled or runs past its deadline."""

    def __init__(self, reason: str, lines_done: int, lines_total: int) -> None:
        super().__init__(
            f"Receipt processing abandoned: {reason}",
            {"lines_done": lines_done, "lines_total": lines_total},
        )
        self.reason = reason


class TextSourceError(ReceiptClassifierError):
    """Raised when image input is given but no OCR collaborator is configured."""
