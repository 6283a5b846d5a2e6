"""Inference backends for the receipt line classifier.

An inference function takes the three named ``int64`` input arrays,
each shaped ``[1, max_length]``, and returns ``float32`` logits shaped
``[1, max_length, NUM_LABELS]``.
"""

from pathlib import Path
from typing import Mapping, Protocol

import numpy as np
import onnxruntime as ort
import torch
from transformers import AutoModelForTokenClassification

from receipt_classifier.utils.exceptions import ModelLoadError
from receipt_classifier.utils.logger import get_logger

from .labels import NUM_LABELS

logger = get_logger(__name__)

INPUT_NAMES: tuple[str, ...] = ("input_ids", "attention_mask", "token_type_ids")
OUTPUT_NAME = "logits"


class InferenceFunction(Protocol):
    """Callable mapping named input arrays to a logits array."""

    def __call__(self, feeds: Mapping[str, np.ndarray]) -> np.ndarray: ...


class TorchTokenClassifier:
    """Token classification model loaded with Hugging Face transformers.

    Calls on one loaded model are not treated as thread-safe, so the
    engine serializes them.

    Args:
        model_dir: Directory holding the model weights and ``config.json``.
        device: Torch device (``"cuda"`` or ``"cpu"``). Auto-detected if ``None``.
    """

    supports_concurrent_calls = False

    def __init__(self, model_dir: str | Path, device: str | None = None) -> None:
        self.device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self.model_dir = str(model_dir)

        logger.info(
            "Loading classifier model from %s on %s", self.model_dir, self.device
        )
        try:
            model = AutoModelForTokenClassification.from_pretrained(self.model_dir)
        except (OSError, ValueError) as exc:
            raise ModelLoadError(
                f"Failed to load model from {self.model_dir}",
                {"error": str(exc)},
            ) from exc

        num_labels = model.config.num_labels
        if num_labels != NUM_LABELS:
            raise ModelLoadError(
                f"Model has {num_labels} output channels, expected {NUM_LABELS}",
                {"model_dir": self.model_dir},
            )

        self.model = model.to(self.device)
        self.model.eval()

    def __call__(self, feeds: Mapping[str, np.ndarray]) -> np.ndarray:
        inputs = {
            name: torch.from_numpy(np.asarray(feeds[name], dtype=np.int64)).to(
                self.device
            )
            for name in INPUT_NAMES
        }
        with torch.no_grad():
            outputs = self.model(**inputs)
        return outputs.logits.detach().cpu().numpy().astype(np.float32)


class OnnxTokenClassifier:
    """Token classification model exported to ONNX, run with ONNX Runtime.

    ``InferenceSession.run`` is safe to call from several threads, so the
    engine does not serialize calls to this backend. Inputs the graph does
    not declare (exports often drop ``token_type_ids``) are not fed.

    Args:
        model_path: Path to the ``.onnx`` file.
        providers: ONNX Runtime execution providers, in priority order.
    """

    supports_concurrent_calls = True

    def __init__(
        self, model_path: str | Path, providers: list[str] | None = None
    ) -> None:
        self.model_path = str(model_path)
        self.providers = providers or ["CPUExecutionProvider"]

        logger.info(
            "Loading ONNX classifier from %s with %s", self.model_path, self.providers
        )
        try:
            self.session = ort.InferenceSession(
                self.model_path, providers=self.providers
            )
        except Exception as exc:
            raise ModelLoadError(
                f"Failed to load ONNX model from {self.model_path}",
                {"error": str(exc)},
            ) from exc

        self.input_names = [node.name for node in self.session.get_inputs()]
        unknown = sorted(set(self.input_names) - set(INPUT_NAMES))
        if unknown:
            raise ModelLoadError(
                f"Model expects unsupported inputs {unknown}",
                {"model_path": self.model_path},
            )

        outputs = {node.name: node for node in self.session.get_outputs()}
        if OUTPUT_NAME not in outputs:
            raise ModelLoadError(
                f"Model has no '{OUTPUT_NAME}' output",
                {"outputs": sorted(outputs)},
            )
        num_labels = outputs[OUTPUT_NAME].shape[-1]
        if isinstance(num_labels, int) and num_labels != NUM_LABELS:
            raise ModelLoadError(
                f"Model has {num_labels} output channels, expected {NUM_LABELS}",
                {"model_path": self.model_path},
            )

    def __call__(self, feeds: Mapping[str, np.ndarray]) -> np.ndarray:
        inputs = {
            name: np.asarray(feeds[name], dtype=np.int64) for name in self.input_names
        }
        (logits,) = self.session.run([OUTPUT_NAME], inputs)
        return np.asarray(logits, dtype=np.float32)
