"""Shared test fixtures for the receipt classifier test suite."""

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Mapping
from unittest.mock import patch

import numpy as np
import pytest

from receipt_classifier.classification.labels import NUM_LABELS
from receipt_classifier.tokenization.vocabulary import Vocabulary, VocabularyStore
from receipt_classifier.tokenization.wordpiece import WordPieceTokenizer

VOCAB_TOKENS = [
    "[PAD]",
    "[UNK]",
    "[CLS]",
    "[SEP]",
    "milk",
    "stop",
    "&",
    "shop",
    "##s",
    "un",
    "##aff",
    "##able",
    "balance",
    "$",
    "eggs",
    "bread",
    "total",
]

MAX_LENGTH = 16


def write_model_dir(
    directory: Path,
    tokens: list[str] = VOCAB_TOKENS,
    do_lower_case: bool = True,
    max_length: int | None = MAX_LENGTH,
) -> Path:
    """Write vocab.txt, tokenizer.json and config.json into ``directory``."""
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "vocab.txt").write_text("\n".join(tokens) + "\n", encoding="utf-8")
    (directory / "tokenizer.json").write_text(
        json.dumps({"do_lower_case": do_lower_case})
    )
    model_config: dict[str, object] = {"model_type": "bert", "num_labels": NUM_LABELS}
    if max_length is not None:
        model_config["max_position_embeddings"] = max_length
    (directory / "config.json").write_text(json.dumps(model_config))
    return directory


def store_for(directory: Path) -> VocabularyStore:
    return VocabularyStore(
        directory / "vocab.txt",
        directory / "tokenizer.json",
        directory / "config.json",
    )


def logits_for(label_index: int, max_length: int = MAX_LENGTH) -> np.ndarray:
    """Logits that favour ``label_index`` at every position."""
    logits = np.zeros((1, max_length, NUM_LABELS), dtype=np.float32)
    logits[0, :, label_index] = 1.0
    return logits


def keyword_model(
    rules: Mapping[str, int], vocabulary: Vocabulary
) -> Callable[[Mapping[str, np.ndarray]], np.ndarray]:
    """Fake inference function labelling a line by the first keyword it contains.

    ``rules`` maps a vocabulary token to a label index; lines with no
    matching token get ``other``.
    """

    def infer(feeds: Mapping[str, np.ndarray]) -> np.ndarray:
        ids = feeds["input_ids"][0].tolist()
        for token, label_index in rules.items():
            if vocabulary.id_of(token) in ids:
                return logits_for(label_index, len(ids))
        return logits_for(0, len(ids))

    return infer


@pytest.fixture
def model_dir(tmp_path: Path) -> Path:
    """Directory with a small vocabulary and configs."""
    return write_model_dir(tmp_path / "model")


@pytest.fixture
def vocabulary(model_dir: Path) -> Vocabulary:
    return store_for(model_dir).load()


@pytest.fixture
def tokenizer(vocabulary: Vocabulary) -> WordPieceTokenizer:
    return WordPieceTokenizer(vocabulary)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent



@contextmanager
def detached_root_logging() -> Iterator[logging.Logger]:
    """Run with no root handlers so ``setup_logging`` installs its own."""
    root = logging.getLogger()
    saved_level = root.level
    try:
        with patch.object(root, "handlers", []):
            yield root
    finally:
        root.setLevel(saved_level)
        for name in ("transformers", "torch", "onnxruntime", "urllib3", "filelock"):
            logging.getLogger(name).setLevel(logging.NOTSET)
