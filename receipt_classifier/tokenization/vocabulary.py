"""Vocabulary and tokenizer configuration loading.

Reads a BERT-style ``vocab.txt`` (one token per line, line index is the
token id) together with the tokenizer and model JSON configs, and
resolves the special token ids used to frame every tokenized line.
"""

from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from receipt_classifier.utils.exceptions import VocabularyLoadError
from receipt_classifier.utils.logger import get_logger

logger = get_logger(__name__)

CLS = "[CLS]"
SEP = "[SEP]"
PAD = "[PAD]"
UNK = "[UNK]"

_SPECIAL_TOKEN_DEFAULTS: dict[str, int] = {
    CLS: 101,
    SEP: 102,
    PAD: 0,
    UNK: 100,
}

DEFAULT_MAX_LENGTH = 512


class TokenizerSettings(BaseModel):
    """Fields read from ``tokenizer.json``; everything else is ignored."""

    model_config = ConfigDict(extra="ignore")

    do_lower_case: bool = True


class ModelSettings(BaseModel):
    """Fields read from the model ``config.json``; everything else is ignored."""

    model_config = ConfigDict(extra="ignore")

    max_position_embeddings: int = DEFAULT_MAX_LENGTH

    @field_validator("max_position_embeddings")
    @classmethod
    def _room_for_framing(cls, value: int) -> int:
        if value < 2:
            raise ValueError("must leave room for [CLS] and [SEP]")
        return value


@dataclass(frozen=True)
class SpecialTokens:
    """Ids of the tokens that frame and pad a sequence."""

    cls_id: int
    sep_id: int
    pad_id: int
    unk_id: int

    @classmethod
    def resolve(cls, vocab: Mapping[str, int]) -> "SpecialTokens":
        """Look up special tokens in ``vocab``, falling back to BERT defaults."""
        ids = {}
        for token, default in _SPECIAL_TOKEN_DEFAULTS.items():
            if token not in vocab:
                logger.warning(
                    "Special token %s missing from vocabulary, using id %d",
                    token,
                    default,
                )
            ids[token] = vocab.get(token, default)
        return cls(
            cls_id=ids[CLS], sep_id=ids[SEP], pad_id=ids[PAD], unk_id=ids[UNK]
        )

    def by_name(self, name: str) -> int:
        """Return the id for a special token given as ``"[CLS]"`` or ``"cls"``."""
        key = name.strip("[]").lower()
        if key not in ("cls", "sep", "pad", "unk"):
            raise KeyError(f"Unknown special token: {name}")
        return getattr(self, f"{key}_id")


@dataclass(frozen=True)
class TokenizerConfig:
    """Tokenizer behaviour derived from the tokenizer and model configs."""

    do_lower_case: bool = True
    max_length: int = DEFAULT_MAX_LENGTH


@dataclass(frozen=True)
class Vocabulary:
    """Immutable token-to-id mapping plus its special tokens and config.

    Loaded once at startup and shared read-only by every request.
    """

    token_to_id: Mapping[str, int]
    special_tokens: SpecialTokens
    config: TokenizerConfig

    def __contains__(self, token: str) -> bool:
        return token in self.token_to_id

    def __len__(self) -> int:
        return len(self.token_to_id)

    def id_of(self, token: str) -> int:
        """Return the id of ``token``, or the ``[UNK]`` id if it is unknown.

        Special tokens absent from the file resolve to their fallback ids.
        """
        if token in self.token_to_id:
            return self.token_to_id[token]
        if token in _SPECIAL_TOKEN_DEFAULTS:
            return self.special_tokens.by_name(token)
        return self.special_tokens.unk_id

    def max_length(self) -> int:
        return self.config.max_length

    def special_token_id(self, name: str) -> int:
        return self.special_tokens.by_name(name)


def read_vocab_file(path: Path) -> Mapping[str, int]:
    """Read a vocabulary file into a frozen mapping.

    Each line's index is its token id. Blank lines keep their index but
    add no entry; a token repeated on a later line keeps its first id.

    Args:
        path: Path to the UTF-8 vocabulary file.

    Returns:
        Read-only mapping from token to id.

    Raises:
        VocabularyLoadError: If the file cannot be read or has no tokens.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise VocabularyLoadError(str(path), str(exc)) from exc

    vocab: dict[str, int] = {}
    duplicates = 0
    for idx, line in enumerate(content.split("\n")):
        token = line.strip()
        if not token:
            continue
        if token in vocab:
            duplicates += 1
            continue
        vocab[token] = idx

    if not vocab:
        raise VocabularyLoadError(str(path), "vocabulary is empty")
    if duplicates:
        logger.warning("Ignored %d duplicate tokens in %s", duplicates, path)

    return MappingProxyType(vocab)


def _read_settings(path: Path, schema: type[BaseModel]) -> BaseModel:
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise VocabularyLoadError(str(path), str(exc)) from exc
    try:
        return schema.model_validate_json(raw)
    except ValidationError as exc:
        raise VocabularyLoadError(str(path), str(exc)) from exc


class VocabularyStore:
    """Loads the vocabulary and tokenizer configuration from disk.

    Args:
        vocab_path: Path to ``vocab.txt``.
        tokenizer_config_path: Path to ``tokenizer.json``.
        model_config_path: Path to the model ``config.json``.
    """

    def __init__(
        self,
        vocab_path: Path,
        tokenizer_config_path: Path,
        model_config_path: Path,
    ) -> None:
        self.vocab_path = Path(vocab_path)
        self.tokenizer_config_path = Path(tokenizer_config_path)
        self.model_config_path = Path(model_config_path)

    def load(self) -> Vocabulary:
        """Load and validate all tokenizer inputs.

        Returns:
            The immutable vocabulary with resolved special tokens.

        Raises:
            VocabularyLoadError: If any file is unreadable or malformed.
        """
        tokenizer_settings = _read_settings(
            self.tokenizer_config_path, TokenizerSettings
        )
        model_settings = _read_settings(self.model_config_path, ModelSettings)
        token_to_id = read_vocab_file(self.vocab_path)

        config = TokenizerConfig(
            do_lower_case=tokenizer_settings.do_lower_case,
            max_length=model_settings.max_position_embeddings,
        )
        vocabulary = Vocabulary(
            token_to_id=token_to_id,
            special_tokens=SpecialTokens.resolve(token_to_id),
            config=config,
        )
        logger.info(
            "Loaded vocabulary with %d tokens from %s (max_length=%d, lowercase=%s)",
            len(vocabulary),
            self.vocab_path,
            config.max_length,
            config.do_lower_case,
        )
        return vocabulary
