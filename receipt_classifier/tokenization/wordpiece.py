"""WordPiece tokenization of single receipt lines.

Produces the fixed-length ``input_ids`` / ``attention_mask`` /
``token_type_ids`` triple a BERT-style sequence classifier expects.
"""

from dataclasses import dataclass

from receipt_classifier.utils.logger import get_logger

from .vocabulary import CLS, SEP, UNK, Vocabulary

logger = get_logger(__name__)

MAX_WORD_LENGTH = 200
CONTINUATION_PREFIX = "##"


@dataclass(frozen=True)
class TokenizedLine:
    """Model inputs for one line, each of length ``max_length``."""

    input_ids: tuple[int, ...]
    attention_mask: tuple[int, ...]
    token_type_ids: tuple[int, ...]

    def __len__(self) -> int:
        return len(self.input_ids)


class WordPieceTokenizer:
    """Greedy longest-match-first WordPiece tokenizer.

    Args:
        vocabulary: Loaded vocabulary with special tokens and config.
        max_word_length: Words longer than this become a single ``[UNK]``.
    """

    def __init__(
        self, vocabulary: Vocabulary, max_word_length: int = MAX_WORD_LENGTH
    ) -> None:
        self.vocabulary = vocabulary
        self.max_word_length = max_word_length

    def max_length(self) -> int:
        return self.vocabulary.max_length()

    def special_token_id(self, name: str) -> int:
        return self.vocabulary.special_token_id(name)

    def wordpiece(self, word: str) -> list[str]:
        """Split one whitespace-free word into vocabulary subwords.

        The first subword is matched as-is and later ones with the ``##``
        prefix. Once no prefix of the remainder matches, the remainder
        becomes ``[UNK]`` and the word ends.

        Args:
            word: A single word.

        Returns:
            The subword tokens for the word.
        """
        if len(word) > self.max_word_length:
            return [UNK]

        tokens: list[str] = []
        remaining = word
        while remaining:
            end = len(remaining)
            match = None
            while end > 0:
                candidate = remaining[:end]
                if tokens:
                    candidate = CONTINUATION_PREFIX + candidate
                if candidate in self.vocabulary:
                    match = candidate
                    break
                end -= 1

            if match is None:
                tokens.append(UNK)
                break
            tokens.append(match)
            remaining = remaining[end:]

        return tokens

    def split_tokens(self, line: str) -> list[str]:
        """Return the framed token strings for ``line``, before padding.

        The result starts with ``[CLS]``, ends with ``[SEP]`` and never
        exceeds ``max_length`` tokens.
        """
        if self.vocabulary.config.do_lower_case:
            line = line.lower()

        budget = self.max_length() - 2
        subwords: list[str] = []
        for word in line.split():
            subwords.extend(self.wordpiece(word))
            if len(subwords) >= budget:
                break

        return [CLS, *subwords[:budget], SEP]

    def tokenize(self, line: str) -> TokenizedLine:
        """Tokenize one line into padded model inputs.

        Args:
            line: Raw text of a single receipt line.

        Returns:
            The ``input_ids`` / ``attention_mask`` / ``token_type_ids``
            triple, each exactly ``max_length`` long.
        """
        tokens = self.split_tokens(line)
        max_length = self.max_length()
        pad_id = self.vocabulary.special_tokens.pad_id
        padding = max_length - len(tokens)

        input_ids = [self.vocabulary.id_of(token) for token in tokens]
        input_ids.extend([pad_id] * padding)
        attention_mask = [1] * len(tokens) + [0] * padding

        logger.debug("Tokenized %r into %d tokens", line, len(tokens))
        return TokenizedLine(
            input_ids=tuple(input_ids),
            attention_mask=tuple(attention_mask),
            token_type_ids=(0,) * max_length,
        )
