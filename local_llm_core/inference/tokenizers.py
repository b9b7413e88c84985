"""Tokenizers for the embedding (WordPiece) and generation (direct lookup) paths."""

from __future__ import annotations

from typing import Sequence

from local_llm_core.inference.vocabulary import Vocabulary

CONTINUATION_PREFIX = "##"
PLACEHOLDER_ID = 0


def basic_tokens(text: str) -> list[str]:
    """Lower-case and split into maximal runs of letters and decimal digits."""
    tokens: list[str] = []
    current: list[str] = []
    for char in text.lower():
        if char.isalpha() or char.isdecimal():
            current.append(char)
        elif current:
            tokens.append("".join(current))
            current = []
    if current:
        tokens.append("".join(current))
    return tokens


class WordPieceTokenizer:
    """Uncased greedy longest-prefix WordPiece encoder."""

    def __init__(self, vocabulary: Vocabulary, *, max_length: int) -> None:
        if max_length < 2:
            raise ValueError("max_length must leave room for [CLS] and [SEP]")
        self.vocabulary = vocabulary
        self.max_length = max_length

    def tokenize_word(self, word: str) -> list[int]:
        # A failed search maps the whole word to a single [UNK].
        pieces: list[int] = []
        remaining = word
        while remaining:
            for end in range(len(remaining), 0, -1):
                candidate = remaining[:end]
                if pieces:
                    candidate = CONTINUATION_PREFIX + candidate
                token_id = self.vocabulary.get(candidate)
                if token_id is not None:
                    pieces.append(token_id)
                    remaining = remaining[end:]
                    break
            else:
                pieces.append(self.vocabulary.unk_id)
                break
        return pieces

    def encode(self, text: str) -> list[int]:
        ids = [self.vocabulary.cls_id]
        for word in basic_tokens(text):
            ids.extend(self.tokenize_word(word))
        ids.append(self.vocabulary.sep_id)
        return ids[: self.max_length]

    def decode(self, ids: Sequence[int]) -> str:
        words: list[str] = []
        for token_id in ids:
            token = self.vocabulary.token(int(token_id))
            if token is None:
                continue
            if token.startswith(CONTINUATION_PREFIX) and words:
                words[-1] += token[len(CONTINUATION_PREFIX):]
            else:
                words.append(token)
        return " ".join(words)


class DirectLookupTokenizer:
    """Whitespace split with whole-token vocabulary lookup.

    No sub-word merges are applied: a token absent from the vocabulary maps to
    id 0.
    """

    def __init__(self, vocabulary: Vocabulary) -> None:
        self.vocabulary = vocabulary

    @property
    def eos_id(self) -> int | None:
        return self.vocabulary.eos_id

    def is_eos(self, token_id: int) -> bool:
        return self.eos_id is not None and token_id == self.eos_id

    def encode(self, text: str) -> list[int]:
        ids = [self.vocabulary.token_to_id.get(part, PLACEHOLDER_ID) for part in text.split()]
        return ids or [PLACEHOLDER_ID]

    def decode(self, ids: Sequence[int]) -> str:
        parts = [self.vocabulary.token(int(token_id)) for token_id in ids]
        return " ".join(part for part in parts if part is not None)
