"""Vocabulary loading for the WordPiece and tokenizer.json formats."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, Field, ValidationError

from local_llm_core.errors import VocabularyLoadError

logger = logging.getLogger(__name__)

UNK_TOKEN = "[UNK]"
CLS_TOKEN = "[CLS]"
SEP_TOKEN = "[SEP]"
PAD_TOKEN = "[PAD]"

# BERT uncased ids, used when the vocabulary file does not list the special.
DEFAULT_UNK_ID = 100
DEFAULT_CLS_ID = 101
DEFAULT_SEP_ID = 102
DEFAULT_PAD_ID = 0

END_OF_TEXT = "<|endoftext|>"


@dataclass(frozen=True, slots=True)
class Vocabulary:
    """Immutable token/id mapping with designated special ids."""

    token_to_id: Mapping[str, int]
    unk_id: int = DEFAULT_UNK_ID
    cls_id: int = DEFAULT_CLS_ID
    sep_id: int = DEFAULT_SEP_ID
    pad_id: int = DEFAULT_PAD_ID
    eos_id: int | None = None
    id_to_token: Mapping[int, str] = field(default_factory=dict)

    @classmethod
    def from_tokens(
        cls,
        token_to_id: Mapping[str, int],
        *,
        id_to_token: Mapping[int, str] | None = None,
        eos_id: int | None = None,
    ) -> "Vocabulary":
        """Freeze a token table, resolving specials with BERT defaults."""
        frozen = MappingProxyType(dict(token_to_id))
        if id_to_token is None:
            id_to_token = {token_id: token for token, token_id in frozen.items()}
        return cls(
            token_to_id=frozen,
            unk_id=frozen.get(UNK_TOKEN, DEFAULT_UNK_ID),
            cls_id=frozen.get(CLS_TOKEN, DEFAULT_CLS_ID),
            sep_id=frozen.get(SEP_TOKEN, DEFAULT_SEP_ID),
            pad_id=frozen.get(PAD_TOKEN, DEFAULT_PAD_ID),
            eos_id=eos_id,
            id_to_token=MappingProxyType(dict(id_to_token)),
        )

    def __len__(self) -> int:
        return len(self.token_to_id)

    def __contains__(self, token: object) -> bool:
        return token in self.token_to_id

    def get(self, token: str) -> int | None:
        return self.token_to_id.get(token)

    def token(self, token_id: int) -> str | None:
        """Resolve an id to its token string, or None if it has none."""
        value = self.id_to_token.get(token_id)
        return value or None


def load_wordpiece_vocabulary(path: str | Path) -> Vocabulary:
    """Load a one-token-per-line ``vocab.txt``.

    The id of a token is its zero-based line number. Blank lines consume an id
    but map no token; a repeated token keeps its first id.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise VocabularyLoadError(f"cannot read vocabulary {path}: {exc}") from exc

    table: dict[str, int] = {}
    for line_no, line in enumerate(text.split("\n")):
        token = line.strip()
        if not token:
            continue
        table.setdefault(token, line_no)

    if not table:
        raise VocabularyLoadError(f"vocabulary {path} contains no tokens")

    logger.info("Loaded WordPiece vocabulary %s (%d tokens)", path, len(table))
    return Vocabulary.from_tokens(table)


class _TokenizerModel(BaseModel):
    type: str | None = None
    vocab: dict[str, int]


class _AddedToken(BaseModel):
    id: int
    content: str
    special: bool = False


class _TokenizerFile(BaseModel):
    model: _TokenizerModel
    added_tokens: list[_AddedToken] = Field(default_factory=list)


def resolve_eos_id(added_tokens: list[_AddedToken]) -> int | None:
    """First added token whose text denotes end-of-text, if any."""
    for item in added_tokens:
        if "eos" in item.content.lower() or item.content == END_OF_TEXT:
            return item.id
    return None


def load_tokenizer_json(path: str | Path) -> Vocabulary:
    """Load the ``model.vocab`` table and end-of-sequence id of a ``tokenizer.json``.

    Only ids inside ``[0, len(vocab))`` are decodable; added tokens are consulted
    solely to resolve the end-of-sequence id.
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise VocabularyLoadError(f"cannot read tokenizer {path}: {exc}") from exc

    try:
        parsed = _TokenizerFile.model_validate_json(raw)
    except ValidationError as exc:
        raise VocabularyLoadError(f"malformed tokenizer {path}: {exc}") from exc

    table = parsed.model.vocab
    if not table:
        raise VocabularyLoadError(f"tokenizer {path} has an empty vocabulary")

    size = len(table)
    id_to_token = {token_id: token for token, token_id in table.items() if 0 <= token_id < size}
    eos_id = resolve_eos_id(parsed.added_tokens)
    if eos_id is None:
        logger.warning("Tokenizer %s declares no end-of-text token; EOS stop disabled", path)

    logger.info("Loaded tokenizer %s (%d tokens, eos=%s)", path, size, eos_id)
    return Vocabulary.from_tokens(table, id_to_token=id_to_token, eos_id=eos_id)
