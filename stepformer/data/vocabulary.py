"""
Stepformer Embedding Table
===========================
Maps surface tokens to fixed d_model-dimensional vectors.

There is no learned tokenizer here: a "token" is a whitespace-separated
word, and the table is a plain dictionary. Words the table does not know
are silently dropped during tokenization, so callers must check that
something survived (the pipeline controller raises EmptyVocabularyResult).

Where the vectors come from:
    1. Twelve core words carry hand-picked 6-dimensional vectors. For other
       dimensions they are truncated, or padded with hash-derived values.
    2. Every other known word gets a hash-derived vector:
           seed  = sum of the character codes of the word
           v[i]  = frac(sin(seed + i) × 10000)
       Deterministic and in [0, 1), so the same word always looks the same.
    3. <PAD> maps to the zero vector.

Usage:
    >>> table = EmbeddingTable.for_source(d_model=6)
    >>> table.tokenize("We   are best xyz")
    ['We', 'are', 'best']
    >>> table.embed("We")
    tensor([0.2000, 0.8000, 0.1000, 0.9000, 0.3000, 0.7000], dtype=torch.float64)
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

import torch

from stepformer.data.translation import (
    PAD_TOKEN,
    SPECIAL_TOKENS,
    get_dictionary,
    source_words,
)

logger = logging.getLogger(__name__)

DTYPE = torch.float64

# Hand-picked 6-d vectors for the core demo words (keys are lowercase)
BASE_VECTORS: dict[str, list[float]] = {
    "we": [0.2, 0.8, 0.1, 0.9, 0.3, 0.7],
    "are": [0.5, 0.4, 0.6, 0.2, 0.8, 0.3],
    "best": [0.9, 0.1, 0.7, 0.4, 0.2, 0.6],
    "ai": [0.7, 0.3, 0.8, 0.5, 0.1, 0.9],
    "is": [0.4, 0.6, 0.3, 0.7, 0.5, 0.2],
    "powerful": [0.8, 0.2, 0.9, 0.3, 0.6, 0.4],
    "learning": [0.6, 0.7, 0.4, 0.8, 0.2, 0.5],
    "deep": [0.3, 0.9, 0.5, 0.6, 0.7, 0.1],
    "machine": [0.8, 0.4, 0.6, 0.3, 0.9, 0.2],
    "neural": [0.5, 0.8, 0.2, 0.7, 0.4, 0.6],
    "network": [0.7, 0.3, 0.8, 0.4, 0.5, 0.9],
    "model": [0.4, 0.6, 0.7, 0.8, 0.3, 0.5],
}


def hash_embedding(word: str, length: int) -> list[float]:
    """
    Deterministic pseudo-random vector derived from the word's characters.

    Parameters
    ----------
    word : str
        Token to derive the vector from.
    length : int
        Number of components.

    Returns
    -------
    list[float]
        Values in [0, 1).
    """
    seed = sum(ord(ch) for ch in word)
    values = []
    for i in range(length):
        x = math.sin(seed + i) * 10000
        values.append(x - math.floor(x))
    return values


def fit_base_vector(word: str, base: list[float], d_model: int) -> list[float]:
    """Truncate or pad a hand-picked vector to d_model components."""
    if len(base) >= d_model:
        return base[:d_model]
    return base + hash_embedding(word, d_model - len(base))


class EmbeddingTable:
    """
    Fixed token → vector lookup.

    Parameters
    ----------
    words : iterable of str
        Tokens the table knows. Matching is case-insensitive.
    d_model : int
        Length of every vector.
    """

    def __init__(self, words: Iterable[str], d_model: int):
        if d_model <= 0:
            raise ValueError(f"d_model must be positive, got {d_model}")

        self.d_model = d_model
        self._vectors: dict[str, torch.Tensor] = {}

        for word in words:
            key = word.lower()
            if key in self._vectors:
                continue
            self._vectors[key] = torch.tensor(
                self._initial_vector(word, key), dtype=DTYPE
            )

        logger.debug(f"EmbeddingTable: {len(self)} tokens × d_model={d_model}")

    def _initial_vector(self, word: str, key: str) -> list[float]:
        if word == PAD_TOKEN:
            return [0.0] * self.d_model
        if key in BASE_VECTORS:
            return fit_base_vector(key, BASE_VECTORS[key], self.d_model)
        return hash_embedding(key, self.d_model)

    @classmethod
    def for_source(cls, d_model: int) -> EmbeddingTable:
        """Encoder-side table: every English word with a translation."""
        return cls(source_words(), d_model)

    @classmethod
    def for_target(cls, language: str, d_model: int) -> EmbeddingTable:
        """Decoder-side table: special tokens plus one language's words."""
        words = list(SPECIAL_TOKENS) + list(get_dictionary(language).values())
        return cls(words, d_model)

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, token: str) -> bool:
        return token.lower() in self._vectors

    def embed(self, token: str) -> Optional[torch.Tensor]:
        """
        Look up a token.

        Returns
        -------
        torch.Tensor or None
            A fresh copy of the token's vector, or None if the token is
            not in the table.
        """
        vector = self._vectors.get(token.lower())
        if vector is None:
            return None
        return vector.clone()

    def embed_all(self, tokens: list[str]) -> list[torch.Tensor]:
        """
        Embed a whole token sequence.

        Raises
        ------
        KeyError
            If any token is missing; sequences are expected to come from
            tokenize() or the translation tables.
        """
        vectors = []
        for token in tokens:
            vector = self.embed(token)
            if vector is None:
                raise KeyError(f"Token '{token}' is not in the embedding table")
            vectors.append(vector)
        return vectors

    def tokenize(self, sentence: str, max_words: int = 5) -> list[str]:
        """
        Split a sentence into known tokens.

        Steps: trim → collapse whitespace → split → keep the first
        max_words words → drop words not in the table. Out-of-vocabulary
        words disappear without an error; the result may be empty.
        """
        words = sentence.split()[:max_words]
        tokens = [word for word in words if word in self]

        dropped = len(words) - len(tokens)
        if dropped:
            logger.info(
                f"Tokenizer dropped {dropped} out-of-vocabulary word(s) "
                f"from '{sentence}'"
            )
        return tokens
