"""
Stepformer Translation Tables
===============================
Word-level English → target-language lookup used to build the decoder's
input sequence and the output vocabulary.

The tables live in ``translations.yaml`` next to this module and are loaded
once per process. Translation here is a plain dictionary lookup; nothing is
learned. The model only ever *sees* these words as rows of the embedding
and projection tables.

Usage:
    >>> translate_sentence(["We", "are", "best"], "french")
    ['nous', 'sommes', 'meilleurs']
    >>> decoder_input_tokens(["We", "are", "best"], "french")
    ['<START>', 'nous', 'sommes', 'meilleurs']
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

TABLES_PATH = Path(__file__).with_name("translations.yaml")

# Special token constants, shared by the decoder and the output projector
START_TOKEN = "<START>"
END_TOKEN = "<END>"
PAD_TOKEN = "<PAD>"

SPECIAL_TOKENS = [START_TOKEN, END_TOKEN, PAD_TOKEN]

# English words whose translations pad out the output vocabulary so the
# projector has plausible distractors to choose from.
FUNCTION_WORDS = ["the", "a", "is", "are", "i", "you", "he", "she", "we", "they", "it"]


@lru_cache(maxsize=1)
def load_tables() -> dict:
    """
    Read the translation tables from disk.

    Returns
    -------
    dict
        {"languages": {code: {"name", "native_name"}},
         "translations": {code: {english: target}}}
    """
    with open(TABLES_PATH, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    languages = raw["languages"]
    translations = raw["translations"]
    missing = set(languages) ^ set(translations)
    if missing:
        raise ValueError(
            f"translations.yaml is inconsistent; languages without a "
            f"matching table: {sorted(missing)}"
        )

    logger.debug(
        f"Loaded translation tables for {len(translations)} languages "
        f"from {TABLES_PATH.name}"
    )
    return {"languages": languages, "translations": translations}


def get_supported_languages() -> list[str]:
    """Language codes in table order."""
    return list(load_tables()["languages"])


def get_language_info(language: str) -> dict:
    """Display name and native name for a language code."""
    return load_tables()["languages"].get(
        language, {"name": language, "native_name": language}
    )


def get_dictionary(language: str) -> dict[str, str]:
    """
    The full English → target mapping for one language.

    Raises
    ------
    KeyError
        If the language has no table.
    """
    translations = load_tables()["translations"]
    if language not in translations:
        raise KeyError(
            f"Language '{language}' is not supported. "
            f"Choose from: {', '.join(translations)}"
        )
    return translations[language]


def source_words() -> list[str]:
    """Every English word that has a translation (lowercase, table order)."""
    seen: dict[str, None] = {}
    for table in load_tables()["translations"].values():
        for word in table:
            seen.setdefault(word, None)
    return list(seen)


def translate_word(word: str, language: str) -> str:
    """
    Translate a single word; unknown words pass through unchanged.
    """
    return get_dictionary(language).get(word.lower(), word)


def translate_sentence(tokens: list[str], language: str) -> list[str]:
    return [translate_word(token, language) for token in tokens]


def decoder_input_tokens(tokens: list[str], language: str) -> list[str]:
    """
    Decoder input: <START> followed by the reference translation.

    The same sequence is used in both decoder modes (teacher forcing and
    autoregressive); the mode is informational only.
    """
    return [START_TOKEN] + translate_sentence(tokens, language)


def decoder_output_tokens(tokens: list[str], language: str) -> list[str]:
    """Expected decoder output: the reference translation followed by <END>."""
    return translate_sentence(tokens, language) + [END_TOKEN]


def function_words(language: str) -> list[str]:
    """Target-language forms of FUNCTION_WORDS, duplicates removed."""
    dictionary = get_dictionary(language)
    words: dict[str, None] = {}
    for english in FUNCTION_WORDS:
        if english in dictionary:
            words.setdefault(dictionary[english], None)
    return list(words)


def is_special_token(token: str) -> bool:
    return token in SPECIAL_TOKENS


def score_translation(
    predicted: list[str], reference: list[str],
) -> tuple[tuple[bool, ...], float]:
    """
    Compare a predicted translation to the reference word by word.

    Position ``i`` matches when ``predicted[i] == reference[i]``. Reference
    positions with no predicted word count as mismatches, and extra
    predicted words are ignored.

    Returns
    -------
    matches : tuple[bool, ...]
        One flag per reference position.
    accuracy : float
        Percentage of reference positions matched (0.0 for an empty
        reference).
    """
    matches = tuple(
        idx < len(predicted) and predicted[idx] == expected
        for idx, expected in enumerate(reference)
    )
    if not reference:
        return matches, 0.0
    return matches, sum(matches) / len(reference) * 100.0
