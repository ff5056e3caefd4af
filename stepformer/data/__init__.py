"""
stepformer.data — Vocabulary and Translation
=============================================
The fixed lookup tables the walkthrough runs on:

    1. **Translations** (`translation.py`, `translations.yaml`):
       Word-level English → target dictionaries for seven languages, plus
       the special tokens <START>, <END> and <PAD>.

    2. **Vocabulary** (`vocabulary.py`):
       Deterministic embedding vectors for every known word and the
       tokenizer that drops words it does not know.

Information Flow:
    Sentence
        → tokenize (split, truncate, drop unknown words)
        → embed (fixed vector per token)
        → translate (reference words for the decoder)
"""

from stepformer.data.translation import (
    END_TOKEN,
    PAD_TOKEN,
    SPECIAL_TOKENS,
    START_TOKEN,
    get_supported_languages,
    score_translation,
    translate_sentence,
)
from stepformer.data.vocabulary import EmbeddingTable
