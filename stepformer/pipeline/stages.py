"""
Stepformer Pipeline Stages
============================
The closed, ordered list of steps the walkthrough moves through.

    Encoder phase (6):
        tokenizing → embedding → positional → attention → addnorm → feedforward
    Decoder phase (10):
        decoder_start → decoder_embedding → decoder_positional →
        decoder_masked_attention → decoder_addnorm1 →
        decoder_cross_attention → decoder_addnorm2 → decoder_ffn →
        output_projection → translation_complete

``IDLE`` is a sentinel before the first stage; it is not part of the order
and never appears in the completed list.

Every stage declares the named outputs it produces (STAGE_OUTPUTS). A
stage counts as ready to leave once all of its outputs are stored.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class Phase(str, Enum):
    IDLE = "idle"
    ENCODER = "encoder"
    DECODER = "decoder"


class Stage(str, Enum):
    IDLE = "idle"

    # Encoder
    TOKENIZING = "tokenizing"
    EMBEDDING = "embedding"
    POSITIONAL = "positional"
    ATTENTION = "attention"
    ADDNORM = "addnorm"
    FEEDFORWARD = "feedforward"

    # Decoder
    DECODER_START = "decoder_start"
    DECODER_EMBEDDING = "decoder_embedding"
    DECODER_POSITIONAL = "decoder_positional"
    DECODER_MASKED_ATTENTION = "decoder_masked_attention"
    DECODER_ADDNORM1 = "decoder_addnorm1"
    DECODER_CROSS_ATTENTION = "decoder_cross_attention"
    DECODER_ADDNORM2 = "decoder_addnorm2"
    DECODER_FFN = "decoder_ffn"
    OUTPUT_PROJECTION = "output_projection"
    TRANSLATION_COMPLETE = "translation_complete"

    @property
    def position(self) -> int:
        """Position in STAGE_ORDER; -1 for IDLE."""
        if self is Stage.IDLE:
            return -1
        return STAGE_ORDER.index(self)

    @property
    def phase(self) -> Phase:
        if self is Stage.IDLE:
            return Phase.IDLE
        if self.position < N_ENCODER_STAGES:
            return Phase.ENCODER
        return Phase.DECODER

    @property
    def is_terminal(self) -> bool:
        return self is Stage.TRANSLATION_COMPLETE

    @property
    def outputs(self) -> tuple[str, ...]:
        return STAGE_OUTPUTS[self]

    def next(self) -> Optional[Stage]:
        """The following stage, or None at the terminal stage."""
        if self.is_terminal:
            return None
        return STAGE_ORDER[self.position + 1]

    def previous(self) -> Optional[Stage]:
        """The preceding stage, or None for IDLE and the first stage."""
        if self.position <= 0:
            return None
        return STAGE_ORDER[self.position - 1]

    def prefix(self) -> tuple[Stage, ...]:
        """All stages strictly before this one."""
        if self is Stage.IDLE:
            return ()
        return STAGE_ORDER[: self.position]

    @classmethod
    def parse(cls, value: str | Stage) -> Stage:
        """
        Look up a stage by its identifier.

        Raises
        ------
        ValueError
            For anything outside the enumeration.
        """
        if isinstance(value, Stage):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(stage.value for stage in STAGE_ORDER)
            raise ValueError(f"Unknown stage '{value}'. Valid stages: {valid}") from None


STAGE_ORDER: tuple[Stage, ...] = tuple(stage for stage in Stage if stage is not Stage.IDLE)

N_ENCODER_STAGES = 6
ENCODER_STAGES = STAGE_ORDER[:N_ENCODER_STAGES]
DECODER_STAGES = STAGE_ORDER[N_ENCODER_STAGES:]

# Named data products each stage stores
STAGE_OUTPUTS: dict[Stage, tuple[str, ...]] = {
    Stage.IDLE: (),
    Stage.TOKENIZING: ("tokens",),
    Stage.EMBEDDING: ("embeddings",),
    Stage.POSITIONAL: ("position_encodings", "encoder_inputs"),
    Stage.ATTENTION: ("attention", "attention_outputs", "attention_weight_set"),
    Stage.ADDNORM: ("addnorm_outputs",),
    Stage.FEEDFORWARD: ("ffn_hidden", "ffn_outputs", "encoder_outputs", "ffn_weight_set"),
    Stage.DECODER_START: ("decoder_mode",),
    Stage.DECODER_EMBEDDING: ("decoder_tokens", "decoder_embeddings"),
    Stage.DECODER_POSITIONAL: ("decoder_position_encodings", "decoder_inputs"),
    Stage.DECODER_MASKED_ATTENTION: (
        "masked_attention",
        "masked_attention_outputs",
        "masked_attention_weight_set",
    ),
    Stage.DECODER_ADDNORM1: ("decoder_addnorm1_outputs",),
    Stage.DECODER_CROSS_ATTENTION: (
        "cross_attention",
        "cross_attention_outputs",
        "cross_attention_weight_set",
    ),
    Stage.DECODER_ADDNORM2: ("decoder_addnorm2_outputs",),
    Stage.DECODER_FFN: (
        "decoder_ffn_hidden",
        "decoder_ffn_outputs",
        "decoder_outputs",
        "decoder_ffn_weight_set",
    ),
    Stage.OUTPUT_PROJECTION: (
        "vocabulary",
        "projections",
        "logits",
        "probabilities",
        "predicted_tokens",
        "projection_weight_set",
    ),
    Stage.TRANSLATION_COMPLETE: (
        "translation",
        "reference_translation",
        "translation_matches",
        "accuracy",
    ),
}

# Output name → the stage that owns it
OUTPUT_OWNERS: dict[str, Stage] = {
    name: stage for stage, names in STAGE_OUTPUTS.items() for name in names
}

# Outputs that may legitimately be empty once computed (e.g. every
# predicted word was a special token)
MAY_BE_EMPTY = frozenset({"translation"})
