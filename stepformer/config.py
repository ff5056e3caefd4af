"""
Stepformer Configuration System
=================================
Centralized configuration for the walkthrough using Python dataclasses.
Every dimension, numeric constant and per-run input lives here.

Two groups of settings:
    - ModelConfig: the shape of the (untrained) network and the numeric
      constants used by every stage (d_model, n_heads, epsilon, ...).
    - RunConfig: what the learner submitted (sentence, target language,
      decoder mode).

Usage:
    # Load from YAML file:
    >>> config = StepformerConfig.from_yaml("configs/default.yaml")

    # Create programmatically:
    >>> config = StepformerConfig(
    ...     model=ModelConfig(d_model=6, n_heads=2),
    ...     run=RunConfig(sentence="We are best", target_language="french"),
    ... )

    # Save to YAML:
    >>> config.to_yaml("configs/my_run.yaml")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional

import yaml

from stepformer.errors import InvalidConfiguration
from stepformer.data.translation import get_supported_languages

logger = logging.getLogger(__name__)

# Head counts the walkthrough offers; each must also divide d_model.
ALLOWED_HEAD_COUNTS = (1, 2, 3, 4, 6)
MIN_D_MODEL = 2
MAX_D_MODEL = 12

DECODER_MODES = ("teacher_forcing", "autoregressive")


# =============================================================================
# Model Configuration
# =============================================================================

@dataclass
class ModelConfig:
    """
    Architecture and numeric constants of the simulated network.

    Parameters
    ----------
    d_model : int
        Dimension of every embedding and hidden vector. Kept tiny (2-12)
        so that each number can be shown to the learner.
        Must be even so sin/cos positional pairs line up.

    n_heads : int
        Number of attention heads. Only used to derive the score scale
        d_k = d_model / n_heads; heads are not sliced.

    d_ff_multiplier : int
        Feed-forward hidden size as a multiple of d_model (d_ff = 4 × d_model
        by convention).

    layer_norm_eps : float
        Epsilon added to the variance in layer normalization.

    positional_scale : float
        Factor applied to every sinusoidal position vector before it is
        added to the embedding.

    weight_range : float
        Half-width of the uniform weight distribution: values are drawn
        from [-weight_range, weight_range).

    seed : int or None
        Seed for the weight generator. None draws fresh entropy per run,
        which is the "untrained network" behavior; an int makes the whole
        run reproducible.
    """
    d_model: int = 6
    n_heads: int = 2
    d_ff_multiplier: int = 4
    layer_norm_eps: float = 1e-5
    positional_scale: float = 0.5
    weight_range: float = 0.5
    seed: Optional[int] = None

    def validate(self) -> None:
        """
        Check that all model parameters are valid and consistent.

        Raises
        ------
        InvalidConfiguration
            If any parameter is invalid or inconsistent with others.
        """
        if not MIN_D_MODEL <= self.d_model <= MAX_D_MODEL:
            raise InvalidConfiguration(
                f"d_model must be in [{MIN_D_MODEL}, {MAX_D_MODEL}], "
                f"got {self.d_model}"
            )
        if self.d_model % 2 != 0:
            raise InvalidConfiguration(
                f"d_model must be even so positional sin/cos pairs line up, "
                f"got {self.d_model}"
            )
        if self.n_heads not in ALLOWED_HEAD_COUNTS:
            raise InvalidConfiguration(
                f"n_heads must be one of {ALLOWED_HEAD_COUNTS}, "
                f"got {self.n_heads}"
            )
        if self.d_model % self.n_heads != 0:
            raise InvalidConfiguration(
                f"d_model ({self.d_model}) must be divisible by n_heads "
                f"({self.n_heads}). Each head gets d_model/n_heads = "
                f"{self.d_model / self.n_heads:.1f} dimensions, which "
                f"must be an integer."
            )
        if self.d_ff_multiplier < 1:
            raise InvalidConfiguration(
                f"d_ff_multiplier must be >= 1, got {self.d_ff_multiplier}"
            )
        if self.layer_norm_eps <= 0:
            raise InvalidConfiguration(
                f"layer_norm_eps must be positive, got {self.layer_norm_eps}"
            )
        if self.weight_range <= 0:
            raise InvalidConfiguration(
                f"weight_range must be positive, got {self.weight_range}"
            )

    @property
    def head_dim(self) -> int:
        """Dimension per attention head (d_model / n_heads)."""
        return self.d_model // self.n_heads

    @property
    def d_ff(self) -> int:
        """Hidden size of the feed-forward block."""
        return self.d_ff_multiplier * self.d_model


# =============================================================================
# Run Configuration
# =============================================================================

@dataclass
class RunConfig:
    """
    What the learner submitted for one walkthrough.

    Parameters
    ----------
    sentence : str
        English source sentence. Words missing from the vocabulary are
        dropped during tokenization.

    target_language : str
        Key into the translation tables (e.g. "french").

    max_words : int
        Longest sentence accepted. Longer input is rejected at submission.

    decoder_mode : str
        "teacher_forcing" or "autoregressive". Informational only: the
        decoder always sees <START> followed by the reference translation.
    """
    sentence: str = "We are best"
    target_language: str = "french"
    max_words: int = 5
    decoder_mode: str = "teacher_forcing"

    @property
    def word_count(self) -> int:
        return len(self.sentence.split())

    def validate(self) -> None:
        """Validate run inputs."""
        if not self.sentence or not self.sentence.strip():
            raise InvalidConfiguration("sentence must not be empty")
        if self.max_words < 1:
            raise InvalidConfiguration(
                f"max_words must be >= 1, got {self.max_words}"
            )
        if self.word_count > self.max_words:
            raise InvalidConfiguration(
                f"sentence has {self.word_count} words; the walkthrough "
                f"accepts at most {self.max_words}"
            )
        languages = get_supported_languages()
        if self.target_language not in languages:
            raise InvalidConfiguration(
                f"Unknown target_language: '{self.target_language}'. "
                f"Choose from: {', '.join(languages)}"
            )
        if self.decoder_mode not in DECODER_MODES:
            raise InvalidConfiguration(
                f"Unknown decoder_mode: '{self.decoder_mode}'. "
                f"Choose from: {', '.join(DECODER_MODES)}"
            )


# =============================================================================
# Master Configuration
# =============================================================================

@dataclass
class StepformerConfig:
    """
    Master configuration combining model and run settings.

    This is what ``PipelineController.submit`` accepts. Any change to it
    (new sentence, dimension, head count or language) means a fresh run.
    """
    model: ModelConfig = field(default_factory=ModelConfig)
    run: RunConfig = field(default_factory=RunConfig)

    def validate(self) -> None:
        """
        Validate both sub-configurations.

        Raises
        ------
        InvalidConfiguration
            If any parameter is invalid.
        """
        self.model.validate()
        self.run.validate()

        logger.info(
            f"Config validated: d_model={self.model.d_model}, "
            f"n_heads={self.model.n_heads}, "
            f"language={self.run.target_language}"
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> StepformerConfig:
        """
        Load configuration from a YAML file.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        StepformerConfig
            Loaded and validated configuration.

        Raises
        ------
        FileNotFoundError
            If the YAML file does not exist.
        InvalidConfiguration
            If the file is empty or its values are inconsistent.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(
                f"Config file not found: {path}. "
                f"Create one from configs/default.yaml as a template."
            )

        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)

        if raw is None:
            raise InvalidConfiguration(f"Config file is empty: {path}")

        try:
            config = cls(
                model=ModelConfig(**raw.get("model", {})),
                run=RunConfig(**raw.get("run", {})),
            )
        except TypeError as exc:
            raise InvalidConfiguration(f"Bad config keys in {path}: {exc}") from exc

        config.validate()
        return config

    def to_yaml(self, path: str | Path) -> None:
        """
        Save configuration to a YAML file.

        Creates parent directories if they don't exist.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.to_dict(),
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

        logger.info(f"Config saved to {path}")

    def to_dict(self) -> dict:
        """Convert to nested dictionary."""
        return asdict(self)

    @classmethod
    def for_smoke_test(cls) -> StepformerConfig:
        """
        Create a small, reproducible configuration.

        Uses the classic "We are best" → French example with a fixed seed
        so two runs produce identical numbers.
        """
        return cls(
            model=ModelConfig(d_model=6, n_heads=2, seed=42),
            run=RunConfig(
                sentence="We are best",
                target_language="french",
                max_words=5,
                decoder_mode="teacher_forcing",
            ),
        )

    def __repr__(self) -> str:
        """Pretty-print the configuration."""
        lines = [
            "StepformerConfig(",
            f"  Dims:     d_model={self.model.d_model}, d_ff={self.model.d_ff}, "
            f"n_heads={self.model.n_heads} (d_k={self.model.head_dim})",
            f"  Weights:  uniform ±{self.model.weight_range}, "
            f"seed={self.model.seed}",
            f"  Input:    '{self.run.sentence}' → {self.run.target_language} "
            f"({self.run.decoder_mode})",
            ")",
        ]
        return "\n".join(lines)
