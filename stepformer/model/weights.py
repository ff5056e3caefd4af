"""
Stepformer Weight Provider
===========================
Random weight matrices for an untrained network.

Nothing in this package is learned. Every stage that needs a projection
asks the WeightProvider for a fresh draw, packages the matrices it got into
an explicit WeightSet, and reuses that one WeightSet for every token of the
stage. That is what keeps Q/K/V consistent across tokens within a stage,
while a different stage (or a re-run) sees entirely different numbers.

The WeightSet is stored next to the stage output, so a learner can see
exactly which random matrices produced the numbers on screen.

Usage:
    >>> provider = WeightProvider(seed=42)
    >>> w = provider.generate(4, 6)           # 4 × 6, uniform in [-0.5, 0.5)
    >>> attn = provider.attention_weights(6)  # WeightSet(wq, wk, wv)
    >>> attn["wq"].shape
    torch.Size([6, 6])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

import torch

logger = logging.getLogger(__name__)

DTYPE = torch.float64


@dataclass(frozen=True)
class WeightSet:
    """
    Named matrices drawn for one stage invocation.

    Parameters
    ----------
    name : str
        What the set is for ("attention", "feed_forward", "projection").
    matrices : Mapping[str, torch.Tensor]
        Matrix name → (out_dim × in_dim) tensor. Frozen after creation.
    """
    name: str
    matrices: Mapping[str, torch.Tensor] = field(default_factory=dict)

    def __post_init__(self):
        # Clone so later in-place edits by a caller cannot leak in
        frozen = {key: value.detach().clone() for key, value in self.matrices.items()}
        object.__setattr__(self, "matrices", MappingProxyType(frozen))

    def __getitem__(self, key: str) -> torch.Tensor:
        return self.matrices[key]

    def __contains__(self, key: str) -> bool:
        return key in self.matrices

    def shapes(self) -> dict[str, tuple[int, ...]]:
        return {key: tuple(value.shape) for key, value in self.matrices.items()}


class WeightProvider:
    """
    Source of uniformly distributed weight matrices.

    Parameters
    ----------
    seed : int or None
        Seed for the underlying torch.Generator. None seeds from OS
        entropy, so every run differs.
    weight_range : float
        Values are drawn from [-weight_range, weight_range).
    """

    def __init__(self, seed: Optional[int] = None, weight_range: float = 0.5):
        if weight_range <= 0:
            raise ValueError(f"weight_range must be positive, got {weight_range}")

        self.weight_range = weight_range
        self.seed = seed
        self.generator = torch.Generator()
        if seed is None:
            self.generator.seed()
        else:
            self.generator.manual_seed(seed)
        self.n_draws = 0

    def generate(self, out_dim: int, in_dim: int) -> torch.Tensor:
        """
        Draw a fresh (out_dim × in_dim) matrix.

        Every call returns new values; there is no caching.
        """
        if out_dim <= 0 or in_dim <= 0:
            raise ValueError(
                f"Matrix dimensions must be positive, got ({out_dim}, {in_dim})"
            )
        uniform = torch.rand(out_dim, in_dim, generator=self.generator, dtype=DTYPE)
        self.n_draws += 1
        return (uniform - 0.5) * (2 * self.weight_range)

    def attention_weights(self, d_model: int) -> WeightSet:
        """Wq, Wk, Wv, each d_model × d_model."""
        return WeightSet(
            name="attention",
            matrices={
                "wq": self.generate(d_model, d_model),
                "wk": self.generate(d_model, d_model),
                "wv": self.generate(d_model, d_model),
            },
        )

    def feed_forward_weights(self, d_model: int, d_ff: int) -> WeightSet:
        """W1 (d_ff × d_model) expands, W2 (d_model × d_ff) contracts."""
        return WeightSet(
            name="feed_forward",
            matrices={
                "w1": self.generate(d_ff, d_model),
                "w2": self.generate(d_model, d_ff),
            },
        )

    def projection_weights(self, vocab_size: int, d_model: int) -> WeightSet:
        """W_out (vocab_size × d_model)."""
        return WeightSet(
            name="projection",
            matrices={"w_out": self.generate(vocab_size, d_model)},
        )
