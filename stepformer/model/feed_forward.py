"""
Stepformer Feed-Forward Block
===============================
The position-wise feed-forward sublayer and the Add & Norm wrapper that
follows every sublayer.

Architecture (per token, post-norm as in the original Transformer):
    Input (d_model)
      → W1 (d_model → d_ff)      "Expand"
      → ReLU                      "Non-linear transformation"
      → W2 (d_ff → d_model)      "Contract"
      + Residual (input)          "Skip connection"
      → LayerNorm
    Output (d_model)

d_ff = 4 × d_model by convention. W1 and W2 are drawn once per stage and
reused for every token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import torch

from stepformer.errors import StageNotReady
from stepformer.model import vector_ops as ops
from stepformer.model.weights import WeightProvider, WeightSet

logger = logging.getLogger(__name__)


def add_norm(original: torch.Tensor, delta: torch.Tensor, eps: float = 1e-5) -> torch.Tensor:
    """
    Residual addition followed by layer normalization.

    ``original`` is the sublayer's input and ``delta`` its output.
    """
    return ops.layer_norm(ops.add(original, delta), eps=eps)


@dataclass(frozen=True)
class FeedForwardResult:
    """Intermediate values for one token."""
    hidden: torch.Tensor       # relu(W1 x), shape (d_ff,)
    output: torch.Tensor       # W2 hidden, shape (d_model,)
    normalized: torch.Tensor   # add_norm(x, output), shape (d_model,)


class FeedForwardBlock:
    """
    Two-layer expand-then-contract transform with Add & Norm.

    Parameters
    ----------
    weight_provider : WeightProvider
        Source of W1/W2 when none are passed explicitly.
    d_model : int
        Token vector width.
    d_ff : int
        Hidden width; usually 4 × d_model.
    eps : float
        Layer-norm epsilon.
    """

    def __init__(
        self,
        weight_provider: WeightProvider,
        d_model: int,
        d_ff: int,
        eps: float = 1e-5,
    ):
        self.weight_provider = weight_provider
        self.d_model = d_model
        self.d_ff = d_ff
        self.eps = eps

    @staticmethod
    def forward(x: torch.Tensor, w1: torch.Tensor, w2: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """
        hidden = relu(W1 x); output = W2 hidden.

        Returns
        -------
        (hidden, output)
        """
        hidden = ops.relu(ops.mat_vec(w1, x))
        output = ops.mat_vec(w2, hidden)
        return hidden, output

    def apply(
        self,
        inputs: list[torch.Tensor],
        weights: Optional[WeightSet] = None,
    ) -> tuple[list[FeedForwardResult], WeightSet]:
        """
        Run every token through the block with one shared weight draw.

        Raises
        ------
        StageNotReady
            If there are no input vectors.
        """
        if not inputs:
            raise StageNotReady("Feed-forward block received no input vectors")

        if weights is None:
            weights = self.weight_provider.feed_forward_weights(self.d_model, self.d_ff)

        results = []
        for x in inputs:
            hidden, output = self.forward(x, weights["w1"], weights["w2"])
            results.append(
                FeedForwardResult(
                    hidden=hidden,
                    output=output,
                    normalized=add_norm(x, output, eps=self.eps),
                )
            )

        logger.debug(
            f"Feed-forward: {len(inputs)} tokens, {self.d_model} → {self.d_ff} → {self.d_model}"
        )
        return results, weights
