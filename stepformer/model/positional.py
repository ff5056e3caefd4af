"""
Stepformer Positional Encoding
================================
Fixed sinusoidal position vectors, added to each token's embedding so that
attention can tell "We are best" from "best are We".

For position p and component i of a d_model-wide vector:

    i even:  sin(p / 10000^(i / d_model))
    i odd:   cos(p / 10000^((i - 1) / d_model))

so components 2k and 2k+1 share the frequency 10000^(-2k / d_model). The
whole vector is then multiplied by a scale (0.5 by default) to keep it from
swamping the small embedding values.
"""

from __future__ import annotations

import math

import torch

DTYPE = torch.float64


class SinusoidalPositionalEncoding:
    """
    Pure function of (position, d_model); holds only the scale.

    Parameters
    ----------
    scale : float
        Factor applied to every encoding.
    """

    def __init__(self, scale: float = 0.5):
        self.scale = scale

    def encode(self, position: int, d_model: int) -> torch.Tensor:
        """
        Position vector for one index.

        Parameters
        ----------
        position : int
            Zero-based token position.
        d_model : int
            Vector length; expected to be even.

        Returns
        -------
        torch.Tensor
            Shape (d_model,), float64.
        """
        if position < 0:
            raise ValueError(f"position must be >= 0, got {position}")
        if d_model <= 0:
            raise ValueError(f"d_model must be positive, got {d_model}")

        values = []
        for i in range(d_model):
            pair_start = i - (i % 2)
            angle = position / math.pow(10000.0, pair_start / d_model)
            values.append(math.sin(angle) if i % 2 == 0 else math.cos(angle))
        return torch.tensor(values, dtype=DTYPE) * self.scale

    def encode_sequence(self, length: int, d_model: int) -> list[torch.Tensor]:
        """Encodings for positions 0 .. length-1."""
        return [self.encode(position, d_model) for position in range(length)]
