"""
Stepformer Attention Engine
=============================
Scaled dot-product attention, computed one query position at a time so
every intermediate number can be inspected.

One engine covers all three uses in the walkthrough:

    Encoder self-attention        Q, K, V from the encoder inputs
    Decoder masked self-attention Q, K, V from the decoder inputs, causal
    Decoder cross-attention       Q from the decoder, K and V from the
                                  encoder outputs

Per query position i:

    scores[j]  = Q[i] · K[j]
    scaled[j]  = scores[j] / √d_k            d_k = d_model / n_heads
    masked[j]  = -inf for j > i              (causal only)
    weights    = softmax(masked or scaled)
    output[i]  = Σ_j weights[j] · V[j]

Multi-head attention is represented only by the d_k scale: one combined
pass over full-width Q/K/V stands in for all heads. Vectors are not split
into per-head slices.

Usage:
    >>> engine = AttentionEngine(WeightProvider(seed=0), d_model=6, n_heads=2)
    >>> result = engine.self_attention(inputs)
    >>> result.outputs[0].shape
    torch.Size([6])
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import torch

from stepformer.errors import DimensionMismatch, StageNotReady
from stepformer.model import vector_ops as ops
from stepformer.model.weights import WeightProvider, WeightSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttentionResult:
    """
    Everything computed for one query position.

    Attributes
    ----------
    position : int
        Index of the query token.
    query : torch.Tensor
        Q[i], shape (d_model,).
    raw_scores : torch.Tensor
        Q[i]·K[j] for every key j, shape (n_keys,).
    scaled_scores : torch.Tensor
        raw_scores / √d_k.
    masked_scores : torch.Tensor or None
        scaled_scores with future positions set to -inf; None when the
        pass was not causal.
    weights : torch.Tensor
        Softmax of the (masked) scaled scores; sums to 1.
    output : torch.Tensor
        Weighted sum of the value vectors, shape (d_model,).
    """
    position: int
    query: torch.Tensor
    raw_scores: torch.Tensor
    scaled_scores: torch.Tensor
    masked_scores: Optional[torch.Tensor]
    weights: torch.Tensor
    output: torch.Tensor


@dataclass(frozen=True)
class AttentionPass:
    """
    One full attention invocation: projections plus per-position results.
    """
    queries: tuple[torch.Tensor, ...]
    keys: tuple[torch.Tensor, ...]
    values: tuple[torch.Tensor, ...]
    results: tuple[AttentionResult, ...]
    weight_set: WeightSet
    d_k: int
    causal: bool

    @property
    def outputs(self) -> list[torch.Tensor]:
        return [result.output for result in self.results]

    @property
    def weight_matrix(self) -> torch.Tensor:
        """Attention weights stacked into (n_queries × n_keys)."""
        return torch.stack([result.weights for result in self.results])


class AttentionEngine:
    """
    Computes attention with a fresh weight draw per invocation.

    Parameters
    ----------
    weight_provider : WeightProvider
        Source of Wq, Wk, Wv.
    d_model : int
        Width of every input vector.
    n_heads : int
        Head count; only used to derive d_k. Must divide d_model.
    """

    def __init__(self, weight_provider: WeightProvider, d_model: int, n_heads: int):
        if d_model % n_heads != 0:
            raise DimensionMismatch(
                f"d_model ({d_model}) must be divisible by n_heads ({n_heads})"
            )
        self.weight_provider = weight_provider
        self.d_model = d_model
        self.n_heads = n_heads
        self.d_k = d_model // n_heads
        self.sqrt_dk = math.sqrt(self.d_k)

    def attend(
        self,
        query_inputs: list[torch.Tensor],
        kv_inputs: list[torch.Tensor],
        causal: bool = False,
        weights: Optional[WeightSet] = None,
    ) -> AttentionPass:
        """
        Run attention over a batch of query positions.

        Parameters
        ----------
        query_inputs : list[torch.Tensor]
            Vectors projected into queries.
        kv_inputs : list[torch.Tensor]
            Vectors projected into keys and values.
        causal : bool
            If True, position i may only attend to keys 0..i.
        weights : WeightSet or None
            Explicit Wq/Wk/Wv to use. None draws a fresh set, shared by
            every position of this call.

        Returns
        -------
        AttentionPass
            Projections and one AttentionResult per query position.

        Raises
        ------
        StageNotReady
            If either input list is empty.
        DimensionMismatch
            If any vector has the wrong width, or a causal pass has more
            queries than keys.
        """
        if not query_inputs or not kv_inputs:
            raise StageNotReady(
                f"Attention needs queries and keys/values, got "
                f"{len(query_inputs)} query and {len(kv_inputs)} key/value vectors"
            )
        if causal and len(query_inputs) > len(kv_inputs):
            raise DimensionMismatch(
                f"Causal attention needs at least as many keys as queries "
                f"({len(query_inputs)} queries, {len(kv_inputs)} keys)"
            )

        if weights is None:
            weights = self.weight_provider.attention_weights(self.d_model)

        # Same matrices for every token of this pass
        queries = tuple(ops.mat_vec(weights["wq"], v) for v in query_inputs)
        keys = tuple(ops.mat_vec(weights["wk"], v) for v in kv_inputs)
        values = tuple(ops.mat_vec(weights["wv"], v) for v in kv_inputs)

        results = tuple(
            self._attend_position(i, q, keys, values, causal)
            for i, q in enumerate(queries)
        )

        logger.debug(
            f"Attention pass: {len(queries)} queries × {len(keys)} keys, "
            f"d_k={self.d_k}, causal={causal}"
        )

        return AttentionPass(
            queries=queries,
            keys=keys,
            values=values,
            results=results,
            weight_set=weights,
            d_k=self.d_k,
            causal=causal,
        )

    def _attend_position(
        self,
        position: int,
        query: torch.Tensor,
        keys: tuple[torch.Tensor, ...],
        values: tuple[torch.Tensor, ...],
        causal: bool,
    ) -> AttentionResult:
        raw = torch.tensor([ops.dot(query, key) for key in keys], dtype=ops.DTYPE)
        scaled = ops.scale(raw, 1.0 / self.sqrt_dk)

        masked = None
        if causal:
            masked = scaled.clone()
            masked[position + 1:] = float("-inf")

        weights = ops.softmax(masked if causal else scaled)
        output = ops.weighted_sum(weights, list(values))

        return AttentionResult(
            position=position,
            query=query,
            raw_scores=raw,
            scaled_scores=scaled,
            masked_scores=masked,
            weights=weights,
            output=output,
        )

    def self_attention(
        self,
        inputs: list[torch.Tensor],
        causal: bool = False,
        weights: Optional[WeightSet] = None,
    ) -> AttentionPass:
        """Q, K and V all come from the same vectors."""
        return self.attend(inputs, inputs, causal=causal, weights=weights)

    def cross_attention(
        self,
        decoder_states: list[torch.Tensor],
        encoder_outputs: list[torch.Tensor],
        weights: Optional[WeightSet] = None,
    ) -> AttentionPass:
        """Queries from the decoder, keys/values from the encoder; never causal."""
        return self.attend(decoder_states, encoder_outputs, causal=False, weights=weights)
