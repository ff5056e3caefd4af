"""
Stepformer Vector Operations
==============================
The numeric primitives every stage is built from. All functions are pure:
they take 1-D (or, for mat_vec, 2-D) float64 tensors and return new ones.

Unlike the batched tensor code of a real model, every operation here acts
on a single token's vector, because the walkthrough shows one token at a
time. Shape contracts are checked explicitly and a violation raises
DimensionMismatch; nothing is silently broadcast, truncated or padded.

    add(a, b)          a + b                      element-wise
    dot(a, b)          Σ a[i]·b[i]
    mat_vec(W, v)      W @ v                      one dot product per row
    relu(v)            max(0, x)
    softmax(s)         exp(s - max) / Σ           -inf → exactly 0
    layer_norm(v)      (x - mean) / √(var + ε)    population variance
"""

from __future__ import annotations

from typing import Sequence, Union

import torch

from stepformer.errors import DimensionMismatch

DTYPE = torch.float64

VectorLike = Union[torch.Tensor, Sequence[float]]


def as_vector(values: VectorLike) -> torch.Tensor:
    """Convert a list or tensor into a 1-D float64 tensor."""
    vector = torch.as_tensor(values, dtype=DTYPE)
    if vector.dim() != 1:
        raise DimensionMismatch(
            f"Expected a 1-D vector, got shape {tuple(vector.shape)}"
        )
    return vector


def _check_same_length(a: torch.Tensor, b: torch.Tensor, op: str) -> None:
    if a.shape[0] != b.shape[0]:
        raise DimensionMismatch(
            f"{op}: vector lengths differ ({a.shape[0]} vs {b.shape[0]})"
        )


def add(a: VectorLike, b: VectorLike) -> torch.Tensor:
    a, b = as_vector(a), as_vector(b)
    _check_same_length(a, b, "add")
    return a + b


def dot(a: VectorLike, b: VectorLike) -> float:
    """Sum of element-wise products, as a Python float."""
    a, b = as_vector(a), as_vector(b)
    _check_same_length(a, b, "dot")
    return float(torch.dot(a, b))


def scale(v: VectorLike, factor: float) -> torch.Tensor:
    return as_vector(v) * factor


def mat_vec(matrix: torch.Tensor, v: VectorLike) -> torch.Tensor:
    """
    Multiply a (rows × cols) matrix by a length-cols vector.

    Raises
    ------
    DimensionMismatch
        If the matrix is not 2-D or its column count differs from len(v).
    """
    matrix = torch.as_tensor(matrix, dtype=DTYPE)
    v = as_vector(v)
    if matrix.dim() != 2:
        raise DimensionMismatch(
            f"mat_vec: expected a 2-D matrix, got shape {tuple(matrix.shape)}"
        )
    if matrix.shape[1] != v.shape[0]:
        raise DimensionMismatch(
            f"mat_vec: matrix has {matrix.shape[1]} columns but vector has "
            f"{v.shape[0]} components"
        )
    return torch.mv(matrix, v)


def relu(v: VectorLike) -> torch.Tensor:
    return torch.clamp(as_vector(v), min=0.0)


def softmax(scores: VectorLike) -> torch.Tensor:
    """
    Numerically stable softmax.

    The maximum is subtracted before exponentiating, so large scores cannot
    overflow. Entries equal to -inf (masked positions) become exactly 0.

    Raises
    ------
    ValueError
        If the input is empty or every entry is -inf.
    """
    scores = as_vector(scores)
    if scores.numel() == 0:
        raise ValueError("softmax of an empty vector is undefined")

    visible = scores != float("-inf")
    if not bool(visible.any()):
        raise ValueError("softmax: every entry is masked (-inf)")

    shifted = scores - scores.max()
    exps = torch.where(visible, torch.exp(shifted), torch.zeros_like(shifted))
    return exps / exps.sum()


def layer_norm(v: VectorLike, eps: float = 1e-5) -> torch.Tensor:
    """
    Normalize to zero mean and unit variance.

    Uses the population variance (divide by n). Epsilon keeps a constant
    vector from dividing by zero: it maps to all zeros.
    """
    v = as_vector(v)
    if v.numel() == 0:
        raise DimensionMismatch("layer_norm: empty vector")
    mean = v.mean()
    variance = ((v - mean) ** 2).mean()
    return (v - mean) / torch.sqrt(variance + eps)


def weighted_sum(weights: VectorLike, vectors: Sequence[torch.Tensor]) -> torch.Tensor:
    """
    Σ_j weights[j] · vectors[j].

    Raises
    ------
    DimensionMismatch
        If the number of weights differs from the number of vectors, or the
        vectors are not all the same length.
    """
    weights = as_vector(weights)
    if weights.shape[0] != len(vectors):
        raise DimensionMismatch(
            f"weighted_sum: {weights.shape[0]} weights for {len(vectors)} vectors"
        )
    if not vectors:
        raise DimensionMismatch("weighted_sum: no vectors to combine")
    rows = [as_vector(v) for v in vectors]
    if len({row.shape[0] for row in rows}) != 1:
        raise DimensionMismatch("weighted_sum: vectors differ in length")
    stacked = torch.stack(rows)
    return weights @ stacked
