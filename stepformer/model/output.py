"""
Stepformer Output Projection
==============================
Turns each final decoder vector into a probability distribution over a
small target vocabulary and picks the most likely word.

    logits = W_out · h          W_out: (V × d_model)
    probs  = softmax(logits)
    word   = vocabulary[argmax(probs)]     ties → lowest index

The vocabulary is built per run:
    [<START>, <END>, <PAD>]
    + target translations of the source tokens (first occurrence kept)
    + target forms of a fixed list of function words
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import torch

from stepformer.data.translation import SPECIAL_TOKENS, function_words, translate_sentence
from stepformer.errors import DimensionMismatch, StageNotReady
from stepformer.model import vector_ops as ops
from stepformer.model.weights import WeightProvider, WeightSet

logger = logging.getLogger(__name__)


def build_vocabulary(source_tokens: list[str], language: str) -> list[str]:
    """
    Output vocabulary for one run, without duplicates, in a fixed order.
    """
    vocabulary: dict[str, None] = {}
    for word in list(SPECIAL_TOKENS) + translate_sentence(source_tokens, language):
        vocabulary.setdefault(word, None)
    for word in function_words(language):
        vocabulary.setdefault(word, None)
    return list(vocabulary)


@dataclass(frozen=True)
class ProjectionResult:
    """Projection of one decoder position."""
    logits: torch.Tensor
    probabilities: torch.Tensor
    predicted_index: int
    predicted_token: str


class OutputProjector:
    """
    Linear projection to vocabulary logits, softmax and argmax.

    Parameters
    ----------
    weight_provider : WeightProvider
        Source of W_out when none is passed explicitly.
    vocabulary : list[str]
        Output words; row r of W_out scores vocabulary[r].
    d_model : int
        Width of the decoder vectors.
    """

    def __init__(self, weight_provider: WeightProvider, vocabulary: list[str], d_model: int):
        if not vocabulary:
            raise ValueError("Output vocabulary must not be empty")
        self.weight_provider = weight_provider
        self.vocabulary = list(vocabulary)
        self.d_model = d_model

    @property
    def vocab_size(self) -> int:
        return len(self.vocabulary)

    def project(self, decoder_output: torch.Tensor, w_out: torch.Tensor) -> ProjectionResult:
        """
        Score every vocabulary word for one decoder vector.

        Raises
        ------
        DimensionMismatch
            If W_out does not have one row per vocabulary word, or its
            width differs from the vector's.
        """
        if w_out.shape[0] != self.vocab_size:
            raise DimensionMismatch(
                f"W_out has {w_out.shape[0]} rows for a vocabulary of "
                f"{self.vocab_size} words"
            )
        logits = ops.mat_vec(w_out, decoder_output)
        probabilities = ops.softmax(logits)

        # First index holding the maximum, so ties resolve deterministically
        best = int(torch.nonzero(probabilities == probabilities.max())[0])

        return ProjectionResult(
            logits=logits,
            probabilities=probabilities,
            predicted_index=best,
            predicted_token=self.vocabulary[best],
        )

    def project_all(
        self,
        decoder_outputs: list[torch.Tensor],
        weights: Optional[WeightSet] = None,
    ) -> tuple[list[ProjectionResult], WeightSet]:
        """
        Project every decoder position with one shared W_out.

        Raises
        ------
        StageNotReady
            If there are no decoder vectors.
        """
        if not decoder_outputs:
            raise StageNotReady("Output projection received no decoder vectors")

        if weights is None:
            weights = self.weight_provider.projection_weights(self.vocab_size, self.d_model)

        results = [self.project(h, weights["w_out"]) for h in decoder_outputs]

        logger.debug(
            f"Projected {len(results)} positions onto {self.vocab_size} words: "
            f"{[r.predicted_token for r in results]}"
        )
        return results, weights
