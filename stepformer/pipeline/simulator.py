"""
Stepformer Forward-Pass Simulator
===================================
One function per stage. Each reads the outputs earlier stages stored,
draws its own weights, and returns the named outputs for its stage:

    tokenizing                sentence     → tokens
    embedding                 tokens       → embeddings
    positional                embeddings   → embeddings + PE
    attention                 inputs       → self-attention
    addnorm                   inputs, attn → LayerNorm(x + attn)
    feedforward               addnorm      → FFN + Add & Norm = encoder outputs
    decoder_start             —            → decoder mode
    decoder_embedding         tokens       → <START> + translation, embedded
    decoder_positional        embeddings   → embeddings + PE
    decoder_masked_attention  inputs       → causal self-attention
    decoder_addnorm1          inputs, attn → LayerNorm(x + attn)
    decoder_cross_attention   addnorm1, encoder outputs → cross-attention
    decoder_addnorm2          addnorm1, attn → LayerNorm(x + attn)
    decoder_ffn               addnorm2     → FFN + Add & Norm = decoder outputs
    output_projection         decoder outputs → logits, softmax, argmax
    translation_complete      predictions  → words, special tokens removed,
                                             scored against the reference

The simulator never writes to the state; the controller records what it
returns.

Usage:
    >>> simulator = ForwardSimulator(StepformerConfig.for_smoke_test())
    >>> outputs = simulator.compute(Stage.EMBEDDING, state)
    >>> len(outputs["embeddings"])
    3
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import torch

from stepformer.config import StepformerConfig
from stepformer.data.translation import (
    decoder_input_tokens,
    is_special_token,
    score_translation,
    translate_sentence,
)
from stepformer.data.vocabulary import EmbeddingTable
from stepformer.errors import EmptyVocabularyResult, StageNotReady
from stepformer.model import vector_ops as ops
from stepformer.model.attention import AttentionEngine, AttentionPass
from stepformer.model.feed_forward import FeedForwardBlock, add_norm
from stepformer.model.output import OutputProjector, build_vocabulary
from stepformer.model.positional import SinusoidalPositionalEncoding
from stepformer.model.weights import WeightProvider
from stepformer.pipeline.stages import STAGE_ORDER, Stage
from stepformer.pipeline.state import PipelineState

logger = logging.getLogger(__name__)

StageOutputs = dict[str, Any]


class ForwardSimulator:
    """
    Stage-by-stage numeric forward pass for one run configuration.

    Parameters
    ----------
    config : StepformerConfig
        Validated configuration. Model sizes, the target language and the
        initial decoder mode are read from it.
    weight_provider : WeightProvider or None
        Source of every weight draw. Built from ``config.model.seed`` and
        ``config.model.weight_range`` if None.
    """

    def __init__(
        self,
        config: StepformerConfig,
        weight_provider: Optional[WeightProvider] = None,
    ):
        self.config = config
        model = config.model

        if weight_provider is None:
            weight_provider = WeightProvider(seed=model.seed, weight_range=model.weight_range)
        self.weight_provider = weight_provider

        self.d_model = model.d_model
        self.language = config.run.target_language
        self.decoder_mode = config.run.decoder_mode

        self.source_table = EmbeddingTable.for_source(self.d_model)
        self.target_table = EmbeddingTable.for_target(self.language, self.d_model)
        self.positional = SinusoidalPositionalEncoding(scale=model.positional_scale)
        self.attention = AttentionEngine(weight_provider, self.d_model, model.n_heads)
        self.ffn = FeedForwardBlock(
            weight_provider, self.d_model, model.d_ff, eps=model.layer_norm_eps,
        )

        self._handlers: dict[Stage, Callable[[PipelineState], StageOutputs]] = {
            Stage.TOKENIZING: self._tokenizing,
            Stage.EMBEDDING: self._embedding,
            Stage.POSITIONAL: self._positional,
            Stage.ATTENTION: self._attention,
            Stage.ADDNORM: self._addnorm,
            Stage.FEEDFORWARD: self._feedforward,
            Stage.DECODER_START: self._decoder_start,
            Stage.DECODER_EMBEDDING: self._decoder_embedding,
            Stage.DECODER_POSITIONAL: self._decoder_positional,
            Stage.DECODER_MASKED_ATTENTION: self._decoder_masked_attention,
            Stage.DECODER_ADDNORM1: self._decoder_addnorm1,
            Stage.DECODER_CROSS_ATTENTION: self._decoder_cross_attention,
            Stage.DECODER_ADDNORM2: self._decoder_addnorm2,
            Stage.DECODER_FFN: self._decoder_ffn,
            Stage.OUTPUT_PROJECTION: self._output_projection,
            Stage.TRANSLATION_COMPLETE: self._translation_complete,
        }
        missing = [stage.value for stage in STAGE_ORDER if stage not in self._handlers]
        if missing:
            raise RuntimeError(f"No computation registered for stages: {missing}")

    # =========================================================================
    # Entry points
    # =========================================================================

    def tokenize(self) -> list[str]:
        """
        Tokenize the configured sentence.

        Raises
        ------
        EmptyVocabularyResult
            If no word of the sentence is in the source vocabulary.
        """
        sentence = self.config.run.sentence
        tokens = self.source_table.tokenize(sentence, max_words=self.config.run.max_words)
        if not tokens:
            raise EmptyVocabularyResult(
                f"None of the words in '{sentence}' are in the vocabulary"
            )
        return tokens

    def compute(self, stage: Stage, state: PipelineState) -> StageOutputs:
        """
        Compute one stage's outputs from what ``state`` already holds.

        Raises
        ------
        StageNotReady
            If an output the stage reads has not been computed, or the
            stage is IDLE.
        """
        handler = self._handlers.get(stage)
        if handler is None:
            raise StageNotReady(f"Stage '{stage.value}' has no computation")

        outputs = handler(state)
        logger.debug(f"Computed '{stage.value}' → {sorted(outputs)}")
        return outputs

    def _require(self, state: PipelineState, *names: str) -> list[Any]:
        missing = [name for name in names if not state.available(name)]
        if missing:
            raise StageNotReady(f"Missing prerequisite outputs: {missing}")
        return [state.get(name) for name in names]

    # =========================================================================
    # Encoder
    # =========================================================================

    def _tokenizing(self, state: PipelineState) -> StageOutputs:
        return {"tokens": self.tokenize()}

    def _embedding(self, state: PipelineState) -> StageOutputs:
        (tokens,) = self._require(state, "tokens")
        return {"embeddings": self.source_table.embed_all(tokens)}

    def _add_positions(self, embeddings: list[torch.Tensor]) -> tuple[list, list]:
        encodings = self.positional.encode_sequence(len(embeddings), self.d_model)
        return encodings, [ops.add(e, p) for e, p in zip(embeddings, encodings)]

    def _positional(self, state: PipelineState) -> StageOutputs:
        (embeddings,) = self._require(state, "embeddings")
        encodings, inputs = self._add_positions(embeddings)
        return {"position_encodings": encodings, "encoder_inputs": inputs}

    @staticmethod
    def _attention_outputs(prefix: str, attention: AttentionPass) -> StageOutputs:
        return {
            prefix: attention,
            f"{prefix}_outputs": attention.outputs,
            f"{prefix}_weight_set": attention.weight_set,
        }

    def _attention(self, state: PipelineState) -> StageOutputs:
        (inputs,) = self._require(state, "encoder_inputs")
        return self._attention_outputs("attention", self.attention.self_attention(inputs))

    def _residual(self, originals: list[torch.Tensor], deltas: list[torch.Tensor]) -> list:
        eps = self.config.model.layer_norm_eps
        return [add_norm(x, d, eps=eps) for x, d in zip(originals, deltas)]

    def _addnorm(self, state: PipelineState) -> StageOutputs:
        inputs, attended = self._require(state, "encoder_inputs", "attention_outputs")
        return {"addnorm_outputs": self._residual(inputs, attended)}

    def _feedforward(self, state: PipelineState) -> StageOutputs:
        (inputs,) = self._require(state, "addnorm_outputs")
        results, weights = self.ffn.apply(inputs)
        return {
            "ffn_hidden": [r.hidden for r in results],
            "ffn_outputs": [r.output for r in results],
            "encoder_outputs": [r.normalized for r in results],
            "ffn_weight_set": weights,
        }

    # =========================================================================
    # Decoder
    # =========================================================================

    def _decoder_start(self, state: PipelineState) -> StageOutputs:
        self._require(state, "encoder_outputs")
        return {"decoder_mode": self.decoder_mode}

    def _decoder_embedding(self, state: PipelineState) -> StageOutputs:
        tokens, _ = self._require(state, "tokens", "decoder_mode")
        decoder_tokens = decoder_input_tokens(tokens, self.language)
        return {
            "decoder_tokens": decoder_tokens,
            "decoder_embeddings": self.target_table.embed_all(decoder_tokens),
        }

    def _decoder_positional(self, state: PipelineState) -> StageOutputs:
        (embeddings,) = self._require(state, "decoder_embeddings")
        encodings, inputs = self._add_positions(embeddings)
        return {"decoder_position_encodings": encodings, "decoder_inputs": inputs}

    def _decoder_masked_attention(self, state: PipelineState) -> StageOutputs:
        (inputs,) = self._require(state, "decoder_inputs")
        attention = self.attention.self_attention(inputs, causal=True)
        return self._attention_outputs("masked_attention", attention)

    def _decoder_addnorm1(self, state: PipelineState) -> StageOutputs:
        inputs, attended = self._require(state, "decoder_inputs", "masked_attention_outputs")
        return {"decoder_addnorm1_outputs": self._residual(inputs, attended)}

    def _decoder_cross_attention(self, state: PipelineState) -> StageOutputs:
        states, memory = self._require(state, "decoder_addnorm1_outputs", "encoder_outputs")
        attention = self.attention.cross_attention(states, memory)
        return self._attention_outputs("cross_attention", attention)

    def _decoder_addnorm2(self, state: PipelineState) -> StageOutputs:
        states, attended = self._require(
            state, "decoder_addnorm1_outputs", "cross_attention_outputs",
        )
        return {"decoder_addnorm2_outputs": self._residual(states, attended)}

    def _decoder_ffn(self, state: PipelineState) -> StageOutputs:
        (inputs,) = self._require(state, "decoder_addnorm2_outputs")
        results, weights = self.ffn.apply(inputs)
        return {
            "decoder_ffn_hidden": [r.hidden for r in results],
            "decoder_ffn_outputs": [r.output for r in results],
            "decoder_outputs": [r.normalized for r in results],
            "decoder_ffn_weight_set": weights,
        }

    # =========================================================================
    # Output
    # =========================================================================

    def _output_projection(self, state: PipelineState) -> StageOutputs:
        tokens, decoder_outputs = self._require(state, "tokens", "decoder_outputs")
        vocabulary = build_vocabulary(tokens, self.language)
        projector = OutputProjector(self.weight_provider, vocabulary, self.d_model)
        results, weights = projector.project_all(decoder_outputs)
        return {
            "vocabulary": vocabulary,
            "projections": results,
            "logits": [r.logits for r in results],
            "probabilities": [r.probabilities for r in results],
            "predicted_tokens": [r.predicted_token for r in results],
            "projection_weight_set": weights,
        }

    def _translation_complete(self, state: PipelineState) -> StageOutputs:
        tokens, predicted = self._require(state, "tokens", "predicted_tokens")
        translation = [word for word in predicted if not is_special_token(word)]
        reference = translate_sentence(tokens, self.language)
        matches, accuracy = score_translation(translation, reference)
        logger.info(
            f"Translation: '{' '.join(translation)}' "
            f"(reference: '{' '.join(reference)}', "
            f"{sum(matches)}/{len(reference)} correct, {accuracy:.0f}%)"
        )
        return {
            "translation": translation,
            "reference_translation": reference,
            "translation_matches": matches,
            "accuracy": accuracy,
        }
