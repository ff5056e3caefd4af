#!/usr/bin/env python3
"""
Tests for Stepformer configuration, numeric building blocks, vocabulary,
and the stage-by-stage pipeline controller.

Run all tests:
    cd /path/to/stepformer
    python -m pytest tests/ -v --tb=short

Run one group:
    python -m pytest tests/test_stepformer.py -v -k Controller
"""

import math
import sys
from pathlib import Path

import numpy as np
import pytest
import torch

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def _vectors(n: int, d_model: int, seed: int = 0) -> list[torch.Tensor]:
    generator = torch.Generator().manual_seed(seed)
    return [torch.rand(d_model, generator=generator, dtype=torch.float64) for _ in range(n)]


# =============================================================================
# Config Tests
# =============================================================================

class TestConfig:
    """Tests for the configuration system."""

    def test_default_config_validates(self):
        """Default config should validate without errors."""
        from stepformer.config import StepformerConfig
        config = StepformerConfig()
        config.validate()
        assert config.model.d_model == 6
        assert config.run.target_language == "french"

    def test_smoke_test_config(self):
        """Smoke test config is the seeded "We are best" example."""
        from stepformer.config import StepformerConfig
        config = StepformerConfig.for_smoke_test()
        config.validate()
        assert config.model.seed == 42
        assert config.run.sentence == "We are best"

    def test_odd_d_model_rejected(self):
        """d=9 with 2 heads is rejected."""
        from stepformer.config import ModelConfig
        from stepformer.errors import InvalidConfiguration
        with pytest.raises(InvalidConfiguration):
            ModelConfig(d_model=9, n_heads=2).validate()

    def test_invalid_d_model_n_heads(self):
        """d_model must be divisible by n_heads."""
        from stepformer.config import ModelConfig
        config = ModelConfig(d_model=6, n_heads=4)
        with pytest.raises(ValueError, match="divisible"):
            config.validate()

    def test_d_model_out_of_range(self):
        from stepformer.config import ModelConfig
        from stepformer.errors import InvalidConfiguration
        with pytest.raises(InvalidConfiguration, match="d_model"):
            ModelConfig(d_model=14, n_heads=2).validate()

    def test_head_count_not_offered(self):
        """Only 1, 2, 3, 4 and 6 heads are offered."""
        from stepformer.config import ModelConfig
        from stepformer.errors import InvalidConfiguration
        with pytest.raises(InvalidConfiguration, match="n_heads"):
            ModelConfig(d_model=10, n_heads=5).validate()

    def test_derived_sizes(self):
        from stepformer.config import ModelConfig
        config = ModelConfig(d_model=12, n_heads=3)
        assert config.head_dim == 4
        assert config.d_ff == 48

    def test_unknown_language(self):
        from stepformer.config import RunConfig
        from stepformer.errors import InvalidConfiguration
        with pytest.raises(InvalidConfiguration, match="klingon"):
            RunConfig(target_language="klingon").validate()

    def test_sentence_too_long(self):
        """More words than max_words is rejected before anything runs."""
        from stepformer.config import RunConfig
        from stepformer.errors import InvalidConfiguration
        with pytest.raises(InvalidConfiguration, match="at most 5"):
            RunConfig(sentence="we are the best at this").validate()

    def test_empty_sentence(self):
        from stepformer.config import RunConfig
        from stepformer.errors import InvalidConfiguration
        with pytest.raises(InvalidConfiguration):
            RunConfig(sentence="   ").validate()

    def test_unknown_decoder_mode(self):
        from stepformer.config import RunConfig
        from stepformer.errors import InvalidConfiguration
        with pytest.raises(InvalidConfiguration, match="decoder_mode"):
            RunConfig(decoder_mode="beam_search").validate()

    def test_yaml_round_trip(self, tmp_path):
        """Config should save to YAML and load back identically."""
        from stepformer.config import StepformerConfig
        config = StepformerConfig.for_smoke_test()

        yaml_path = tmp_path / "test_config.yaml"
        config.to_yaml(yaml_path)

        loaded = StepformerConfig.from_yaml(yaml_path)
        assert loaded.to_dict() == config.to_dict()

    def test_missing_yaml(self, tmp_path):
        from stepformer.config import StepformerConfig
        with pytest.raises(FileNotFoundError):
            StepformerConfig.from_yaml(tmp_path / "nope.yaml")

    def test_empty_yaml(self, tmp_path):
        from stepformer.config import StepformerConfig
        from stepformer.errors import InvalidConfiguration
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(InvalidConfiguration, match="empty"):
            StepformerConfig.from_yaml(path)

    def test_unknown_yaml_key(self, tmp_path):
        from stepformer.config import StepformerConfig
        from stepformer.errors import InvalidConfiguration
        path = tmp_path / "bad.yaml"
        path.write_text("model:\n  d_model: 6\n  n_layers: 4\n")
        with pytest.raises(InvalidConfiguration, match="Bad config keys"):
            StepformerConfig.from_yaml(path)

    def test_shipped_default_yaml(self):
        """configs/default.yaml should load and validate."""
        from stepformer.config import StepformerConfig
        path = Path(__file__).resolve().parent.parent / "configs" / "default.yaml"
        config = StepformerConfig.from_yaml(path)
        assert config.run.sentence == "We are best"
        assert config.model.seed is None


# =============================================================================
# Error Hierarchy Tests
# =============================================================================

class TestErrors:
    """Tests for the exception family."""

    def test_all_derive_from_base(self):
        from stepformer import errors
        for cls in (
            errors.DimensionMismatch,
            errors.EmptyVocabularyResult,
            errors.InvalidConfiguration,
            errors.StageNotReady,
            errors.StageAlreadyComputed,
        ):
            assert issubclass(cls, errors.StepformerError)

    def test_input_errors_are_value_errors(self):
        from stepformer import errors
        assert issubclass(errors.DimensionMismatch, ValueError)
        assert issubclass(errors.EmptyVocabularyResult, ValueError)
        assert issubclass(errors.InvalidConfiguration, ValueError)
        assert not issubclass(errors.StageNotReady, ValueError)


# =============================================================================
# Vector Ops Tests
# =============================================================================

class TestVectorOps:
    """Tests for the numeric primitives."""

    def test_add_is_elementwise(self):
        from stepformer.model import vector_ops as ops
        result = ops.add([1.0, 2.0, 3.0], [10.0, 20.0, 30.0])
        assert result.tolist() == [11.0, 22.0, 33.0]

    def test_add_length_mismatch(self):
        from stepformer.model import vector_ops as ops
        from stepformer.errors import DimensionMismatch
        with pytest.raises(DimensionMismatch):
            ops.add([1.0, 2.0], [1.0, 2.0, 3.0])

    def test_dot(self):
        from stepformer.model import vector_ops as ops
        assert ops.dot([1.0, 2.0, 3.0], [4.0, 5.0, 6.0]) == 32.0

    def test_dot_length_mismatch(self):
        from stepformer.model import vector_ops as ops
        from stepformer.errors import DimensionMismatch
        with pytest.raises(DimensionMismatch):
            ops.dot([1.0], [1.0, 2.0])

    def test_mat_vec(self):
        from stepformer.model import vector_ops as ops
        matrix = torch.tensor([[1.0, 0.0], [0.0, 2.0], [1.0, 1.0]], dtype=torch.float64)
        assert ops.mat_vec(matrix, [3.0, 4.0]).tolist() == [3.0, 8.0, 7.0]

    def test_mat_vec_column_mismatch(self):
        """W.shape[1] must equal len(v)."""
        from stepformer.model import vector_ops as ops
        from stepformer.errors import DimensionMismatch
        matrix = torch.zeros(3, 4, dtype=torch.float64)
        with pytest.raises(DimensionMismatch, match="4 columns"):
            ops.mat_vec(matrix, [1.0, 2.0, 3.0])

    def test_relu(self):
        from stepformer.model import vector_ops as ops
        assert ops.relu([-1.5, 0.0, 2.0]).tolist() == [0.0, 0.0, 2.0]

    def test_softmax_sums_to_one(self):
        from stepformer.model import vector_ops as ops
        probs = ops.softmax([0.3, -1.2, 2.5, 0.0])
        assert abs(float(probs.sum()) - 1.0) < 1e-6
        assert bool((probs > 0).all())

    def test_softmax_large_scores_stable(self):
        """Max subtraction keeps huge scores from overflowing."""
        from stepformer.model import vector_ops as ops
        probs = ops.softmax([1000.0, 1001.0, 1002.0])
        assert not bool(torch.isnan(probs).any())
        assert abs(float(probs.sum()) - 1.0) < 1e-6

    def test_softmax_masked_entries_are_zero(self):
        """-inf entries map to exactly 0."""
        from stepformer.model import vector_ops as ops
        probs = ops.softmax([1.0, float("-inf"), 2.0, float("-inf")])
        assert probs[1].item() == 0.0
        assert probs[3].item() == 0.0
        assert abs(float(probs.sum()) - 1.0) < 1e-6

    def test_softmax_all_masked_rejected(self):
        from stepformer.model import vector_ops as ops
        with pytest.raises(ValueError, match="masked"):
            ops.softmax([float("-inf"), float("-inf")])

    def test_layer_norm_statistics(self):
        """Non-constant input → mean ≈ 0, variance ≈ 1."""
        from stepformer.model import vector_ops as ops
        out = ops.layer_norm([1.0, 2.0, 3.0, 4.0, 10.0, -3.0])
        assert abs(float(out.mean())) < 1e-9
        variance = float(((out - out.mean()) ** 2).mean())
        assert abs(variance - 1.0) < 1e-4

    def test_layer_norm_constant_vector(self):
        """Epsilon keeps a constant vector finite; it maps to zeros."""
        from stepformer.model import vector_ops as ops
        out = ops.layer_norm([2.0, 2.0, 2.0])
        assert out.tolist() == pytest.approx([0.0, 0.0, 0.0])

    def test_weighted_sum(self):
        from stepformer.model import vector_ops as ops
        vectors = [torch.tensor([1.0, 0.0], dtype=torch.float64),
                   torch.tensor([0.0, 1.0], dtype=torch.float64)]
        out = ops.weighted_sum([0.25, 0.75], vectors)
        assert out.tolist() == [0.25, 0.75]

    def test_weighted_sum_count_mismatch(self):
        from stepformer.model import vector_ops as ops
        from stepformer.errors import DimensionMismatch
        with pytest.raises(DimensionMismatch):
            ops.weighted_sum([1.0], _vectors(2, 4))


# =============================================================================
# Weight Provider Tests
# =============================================================================

class TestWeights:
    """Tests for random weight generation."""

    def test_range(self):
        """Values are uniform in [-0.5, 0.5)."""
        from stepformer.model.weights import WeightProvider
        matrix = WeightProvider(seed=1).generate(40, 30)
        assert matrix.shape == (40, 30)
        assert float(matrix.min()) >= -0.5
        assert float(matrix.max()) < 0.5

    def test_every_call_is_fresh(self):
        from stepformer.model.weights import WeightProvider
        provider = WeightProvider(seed=1)
        assert not torch.equal(provider.generate(4, 4), provider.generate(4, 4))
        assert provider.n_draws == 2

    def test_seed_reproducible(self):
        from stepformer.model.weights import WeightProvider
        a = WeightProvider(seed=7).attention_weights(6)
        b = WeightProvider(seed=7).attention_weights(6)
        for key in ("wq", "wk", "wv"):
            assert torch.equal(a[key], b[key])

    def test_weight_set_shapes(self):
        from stepformer.model.weights import WeightProvider
        provider = WeightProvider(seed=0)
        assert provider.feed_forward_weights(6, 24).shapes() == {"w1": (24, 6), "w2": (6, 24)}
        assert provider.projection_weights(10, 6).shapes() == {"w_out": (10, 6)}

    def test_weight_set_is_frozen(self):
        """A WeightSet cannot be reassigned, and callers' tensors don't leak in."""
        import dataclasses
        from stepformer.model.weights import WeightSet
        source = torch.ones(2, 2, dtype=torch.float64)
        weights = WeightSet(name="test", matrices={"w": source})
        source.zero_()
        assert weights["w"].tolist() == [[1.0, 1.0], [1.0, 1.0]]

        with pytest.raises(TypeError):
            weights.matrices["w"] = source
        with pytest.raises(dataclasses.FrozenInstanceError):
            weights.name = "other"


# =============================================================================
# Vocabulary & Translation Tests
# =============================================================================

class TestTranslation:
    """Tests for the translation tables."""

    def test_supported_languages(self):
        from stepformer.data.translation import get_supported_languages
        assert get_supported_languages() == [
            "french", "spanish", "german", "italian", "portuguese", "urdu", "hindi",
        ]

    def test_translate_sentence(self):
        from stepformer.data.translation import translate_sentence
        assert translate_sentence(["We", "are", "best"], "french") == ["nous", "sommes", "meilleurs"]

    def test_language_info(self):
        from stepformer.data.translation import get_language_info
        assert get_language_info("french") == {"name": "French", "native_name": "Français"}

    def test_unknown_word_passes_through(self):
        from stepformer.data.translation import translate_word
        assert translate_word("zyzzyva", "german") == "zyzzyva"

    def test_decoder_sequences(self):
        from stepformer.data.translation import decoder_input_tokens, decoder_output_tokens
        tokens = ["We", "are", "best"]
        assert decoder_input_tokens(tokens, "french") == ["<START>", "nous", "sommes", "meilleurs"]
        assert decoder_output_tokens(tokens, "french") == ["nous", "sommes", "meilleurs", "<END>"]

    def test_unknown_language_table(self):
        from stepformer.data.translation import get_dictionary
        with pytest.raises(KeyError):
            get_dictionary("klingon")

    def test_function_words_are_target_language(self):
        """Function words come from the chosen language's own table."""
        from stepformer.data.translation import function_words, get_dictionary
        spanish = function_words("spanish")
        assert len(spanish) == len(set(spanish))
        assert get_dictionary("spanish")["we"] in spanish
        assert "nous" not in spanish

    def test_score_translation(self):
        """Word-by-word comparison; short predictions miss the tail."""
        from stepformer.data.translation import score_translation
        reference = ["nous", "sommes", "meilleurs"]

        matches, accuracy = score_translation(["nous", "x", "meilleurs", "extra"], reference)
        assert matches == (True, False, True)
        assert accuracy == pytest.approx(200 / 3)

        matches, accuracy = score_translation(["nous"], reference)
        assert matches == (True, False, False)
        assert accuracy == pytest.approx(100 / 3)

        assert score_translation([], []) == ((), 0.0)


class TestEmbeddingTable:
    """Tests for embeddings and tokenization."""

    def test_base_vector(self):
        from stepformer.data.vocabulary import BASE_VECTORS, EmbeddingTable
        table = EmbeddingTable.for_source(6)
        assert table.embed("We").tolist() == BASE_VECTORS["we"]

    def test_lookup_is_case_insensitive(self):
        from stepformer.data.vocabulary import EmbeddingTable
        table = EmbeddingTable.for_source(6)
        assert torch.equal(table.embed("BEST"), table.embed("best"))

    def test_unknown_token(self):
        from stepformer.data.vocabulary import EmbeddingTable
        assert EmbeddingTable.for_source(6).embed("xyz") is None

    def test_embed_returns_copy(self):
        from stepformer.data.vocabulary import EmbeddingTable
        table = EmbeddingTable.for_source(6)
        table.embed("we").zero_()
        assert float(table.embed("we").sum()) > 0

    def test_base_vector_padded_and_truncated(self):
        """Other widths pad with hash values or truncate."""
        from stepformer.data.vocabulary import BASE_VECTORS, EmbeddingTable, hash_embedding
        wide = EmbeddingTable.for_source(8).embed("we").tolist()
        assert wide[:6] == BASE_VECTORS["we"]
        assert wide[6:] == hash_embedding("we", 2)

        narrow = EmbeddingTable.for_source(4).embed("we").tolist()
        assert narrow == BASE_VECTORS["we"][:4]

    def test_hash_embedding(self):
        from stepformer.data.vocabulary import hash_embedding
        values = hash_embedding("meilleurs", 10)
        assert values == hash_embedding("meilleurs", 10)
        assert all(0.0 <= v < 1.0 for v in values)

    def test_target_table(self):
        """Target table holds special tokens; <PAD> is the zero vector."""
        from stepformer.data.vocabulary import EmbeddingTable
        table = EmbeddingTable.for_target("french", 6)
        assert "<START>" in table
        assert "nous" in table
        assert table.embed("<PAD>").tolist() == [0.0] * 6

    def test_tokenize_collapses_whitespace(self):
        from stepformer.data.vocabulary import EmbeddingTable
        table = EmbeddingTable.for_source(6)
        assert table.tokenize("   We   are\tbest  ") == ["We", "are", "best"]

    def test_tokenize_drops_unknown(self):
        from stepformer.data.vocabulary import EmbeddingTable
        table = EmbeddingTable.for_source(6)
        assert table.tokenize("We xyz are") == ["We", "are"]
        assert table.tokenize("xyz qwerty") == []

    def test_tokenize_truncates(self):
        from stepformer.data.vocabulary import EmbeddingTable
        table = EmbeddingTable.for_source(6)
        assert len(table.tokenize("we are we are we are we", max_words=5)) == 5

    def test_tokenize_idempotent(self):
        """Tokenizing the space-joined tokens gives the same tokens."""
        from stepformer.data.vocabulary import EmbeddingTable
        table = EmbeddingTable.for_source(6)
        tokens = table.tokenize("I  love xyz you")
        assert table.tokenize(" ".join(tokens)) == tokens


# =============================================================================
# Positional Encoding Tests
# =============================================================================

class TestPositionalEncoding:
    """Tests for sinusoidal position vectors."""

    def test_position_zero(self):
        """sin(0) = 0 on even components, cos(0) = 1 on odd, scaled by 0.5."""
        from stepformer.model.positional import SinusoidalPositionalEncoding
        pe = SinusoidalPositionalEncoding().encode(0, 6)
        assert pe.tolist() == [0.0, 0.5, 0.0, 0.5, 0.0, 0.5]

    def test_pairs_share_frequency(self):
        from stepformer.model.positional import SinusoidalPositionalEncoding
        pe = SinusoidalPositionalEncoding().encode(1, 4).tolist()
        expected = [
            0.5 * math.sin(1.0),
            0.5 * math.cos(1.0),
            0.5 * math.sin(0.01),
            0.5 * math.cos(0.01),
        ]
        assert pe == pytest.approx(expected)

    def test_sequence(self):
        from stepformer.model.positional import SinusoidalPositionalEncoding
        encoder = SinusoidalPositionalEncoding(scale=1.0)
        sequence = encoder.encode_sequence(3, 8)
        assert len(sequence) == 3
        assert torch.equal(sequence[2], encoder.encode(2, 8))

    def test_negative_position(self):
        from stepformer.model.positional import SinusoidalPositionalEncoding
        with pytest.raises(ValueError):
            SinusoidalPositionalEncoding().encode(-1, 6)


# =============================================================================
# Attention Tests
# =============================================================================

class TestAttention:
    """Tests for scaled dot-product attention."""

    def _engine(self, d_model=6, n_heads=2):
        from stepformer.model.attention import AttentionEngine
        from stepformer.model.weights import WeightProvider
        return AttentionEngine(WeightProvider(seed=3), d_model, n_heads)

    def test_self_attention_shapes(self):
        engine = self._engine()
        result = engine.self_attention(_vectors(4, 6))
        assert len(result.results) == 4
        assert result.weight_matrix.shape == (4, 4)
        assert all(out.shape == (6,) for out in result.outputs)
        assert result.results[0].masked_scores is None

    def test_scores_scaled_by_sqrt_dk(self):
        """d_k = d_model / n_heads = 3."""
        engine = self._engine(d_model=6, n_heads=2)
        result = engine.self_attention(_vectors(3, 6))
        for position in result.results:
            assert torch.allclose(position.scaled_scores, position.raw_scores / math.sqrt(3))

    def test_causal_mask(self):
        """weights[j] == 0 for j > i, and the visible weights sum to 1."""
        engine = self._engine()
        result = engine.self_attention(_vectors(4, 6), causal=True)
        for i, position in enumerate(result.results):
            assert bool((position.weights[i + 1:] == 0).all())
            assert abs(float(position.weights[: i + 1].sum()) - 1.0) < 1e-6
        assert result.results[0].weights[0].item() == pytest.approx(1.0)

    def test_causal_needs_enough_keys(self):
        from stepformer.errors import DimensionMismatch
        engine = self._engine()
        with pytest.raises(DimensionMismatch):
            engine.attend(_vectors(3, 6), _vectors(2, 6), causal=True)

    def test_cross_attention(self):
        """Queries and keys may differ in count when not causal."""
        engine = self._engine()
        result = engine.cross_attention(_vectors(4, 6), _vectors(3, 6, seed=1))
        assert result.weight_matrix.shape == (4, 3)
        assert not result.causal

    def test_empty_input(self):
        from stepformer.errors import StageNotReady
        engine = self._engine()
        with pytest.raises(StageNotReady):
            engine.self_attention([])

    def test_heads_must_divide(self):
        from stepformer.errors import DimensionMismatch
        with pytest.raises(DimensionMismatch):
            self._engine(d_model=6, n_heads=4)

    def test_one_weight_draw_per_call(self):
        """Wq, Wk, Wv are drawn once and shared by every token."""
        engine = self._engine()
        before = engine.weight_provider.n_draws
        engine.self_attention(_vectors(5, 6))
        assert engine.weight_provider.n_draws == before + 3

    def test_explicit_weights(self):
        """Identity projections: Q, K and V equal the inputs."""
        from stepformer.model.weights import WeightSet
        engine = self._engine()
        eye = torch.eye(6, dtype=torch.float64)
        weights = WeightSet(name="attention", matrices={"wq": eye, "wk": eye, "wv": eye})
        inputs = _vectors(2, 6)

        result = engine.self_attention(inputs, weights=weights)
        assert engine.weight_provider.n_draws == 0
        assert torch.allclose(result.queries[1], inputs[1])
        assert result.weight_set is weights


# =============================================================================
# Feed-Forward Tests
# =============================================================================

class TestFeedForward:
    """Tests for the feed-forward block and Add & Norm."""

    def test_forward_by_hand(self):
        from stepformer.model.feed_forward import FeedForwardBlock
        x = torch.tensor([1.0, -1.0], dtype=torch.float64)
        w1 = torch.tensor([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]], dtype=torch.float64)
        w2 = torch.tensor([[1.0, 1.0, 1.0], [2.0, 0.0, 0.0]], dtype=torch.float64)
        hidden, output = FeedForwardBlock.forward(x, w1, w2)
        assert hidden.tolist() == [1.0, 0.0, 0.0]
        assert output.tolist() == [1.0, 2.0]

    def test_apply_shapes(self):
        from stepformer.model.feed_forward import FeedForwardBlock
        from stepformer.model.weights import WeightProvider
        block = FeedForwardBlock(WeightProvider(seed=0), d_model=6, d_ff=24)
        results, weights = block.apply(_vectors(3, 6))
        assert len(results) == 3
        assert weights.shapes() == {"w1": (24, 6), "w2": (6, 24)}
        for result in results:
            assert result.hidden.shape == (24,)
            assert bool((result.hidden >= 0).all())
            assert result.output.shape == (6,)
            assert abs(float(result.normalized.mean())) < 1e-9

    def test_add_norm(self):
        from stepformer.model import vector_ops as ops
        from stepformer.model.feed_forward import add_norm
        a, b = _vectors(2, 6)
        assert torch.allclose(add_norm(a, b), ops.layer_norm(ops.add(a, b)))

    def test_empty_input(self):
        from stepformer.errors import StageNotReady
        from stepformer.model.feed_forward import FeedForwardBlock
        from stepformer.model.weights import WeightProvider
        with pytest.raises(StageNotReady):
            FeedForwardBlock(WeightProvider(seed=0), 6, 24).apply([])


# =============================================================================
# Output Projection Tests
# =============================================================================

class TestOutputProjection:
    """Tests for vocabulary construction and projection."""

    def test_vocabulary_order(self):
        from stepformer.model.output import build_vocabulary
        vocabulary = build_vocabulary(["We", "are", "best"], "french")
        assert vocabulary[:6] == ["<START>", "<END>", "<PAD>", "nous", "sommes", "meilleurs"]
        assert len(vocabulary) == len(set(vocabulary))

    def test_vocabulary_deduplicates(self):
        from stepformer.model.output import build_vocabulary
        vocabulary = build_vocabulary(["we", "We", "we"], "french")
        assert vocabulary.count("nous") == 1

    def test_ties_go_to_first_index(self):
        """All-zero W_out gives equal logits; the first word wins."""
        from stepformer.model.output import OutputProjector
        from stepformer.model.weights import WeightProvider
        projector = OutputProjector(WeightProvider(seed=0), ["<START>", "a", "b"], d_model=4)
        result = projector.project(_vectors(1, 4)[0], torch.zeros(3, 4, dtype=torch.float64))
        assert result.predicted_index == 0
        assert result.predicted_token == "<START>"
        assert result.probabilities.tolist() == pytest.approx([1 / 3] * 3)

    def test_wrong_row_count(self):
        from stepformer.errors import DimensionMismatch
        from stepformer.model.output import OutputProjector
        from stepformer.model.weights import WeightProvider
        projector = OutputProjector(WeightProvider(seed=0), ["a", "b"], d_model=4)
        with pytest.raises(DimensionMismatch):
            projector.project(_vectors(1, 4)[0], torch.zeros(3, 4, dtype=torch.float64))

    def test_project_all(self):
        from stepformer.model.output import OutputProjector
        from stepformer.model.weights import WeightProvider
        vocabulary = ["<START>", "<END>", "x", "y"]
        projector = OutputProjector(WeightProvider(seed=5), vocabulary, d_model=6)
        results, weights = projector.project_all(_vectors(3, 6))
        assert weights.shapes() == {"w_out": (4, 6)}
        for result in results:
            assert result.predicted_token in vocabulary
            assert abs(float(result.probabilities.sum()) - 1.0) < 1e-6


# =============================================================================
# Stage & State Tests
# =============================================================================

class TestStages:
    """Tests for the stage enumeration."""

    def test_order(self):
        from stepformer.pipeline.stages import (
            DECODER_STAGES, ENCODER_STAGES, STAGE_ORDER, Stage,
        )
        assert len(STAGE_ORDER) == 16
        assert Stage.IDLE not in STAGE_ORDER
        assert STAGE_ORDER[0] is Stage.TOKENIZING
        assert STAGE_ORDER[-1] is Stage.TRANSLATION_COMPLETE
        assert len(ENCODER_STAGES) == 6
        assert len(DECODER_STAGES) == 10

    def test_navigation(self):
        from stepformer.pipeline.stages import STAGE_ORDER, Stage
        assert Stage.IDLE.next() is Stage.TOKENIZING
        assert Stage.FEEDFORWARD.next() is Stage.DECODER_START
        assert Stage.TRANSLATION_COMPLETE.next() is None
        assert Stage.TOKENIZING.previous() is None
        assert Stage.ADDNORM.prefix() == STAGE_ORDER[:4]
        assert Stage.IDLE.prefix() == ()

    def test_phase(self):
        from stepformer.pipeline.stages import Phase, Stage
        assert Stage.IDLE.phase is Phase.IDLE
        assert Stage.FEEDFORWARD.phase is Phase.ENCODER
        assert Stage.DECODER_START.phase is Phase.DECODER

    def test_parse(self):
        from stepformer.pipeline.stages import Stage
        assert Stage.parse("decoder_ffn") is Stage.DECODER_FFN
        with pytest.raises(ValueError, match="Unknown stage"):
            Stage.parse("decoder_softmax")

    def test_output_names_unique(self):
        from stepformer.pipeline.stages import OUTPUT_OWNERS, STAGE_OUTPUTS
        assert len(OUTPUT_OWNERS) == sum(len(names) for names in STAGE_OUTPUTS.values())


class TestPipelineState:
    """Tests for the write-once state store."""

    def test_record_once(self):
        from stepformer.errors import StageAlreadyComputed
        from stepformer.pipeline.stages import Stage
        from stepformer.pipeline.state import PipelineState
        state = PipelineState()
        state.record(Stage.TOKENIZING, {"tokens": ["We"]})
        with pytest.raises(StageAlreadyComputed):
            state.record(Stage.TOKENIZING, {"tokens": ["are"]})
        assert state.get("tokens") == ["We"]

    def test_record_checks_names(self):
        from stepformer.pipeline.stages import Stage
        from stepformer.pipeline.state import PipelineState
        state = PipelineState()
        with pytest.raises(KeyError):
            state.record(Stage.POSITIONAL, {"encoder_inputs": []})

    def test_has_outputs_requires_non_empty(self):
        from stepformer.pipeline.stages import Stage
        from stepformer.pipeline.state import PipelineState
        state = PipelineState()
        state.record(Stage.TOKENIZING, {"tokens": []})
        assert not state.has_outputs(Stage.TOKENIZING)

    def test_completed_is_prefix(self):
        from stepformer.pipeline.stages import STAGE_ORDER, Stage
        from stepformer.pipeline.state import PipelineState
        state = PipelineState(current_stage=Stage.DECODER_START)
        assert state.completed_stages == STAGE_ORDER[:6]

    def test_freeze(self):
        from stepformer.pipeline.state import freeze
        frozen = freeze({"v": [torch.ones(3, dtype=torch.float64)]})
        array = frozen["v"][0]
        assert isinstance(array, np.ndarray)
        with pytest.raises(ValueError):
            array[0] = 5.0
        with pytest.raises(TypeError):
            frozen["w"] = 1


# =============================================================================
# Simulator Tests
# =============================================================================

class TestSimulator:
    """Tests for the per-stage computations."""

    def test_missing_prerequisite(self):
        from stepformer.config import StepformerConfig
        from stepformer.errors import StageNotReady
        from stepformer.pipeline.simulator import ForwardSimulator
        from stepformer.pipeline.stages import Stage
        from stepformer.pipeline.state import PipelineState
        simulator = ForwardSimulator(StepformerConfig.for_smoke_test())
        with pytest.raises(StageNotReady, match="tokens"):
            simulator.compute(Stage.EMBEDDING, PipelineState())

    def test_idle_has_no_computation(self):
        from stepformer.config import StepformerConfig
        from stepformer.errors import StageNotReady
        from stepformer.pipeline.simulator import ForwardSimulator
        from stepformer.pipeline.stages import Stage
        from stepformer.pipeline.state import PipelineState
        simulator = ForwardSimulator(StepformerConfig.for_smoke_test())
        with pytest.raises(StageNotReady):
            simulator.compute(Stage.IDLE, PipelineState())

    def test_stage_outputs_match_declared_names(self):
        """Every computation returns exactly its stage's output names."""
        from stepformer.config import StepformerConfig
        from stepformer.pipeline.simulator import ForwardSimulator
        from stepformer.pipeline.stages import STAGE_ORDER
        from stepformer.pipeline.state import PipelineState
        simulator = ForwardSimulator(StepformerConfig.for_smoke_test())
        state = PipelineState()
        for stage in STAGE_ORDER:
            outputs = simulator.compute(stage, state)
            assert set(outputs) == set(stage.outputs)
            state.record(stage, outputs)


# =============================================================================
# Controller Tests
# =============================================================================

@pytest.fixture
def controller():
    from stepformer.config import StepformerConfig
    from stepformer.pipeline.controller import PipelineController
    ctrl = PipelineController()
    ctrl.submit(StepformerConfig.for_smoke_test())
    return ctrl


def _config(sentence="We are best", language="french", d_model=6, n_heads=2, seed=42):
    from stepformer.config import ModelConfig, RunConfig, StepformerConfig
    return StepformerConfig(
        model=ModelConfig(d_model=d_model, n_heads=n_heads, seed=seed),
        run=RunConfig(sentence=sentence, target_language=language),
    )


class TestController:
    """Tests for the pipeline state machine."""

    def test_initial_state(self):
        from stepformer.errors import StageNotReady
        from stepformer.pipeline.controller import PipelineController
        from stepformer.pipeline.stages import Stage
        ctrl = PipelineController()
        assert ctrl.current_stage is Stage.IDLE
        assert ctrl.completed_stages == ()
        assert ctrl.advance() is False
        with pytest.raises(StageNotReady):
            ctrl.compute()

    def test_submit(self, controller):
        from stepformer.pipeline.stages import Stage
        assert controller.current_stage is Stage.TOKENIZING
        assert controller.completed_stages == ()
        assert controller.output("tokens") == ("We", "are", "best")

    def test_submit_no_known_words(self):
        """"xyz qwerty" is rejected with EmptyVocabularyResult."""
        from stepformer.errors import EmptyVocabularyResult
        from stepformer.pipeline.controller import PipelineController
        from stepformer.pipeline.stages import Stage
        ctrl = PipelineController()
        with pytest.raises(EmptyVocabularyResult):
            ctrl.submit(_config(sentence="xyz qwerty"))
        assert ctrl.current_stage is Stage.IDLE

    def test_rejected_submit_keeps_previous_run(self, controller):
        from stepformer.errors import InvalidConfiguration
        from stepformer.pipeline.stages import Stage
        controller.step()
        with pytest.raises(InvalidConfiguration):
            controller.submit(_config(d_model=9, n_heads=2))
        assert controller.current_stage is Stage.EMBEDDING

    def test_advance_requires_outputs(self, controller):
        """advance() returns False and changes nothing when not computed."""
        from stepformer.errors import StageNotReady
        from stepformer.pipeline.stages import Stage
        assert controller.advance() is True
        assert controller.current_stage is Stage.EMBEDDING

        assert controller.advance() is False
        assert controller.current_stage is Stage.EMBEDDING
        with pytest.raises(StageNotReady):
            controller.advance(strict=True)

    def test_compute_never_overwrites(self, controller):
        controller.advance()
        assert controller.compute() is True
        first = controller.output("embeddings")
        assert controller.compute() is False
        assert np.array_equal(controller.output("embeddings")[0], first[0])

    def test_encoder_numbers(self, controller):
        """3 embeddings of length 6, positions 0-2 added."""
        from stepformer.model.positional import SinusoidalPositionalEncoding
        controller.run(max_stages=2)
        controller.compute()

        embeddings = controller.output("embeddings")
        inputs = controller.output("encoder_inputs")
        assert len(embeddings) == 3
        assert all(e.shape == (6,) for e in embeddings)

        pe = SinusoidalPositionalEncoding(scale=0.5)
        for position in range(3):
            expected = embeddings[position] + pe.encode(position, 6).numpy()
            assert np.allclose(inputs[position], expected)

    def test_full_run(self, controller):
        """"We are best" → French reaches translation_complete."""
        from stepformer.data.translation import SPECIAL_TOKENS
        from stepformer.pipeline.stages import STAGE_ORDER, Stage
        transitions = controller.run()

        assert transitions == 15
        assert controller.current_stage is Stage.TRANSLATION_COMPLETE
        assert controller.is_complete
        assert controller.completed_stages == STAGE_ORDER[:15]
        assert controller.output("decoder_tokens") == ("<START>", "nous", "sommes", "meilleurs")
        assert controller.output("reference_translation") == ("nous", "sommes", "meilleurs")
        assert len(controller.output("predicted_tokens")) == 4
        assert not set(controller.output("translation")) & set(SPECIAL_TOKENS)

        matches = controller.output("translation_matches")
        assert len(matches) == 3
        assert controller.output("accuracy") == pytest.approx(100 * sum(matches) / 3)

    def test_accuracy_zero_when_only_special_tokens(self):
        """All-zero W_out ties every logit, so every prediction is <START>."""
        from stepformer.config import StepformerConfig
        from stepformer.model.weights import WeightProvider, WeightSet
        from stepformer.pipeline.controller import PipelineController

        class ZeroProjection(WeightProvider):
            def projection_weights(self, vocab_size, d_model):
                return WeightSet(
                    name="projection",
                    matrices={"w_out": torch.zeros(vocab_size, d_model, dtype=torch.float64)},
                )

        ctrl = PipelineController(weight_provider=ZeroProjection(seed=42))
        ctrl.submit(StepformerConfig.for_smoke_test())
        ctrl.run()

        assert ctrl.is_complete
        assert ctrl.output("predicted_tokens") == ("<START>",) * 4
        assert ctrl.output("translation") == ()
        assert ctrl.output("translation_matches") == (False, False, False)
        assert ctrl.output("accuracy") == 0.0

    @pytest.mark.parametrize("predicted, matches, accuracy", [
        (["nous", "sommes", "meilleurs", "<END>"], (True, True, True), 100.0),
        (["<START>", "nous", "x", "<END>"], (True, False, False), 100 / 3),
        (["sommes", "nous", "<PAD>", "<END>"], (False, False, False), 0.0),
    ])
    def test_translation_accuracy(self, predicted, matches, accuracy):
        """Cleaned predictions are scored position by position."""
        from stepformer.pipeline.simulator import ForwardSimulator
        from stepformer.pipeline.stages import Stage
        from stepformer.pipeline.state import PipelineState
        state = PipelineState()
        state.record(Stage.TOKENIZING, {"tokens": ["We", "are", "best"]})
        projection = dict.fromkeys(Stage.OUTPUT_PROJECTION.outputs)
        projection["predicted_tokens"] = predicted
        state.record(Stage.OUTPUT_PROJECTION, projection)

        outputs = ForwardSimulator(_config()).compute(Stage.TRANSLATION_COMPLETE, state)
        assert outputs["translation_matches"] == matches
        assert outputs["accuracy"] == pytest.approx(accuracy)

    def test_advance_at_terminal(self, controller):
        from stepformer.errors import StageNotReady
        controller.run()
        assert controller.advance() is False
        with pytest.raises(StageNotReady):
            controller.advance(strict=True)

    def test_decoder_masked_attention_is_causal(self, controller):
        controller.run()
        results = controller.output("masked_attention")["results"]
        assert len(results) == 4
        assert results[0]["weights"].tolist() == pytest.approx([1.0, 0.0, 0.0, 0.0])
        for i, result in enumerate(results):
            assert np.all(result["weights"][i + 1:] == 0)

    def test_cross_attention_reads_encoder(self, controller):
        """4 decoder positions attend over 3 encoder outputs."""
        controller.run()
        results = controller.output("cross_attention")["results"]
        assert len(results) == 4
        assert all(result["weights"].shape == (3,) for result in results)

    def test_jump_to_completed_stage(self, controller):
        from stepformer.pipeline.stages import STAGE_ORDER, Stage
        controller.run()
        before = controller.output("attention_outputs")

        controller.jump_to(Stage.ATTENTION)
        assert controller.current_stage is Stage.ATTENTION
        assert controller.completed_stages == STAGE_ORDER[:3]

        # Walking forward again replays the stored numbers
        assert controller.compute() is False
        controller.run()
        after = controller.output("attention_outputs")
        assert all(np.array_equal(a, b) for a, b in zip(before, after))
        assert controller.is_complete

    def test_invalid_jump_does_not_mutate(self, controller):
        from stepformer.errors import StageNotReady
        from stepformer.pipeline.stages import Stage
        controller.run(max_stages=3)
        snapshot = controller.snapshot()

        for target in (Stage.ATTENTION, Stage.DECODER_FFN, Stage.IDLE):
            with pytest.raises(StageNotReady):
                controller.jump_to(target)

        assert controller.current_stage is snapshot.current_stage
        assert controller.completed_stages == snapshot.completed_stages

    def test_jump_by_name(self, controller):
        from stepformer.pipeline.stages import Stage
        controller.run(max_stages=4)
        controller.jump_to("embedding")
        assert controller.current_stage is Stage.EMBEDDING

    def test_reset(self, controller):
        from stepformer.pipeline.stages import Stage
        controller.run()
        controller.reset()
        assert controller.current_stage is Stage.IDLE
        assert controller.completed_stages == ()
        with pytest.raises(KeyError):
            controller.output("tokens")

    def test_run_max_stages(self, controller):
        from stepformer.pipeline.stages import Stage
        assert controller.run(max_stages=3) == 3
        assert controller.current_stage is Stage.ATTENTION

    def test_pause_and_resume(self, controller):
        """Pausing keeps outputs; resume continues from the same stage."""
        from stepformer.pipeline.stages import Stage

        def pause_at_addnorm(stage):
            if stage is Stage.ADDNORM:
                controller.pause()

        controller.run(on_stage=pause_at_addnorm)
        assert controller.is_paused
        assert controller.current_stage is Stage.ADDNORM
        assert controller.output("attention_outputs")

        assert controller.run() == 0
        assert controller.current_stage is Stage.ADDNORM

        controller.resume()
        assert not controller.is_paused
        assert controller.is_complete

    def test_select_decoder_mode(self, controller):
        from stepformer.pipeline.stages import Stage
        controller.run(max_stages=6)
        assert controller.current_stage is Stage.DECODER_START

        controller.select_decoder_mode("autoregressive")
        controller.step()
        controller.compute()
        assert controller.output("decoder_mode") == "autoregressive"
        assert controller.output("decoder_tokens") == ("<START>", "nous", "sommes", "meilleurs")

    def test_select_decoder_mode_rules(self, controller):
        from stepformer.errors import InvalidConfiguration, StageAlreadyComputed, StageNotReady
        with pytest.raises(StageNotReady):
            controller.select_decoder_mode("autoregressive")

        controller.run(max_stages=6)
        with pytest.raises(InvalidConfiguration):
            controller.select_decoder_mode("beam_search")

        controller.compute()
        with pytest.raises(StageAlreadyComputed):
            controller.select_decoder_mode("autoregressive")

    def test_seed_reproducible(self):
        """Same seed → identical numbers across controllers."""
        from stepformer.pipeline.controller import PipelineController
        runs = []
        for _ in range(2):
            ctrl = PipelineController()
            ctrl.submit(_config(seed=123))
            ctrl.run()
            runs.append(ctrl)
        assert runs[0].output("predicted_tokens") == runs[1].output("predicted_tokens")
        assert all(
            np.array_equal(a, b)
            for a, b in zip(runs[0].output("logits"), runs[1].output("logits"))
        )

    def test_other_dimensions_and_language(self):
        from stepformer.pipeline.controller import PipelineController
        ctrl = PipelineController()
        ctrl.submit(_config(sentence="I love you", language="spanish", d_model=8, n_heads=4))
        ctrl.run()
        assert ctrl.is_complete
        assert ctrl.output("decoder_tokens") == ("<START>", "yo", "amo", "tú")
        assert all(v.shape == (8,) for v in ctrl.output("decoder_outputs"))
        assert ctrl.output("ffn_hidden")[0].shape == (32,)

    def test_snapshot_is_read_only(self, controller):
        controller.run()
        snapshot = controller.snapshot()
        assert snapshot.phase == "decoder"
        assert isinstance(snapshot.outputs["tokens"], tuple)

        with pytest.raises(TypeError):
            snapshot.outputs["tokens"] = ("hacked",)
        with pytest.raises(ValueError):
            snapshot.outputs["embeddings"][0][0] = 99.0
        with pytest.raises(TypeError):
            snapshot.outputs["attention_weight_set"]["matrices"]["wq"] = None

        # The live state is untouched by snapshot consumers
        assert controller.output("tokens") == ("We", "are", "best")

    def test_stage_outputs(self, controller):
        from stepformer.pipeline.stages import Stage
        controller.run()
        outputs = controller.stage_outputs("decoder_ffn")
        assert set(outputs) == set(Stage.DECODER_FFN.outputs)
        assert len(controller.stage_outputs(Stage.IDLE)) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
