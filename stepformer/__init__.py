"""
Stepformer
==========
A step-by-step Transformer encoder-decoder walkthrough: every number of a
forward pass that translates a short sentence, computed one stage at a time.

This package provides:
    1. A deterministic numeric simulator (embeddings, positional encodings,
       self- and cross-attention, Add & Norm, feed-forward, projection)
    2. A pipeline controller that sequences 16 stages across an encoder
       and a decoder phase, with review-only backward navigation

The weights are random and untrained; the point is to see the arithmetic,
not to get a good translation.

Quick Start:
    >>> from stepformer.config import StepformerConfig
    >>> from stepformer.pipeline import PipelineController
    >>> controller = PipelineController()
    >>> controller.submit(StepformerConfig.from_yaml("configs/default.yaml"))
    >>> controller.run()

Subpackages:
    - stepformer.data     — Translation tables, embeddings, tokenization
    - stepformer.model    — Vector ops, weights, attention, FFN, projection
    - stepformer.pipeline — Stages, state, simulator and controller
"""

__version__ = "0.1.0"
