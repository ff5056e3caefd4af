"""
stepformer.model — Numeric Building Blocks
===========================================
Every arithmetic piece of the forward pass, on 1-D float64 tensors:

    vector_ops.py    — add, dot, mat-vec, ReLU, softmax, layer norm
    weights.py       — uniform random matrices bundled as WeightSets
    positional.py    — sinusoidal position vectors
    attention.py     — scaled dot-product attention (plain, causal, cross)
    feed_forward.py  — expand / ReLU / contract and Add & Norm
    output.py        — vocabulary projection, softmax and argmax

Nothing here is trained. Each stage draws fresh weights from a
WeightProvider, and the draw is returned so it can be inspected.
"""

from stepformer.model.weights import WeightProvider, WeightSet
from stepformer.model.positional import SinusoidalPositionalEncoding
from stepformer.model.attention import AttentionEngine, AttentionPass, AttentionResult
from stepformer.model.feed_forward import FeedForwardBlock, add_norm
from stepformer.model.output import OutputProjector, build_vocabulary
