"""
Stepformer Errors
==================
Every failure the simulator can report derives from ``StepformerError`` so
that a caller can catch the whole family in one place.

Errors that describe bad *input* (a wrong shape, a bad configuration, a
sentence with no known words) also derive from ``ValueError``, in the same
spirit as the ``validate()`` methods in ``stepformer.config``.

    StepformerError
    ├── DimensionMismatch       vector/matrix shape contract violated
    ├── EmptyVocabularyResult   tokenization removed every word
    ├── InvalidConfiguration    rejected before the pipeline starts
    ├── StageNotReady           prerequisite output missing (recoverable)
    └── StageAlreadyComputed    attempt to overwrite a stored stage output
"""

from __future__ import annotations


class StepformerError(Exception):
    """Base class for all simulator errors."""


class DimensionMismatch(StepformerError, ValueError):
    """A vector or matrix did not have the shape an operation requires."""


class EmptyVocabularyResult(StepformerError, ValueError):
    """Tokenization dropped every word of the input sentence."""


class InvalidConfiguration(StepformerError, ValueError):
    """The run configuration is inconsistent and the pipeline cannot start."""


class StageNotReady(StepformerError):
    """A stage was requested before the output it depends on was stored."""


class StageAlreadyComputed(StepformerError):
    """A stage output was written twice."""
