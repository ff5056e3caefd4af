"""
Stepformer Pipeline Controller
================================
The state machine that walks a learner through one forward pass.

    IDLE ──submit──▶ tokenizing ──advance──▶ embedding ──▶ ... ──▶ translation_complete
                          ▲                                          │
                          └──────────────── jump_to ◀───────────────┘
                                      (completed stages only)

Rules:
    - compute() fills in the current stage's outputs once; it never
      overwrites them.
    - advance() moves forward by exactly one stage, and only when the
      current stage's outputs are stored.
    - jump_to() moves backward to any completed stage. Outputs of later
      stages are kept, so walking forward again shows the same numbers.
    - reset() or a new submit() discards everything.

Usage:
    >>> controller = PipelineController()
    >>> controller.submit(StepformerConfig.for_smoke_test())
    >>> controller.run()
    >>> controller.current_stage
    <Stage.TRANSLATION_COMPLETE: 'translation_complete'>
    >>> controller.output("reference_translation")
    ('nous', 'sommes', 'meilleurs')
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from stepformer.config import DECODER_MODES, StepformerConfig
from stepformer.errors import InvalidConfiguration, StageAlreadyComputed, StageNotReady
from stepformer.model.weights import WeightProvider
from stepformer.pipeline.simulator import ForwardSimulator
from stepformer.pipeline.stages import STAGE_ORDER, Stage
from stepformer.pipeline.state import PipelineSnapshot, PipelineState, freeze

logger = logging.getLogger(__name__)


class PipelineController:
    """
    Owns one PipelineState and the simulator that fills it.

    Parameters
    ----------
    weight_provider : WeightProvider or None
        Shared by every run submitted to this controller. If None, each
        submit() builds a provider from the submitted config's seed.
    """

    def __init__(self, weight_provider: Optional[WeightProvider] = None):
        self.weight_provider = weight_provider
        self._state = PipelineState()
        self._simulator: Optional[ForwardSimulator] = None
        self._paused = False

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def current_stage(self) -> Stage:
        return self._state.current_stage

    @property
    def completed_stages(self) -> tuple[Stage, ...]:
        return self._state.completed_stages

    @property
    def config(self) -> Optional[StepformerConfig]:
        """The config of the active run, or None before submit()."""
        return self._simulator.config if self._simulator is not None else None

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_complete(self) -> bool:
        stage = self._state.current_stage
        return stage.is_terminal and self._state.has_outputs(stage)

    def output(self, name: str) -> Any:
        """
        Read-only copy of a named output.

        Raises
        ------
        KeyError
            If the name is unknown or not computed yet.
        """
        return freeze(self._state.get(name))

    def stage_outputs(self, stage: Stage | str) -> Mapping[str, Any]:
        """Read-only view of everything one stage stored (empty if nothing)."""
        stage = Stage.parse(stage)
        data = self._state.stage_data.get(stage, {})
        return MappingProxyType({name: freeze(value) for name, value in data.items()})

    def snapshot(self) -> PipelineSnapshot:
        return self._state.snapshot()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def submit(self, config: StepformerConfig) -> list[str]:
        """
        Start a new run.

        The config is validated and the sentence tokenized before any
        existing state is touched, so a rejected submit leaves the
        previous run intact.

        Returns
        -------
        list[str]
            The tokens stored as the tokenizing stage's output.

        Raises
        ------
        InvalidConfiguration
            If the config fails validation.
        EmptyVocabularyResult
            If no word of the sentence is in the vocabulary.
        """
        config.validate()

        weight_provider = self.weight_provider
        if weight_provider is None:
            weight_provider = WeightProvider(
                seed=config.model.seed, weight_range=config.model.weight_range,
            )
        simulator = ForwardSimulator(config, weight_provider=weight_provider)
        tokens = simulator.tokenize()

        self.reset()
        self._simulator = simulator
        self._state.current_stage = Stage.TOKENIZING
        self._state.record(Stage.TOKENIZING, {"tokens": tokens})

        logger.info(
            f"Submitted '{config.run.sentence}' → {tokens} "
            f"(d_model={config.model.d_model}, heads={config.model.n_heads}, "
            f"language={config.run.target_language})"
        )
        return list(tokens)

    def reset(self) -> None:
        """Back to IDLE with every output discarded."""
        self._state.clear()
        self._simulator = None
        self._paused = False
        logger.debug("Pipeline reset")

    # =========================================================================
    # Stepping
    # =========================================================================

    def compute(self) -> bool:
        """
        Compute the current stage if its outputs are not stored yet.

        Returns
        -------
        bool
            True if something was computed, False if the outputs were
            already there.

        Raises
        ------
        StageNotReady
            If nothing has been submitted, or a prerequisite is missing.
        """
        stage = self._state.current_stage
        if stage is Stage.IDLE or self._simulator is None:
            raise StageNotReady("Nothing submitted; call submit() first")
        if stage in self._state.stage_data:
            return False

        outputs = self._simulator.compute(stage, self._state)
        self._state.record(stage, outputs)
        return True

    def advance(self, strict: bool = False) -> bool:
        """
        Move to the next stage if the current one is done.

        Returns
        -------
        bool
            True if the stage changed. False (state untouched) if the
            current stage's outputs are missing or it is the last stage.

        Raises
        ------
        StageNotReady
            Instead of returning False, when ``strict`` is True.
        """
        stage = self._state.current_stage
        reason = None
        if stage is Stage.IDLE:
            reason = "nothing submitted"
        elif stage.is_terminal:
            reason = "already at the final stage"
        elif not self._state.has_outputs(stage):
            reason = f"stage '{stage.value}' has not been computed"

        if reason is not None:
            if strict:
                raise StageNotReady(f"Cannot advance: {reason}")
            logger.debug(f"Advance rejected: {reason}")
            return False

        target = stage.next()
        self._state.current_stage = target
        logger.info(
            f"Stage {target.position + 1}/{len(STAGE_ORDER)}: "
            f"{stage.value} → {target.value}"
        )
        return True

    def step(self) -> bool:
        """compute() then advance()."""
        self.compute()
        return self.advance()

    def jump_to(self, stage: Stage | str) -> None:
        """
        Go back to a completed stage for review.

        Raises
        ------
        StageNotReady
            If the stage is not in completed_stages. State is unchanged.
        ValueError
            If ``stage`` is not a stage identifier.
        """
        target = Stage.parse(stage)
        if target not in self._state.completed_stages:
            raise StageNotReady(
                f"Cannot jump to '{target.value}': only completed stages "
                f"{[s.value for s in self._state.completed_stages]} are reachable"
            )
        previous = self._state.current_stage
        self._state.current_stage = target
        logger.info(f"Jumped back: {previous.value} → {target.value}")

    # =========================================================================
    # Auto-advance
    # =========================================================================

    def pause(self) -> None:
        self._paused = True
        logger.info(f"Paused at '{self._state.current_stage.value}'")

    def resume(
        self,
        max_stages: Optional[int] = None,
        on_stage: Optional[Callable[[Stage], None]] = None,
    ) -> int:
        """Clear the pause and keep running from the current stage."""
        self._paused = False
        logger.info(f"Resumed at '{self._state.current_stage.value}'")
        return self.run(max_stages=max_stages, on_stage=on_stage)

    def run(
        self,
        max_stages: Optional[int] = None,
        on_stage: Optional[Callable[[Stage], None]] = None,
    ) -> int:
        """
        Auto-advance with step() until paused, finished, or max_stages
        transitions have been made.

        Parameters
        ----------
        max_stages : int or None
            Upper bound on stage transitions; None means no bound.
        on_stage : callable or None
            Called with the new current stage after every transition. It
            may call pause() to stop the run at that boundary.

        Returns
        -------
        int
            Number of stage transitions made.
        """
        if self._state.current_stage is Stage.IDLE:
            raise StageNotReady("Nothing submitted; call submit() first")

        transitions = 0
        while not self._paused:
            if max_stages is not None and transitions >= max_stages:
                break
            if not self.step():
                break
            transitions += 1
            if on_stage is not None:
                on_stage(self._state.current_stage)

        # The final stage has no successor but still needs its outputs
        if not self._paused and self._state.current_stage.is_terminal:
            self.compute()

        return transitions

    # =========================================================================
    # Decoder mode
    # =========================================================================

    def select_decoder_mode(self, mode: str) -> None:
        """
        Choose teacher forcing or autoregressive display for this run.

        The mode is recorded by the decoder_start stage and has no effect
        on the numbers.

        Raises
        ------
        InvalidConfiguration
            If the mode is unknown.
        StageNotReady
            If the pipeline is not at decoder_start.
        StageAlreadyComputed
            If decoder_start has already recorded a mode.
        """
        if mode not in DECODER_MODES:
            raise InvalidConfiguration(
                f"decoder_mode must be one of {DECODER_MODES}, got '{mode}'"
            )
        stage = self._state.current_stage
        if stage is not Stage.DECODER_START or self._simulator is None:
            raise StageNotReady(
                f"Decoder mode can only be chosen at 'decoder_start', "
                f"current stage is '{stage.value}'"
            )
        if stage in self._state.stage_data:
            raise StageAlreadyComputed(
                f"Decoder mode already recorded as "
                f"'{self._state.get('decoder_mode')}'"
            )
        self._simulator.decoder_mode = mode
        logger.info(f"Decoder mode: {mode}")

    def __repr__(self) -> str:
        return (
            f"PipelineController(stage={self._state.current_stage.value}, "
            f"completed={len(self._state.completed_stages)}/{len(STAGE_ORDER)}, "
            f"paused={self._paused})"
        )
