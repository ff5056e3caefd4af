"""
Stepformer Pipeline State
===========================
The value object the controller owns: where the walkthrough is, and every
data product computed so far.

Invariants:
    - completed_stages is *derived* from current_stage: it is always the
      exact prefix of STAGE_ORDER before the current stage. It cannot be
      sparse or out of order.
    - Each stage's outputs are written once, all together, and only under
      that stage's own names. A second write raises StageAlreadyComputed.

Read-only views:
    Consumers never get the live tensors. ``freeze`` converts a stored value
    into an immutable copy:
        torch.Tensor      → numpy array with writeable=False
        list / tuple      → tuple of frozen items
        dict / dataclass  → MappingProxyType of frozen fields
        str, int, ...     → unchanged
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

import numpy as np
import torch

from stepformer.errors import StageAlreadyComputed
from stepformer.model.weights import WeightSet
from stepformer.pipeline.stages import MAY_BE_EMPTY, OUTPUT_OWNERS, STAGE_ORDER, Stage

logger = logging.getLogger(__name__)


def freeze(value: Any) -> Any:
    """Return an immutable, detached copy of a stored output."""
    if isinstance(value, torch.Tensor):
        array = value.detach().cpu().numpy().copy()
        array.flags.writeable = False
        return array
    if isinstance(value, np.ndarray):
        array = value.copy()
        array.flags.writeable = False
        return array
    if isinstance(value, WeightSet):
        return MappingProxyType({
            "name": value.name,
            "matrices": freeze(dict(value.matrices)),
        })
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return MappingProxyType({
            f.name: freeze(getattr(value, f.name)) for f in dataclasses.fields(value)
        })
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    if isinstance(value, Enum):
        return value.value
    return value


def is_present(value: Any) -> bool:
    """True if a stored value counts as computed (not None, not empty)."""
    if value is None:
        return False
    if isinstance(value, torch.Tensor):
        return value.numel() > 0
    if isinstance(value, (list, tuple, dict, str)):
        return len(value) > 0
    return True


@dataclass(frozen=True)
class PipelineSnapshot:
    """
    Immutable view of the pipeline handed to collaborators.

    Attributes
    ----------
    current_stage : Stage
    completed_stages : tuple[Stage, ...]
    outputs : Mapping[str, Any]
        Every stored output, frozen (see ``freeze``).
    """
    current_stage: Stage
    completed_stages: tuple[Stage, ...]
    outputs: Mapping[str, Any]

    @property
    def phase(self) -> str:
        return self.current_stage.phase.value


@dataclass
class PipelineState:
    """
    Mutable state owned by exactly one PipelineController.

    Attributes
    ----------
    current_stage : Stage
        Where the walkthrough is. IDLE before anything was submitted.
    stage_data : dict[Stage, dict[str, Any]]
        Outputs per stage, in the order they were recorded.
    """
    current_stage: Stage = Stage.IDLE
    stage_data: dict[Stage, dict[str, Any]] = field(default_factory=dict)

    @property
    def completed_stages(self) -> tuple[Stage, ...]:
        return self.current_stage.prefix()

    def has_outputs(self, stage: Stage) -> bool:
        """All of the stage's declared outputs are stored and non-empty."""
        data = self.stage_data.get(stage)
        if data is None:
            return False
        return all(
            name in data and (name in MAY_BE_EMPTY or is_present(data[name]))
            for name in stage.outputs
        )

    def record(self, stage: Stage, outputs: dict[str, Any]) -> None:
        """
        Store a stage's outputs.

        Raises
        ------
        StageAlreadyComputed
            If the stage already has stored outputs.
        KeyError
            If ``outputs`` does not match the names the stage declares.
        """
        if stage in self.stage_data:
            raise StageAlreadyComputed(
                f"Stage '{stage.value}' already has stored outputs; "
                f"reset the pipeline to recompute it"
            )
        expected = set(stage.outputs)
        given = set(outputs)
        if expected != given:
            raise KeyError(
                f"Stage '{stage.value}' must record exactly {sorted(expected)}, "
                f"got {sorted(given)}"
            )
        self.stage_data[stage] = dict(outputs)
        logger.debug(f"Recorded outputs for '{stage.value}': {sorted(given)}")

    def get(self, name: str) -> Any:
        """
        Live (unfrozen) value of a named output; for simulator use only.

        Raises
        ------
        KeyError
            If no stage declares that name, or it has not been computed.
        """
        owner = OUTPUT_OWNERS.get(name)
        if owner is None:
            raise KeyError(f"Unknown output '{name}'")
        data = self.stage_data.get(owner)
        if data is None:
            raise KeyError(
                f"Output '{name}' has not been computed yet "
                f"(produced by stage '{owner.value}')"
            )
        return data[name]

    def available(self, name: str) -> bool:
        owner = OUTPUT_OWNERS.get(name)
        if owner is None or owner not in self.stage_data:
            return False
        if name in MAY_BE_EMPTY:
            return name in self.stage_data[owner]
        return is_present(self.stage_data[owner].get(name))

    def clear(self) -> None:
        self.current_stage = Stage.IDLE
        self.stage_data.clear()

    def snapshot(self) -> PipelineSnapshot:
        outputs = {}
        for stage in STAGE_ORDER:
            for name, value in self.stage_data.get(stage, {}).items():
                outputs[name] = freeze(value)
        return PipelineSnapshot(
            current_stage=self.current_stage,
            completed_stages=self.completed_stages,
            outputs=MappingProxyType(outputs),
        )
