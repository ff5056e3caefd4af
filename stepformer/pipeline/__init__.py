"""
stepformer.pipeline — Stage State Machine
==========================================
Sequences the forward pass into 16 inspectable stages.

    stages.py      — the ordered Stage enumeration and each stage's outputs
    state.py       — current stage, stored outputs, read-only snapshots
    simulator.py   — one computation per stage
    controller.py  — submit / compute / advance / jump_to / reset / run
"""

from stepformer.pipeline.stages import Phase, Stage, STAGE_ORDER
from stepformer.pipeline.state import PipelineSnapshot, PipelineState
from stepformer.pipeline.simulator import ForwardSimulator
from stepformer.pipeline.controller import PipelineController
