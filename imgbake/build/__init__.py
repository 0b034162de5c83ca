"""Build orchestration: shared state, steps, runner, artifact, builder facade."""

from imgbake.build.artifact import Artifact
from imgbake.build.builder import Builder, default_connector, select_sequence
from imgbake.build.runner import BuildStatus, StepRunner
from imgbake.build.state import BuildState
from imgbake.build.step import Step, StepAction

__all__ = [
    "Artifact",
    "Builder",
    "BuildState",
    "BuildStatus",
    "Step",
    "StepAction",
    "StepRunner",
    "default_connector",
    "select_sequence",
]
