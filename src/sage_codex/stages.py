"""
The Unfolding - the fixed six-stage authoring sequence.

invoking -> attuning -> binding -> weaving -> inscribing -> delivering

The order is total: no branching, no skipping, no cycles. Anything that needs
"is stage X before Y" compares indexes.
"""

from dataclasses import dataclass
from enum import Enum


class Stage(str, Enum):
    """The six stages of the Unfolding."""
    INVOKING = "invoking"
    ATTUNING = "attuning"
    BINDING = "binding"
    WEAVING = "weaving"
    INSCRIBING = "inscribing"
    DELIVERING = "delivering"


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.INVOKING,
    Stage.ATTUNING,
    Stage.BINDING,
    Stage.WEAVING,
    Stage.INSCRIBING,
    Stage.DELIVERING,
)

INITIAL_STAGE = STAGE_ORDER[0]
FINAL_STAGE = STAGE_ORDER[-1]


@dataclass(frozen=True)
class StageInfo:
    """Display metadata for a stage."""

    stage: Stage
    label: str
    description: str


STAGE_INFO: dict[Stage, StageInfo] = {
    Stage.INVOKING: StageInfo(Stage.INVOKING, "Invoking", "Opening the Codex, sharing your vision"),
    Stage.ATTUNING: StageInfo(Stage.ATTUNING, "Attuning", "Sensing the tale's character"),
    Stage.BINDING: StageInfo(Stage.BINDING, "Binding", "Anchoring the tale to its foundation"),
    Stage.WEAVING: StageInfo(Stage.WEAVING, "Weaving", "Weaving threads of story into a pattern"),
    Stage.INSCRIBING: StageInfo(Stage.INSCRIBING, "Inscribing", "Writing each scene into the Codex"),
    Stage.DELIVERING: StageInfo(Stage.DELIVERING, "Delivering", "The completed tale, ready to bring to life"),
}


def is_valid_stage(value: object) -> bool:
    """Check whether a value names one of the six stages."""
    if isinstance(value, Stage):
        return True
    return isinstance(value, str) and value in {s.value for s in STAGE_ORDER}


def stage_index(stage: Stage | str) -> int:
    """Position of a stage in the Unfolding (0-based)."""
    return STAGE_ORDER.index(Stage(stage))


def next_stage(current: Stage | str) -> Stage | None:
    """Successor of a stage, or None for the final stage.

    Unknown values also return None.
    """
    if not is_valid_stage(current):
        return None
    index = stage_index(current)
    if index == len(STAGE_ORDER) - 1:
        return None
    return STAGE_ORDER[index + 1]


def is_before(a: Stage | str, b: Stage | str) -> bool:
    """True when stage `a` comes strictly before stage `b`."""
    return stage_index(a) < stage_index(b)
