"""
Stage-scoped tool advertisement.

The registry accepts any registered name in any stage; which tools the model
is told about is decided here.
"""

from ..llm.base import ToolDefinition
from ..stages import Stage
from .registry import ToolRegistry

UNIVERSAL_TOOLS: tuple[str, ...] = ("signal_ready", "suggest_adventure_name")

STAGE_TOOLS: dict[Stage, tuple[str, ...]] = {
    Stage.INVOKING: ("set_spark",),
    Stage.ATTUNING: ("set_component",),
    Stage.BINDING: ("query_frames", "select_frame"),
    Stage.WEAVING: ("set_all_scene_arcs", "set_scene_arc", "reorder_scenes"),
    Stage.INSCRIBING: (
        "update_section",
        "set_wave",
        "invalidate_wave3",
        "warn_balance",
        "confirm_scene",
        "query_adversaries",
        "query_items",
        "propagate_rename",
        "propagate_semantic",
    ),
    Stage.DELIVERING: ("finalize_adventure",),
}


def tool_names_for_stage(stage: Stage | str) -> list[str]:
    """Universal tools first, then the stage's own tools."""
    return list(UNIVERSAL_TOOLS) + list(STAGE_TOOLS[Stage(stage)])


def get_tools_for_stage(stage: Stage | str, registry: ToolRegistry) -> list[ToolDefinition]:
    """Definitions advertised to the model for a stage (unregistered names are skipped)."""
    return registry.get_definitions(tool_names_for_stage(stage))
