"""
Weaving stage tools: plan the scene arcs.
"""

from typing import Any, Literal

from pydantic import Field

from .base import Tool, ToolContext, ToolInput, ToolResult
from .registry import ToolRegistry


class SceneArcInput(ToolInput):
    id: str = Field(description="Stable scene arc identifier")
    scene_number: int = Field(default=0, description="1-based position of the scene")
    title: str
    subtitle: str = ""
    description: str = ""
    key_elements: list[str] = Field(default_factory=list)
    location: str = ""
    scene_type: Literal["exploration", "social", "combat", "puzzle", "mixed"] = "mixed"


class SetAllSceneArcsInput(ToolInput):
    scene_arcs: list[SceneArcInput] = Field(
        min_length=1, description="The scene arc briefs (one per scene)"
    )


class SetSceneArcInput(ToolInput):
    scene_index: int = Field(ge=0, description="Zero-based index of the scene to update")
    scene_arc: SceneArcInput = Field(description="The updated scene arc")


class ReorderScenesInput(ToolInput):
    order: list[str] = Field(description="Scene IDs in the desired order")


def _renumber(arcs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    for index, arc in enumerate(arcs):
        arc["sceneNumber"] = index + 1
    return arcs


def _arc_dict(arc: SceneArcInput) -> dict[str, Any]:
    return arc.model_dump(by_alias=True)


async def set_all_scene_arcs_handler(payload: SetAllSceneArcsInput, context: ToolContext) -> ToolResult:
    ids = [arc.id for arc in payload.scene_arcs]
    if len(set(ids)) != len(ids):
        return ToolResult.fail("scene arc ids must be unique")

    state = await context.load_state()
    if state.scene_arcs:
        state.record_version("sceneArcs", state.scene_arcs, context.version_history_limit)
    state.scene_arcs = _renumber([_arc_dict(arc) for arc in payload.scene_arcs])
    await context.save_state(state)

    result: dict[str, Any] = {"status": "scene_arcs_set", "count": len(state.scene_arcs)}
    expected = state.components.scenes
    if expected is not None and expected != len(state.scene_arcs):
        result["warning"] = f"Adventure is attuned for {expected} scenes but {len(state.scene_arcs)} were set"

    context.emit("panel:scene_arcs", {"sceneArcs": state.scene_arcs})
    return ToolResult.ok(result)


async def set_scene_arc_handler(payload: SetSceneArcInput, context: ToolContext) -> ToolResult:
    state = await context.load_state()
    if payload.scene_index >= len(state.scene_arcs):
        return ToolResult.fail(
            f"sceneIndex {payload.scene_index} is out of range ({len(state.scene_arcs)} scenes)"
        )

    arc = _arc_dict(payload.scene_arc)
    clash = [a for i, a in enumerate(state.scene_arcs) if i != payload.scene_index and a.get("id") == arc["id"]]
    if clash:
        return ToolResult.fail(f"scene arc id {arc['id']} is already used by another scene")

    state.record_version("sceneArcs", state.scene_arcs, context.version_history_limit)
    state.scene_arcs[payload.scene_index] = arc
    _renumber(state.scene_arcs)
    await context.save_state(state)

    context.emit("panel:scene_arcs", {"sceneArcs": state.scene_arcs})
    return ToolResult.ok({"status": "scene_arc_set", "sceneIndex": payload.scene_index})


async def reorder_scenes_handler(payload: ReorderScenesInput, context: ToolContext) -> ToolResult:
    state = await context.load_state()
    by_id = {arc.get("id"): arc for arc in state.scene_arcs}

    if sorted(payload.order) != sorted(by_id) or len(payload.order) != len(state.scene_arcs):
        return ToolResult.fail("order must list every existing scene arc id exactly once")

    state.record_version("sceneArcs", state.scene_arcs, context.version_history_limit)
    state.scene_arcs = _renumber([by_id[scene_id] for scene_id in payload.order])
    await context.save_state(state)

    context.emit("panel:scene_arcs", {"sceneArcs": state.scene_arcs})
    return ToolResult.ok({"status": "scenes_reordered", "order": payload.order})


def create_weaving_tools() -> list[Tool]:
    return [
        Tool(
            name="set_all_scene_arcs",
            description="Set the full list of scene arc briefs for the adventure, one per scene.",
            input_model=SetAllSceneArcsInput,
            handler=set_all_scene_arcs_handler,
        ),
        Tool(
            name="set_scene_arc",
            description="Replace a single scene arc by its zero-based index.",
            input_model=SetSceneArcInput,
            handler=set_scene_arc_handler,
        ),
        Tool(
            name="reorder_scenes",
            description="Reorder the scene arcs. The order must contain every existing scene ID once.",
            input_model=ReorderScenesInput,
            handler=reorder_scenes_handler,
        ),
    ]


def register_tools(registry: ToolRegistry) -> None:
    for tool in create_weaving_tools():
        registry.register(tool)
