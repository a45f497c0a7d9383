"""
Binding stage tools: search the frame catalogue and bind a frame.
"""

from typing import Any

from pydantic import Field

from ..store.base import ContentKind
from .base import Tool, ToolContext, ToolInput, ToolResult
from .registry import ToolRegistry


class QueryFramesInput(ToolInput):
    themes: list[str] = Field(default_factory=list, description="Theme keywords to search for")
    limit: int = Field(default=5, ge=1, le=50, description="Maximum number of results (default 5)")


class SelectFrameInput(ToolInput):
    frame_id: str | None = Field(default=None, description="Catalogue frame ID (for existing frames)")
    name: str = Field(description="Frame name")
    description: str = Field(default="", description="Frame description")
    themes: list[str] = Field(default_factory=list, description="Thematic elements")
    typical_adversaries: list[str] = Field(default_factory=list, description="Typical adversary types")
    lore: str = Field(default="", description="Background lore")
    is_custom: bool = Field(default=False, description="Whether this is a storyteller-created frame")


def _theme_score(frame: dict[str, Any], wanted: set[str]) -> int:
    themes = frame.get("themes") or []
    return sum(1 for t in themes if isinstance(t, str) and t.lower() in wanted)


async def query_frames_handler(payload: QueryFramesInput, context: ToolContext) -> ToolResult:
    frames = await context.store.list_content(ContentKind.FRAME)
    wanted = {t.strip().lower() for t in payload.themes if t.strip()}

    if wanted:
        scored = [(f, _theme_score(f, wanted)) for f in frames]
        scored = [(f, s) for f, s in scored if s > 0]
        # Best overlap first, name breaks ties
        scored.sort(key=lambda pair: (-pair[1], str(pair[0].get("name", ""))))
        matches = [f for f, _ in scored]
    else:
        matches = sorted(frames, key=lambda f: str(f.get("name", "")))

    matches = matches[: payload.limit]
    context.emit("panel:frames", {"frames": matches})
    return ToolResult.ok({"frames": matches, "count": len(matches)})


async def select_frame_handler(payload: SelectFrameInput, context: ToolContext) -> ToolResult:
    if not payload.name.strip():
        return ToolResult.fail("name is required for select_frame")

    frame: dict[str, Any] = {
        "id": payload.frame_id,
        "name": payload.name.strip(),
        "description": payload.description,
        "themes": list(payload.themes),
        "typicalAdversaries": list(payload.typical_adversaries),
        "lore": payload.lore,
        "isCustom": payload.is_custom,
    }

    if payload.frame_id and not payload.is_custom:
        catalogue = await context.store.list_content(ContentKind.FRAME)
        known = next((f for f in catalogue if str(f.get("id")) == payload.frame_id), None)
        if known is None:
            return ToolResult.fail(f"Frame not found: {payload.frame_id}")
        # Catalogue values fill anything the model left out
        for key in ("description", "themes", "typicalAdversaries", "lore"):
            if not frame[key] and known.get(key):
                frame[key] = known[key]

    state = await context.load_state()
    state.record_version("frame", state.frame, context.version_history_limit)
    state.frame = frame
    await context.save_state(state)

    context.emit("panel:frame", {"frame": frame})
    return ToolResult.ok({"status": "frame_selected", "name": frame["name"]})


def create_binding_tools() -> list[Tool]:
    return [
        Tool(
            name="query_frames",
            description=(
                "Search the frame catalogue by theme keywords. Returns the best "
                "matching frames to present to the storyteller."
            ),
            input_model=QueryFramesInput,
            handler=query_frames_handler,
        ),
        Tool(
            name="select_frame",
            description=(
                "Bind the adventure to a frame, either an existing catalogue frame "
                "(give its frameId) or a custom one described in full."
            ),
            input_model=SelectFrameInput,
            handler=select_frame_handler,
        ),
    ]


def register_tools(registry: ToolRegistry) -> None:
    for tool in create_binding_tools():
        registry.register(tool)
