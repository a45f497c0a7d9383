"""
Inscribing stage tools: write each scene section by section.

Sections are produced in three waves:

    1: overview, setup, developments
    2: npcs_present, adversaries, items
    3: transitions, portents, gm_notes

Wave 3 depends on the first two, so edits upstream can mark it stale
(`invalidate_wave3`) until it is rewritten.
"""

import re
from typing import Any, Literal

from pydantic import Field

from ..adventure import AdventureState
from ..store.base import ContentKind
from .base import Tool, ToolContext, ToolInput, ToolResult
from .registry import ToolRegistry

SectionId = Literal[
    "overview", "setup", "developments",
    "npcs_present", "adversaries", "items",
    "transitions", "portents", "gm_notes",
]

WAVE_SECTIONS: dict[int, tuple[str, ...]] = {
    1: ("overview", "setup", "developments"),
    2: ("npcs_present", "adversaries", "items"),
    3: ("transitions", "portents", "gm_notes"),
}

SECTION_IDS: tuple[str, ...] = WAVE_SECTIONS[1] + WAVE_SECTIONS[2] + WAVE_SECTIONS[3]


class UpdateSectionInput(ToolInput):
    scene_arc_id: str = Field(description="The scene arc ID to update")
    section_id: SectionId = Field(description="Which section to update")
    content: str = Field(description="The new section content")


class WaveSection(ToolInput):
    section_id: SectionId = Field(description="Section identifier")
    content: str = Field(description="Section content")


class SetWaveInput(ToolInput):
    scene_arc_id: str = Field(description="The scene arc ID")
    wave: Literal[1, 2, 3] = Field(description="Wave number (1, 2, or 3)")
    sections: list[WaveSection] = Field(min_length=1, description="The sections to populate for this wave")


class InvalidateWave3Input(ToolInput):
    scene_arc_id: str = Field(description="The scene arc ID")
    reason: str = Field(description="Why Wave 3 needs regeneration")


class WarnBalanceInput(ToolInput):
    scene_arc_id: str = Field(description="The scene arc ID")
    message: str = Field(description="The balance warning message")
    section_id: SectionId | None = Field(default=None, description="Optional section the warning relates to")


class ConfirmSceneInput(ToolInput):
    scene_arc_id: str = Field(description="The scene arc ID to confirm")


class QueryAdversariesInput(ToolInput):
    tier: int | None = Field(default=None, ge=1, le=4, description="Character tier for difficulty matching")
    type: str | None = Field(default=None, description="Adversary type filter (e.g., undead, beast)")
    limit: int = Field(default=5, ge=1, le=50, description="Maximum number of results (default 5)")


class QueryItemsInput(ToolInput):
    tier: int | None = Field(default=None, ge=1, le=4, description="Character tier for appropriateness matching")
    category: str | None = Field(default=None, description="Item category filter (weapon, armor, consumable)")
    limit: int = Field(default=5, ge=1, le=50, description="Maximum number of results (default 5)")


class PropagateRenameInput(ToolInput):
    scene_arc_id: str = Field(description="The scene arc ID to propagate within")
    old_name: str = Field(description="The previous entity name")
    new_name: str = Field(description="The new entity name")
    origin_section_id: SectionId | None = Field(
        default=None, description="Section where the rename was made (left untouched)"
    )


class PropagateSemanticInput(ToolInput):
    scene_arc_id: str = Field(description="The scene arc ID to check")
    entity_name: str = Field(description="The entity name to search for")
    change_type: Literal["motivation", "role", "description", "backstory", "voice", "secret"] = Field(
        description="What aspect changed"
    )
    old_value: str = Field(description="The previous value")
    new_value: str = Field(description="The new value")


def _word_pattern(name: str, flags: int = 0) -> re.Pattern:
    return re.compile(rf"\b{re.escape(name)}\b", flags)


async def _scene_for(context: ToolContext, scene_arc_id: str) -> tuple[AdventureState, dict[str, Any]] | ToolResult:
    """Load state and the inscribed scene for an arc, or a failure result."""
    state = await context.load_state()
    if state.find_scene_arc(scene_arc_id) is None:
        return ToolResult.fail(f"Scene arc not found: {scene_arc_id}")
    scene = state.inscribed_scene(scene_arc_id, create=True)
    return state, scene


async def update_section_handler(payload: UpdateSectionInput, context: ToolContext) -> ToolResult:
    loaded = await _scene_for(context, payload.scene_arc_id)
    if isinstance(loaded, ToolResult):
        return loaded
    state, scene = loaded

    previous = scene["sections"].get(payload.section_id)
    state.record_version(
        f"section:{payload.scene_arc_id}:{payload.section_id}", previous, context.version_history_limit
    )
    scene["sections"][payload.section_id] = payload.content
    await context.save_state(state)

    context.emit("panel:section", {
        "sceneArcId": payload.scene_arc_id,
        "sectionId": payload.section_id,
        "content": payload.content,
    })
    return ToolResult.ok({"status": "section_updated", "sectionId": payload.section_id})


async def set_wave_handler(payload: SetWaveInput, context: ToolContext) -> ToolResult:
    allowed = WAVE_SECTIONS[payload.wave]
    stray = [s.section_id for s in payload.sections if s.section_id not in allowed]
    if stray:
        return ToolResult.fail(
            f"Sections {', '.join(stray)} do not belong to wave {payload.wave} "
            f"(expected {', '.join(allowed)})"
        )

    loaded = await _scene_for(context, payload.scene_arc_id)
    if isinstance(loaded, ToolResult):
        return loaded
    state, scene = loaded

    for section in payload.sections:
        scene["sections"][section.section_id] = section.content
    if payload.wave == 3:
        scene["wave3Invalidated"] = False
    await context.save_state(state)

    written = {s.section_id: s.content for s in payload.sections}
    context.emit("panel:wave", {"sceneArcId": payload.scene_arc_id, "wave": payload.wave, "sections": written})
    return ToolResult.ok({"status": "wave_set", "wave": payload.wave, "sections": list(written)})


async def invalidate_wave3_handler(payload: InvalidateWave3Input, context: ToolContext) -> ToolResult:
    loaded = await _scene_for(context, payload.scene_arc_id)
    if isinstance(loaded, ToolResult):
        return loaded
    state, scene = loaded

    scene["wave3Invalidated"] = True
    scene["confirmed"] = False
    await context.save_state(state)

    context.emit("panel:wave3_invalidated", {"sceneArcId": payload.scene_arc_id, "reason": payload.reason})
    return ToolResult.ok({"status": "wave3_invalidated"})


async def warn_balance_handler(payload: WarnBalanceInput, context: ToolContext) -> ToolResult:
    loaded = await _scene_for(context, payload.scene_arc_id)
    if isinstance(loaded, ToolResult):
        return loaded
    state, scene = loaded

    warning = {"message": payload.message, "sectionId": payload.section_id}
    scene.setdefault("balanceWarnings", []).append(warning)
    await context.save_state(state)

    context.emit("panel:balance_warning", {"sceneArcId": payload.scene_arc_id, **warning})
    return ToolResult.ok({"status": "warning_recorded"})


async def confirm_scene_handler(payload: ConfirmSceneInput, context: ToolContext) -> ToolResult:
    loaded = await _scene_for(context, payload.scene_arc_id)
    if isinstance(loaded, ToolResult):
        return loaded
    state, scene = loaded

    if scene.get("wave3Invalidated"):
        return ToolResult.fail("Wave 3 is out of date for this scene; regenerate it before confirming")

    scene["confirmed"] = True
    await context.save_state(state)

    # Scenes whose arc was replaced no longer count
    arc_ids = {arc.get("id") for arc in state.scene_arcs}
    confirmed = sum(
        1 for s in state.inscribed_scenes
        if s.get("confirmed") and s.get("sceneArcId") in arc_ids
    )
    total = len(state.scene_arcs)
    context.emit("panel:scene_confirmed", {
        "sceneArcId": payload.scene_arc_id,
        "confirmedCount": confirmed,
        "totalScenes": total,
    })
    return ToolResult.ok({
        "status": "scene_confirmed",
        "confirmedCount": confirmed,
        "totalScenes": total,
        "allConfirmed": confirmed >= total,
    })


def _matches(entry: dict[str, Any], key: str, wanted: Any) -> bool:
    if wanted is None:
        return True
    value = entry.get(key)
    if isinstance(wanted, str) and isinstance(value, str):
        return value.lower() == wanted.lower()
    return value == wanted


async def query_adversaries_handler(payload: QueryAdversariesInput, context: ToolContext) -> ToolResult:
    entries = await context.store.list_content(ContentKind.ADVERSARY)
    results = [
        e for e in entries
        if _matches(e, "tier", payload.tier) and _matches(e, "type", payload.type)
    ][: payload.limit]

    context.emit("panel:adversaries", {"adversaries": results})
    return ToolResult.ok({"adversaries": results, "count": len(results)})


async def query_items_handler(payload: QueryItemsInput, context: ToolContext) -> ToolResult:
    entries = await context.store.list_content(ContentKind.ITEM)
    results = [
        e for e in entries
        if _matches(e, "tier", payload.tier) and _matches(e, "category", payload.category)
    ][: payload.limit]

    context.emit("panel:items", {"items": results})
    return ToolResult.ok({"items": results, "count": len(results)})


async def propagate_rename_handler(payload: PropagateRenameInput, context: ToolContext) -> ToolResult:
    old_name = payload.old_name.strip()
    new_name = payload.new_name.strip()
    if not old_name or not new_name:
        return ToolResult.fail("oldName and newName are required for propagate_rename")

    loaded = await _scene_for(context, payload.scene_arc_id)
    if isinstance(loaded, ToolResult):
        return loaded
    state, scene = loaded

    pattern = _word_pattern(old_name)
    updated: dict[str, str] = {}
    for section_id, content in scene["sections"].items():
        if section_id == payload.origin_section_id or not isinstance(content, str):
            continue
        replaced = pattern.sub(lambda _match: new_name, content)
        if replaced != content:
            updated[section_id] = replaced

    if updated:
        scene["sections"].update(updated)
        await context.save_state(state)
        context.emit("panel:sections_updated", {"sceneArcId": payload.scene_arc_id, "sections": updated})

    return ToolResult.ok({
        "status": "rename_propagated",
        "oldName": old_name,
        "newName": new_name,
        "updatedSections": list(updated),
    })


async def propagate_semantic_handler(payload: PropagateSemanticInput, context: ToolContext) -> ToolResult:
    if not payload.entity_name.strip():
        return ToolResult.fail("entityName is required for propagate_semantic")

    loaded = await _scene_for(context, payload.scene_arc_id)
    if isinstance(loaded, ToolResult):
        return loaded
    _, scene = loaded

    pattern = _word_pattern(payload.entity_name.strip(), re.IGNORECASE)
    affected = [
        section_id for section_id in SECTION_IDS
        if isinstance(scene["sections"].get(section_id), str) and pattern.search(scene["sections"][section_id])
    ]

    impact = {
        "sceneArcId": payload.scene_arc_id,
        "entityName": payload.entity_name,
        "changeType": payload.change_type,
        "oldValue": payload.old_value,
        "newValue": payload.new_value,
        "affectedSections": affected,
    }
    context.emit("panel:semantic_impact", impact)
    return ToolResult.ok({"status": "impact_assessed", **impact})


def create_inscribing_tools() -> list[Tool]:
    return [
        Tool(
            name="update_section",
            description="Write or rewrite one section of an inscribed scene.",
            input_model=UpdateSectionInput,
            handler=update_section_handler,
        ),
        Tool(
            name="set_wave",
            description=(
                "Populate the sections of one wave for a scene. Wave 1: overview, setup, "
                "developments. Wave 2: npcs_present, adversaries, items. Wave 3: transitions, "
                "portents, gm_notes."
            ),
            input_model=SetWaveInput,
            handler=set_wave_handler,
        ),
        Tool(
            name="invalidate_wave3",
            description="Mark a scene's Wave 3 sections as stale after an upstream change.",
            input_model=InvalidateWave3Input,
            handler=invalidate_wave3_handler,
        ),
        Tool(
            name="warn_balance",
            description="Flag a balance concern (encounter difficulty, pacing, rewards) for a scene.",
            input_model=WarnBalanceInput,
            handler=warn_balance_handler,
        ),
        Tool(
            name="confirm_scene",
            description="Confirm a scene as finished once the storyteller approves it.",
            input_model=ConfirmSceneInput,
            handler=confirm_scene_handler,
        ),
        Tool(
            name="query_adversaries",
            description="Search the adversary catalogue by tier and type.",
            input_model=QueryAdversariesInput,
            handler=query_adversaries_handler,
        ),
        Tool(
            name="query_items",
            description="Search the item catalogue by tier and category.",
            input_model=QueryItemsInput,
            handler=query_items_handler,
        ),
        Tool(
            name="propagate_rename",
            description=(
                "Rename an entity everywhere it appears in a scene, except the section "
                "where the rename originated."
            ),
            input_model=PropagateRenameInput,
            handler=propagate_rename_handler,
        ),
        Tool(
            name="propagate_semantic",
            description=(
                "Report which sections of a scene mention an entity whose motivation, role, "
                "description, backstory, voice or secret changed."
            ),
            input_model=PropagateSemanticInput,
            handler=propagate_semantic_handler,
        ),
    ]


def register_tools(registry: ToolRegistry) -> None:
    for tool in create_inscribing_tools():
        registry.register(tool)
