"""
Tests for the per-stage tool handlers.
"""

import pytest

from sage_codex.adventure import AdventureState, COMPONENT_IDS
from sage_codex.store import MemoryStore
from sage_codex.tools import ToolDispatcher, get_tool_registry

SESSION_ID = "session-1"

CATALOGUE = {
    "frame": [
        {
            "id": "witherwild",
            "name": "The Witherwild",
            "themes": ["nature", "corruption", "survival"],
            "description": "A forest turned against its people",
            "lore": "The Heartwood sickened a century ago.",
        },
        {"id": "five-banners", "name": "Five Banners Burning", "themes": ["war", "politics", "corruption"]},
        {"id": "silent-sea", "name": "The Silent Sea", "themes": ["ocean", "mystery"]},
    ],
    "adversary": [
        {"id": "a1", "name": "Bramble Wolf", "tier": 1, "type": "Beast"},
        {"id": "a2", "name": "Grave Knight", "tier": 2, "type": "Undead"},
        {"id": "a3", "name": "Dire Bear", "tier": 2, "type": "beast"},
    ],
    "item": [
        {"id": "i1", "name": "Minor Health Potion", "tier": 1, "category": "consumable"},
        {"id": "i2", "name": "Runed Blade", "tier": 2, "category": "weapon"},
    ],
}

ARCS = [
    {"id": "arc-1", "title": "The Bell Tolls", "sceneType": "social"},
    {"id": "arc-2", "title": "Into the Depths", "sceneType": "exploration"},
    {"id": "arc-3", "title": "The Drowned Choir", "sceneType": "combat"},
]


@pytest.fixture
def store():
    return MemoryStore(content=CATALOGUE)


@pytest.fixture
def dispatcher():
    return ToolDispatcher(get_tool_registry())


@pytest.fixture
def context(dispatcher, store):
    return dispatcher.context(SESSION_ID, store)


async def _state(store) -> AdventureState:
    return await store.get_state(SESSION_ID)


async def _call(dispatcher, context, tool_name, /, **arguments):
    return await dispatcher.dispatch(tool_name, arguments, context)


async def _with_arcs(dispatcher, context):
    result = await _call(dispatcher, context, "set_all_scene_arcs", sceneArcs=ARCS)
    assert result.is_error is False
    dispatcher.drain_events()


# --------------------------------------------------------------------------- #
# Universal & invoking
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_signal_ready(dispatcher, context):
    """Test signal_ready queues a ui:ready event."""
    result = await _call(dispatcher, context, "signal_ready", stage="invoking", summary="Spark captured")

    assert result.is_error is False
    events = dispatcher.drain_events()
    assert [e.to_frame() for e in events] == [
        {"type": "ui:ready", "data": {"stage": "invoking", "summary": "Spark captured"}}
    ]


@pytest.mark.asyncio
async def test_signal_ready_rejects_unknown_stage(dispatcher, context):
    """Test signal_ready only accepts stages that can be completed."""
    result = await _call(dispatcher, context, "signal_ready", stage="delivering", summary="Done")

    assert result.is_error is True
    assert dispatcher.drain_events() == []


@pytest.mark.asyncio
async def test_set_spark(dispatcher, context, store):
    """Test set_spark records the spark and versions the old one."""
    await _call(dispatcher, context, "set_spark", name="The Drowned Bell", vision="A bell beneath a lake")
    await _call(dispatcher, context, "set_spark", name="Bells of Varn", vision="A drowned town still rings")

    state = await _state(store)
    assert state.spark.name == "Bells of Varn"
    assert state.version_history["spark"] == [{"name": "The Drowned Bell", "vision": "A bell beneath a lake"}]

    events = dispatcher.drain_events()
    assert [e.type for e in events] == ["panel:spark", "panel:spark"]
    assert events[-1].data == {"name": "Bells of Varn", "vision": "A drowned town still rings"}


@pytest.mark.asyncio
async def test_set_spark_requires_fields(dispatcher, context, store):
    """Test a blank spark is rejected without touching state."""
    result = await _call(dispatcher, context, "set_spark", name="  ", vision="Something")

    assert result.is_error is True
    assert await _state(store) is None


@pytest.mark.asyncio
async def test_suggest_adventure_name(dispatcher, context, store):
    """Test naming versions the previous name."""
    await _call(dispatcher, context, "suggest_adventure_name", name="The Drowned Bell")
    result = await _call(dispatcher, context, "suggest_adventure_name", name="Bells of Varn", reason="Warmer")

    state = await _state(store)
    assert result.result == {"status": "name_suggested", "name": "Bells of Varn"}
    assert state.adventure_name == "Bells of Varn"
    assert state.version_history["adventureName"] == ["The Drowned Bell"]
    assert dispatcher.drain_events()[-1].data == {"name": "Bells of Varn", "reason": "Warmer"}


# --------------------------------------------------------------------------- #
# Attuning
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_set_component(dispatcher, context, store):
    """Test setting and confirming a component."""
    result = await _call(dispatcher, context, "set_component", componentId="tier", value="2", confirmed=True)

    assert result.is_error is False
    state = await _state(store)
    assert state.components.tier == 2
    assert state.components.confirmed_components == ["tier"]

    event = dispatcher.drain_events()[0]
    assert event.type == "panel:component"
    assert event.data == {"componentId": "tier", "value": 2, "confirmed": True, "allConfirmed": False}


@pytest.mark.asyncio
async def test_set_component_invalid_value(dispatcher, context, store):
    """Test out-of-range values are rejected."""
    result = await _call(dispatcher, context, "set_component", componentId="scenes", value=9)

    assert result.is_error is True
    assert "scenes" in result.result
    assert await _state(store) is None


@pytest.mark.asyncio
async def test_set_component_unknown_component(dispatcher, context):
    """Test unknown component ids fail input validation."""
    result = await _call(dispatcher, context, "set_component", componentId="mood", value="dark")

    assert result.is_error is True
    assert result.result.startswith("Invalid input for set_component")


@pytest.mark.asyncio
async def test_set_component_threads(dispatcher, context, store):
    """Test a single thread string becomes a list."""
    await _call(dispatcher, context, "set_component", componentId="threads", value="found-family")

    state = await _state(store)
    assert state.components.threads == ["found-family"]


@pytest.mark.asyncio
async def test_set_component_unconfirm(dispatcher, context, store):
    """Test re-setting without confirmation clears the confirmation."""
    await _call(dispatcher, context, "set_component", componentId="tenor", value="grim", confirmed=True)
    await _call(dispatcher, context, "set_component", componentId="tenor", value="serious")

    state = await _state(store)
    assert state.components.tenor == "serious"
    assert state.components.confirmed_components == []


@pytest.mark.asyncio
async def test_all_components_confirmed(dispatcher, context, store):
    """Test allConfirmed flips once all eight are confirmed."""
    values = {
        "threads": ["found-family"],
        "chorus": "rich",
        "pillars": "interwoven",
        "tenor": "balanced",
        "tier": 1,
        "members": 4,
        "scenes": 3,
        "span": "3-4 hours",
    }
    for component_id, value in values.items():
        await _call(dispatcher, context, "set_component", componentId=component_id, value=value, confirmed=True)

    state = await _state(store)
    assert state.components.confirmed_components == list(COMPONENT_IDS)
    assert dispatcher.drain_events()[-1].data["allConfirmed"] is True


# --------------------------------------------------------------------------- #
# Binding
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_query_frames_by_theme(dispatcher, context):
    """Test frames are ranked by theme overlap."""
    result = await _call(dispatcher, context, "query_frames", themes=["Corruption", "nature"])

    assert [f["id"] for f in result.result["frames"]] == ["witherwild", "five-banners"]
    event = dispatcher.drain_events()[0]
    assert event.type == "panel:frames"
    assert len(event.data["frames"]) == 2


@pytest.mark.asyncio
async def test_query_frames_without_themes(dispatcher, context):
    """Test an empty query lists frames by name up to the limit."""
    result = await _call(dispatcher, context, "query_frames", limit=2)

    assert [f["name"] for f in result.result["frames"]] == ["Five Banners Burning", "The Silent Sea"]


@pytest.mark.asyncio
async def test_select_catalogue_frame(dispatcher, context, store):
    """Test a catalogue frame fills in missing details."""
    result = await _call(dispatcher, context, "select_frame", frameId="witherwild", name="The Witherwild")

    assert result.is_error is False
    state = await _state(store)
    assert state.frame["themes"] == ["nature", "corruption", "survival"]
    assert state.frame["lore"] == "The Heartwood sickened a century ago."
    assert dispatcher.drain_events()[0].type == "panel:frame"


@pytest.mark.asyncio
async def test_select_unknown_frame(dispatcher, context):
    """Test an unknown catalogue id is rejected."""
    result = await _call(dispatcher, context, "select_frame", frameId="atlantis", name="Atlantis")

    assert result.is_error is True
    assert "atlantis" in result.result


@pytest.mark.asyncio
async def test_select_custom_frame_versions_previous(dispatcher, context, store):
    """Test replacing a frame keeps the old one in history."""
    await _call(dispatcher, context, "select_frame", frameId="silent-sea", name="The Silent Sea")
    await _call(
        dispatcher, context, "select_frame",
        name="The Glass Reaches", themes=["mystery"], isCustom=True,
    )

    state = await _state(store)
    assert state.frame["name"] == "The Glass Reaches"
    assert state.frame["isCustom"] is True
    assert state.version_history["frame"][0]["name"] == "The Silent Sea"


# --------------------------------------------------------------------------- #
# Weaving
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_set_all_scene_arcs(dispatcher, context, store):
    """Test arcs are stored in order and numbered from one."""
    result = await _call(dispatcher, context, "set_all_scene_arcs", sceneArcs=ARCS)

    assert result.result == {"status": "scene_arcs_set", "count": 3}
    state = await _state(store)
    assert [a["sceneNumber"] for a in state.scene_arcs] == [1, 2, 3]
    assert state.scene_arcs[0]["sceneType"] == "social"
    assert dispatcher.drain_events()[0].type == "panel:scene_arcs"


@pytest.mark.asyncio
async def test_set_all_scene_arcs_count_warning(dispatcher, context):
    """Test a mismatch with the attuned scene count is reported."""
    await _call(dispatcher, context, "set_component", componentId="scenes", value=4)

    result = await _call(dispatcher, context, "set_all_scene_arcs", sceneArcs=ARCS)

    assert result.is_error is False
    assert "4 scenes" in result.result["warning"]


@pytest.mark.asyncio
async def test_set_all_scene_arcs_duplicate_ids(dispatcher, context):
    """Test duplicate arc ids are rejected."""
    result = await _call(dispatcher, context, "set_all_scene_arcs", sceneArcs=[ARCS[0], ARCS[0]])

    assert result.is_error is True


@pytest.mark.asyncio
async def test_set_scene_arc(dispatcher, context, store):
    """Test replacing one arc by index."""
    await _with_arcs(dispatcher, context)

    result = await _call(
        dispatcher, context, "set_scene_arc",
        sceneIndex=1, sceneArc={"id": "arc-2", "title": "The Sunken Nave"},
    )

    assert result.is_error is False
    state = await _state(store)
    assert state.scene_arcs[1]["title"] == "The Sunken Nave"
    assert state.scene_arcs[1]["sceneNumber"] == 2
    assert len(state.version_history["sceneArcs"]) == 1


@pytest.mark.asyncio
async def test_set_scene_arc_out_of_range(dispatcher, context):
    """Test an index past the end is rejected."""
    await _with_arcs(dispatcher, context)

    result = await _call(
        dispatcher, context, "set_scene_arc",
        sceneIndex=3, sceneArc={"id": "arc-4", "title": "Epilogue"},
    )

    assert result.is_error is True
    assert "out of range" in result.result


@pytest.mark.asyncio
async def test_reorder_scenes(dispatcher, context, store):
    """Test reordering is a permutation of existing ids."""
    await _with_arcs(dispatcher, context)

    result = await _call(dispatcher, context, "reorder_scenes", order=["arc-3", "arc-1", "arc-2"])

    assert result.is_error is False
    state = await _state(store)
    assert [a["id"] for a in state.scene_arcs] == ["arc-3", "arc-1", "arc-2"]
    assert [a["sceneNumber"] for a in state.scene_arcs] == [1, 2, 3]


@pytest.mark.asyncio
async def test_reorder_scenes_rejects_partial_order(dispatcher, context):
    """Test an order missing an id is rejected."""
    await _with_arcs(dispatcher, context)

    result = await _call(dispatcher, context, "reorder_scenes", order=["arc-3", "arc-1"])

    assert result.is_error is True


# --------------------------------------------------------------------------- #
# Inscribing
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_set_wave(dispatcher, context, store):
    """Test writing a wave's sections."""
    await _with_arcs(dispatcher, context)

    result = await _call(
        dispatcher, context, "set_wave",
        sceneArcId="arc-1", wave=1,
        sections=[
            {"sectionId": "overview", "content": "The bell rings at midnight."},
            {"sectionId": "setup", "content": "[READ_ALOUD]Fog rolls in.[/READ_ALOUD]"},
        ],
    )

    assert result.is_error is False
    scene = (await _state(store)).inscribed_scene("arc-1")
    assert scene["sections"]["overview"] == "The bell rings at midnight."
    event = dispatcher.drain_events()[0]
    assert event.type == "panel:wave"
    assert event.data["wave"] == 1


@pytest.mark.asyncio
async def test_set_wave_rejects_wrong_sections(dispatcher, context):
    """Test sections from another wave are refused."""
    await _with_arcs(dispatcher, context)

    result = await _call(
        dispatcher, context, "set_wave",
        sceneArcId="arc-1", wave=1,
        sections=[{"sectionId": "gm_notes", "content": "Keep it tense."}],
    )

    assert result.is_error is True
    assert "gm_notes" in result.result


@pytest.mark.asyncio
async def test_set_wave_unknown_arc(dispatcher, context):
    """Test writing to a missing arc fails."""
    result = await _call(
        dispatcher, context, "set_wave",
        sceneArcId="arc-9", wave=1,
        sections=[{"sectionId": "overview", "content": "Nothing here."}],
    )

    assert result.is_error is True
    assert result.result == "Scene arc not found: arc-9"


@pytest.mark.asyncio
async def test_invalidated_wave3_blocks_confirmation(dispatcher, context, store):
    """Test a stale wave 3 must be rewritten before confirming."""
    await _with_arcs(dispatcher, context)

    await _call(dispatcher, context, "invalidate_wave3", sceneArcId="arc-1", reason="Villain changed")
    blocked = await _call(dispatcher, context, "confirm_scene", sceneArcId="arc-1")

    await _call(
        dispatcher, context, "set_wave",
        sceneArcId="arc-1", wave=3,
        sections=[
            {"sectionId": "transitions", "content": "The tide turns."},
            {"sectionId": "portents", "content": "Bells toll thrice."},
            {"sectionId": "gm_notes", "content": "Let the players breathe."},
        ],
    )
    confirmed = await _call(dispatcher, context, "confirm_scene", sceneArcId="arc-1")

    assert blocked.is_error is True
    assert confirmed.is_error is False
    assert confirmed.result["confirmedCount"] == 1
    assert confirmed.result["totalScenes"] == 3
    assert confirmed.result["allConfirmed"] is False

    types = [e.type for e in dispatcher.drain_events()]
    assert types == ["panel:wave3_invalidated", "panel:wave", "panel:scene_confirmed"]


@pytest.mark.asyncio
async def test_confirmed_count_ignores_replaced_arcs(dispatcher, context):
    """Test confirmations for arcs that were replaced are not counted."""
    await _call(dispatcher, context, "set_all_scene_arcs", sceneArcs=ARCS[:2])
    await _call(dispatcher, context, "confirm_scene", sceneArcId="arc-1")

    await _call(dispatcher, context, "set_all_scene_arcs", sceneArcs=[
        {"id": "arc-4", "title": "The Lantern Road", "sceneType": "exploration"},
        {"id": "arc-5", "title": "The Last Toll", "sceneType": "combat"},
    ])
    result = await _call(dispatcher, context, "confirm_scene", sceneArcId="arc-4")

    assert result.is_error is False
    assert result.result["confirmedCount"] == 1
    assert result.result["totalScenes"] == 2
    assert result.result["allConfirmed"] is False


@pytest.mark.asyncio
async def test_update_section_versions(dispatcher, context, store):
    """Test section rewrites keep the previous text."""
    await _with_arcs(dispatcher, context)

    await _call(dispatcher, context, "update_section", sceneArcId="arc-2", sectionId="overview", content="First")
    await _call(dispatcher, context, "update_section", sceneArcId="arc-2", sectionId="overview", content="Second")

    state = await _state(store)
    assert state.inscribed_scene("arc-2")["sections"]["overview"] == "Second"
    assert state.version_history["section:arc-2:overview"] == ["First"]


@pytest.mark.asyncio
async def test_warn_balance(dispatcher, context, store):
    """Test balance warnings accumulate on the scene."""
    await _with_arcs(dispatcher, context)

    await _call(
        dispatcher, context, "warn_balance",
        sceneArcId="arc-3", message="Two Grave Knights may overwhelm a tier 1 party", sectionId="adversaries",
    )

    scene = (await _state(store)).inscribed_scene("arc-3")
    assert scene["balanceWarnings"] == [
        {"message": "Two Grave Knights may overwhelm a tier 1 party", "sectionId": "adversaries"}
    ]
    assert dispatcher.drain_events()[0].type == "panel:balance_warning"


@pytest.mark.asyncio
async def test_query_adversaries(dispatcher, context):
    """Test adversary search by tier and type, ignoring case."""
    result = await _call(dispatcher, context, "query_adversaries", tier=2, type="BEAST")

    assert [a["name"] for a in result.result["adversaries"]] == ["Dire Bear"]
    assert dispatcher.drain_events()[0].type == "panel:adversaries"


@pytest.mark.asyncio
async def test_query_items(dispatcher, context):
    """Test item search by category."""
    result = await _call(dispatcher, context, "query_items", category="weapon")

    assert [i["name"] for i in result.result["items"]] == ["Runed Blade"]
    assert dispatcher.drain_events()[0].type == "panel:items"


@pytest.mark.asyncio
async def test_propagate_rename(dispatcher, context, store):
    """Test renames touch whole words outside the origin section."""
    await _with_arcs(dispatcher, context)
    await _call(
        dispatcher, context, "set_wave",
        sceneArcId="arc-1", wave=1,
        sections=[
            {"sectionId": "overview", "content": "Captain Mara leads the watch."},
            {"sectionId": "setup", "content": "Mara waits in Maradon."},
            {"sectionId": "developments", "content": "Captain Ilsa, once Mara, returns."},
        ],
    )
    dispatcher.drain_events()

    result = await _call(
        dispatcher, context, "propagate_rename",
        sceneArcId="arc-1", oldName="Mara", newName="Ilsa", originSectionId="developments",
    )

    sections = (await _state(store)).inscribed_scene("arc-1")["sections"]
    assert sections["overview"] == "Captain Ilsa leads the watch."
    assert sections["setup"] == "Ilsa waits in Maradon."
    assert sections["developments"] == "Captain Ilsa, once Mara, returns."
    assert result.result["updatedSections"] == ["overview", "setup"]
    assert dispatcher.drain_events()[0].type == "panel:sections_updated"


@pytest.mark.asyncio
async def test_propagate_rename_keeps_backslashes(dispatcher, context, store):
    """Test the new name is inserted literally, backslashes included."""
    await _with_arcs(dispatcher, context)
    await _call(
        dispatcher, context, "set_wave",
        sceneArcId="arc-1", wave=1,
        sections=[
            {"sectionId": "overview", "content": "Mara waits."},
            {"sectionId": "setup", "content": "Ask Mara."},
            {"sectionId": "developments", "content": "Nothing yet."},
        ],
    )

    result = await _call(
        dispatcher, context, "propagate_rename",
        sceneArcId="arc-1", oldName="Mara", newName="Ka\\nra\\1", originSectionId="developments",
    )

    sections = (await _state(store)).inscribed_scene("arc-1")["sections"]
    assert result.is_error is False
    assert sections["overview"] == "Ka\\nra\\1 waits."
    assert sections["setup"] == "Ask Ka\\nra\\1."


@pytest.mark.asyncio
async def test_propagate_semantic(dispatcher, context):
    """Test semantic changes report every section mentioning the entity."""
    await _with_arcs(dispatcher, context)
    await _call(
        dispatcher, context, "set_wave",
        sceneArcId="arc-2", wave=2,
        sections=[
            {"sectionId": "npcs_present", "content": "Brother Oren, keeper of the nave."},
            {"sectionId": "items", "content": "A lantern."},
        ],
    )
    dispatcher.drain_events()

    result = await _call(
        dispatcher, context, "propagate_semantic",
        sceneArcId="arc-2", entityName="oren", changeType="motivation",
        oldValue="Protect the bell", newValue="Silence the bell",
    )

    assert result.result["affectedSections"] == ["npcs_present"]
    event = dispatcher.drain_events()[0]
    assert event.type == "panel:semantic_impact"
    assert event.data["changeType"] == "motivation"


# --------------------------------------------------------------------------- #
# Delivering
# --------------------------------------------------------------------------- #

@pytest.mark.asyncio
async def test_finalize_adventure(dispatcher, context):
    """Test finalizing queues the delivering ui:ready event."""
    result = await _call(
        dispatcher, context, "finalize_adventure",
        title="Bells of Varn", summary="A drowned town's last song",
    )

    assert result.result == {
        "status": "adventure_finalized",
        "title": "Bells of Varn",
        "summary": "A drowned town's last song",
    }
    assert dispatcher.drain_events()[0].to_frame() == {
        "type": "ui:ready",
        "data": {"stage": "delivering", "summary": "A drowned town's last song"},
    }


@pytest.mark.asyncio
async def test_finalize_adventure_requires_title(dispatcher, context):
    """Test finalize_adventure needs a title."""
    result = await _call(dispatcher, context, "finalize_adventure", summary="No title")

    assert result.is_error is True
    assert result.result == "title is required for finalize_adventure"
    assert dispatcher.drain_events() == []
