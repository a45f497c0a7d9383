"""
Tests for adventure state records.
"""

import pytest

from sage_codex.adventure import (
    AdventureSession,
    AdventureState,
    Components,
    Spark,
    is_valid_component_value,
)
from sage_codex.stages import Stage


def test_from_raw_none_gives_defaults():
    """Test a missing document loads as a fully shaped empty state."""
    state = AdventureState.from_raw(None)

    assert state.spark is None
    assert state.components == Components()
    assert state.frame is None
    assert state.scene_arcs == []
    assert state.inscribed_scenes == []
    assert state.version_history == {}
    assert state.adventure_name is None


@pytest.mark.parametrize("raw", [[], "state", 42, {}])
def test_from_raw_malformed_documents(raw):
    """Test non-dict documents fall back to defaults."""
    state = AdventureState.from_raw(raw)

    assert state.to_dict() == AdventureState().to_dict()


def test_from_raw_fills_bad_fields():
    """Test each invalid field falls back independently."""
    raw = {
        "spark": {"name": "The Drowned Bell"},
        "components": "broken",
        "frame": [],
        "sceneArcs": {"not": "a list"},
        "inscribedScenes": None,
        "versionHistory": ["nope"],
        "adventureName": 7,
    }
    state = AdventureState.from_raw(raw)

    assert state.spark is None
    assert state.components.threads == []
    assert state.components.confirmed_components == []
    assert state.frame is None
    assert state.scene_arcs == []
    assert state.inscribed_scenes == []
    assert state.version_history == {}
    assert state.adventure_name is None


def test_from_raw_keeps_valid_fields():
    """Test valid stored values survive loading."""
    raw = {
        "spark": {"name": "The Drowned Bell", "vision": "A bell tolls beneath the lake"},
        "components": {
            "span": "3-4 hours",
            "scenes": 4,
            "tier": 9,
            "threads": ["found-family"],
            "confirmedComponents": ["span", "scenes", "bogus"],
        },
        "frame": {"name": "The Witherwild"},
        "sceneArcs": [{"id": "arc-1"}, "junk"],
        "versionHistory": {"spark": [{"name": "old", "vision": "old"}], "bad": "x"},
        "adventureName": "Bells of Varn",
    }
    state = AdventureState.from_raw(raw)

    assert state.spark == Spark(name="The Drowned Bell", vision="A bell tolls beneath the lake")
    assert state.components.span == "3-4 hours"
    assert state.components.scenes == 4
    assert state.components.tier is None
    assert state.components.threads == ["found-family"]
    assert state.components.confirmed_components == ["span", "scenes"]
    assert state.frame == {"name": "The Witherwild"}
    assert state.scene_arcs == [{"id": "arc-1"}]
    assert list(state.version_history) == ["spark"]
    assert state.adventure_name == "Bells of Varn"


def test_to_dict_round_trips_through_from_raw():
    """Test a saved state loads back equal."""
    state = AdventureState(
        spark=Spark(name="Ashes", vision="A city rebuilt on a dragon's grave"),
        adventure_name="Ashfall",
    )
    state.components.tier = 2
    state.components.threads = ["trust-betrayal"]
    state.components.confirmed_components = ["tier"]

    assert AdventureState.from_raw(state.to_dict()).to_dict() == state.to_dict()


def test_record_version_caps_history():
    """Test version history keeps only the newest entries."""
    state = AdventureState()
    for i in range(15):
        state.record_version("adventureName", f"name {i}", limit=10)

    history = state.version_history["adventureName"]
    assert len(history) == 10
    assert history[0] == "name 5"
    assert history[-1] == "name 14"


def test_record_version_skips_none():
    """Test nothing is recorded when there was no previous value."""
    state = AdventureState()
    state.record_version("frame", None)

    assert state.version_history == {}


def test_inscribed_scene_create():
    """Test inscribed scenes are created on request with default shape."""
    state = AdventureState()

    assert state.inscribed_scene("arc-1") is None

    scene = state.inscribed_scene("arc-1", create=True)
    assert scene == {
        "sceneArcId": "arc-1",
        "sections": {},
        "wave3Invalidated": False,
        "confirmed": False,
        "balanceWarnings": [],
    }
    assert state.inscribed_scene("arc-1") is scene


@pytest.mark.parametrize(
    "component_id,value,expected",
    [
        ("span", "2-3 hours", True),
        ("span", "1 hour", False),
        ("scenes", 6, True),
        ("scenes", 7, False),
        ("members", 1, False),
        ("tier", True, False),
        ("tenor", "whimsical", True),
        ("pillars", "battle-led", True),
        ("chorus", "loud", False),
        ("threads", [], True),
        ("threads", ["found-family", "identity-legacy", "trust-betrayal"], True),
        ("threads", ["found-family", "identity-legacy", "trust-betrayal", "survival-justice"], False),
        ("threads", ["unknown"], False),
        ("mood", "dark", False),
    ],
)
def test_component_validation(component_id, value, expected):
    """Test component values against their option sets."""
    assert is_valid_component_value(component_id, value) is expected


def test_session_to_dict():
    """Test session serialization uses camelCase keys."""
    session = AdventureSession(user_id="user-1", title="The Drowned Bell")
    data = session.to_dict()

    assert data["userId"] == "user-1"
    assert data["stage"] == Stage.INVOKING.value
    assert data["isActive"] is True
    assert "createdAt" in data
