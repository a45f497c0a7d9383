"""
Adventure domain records.

AdventureSession and ChatMessage mirror the stored rows. AdventureState is the
per-session document the tool handlers mutate; it is always fully shaped,
whatever the stored JSON looks like.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from .stages import Stage


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


# --------------------------------------------------------------------------- #
# Sessions & messages
# --------------------------------------------------------------------------- #

@dataclass
class AdventureSession:
    """One run through the Unfolding for one user."""

    user_id: str
    title: str
    stage: Stage = Stage.INVOKING
    is_active: bool = True
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "stage": self.stage.value,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class MessageRole(str, Enum):
    """Message roles stored in conversation history."""
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ChatMessage:
    """A persisted conversation message."""

    session_id: str
    role: MessageRole
    content: str
    tool_calls: list[dict[str, Any]] | None = None
    token_count: int | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)


# --------------------------------------------------------------------------- #
# Component option sets
# --------------------------------------------------------------------------- #

COMPONENT_IDS = (
    "span", "scenes", "members", "tier", "tenor", "pillars", "chorus", "threads",
)

SPAN_OPTIONS = ("2-3 hours", "3-4 hours", "4-5 hours")
SCENES_OPTIONS = (3, 4, 5, 6)
MEMBERS_OPTIONS = (2, 3, 4, 5)
TIER_OPTIONS = (1, 2, 3, 4)
TENOR_OPTIONS = ("grim", "serious", "balanced", "lighthearted", "whimsical")
PILLARS_OPTIONS = ("interwoven", "battle-led", "discovery-led", "intrigue-led")
CHORUS_OPTIONS = ("sparse", "moderate", "rich")
THREAD_OPTIONS = (
    "redemption-sacrifice",
    "identity-legacy",
    "found-family",
    "power-corruption",
    "trust-betrayal",
    "survival-justice",
)
MAX_THREADS = 3

_SINGLE_OPTIONS: dict[str, tuple] = {
    "span": SPAN_OPTIONS,
    "scenes": SCENES_OPTIONS,
    "members": MEMBERS_OPTIONS,
    "tier": TIER_OPTIONS,
    "tenor": TENOR_OPTIONS,
    "pillars": PILLARS_OPTIONS,
    "chorus": CHORUS_OPTIONS,
}


def is_valid_component_value(component_id: str, value: Any) -> bool:
    """Validate a value against a component's option set."""
    if component_id == "threads":
        return (
            isinstance(value, list)
            and len(value) <= MAX_THREADS
            and all(v in THREAD_OPTIONS for v in value)
        )
    options = _SINGLE_OPTIONS.get(component_id)
    if options is None or isinstance(value, bool):
        return False
    return value in options


# --------------------------------------------------------------------------- #
# Adventure state
# --------------------------------------------------------------------------- #

@dataclass
class Spark:
    """The seed premise: a working name and a distilled vision."""

    name: str
    vision: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "vision": self.vision}


@dataclass
class Components:
    """The eight Attuning components."""

    span: str | None = None
    scenes: int | None = None
    members: int | None = None
    tier: int | None = None
    tenor: str | None = None
    pillars: str | None = None
    chorus: str | None = None
    threads: list[str] = field(default_factory=list)
    confirmed_components: list[str] = field(default_factory=list)

    @property
    def all_confirmed(self) -> bool:
        return all(c in self.confirmed_components for c in COMPONENT_IDS)

    def to_dict(self) -> dict[str, Any]:
        return {
            "span": self.span,
            "scenes": self.scenes,
            "members": self.members,
            "tier": self.tier,
            "tenor": self.tenor,
            "pillars": self.pillars,
            "chorus": self.chorus,
            "threads": list(self.threads),
            "confirmedComponents": list(self.confirmed_components),
        }

    @classmethod
    def from_raw(cls, raw: Any) -> "Components":
        """Build from stored JSON, dropping any invalid slot."""
        if not _looks_like_components(raw):
            return cls()
        components = cls()
        for component_id in _SINGLE_OPTIONS:
            value = raw.get(component_id)
            if is_valid_component_value(component_id, value):
                setattr(components, component_id, value)
        threads = raw.get("threads")
        if is_valid_component_value("threads", threads):
            components.threads = list(threads)
        confirmed = raw.get("confirmedComponents")
        if isinstance(confirmed, list):
            components.confirmed_components = [c for c in confirmed if c in COMPONENT_IDS]
        return components


def _looks_like_components(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    return "threads" in value or "span" in value or "confirmedComponents" in value


def _dict_list(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


@dataclass
class AdventureState:
    """Mutable per-session document edited by tool handlers."""

    spark: Spark | None = None
    components: Components = field(default_factory=Components)
    frame: dict[str, Any] | None = None
    scene_arcs: list[dict[str, Any]] = field(default_factory=list)
    inscribed_scenes: list[dict[str, Any]] = field(default_factory=list)
    version_history: dict[str, list[Any]] = field(default_factory=dict)
    adventure_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "spark": self.spark.to_dict() if self.spark else None,
            "components": self.components.to_dict(),
            "frame": copy.deepcopy(self.frame),
            "sceneArcs": copy.deepcopy(self.scene_arcs),
            "inscribedScenes": copy.deepcopy(self.inscribed_scenes),
            "versionHistory": copy.deepcopy(self.version_history),
            "adventureName": self.adventure_name,
        }

    @classmethod
    def from_raw(cls, raw: Any) -> "AdventureState":
        """Map stored JSON to a fully shaped state.

        Every missing or malformed field falls back to its default, so this
        never fails.
        """
        state = raw if isinstance(raw, dict) else {}

        spark = None
        raw_spark = state.get("spark")
        if (
            isinstance(raw_spark, dict)
            and isinstance(raw_spark.get("name"), str)
            and isinstance(raw_spark.get("vision"), str)
        ):
            spark = Spark(name=raw_spark["name"], vision=raw_spark["vision"])

        raw_history = state.get("versionHistory")
        history: dict[str, list[Any]] = {}
        if isinstance(raw_history, dict):
            history = {
                str(k): copy.deepcopy(v)
                for k, v in raw_history.items()
                if isinstance(v, list)
            }

        frame = state.get("frame")
        name = state.get("adventureName")

        return cls(
            spark=spark,
            components=Components.from_raw(state.get("components")),
            frame=copy.deepcopy(frame) if isinstance(frame, dict) and frame else None,
            scene_arcs=copy.deepcopy(_dict_list(state.get("sceneArcs"))),
            inscribed_scenes=copy.deepcopy(_dict_list(state.get("inscribedScenes"))),
            version_history=history,
            adventure_name=name if isinstance(name, str) else None,
        )

    def record_version(self, field_name: str, previous: Any, limit: int = 10) -> None:
        """Keep a replaced value in the field's history (newest last)."""
        if previous is None:
            return
        history = self.version_history.setdefault(field_name, [])
        history.append(copy.deepcopy(previous))
        if limit > 0 and len(history) > limit:
            del history[: len(history) - limit]

    def find_scene_arc(self, scene_arc_id: str) -> dict[str, Any] | None:
        for arc in self.scene_arcs:
            if arc.get("id") == scene_arc_id:
                return arc
        return None

    def inscribed_scene(self, scene_arc_id: str, create: bool = False) -> dict[str, Any] | None:
        """Get the inscribed scene for an arc, optionally creating it."""
        for scene in self.inscribed_scenes:
            if scene.get("sceneArcId") == scene_arc_id:
                scene.setdefault("sections", {})
                return scene
        if not create:
            return None
        scene = {
            "sceneArcId": scene_arc_id,
            "sections": {},
            "wave3Invalidated": False,
            "confirmed": False,
            "balanceWarnings": [],
        }
        self.inscribed_scenes.append(scene)
        return scene
