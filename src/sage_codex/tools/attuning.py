"""
Attuning stage tools: set the eight adventure components.
"""

from typing import Any, Literal

from pydantic import Field

from ..adventure import COMPONENT_IDS, is_valid_component_value
from .base import Tool, ToolContext, ToolInput, ToolResult
from .registry import ToolRegistry

_NUMERIC_COMPONENTS = ("scenes", "members", "tier")


class SetComponentInput(ToolInput):
    component_id: Literal["span", "scenes", "members", "tier", "tenor", "pillars", "chorus", "threads"] = Field(
        description="The component identifier"
    )
    value: Any = Field(description="The selected value (type depends on component)")
    confirmed: bool = Field(default=False, description="Whether the storyteller has confirmed this selection")


def _coerce(component_id: str, value: Any) -> Any:
    # Models sometimes send numbers as strings
    if component_id in _NUMERIC_COMPONENTS and isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if component_id == "threads" and isinstance(value, str):
        return [value]
    return value


async def set_component_handler(payload: SetComponentInput, context: ToolContext) -> ToolResult:
    component_id = payload.component_id
    value = _coerce(component_id, payload.value)

    if not is_valid_component_value(component_id, value):
        return ToolResult.fail(f"Invalid value for {component_id}: {payload.value!r}")

    state = await context.load_state()
    components = state.components
    setattr(components, component_id, list(value) if component_id == "threads" else value)

    confirmed = [c for c in components.confirmed_components if c != component_id]
    if payload.confirmed:
        confirmed.append(component_id)
    # Keep canonical order
    components.confirmed_components = [c for c in COMPONENT_IDS if c in confirmed]
    await context.save_state(state)

    context.emit("panel:component", {
        "componentId": component_id,
        "value": value,
        "confirmed": payload.confirmed,
        "allConfirmed": components.all_confirmed,
    })
    return ToolResult.ok({
        "status": "component_set",
        "componentId": component_id,
        "confirmedCount": len(components.confirmed_components),
    })


def create_attuning_tools() -> list[Tool]:
    return [
        Tool(
            name="set_component",
            description=(
                "Set one of the adventure's eight components (span, scenes, members, tier, "
                "tenor, pillars, chorus, threads). Mark it confirmed once the storyteller agrees."
            ),
            input_model=SetComponentInput,
            handler=set_component_handler,
        ),
    ]


def register_tools(registry: ToolRegistry) -> None:
    for tool in create_attuning_tools():
        registry.register(tool)
