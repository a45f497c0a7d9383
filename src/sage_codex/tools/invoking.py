"""
Invoking stage tools, plus the universal tools offered in every stage.

- signal_ready: tell the client a stage's work is done
- suggest_adventure_name: propose a title for the adventure
- set_spark: record the seed premise
"""

from typing import Literal

from pydantic import Field

from ..adventure import Spark
from .base import Tool, ToolContext, ToolInput, ToolResult
from .registry import ToolRegistry


class SignalReadyInput(ToolInput):
    stage: Literal["invoking", "attuning", "binding", "weaving", "inscribing"] = Field(
        description="The current stage being completed"
    )
    summary: str = Field(description="Brief summary of what was accomplished in this stage")


class SuggestNameInput(ToolInput):
    name: str = Field(description="The suggested adventure name")
    reason: str | None = Field(default=None, description="Why this name fits the adventure")


class SetSparkInput(ToolInput):
    name: str = Field(description="Working name for the adventure")
    vision: str = Field(description="Summary of the storyteller's vision for the adventure")


async def signal_ready_handler(payload: SignalReadyInput, context: ToolContext) -> ToolResult:
    context.emit("ui:ready", {"stage": payload.stage, "summary": payload.summary})
    return ToolResult.ok({"status": "ready", "stage": payload.stage})


async def suggest_adventure_name_handler(payload: SuggestNameInput, context: ToolContext) -> ToolResult:
    name = payload.name.strip()
    if not name:
        return ToolResult.fail("name is required for suggest_adventure_name")

    state = await context.load_state()
    if state.adventure_name != name:
        state.record_version("adventureName", state.adventure_name, context.version_history_limit)
    state.adventure_name = name
    await context.save_state(state)

    context.emit("panel:name", {"name": name, "reason": payload.reason or ""})
    return ToolResult.ok({"status": "name_suggested", "name": name})


async def set_spark_handler(payload: SetSparkInput, context: ToolContext) -> ToolResult:
    name = payload.name.strip()
    vision = payload.vision.strip()
    if not name or not vision:
        return ToolResult.fail("name and vision are required for set_spark")

    state = await context.load_state()
    if state.spark is not None:
        state.record_version("spark", state.spark.to_dict(), context.version_history_limit)
    state.spark = Spark(name=name, vision=vision)
    await context.save_state(state)

    context.emit("panel:spark", state.spark.to_dict())
    return ToolResult.ok({"status": "spark_set", "name": name})


def create_invoking_tools() -> list[Tool]:
    """Create the universal and invoking-stage tools."""
    return [
        Tool(
            name="signal_ready",
            description=(
                "Signal that the current stage's work is complete and the storyteller "
                "can move on. Only call this when the stage's goals are met."
            ),
            input_model=SignalReadyInput,
            handler=signal_ready_handler,
        ),
        Tool(
            name="suggest_adventure_name",
            description=(
                "Suggest a name for the adventure once enough of its character is known. "
                "The storyteller can accept or ignore it."
            ),
            input_model=SuggestNameInput,
            handler=suggest_adventure_name_handler,
        ),
        Tool(
            name="set_spark",
            description=(
                "Record the spark of the adventure: a working name and a distilled "
                "summary of the storyteller's vision."
            ),
            input_model=SetSparkInput,
            handler=set_spark_handler,
        ),
    ]


def register_tools(registry: ToolRegistry) -> None:
    for tool in create_invoking_tools():
        registry.register(tool)
