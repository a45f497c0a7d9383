"""
Delivering stage tools.
"""

from pydantic import Field

from .base import Tool, ToolContext, ToolInput, ToolResult
from .registry import ToolRegistry


class FinalizeAdventureInput(ToolInput):
    title: str | None = Field(default=None, description="Final adventure title")
    summary: str | None = Field(default=None, description="Final adventure summary for the export header")


async def finalize_adventure_handler(payload: FinalizeAdventureInput, context: ToolContext) -> ToolResult:
    """Mark the adventure complete and tell the client it can be downloaded."""
    if not payload.title:
        return ToolResult.fail("title is required for finalize_adventure")

    context.emit("ui:ready", {
        "stage": "delivering",
        "summary": payload.summary or "Adventure finalized",
    })

    return ToolResult.ok({
        "status": "adventure_finalized",
        "title": payload.title,
        "summary": payload.summary or "",
    })


def create_delivering_tools() -> list[Tool]:
    return [
        Tool(
            name="finalize_adventure",
            description=(
                "Finalize the adventure once the storyteller is happy with every scene. "
                "Enables the download."
            ),
            input_model=FinalizeAdventureInput,
            handler=finalize_adventure_handler,
        ),
    ]


def register_tools(registry: ToolRegistry) -> None:
    for tool in create_delivering_tools():
        registry.register(tool)
