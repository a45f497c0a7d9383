"""
Tool registry and dispatcher.

The registry maps tool names to tools for the lifetime of the process; the
dispatcher resolves a model-issued call against it and owns the pending event
queue for one turn.
"""

from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from ..errors import ErrorKind
from ..llm.base import ToolDefinition
from .base import EventQueue, PendingEvent, Tool, ToolContext, ToolResult

if TYPE_CHECKING:
    from ..store.base import SessionStore

logger = structlog.get_logger()


class ToolRegistry:
    """Registry for managing tools.

    Registering a name that already exists replaces the previous tool.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            logger.debug("Tool replaced", tool_name=tool.name)
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.info("Tool unregistered", tool_name=name)

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self, names: list[str] | None = None) -> list[ToolDefinition]:
        """Get tool definitions for the LLM, optionally for a subset of names."""
        if names is None:
            return [tool.to_definition() for tool in self._tools.values()]
        return [self._tools[name].to_definition() for name in names if name in self._tools]


class ToolDispatcher:
    """Routes tool calls to registered handlers and collects their events."""

    def __init__(self, registry: ToolRegistry, events: EventQueue | None = None):
        self.registry = registry
        self.events = events if events is not None else EventQueue()

    def context(self, session_id: str, store: "SessionStore", version_history_limit: int = 10) -> ToolContext:
        """Build a handler context bound to this dispatcher's queue."""
        return ToolContext(
            session_id=session_id,
            store=store,
            events=self.events,
            version_history_limit=version_history_limit,
        )

    async def dispatch(self, name: str, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        """Execute a tool by name. Never raises."""
        tool = self.registry.get(name)
        if tool is None:
            logger.warning("Unknown tool requested", tool_name=name)
            return ToolResult.fail(f"Unknown tool: {name}", kind=ErrorKind.UNKNOWN_TOOL)

        try:
            logger.info("Executing tool", tool_name=name, session_id=context.session_id)
            result = await tool.execute(arguments or {}, context)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
                for err in e.errors()
            )
            logger.info("Tool input rejected", tool_name=name, errors=details)
            return ToolResult.fail(f"Invalid input for {name}: {details}")
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            return ToolResult.fail(f"Tool {name} failed: {e}")

        logger.info("Tool executed", tool_name=name, is_error=result.is_error)
        return result

    def drain_events(self) -> list[PendingEvent]:
        """Take every pending event queued since the last drain."""
        return self.events.drain()


_registry: ToolRegistry | None = None


def get_tool_registry() -> ToolRegistry:
    """Get or create the global tool registry."""
    global _registry

    if _registry is None:
        _registry = ToolRegistry()
        _initialize_default_tools(_registry)

    return _registry


def _initialize_default_tools(registry: ToolRegistry) -> None:
    """Register every stage's handler set."""
    from . import attuning, binding, delivering, inscribing, invoking, weaving

    for module in (invoking, attuning, binding, weaving, inscribing, delivering):
        module.register_tools(registry)

    logger.info("Tools registered", count=len(registry.list_tools()))
