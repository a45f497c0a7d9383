"""
Base classes for tools.
"""

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..adventure import AdventureState
from ..errors import ErrorKind
from ..llm.base import ToolDefinition

if TYPE_CHECKING:
    from ..store.base import SessionStore

logger = structlog.get_logger()


@dataclass
class ToolResult:
    """Result from a tool execution.

    `result` is handed back to the model verbatim; `is_error` tells the model
    (and the orchestrator) that the call did not take effect.
    """

    result: Any = None
    is_error: bool = False
    error_kind: ErrorKind | None = None

    @classmethod
    def ok(cls, result: Any) -> "ToolResult":
        return cls(result=result)

    @classmethod
    def fail(cls, message: str, kind: ErrorKind = ErrorKind.HANDLER_ERROR) -> "ToolResult":
        return cls(result=message, is_error=True, error_kind=kind)

    def to_content(self) -> str:
        """Render the result as tool-result text for the model."""
        if isinstance(self.result, str):
            return self.result
        return json.dumps(self.result, default=str)

    def to_dict(self) -> dict[str, Any]:
        return {"result": self.result, "isError": self.is_error}


@dataclass
class PendingEvent:
    """A side-channel event queued by a handler for the transport."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


class EventQueue:
    """FIFO of pending events owned by one dispatcher."""

    def __init__(self):
        self._events: list[PendingEvent] = []

    def put(self, event: PendingEvent) -> None:
        self._events.append(event)

    def drain(self) -> list[PendingEvent]:
        """Empty the queue and return its contents in enqueue order."""
        events, self._events = self._events, []
        return events

    def __len__(self) -> int:
        return len(self._events)


@dataclass
class ToolContext:
    """What a handler may touch: its session, the store and the event queue."""

    session_id: str
    store: "SessionStore"
    events: EventQueue
    version_history_limit: int = 10

    def emit(self, event_type: str, data: dict[str, Any]) -> None:
        self.events.put(PendingEvent(type=event_type, data=data))

    async def load_state(self) -> AdventureState:
        state = await self.store.get_state(self.session_id)
        if state is None:
            logger.warning("No adventure state for session, starting empty", session_id=self.session_id)
            return AdventureState()
        return state

    async def save_state(self, state: AdventureState) -> None:
        await self.store.put_state(self.session_id, state)


class ToolInput(BaseModel):
    """Base for tool payload models: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


ToolHandler = Callable[[Any, ToolContext], Awaitable[ToolResult]]


@dataclass
class Tool:
    """A named tool: a typed input model plus an async handler."""

    name: str
    description: str
    input_model: type[ToolInput]
    handler: ToolHandler

    def get_parameters_schema(self) -> dict[str, Any]:
        """JSON Schema for the input model (camelCase field names)."""
        schema = self.input_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        return schema

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
        )

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        """Decode the arguments and run the handler.

        Raises pydantic.ValidationError on malformed input.
        """
        payload = self.input_model.model_validate(arguments)
        return await self.handler(payload, context)
