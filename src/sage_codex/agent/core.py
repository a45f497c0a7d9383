"""
Chat orchestration for one adventure session.

A turn:
1. Persists the user's message
2. Compacts the stored history for the upstream model
3. Streams the model's reply to the client, running any tool calls it makes
   through a per-turn ToolDispatcher (up to `max_tool_turns` model rounds)
4. Forwards the events queued by tool handlers, in order
5. Persists the assistant's reply

Only one turn per session runs at a time; a second request while one is
streaming is rejected rather than queued.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import structlog

from ..adventure import ChatMessage, MessageRole, new_id
from ..config import Settings, get_settings
from ..errors import ErrorKind, ServiceError, StoreError, TurnInProgressError, classify_upstream_error
from ..llm import BaseLLM, LLMMessage, LLMResponse, ToolCall
from ..store.base import SessionStore
from ..tools import ToolDispatcher, ToolRegistry, get_tool_registry, get_tools_for_stage
from .compaction import CompactionConfig, compress_history
from .prompts import build_system_prompt
from .session import SessionStateMachine

logger = structlog.get_logger()

# Sent to the model in place of a user message when the Sage speaks first.
# Never stored.
GREETING_TRIGGER = "[The storyteller has opened the Codex and is ready to begin.]"

Emit = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class TurnResult:
    """Outcome of one turn."""

    message_id: str = ""
    content: str = ""
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    error: ServiceError | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def _to_llm_messages(messages: list[ChatMessage]) -> list[LLMMessage]:
    # Empty assistant turns (tool-only replies) are not valid upstream
    return [
        LLMMessage(role=m.role.value, content=m.content)
        for m in messages
        if m.content.strip()
    ]


class ChatOrchestrator:
    """Runs streaming conversational turns against the upstream model."""

    def __init__(
        self,
        llm: BaseLLM,
        store: SessionStore,
        sessions: SessionStateMachine | None = None,
        tool_registry: ToolRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.llm = llm
        self.store = store
        self.sessions = sessions or SessionStateMachine(store)
        self.tool_registry = tool_registry or get_tool_registry()
        self.max_tool_turns = self.settings.max_tool_turns
        self.compaction_config = CompactionConfig(
            recent_window=self.settings.recent_window,
            max_total_messages=self.settings.max_history_messages,
            max_compressed_length=self.settings.max_compressed_length,
        )
        # One slot per (user_id, session_id)
        self._active_turns: set[tuple[str, str]] = set()

    def is_streaming(self, session_id: str) -> bool:
        return any(active == session_id for _, active in self._active_turns)

    def _claim(self, user_id: str, session_id: str) -> tuple[str, str]:
        key = (user_id, session_id)
        if key in self._active_turns:
            logger.info("Turn rejected, already streaming", session_id=session_id)
            raise TurnInProgressError(session_id)
        self._active_turns.add(key)
        return key

    async def _guarded(self, key: tuple[str, str], turn: Awaitable[TurnResult]) -> TurnResult:
        try:
            return await turn
        finally:
            self._active_turns.discard(key)

    def start_turn(self, session_id: str, user_id: str, content: str, emit: Emit) -> "asyncio.Task[TurnResult]":
        """Claim the session and schedule a user turn.

        The claim happens before this returns, so a second call for the same
        session raises TurnInProgressError until the task finishes.
        """
        key = self._claim(user_id, session_id)
        return asyncio.create_task(
            self._guarded(key, self._run_turn(session_id, user_id, content, emit))
        )

    def start_greeting(self, session_id: str, user_id: str, emit: Emit) -> "asyncio.Task[TurnResult]":
        """Claim the session and schedule the Sage's opening message."""
        key = self._claim(user_id, session_id)
        return asyncio.create_task(
            self._guarded(key, self._run_turn(session_id, user_id, None, emit))
        )

    async def send_message(self, session_id: str, user_id: str, content: str, emit: Emit) -> TurnResult:
        """Run a user turn to completion."""
        return await self.start_turn(session_id, user_id, content, emit)

    async def greet(self, session_id: str, user_id: str, emit: Emit) -> TurnResult:
        """Let the Sage speak first on a session with no history."""
        return await self.start_greeting(session_id, user_id, emit)

    async def _fail(self, emit: Emit, kind: ErrorKind, message: str) -> TurnResult:
        error = ServiceError(kind=kind, message=message)
        await emit(error.to_frame())
        return TurnResult(error=error)

    async def _run_turn(
        self,
        session_id: str,
        user_id: str,
        content: str | None,
        emit: Emit,
    ) -> TurnResult:
        greeting = content is None

        loaded = await self.sessions.load(session_id, user_id)
        if not loaded.ok:
            await emit(loaded.error.to_frame())
            return TurnResult(error=loaded.error)
        session = loaded.data.session

        if not session.is_active:
            return await self._fail(emit, ErrorKind.INVALID_TRANSITION, "Session is not active")

        if not greeting:
            content = content.strip()
            if not content:
                return await self._fail(emit, ErrorKind.INVALID_INPUT, "Message content is required")

        try:
            stored = await self.store.list_messages(session_id)
            if greeting and stored:
                logger.info("Greeting skipped, session has history", session_id=session_id)
                return TurnResult(skipped=True)
            if not greeting:
                user_message = ChatMessage(session_id=session_id, role=MessageRole.USER, content=content)
                await self.store.append_message(user_message)
                stored.append(user_message)
        except StoreError as e:
            logger.error("Failed to prepare turn", session_id=session_id, error=str(e))
            return await self._fail(emit, ErrorKind.UPSTREAM_FAILURE, "Could not save your message. Please try again.")

        history = _to_llm_messages(stored)
        if greeting:
            history.append(LLMMessage(role="user", content=GREETING_TRIGGER))
        compressed = compress_history(history, self.compaction_config)
        messages = list(compressed.messages)

        dispatcher = ToolDispatcher(self.tool_registry)
        context = dispatcher.context(
            session_id,
            self.store,
            version_history_limit=self.settings.version_history_limit,
        )
        tools = get_tools_for_stage(session.stage, self.tool_registry)

        result = TurnResult(message_id=new_id())
        text_parts: list[str] = []

        logger.info(
            "Turn started",
            session_id=session_id,
            stage=session.stage.value,
            greeting=greeting,
            history=compressed.original_count,
        )
        await emit({"type": "stream:start", "messageId": result.message_id})

        try:
            for round_number in range(1, self.max_tool_turns + 1):
                state = await self.store.get_state(session_id)
                system_prompt = build_system_prompt(session.stage, state)

                response = await self._stream_round(messages, tools, system_prompt, emit)
                text_parts.append(response.content)
                result.input_tokens += response.input_tokens
                result.output_tokens += response.output_tokens

                if not response.tool_calls:
                    break

                messages.append(LLMMessage(
                    role="assistant",
                    content=response.content,
                    tool_calls=response.tool_calls,
                ))
                await self._run_tools(response.tool_calls, dispatcher, context, messages, result, emit)
            else:
                logger.warning("Max tool turns reached", session_id=session_id, rounds=self.max_tool_turns)

        except StoreError as e:
            logger.error("Store failure during turn", session_id=session_id, error=str(e))
            result.error = ServiceError(ErrorKind.UPSTREAM_FAILURE, "Session storage is unavailable. Please try again.")
            await emit(result.error.to_frame())
        except Exception as e:
            logger.error("LLM streaming error", session_id=session_id, error=str(e))
            result.error = classify_upstream_error(e)
            await emit(result.error.to_frame())
        finally:
            for event in dispatcher.drain_events():
                await emit(event.to_frame())
            result.content = "".join(text_parts)
            await self._store_reply(session_id, result, emit)
            await emit({"type": "stream:end", "messageId": result.message_id})

        logger.info(
            "Turn finished",
            session_id=session_id,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            tool_calls=len(result.tool_calls),
            ok=result.ok,
        )
        return result

    async def _store_reply(self, session_id: str, result: TurnResult, emit: Emit) -> None:
        if not (result.content or result.tool_calls):
            return
        try:
            await self.store.append_message(ChatMessage(
                id=result.message_id,
                session_id=session_id,
                role=MessageRole.ASSISTANT,
                content=result.content,
                tool_calls=result.tool_calls or None,
                token_count=result.output_tokens or None,
            ))
        except StoreError as e:
            logger.error("Failed to save assistant message", session_id=session_id, error=str(e))
            if result.error is None:
                result.error = ServiceError(ErrorKind.UPSTREAM_FAILURE, "Could not save the reply.")
                await emit(result.error.to_frame())

    async def _stream_round(
        self,
        messages: list[LLMMessage],
        tools: list,
        system_prompt: str,
        emit: Emit,
    ) -> LLMResponse:
        """Stream one model round, forwarding text chunks as they arrive."""
        response: LLMResponse | None = None
        content = ""
        tool_calls: list[ToolCall] = []

        async for event in self.llm.stream(messages=messages, tools=tools or None, system_prompt=system_prompt):
            if event.type == "text" and event.text:
                content += event.text
                await emit({"type": "stream:chunk", "content": event.text})
            elif event.type == "tool_call" and event.tool_call:
                tool_calls.append(event.tool_call)
            elif event.type == "done":
                response = event.response

        if response is None:
            response = LLMResponse(content=content, tool_calls=tool_calls)
        return response

    async def _run_tools(
        self,
        tool_calls: list[ToolCall],
        dispatcher: ToolDispatcher,
        context,
        messages: list[LLMMessage],
        result: TurnResult,
        emit: Emit,
    ) -> None:
        """Dispatch a round's tool calls in order and forward queued events."""
        for call in tool_calls:
            await emit({"type": "tool:start", "toolName": call.name, "toolUseId": call.id})
            outcome = await dispatcher.dispatch(call.name, call.arguments, context)
            await emit({
                "type": "tool:end",
                "toolName": call.name,
                "toolUseId": call.id,
                "isError": outcome.is_error,
            })

            messages.append(LLMMessage(
                role="tool",
                content=outcome.to_content(),
                tool_call_id=call.id,
                is_error=outcome.is_error,
            ))
            result.tool_calls.append({
                "id": call.id,
                "name": call.name,
                "input": call.arguments,
                "isError": outcome.is_error,
            })

        for event in dispatcher.drain_events():
            await emit(event.to_frame())
