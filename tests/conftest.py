"""
Shared fixtures: an in-memory store and a scripted stand-in for the model.
"""

import asyncio

import pytest

from sage_codex.config import Settings
from sage_codex.llm.base import BaseLLM, LLMResponse, StreamEvent, ToolCall
from sage_codex.store import MemoryStore


def text(chunk: str) -> StreamEvent:
    return StreamEvent(type="text", text=chunk)


def tool_call(call_id: str, tool_name: str, /, **arguments) -> StreamEvent:
    return StreamEvent(type="tool_call", tool_call=ToolCall(id=call_id, name=tool_name, arguments=arguments))


def done(content: str = "", calls: list[StreamEvent] | None = None, output_tokens: int = 5) -> StreamEvent:
    return StreamEvent(
        type="done",
        response=LLMResponse(
            content=content,
            tool_calls=[c.tool_call for c in calls or []],
            input_tokens=10,
            output_tokens=output_tokens,
        ),
    )


class ScriptedLLM(BaseLLM):
    """Replays canned rounds of stream events.

    A round may be an exception instance, which is raised mid-stream. When a
    gate is given, every round waits for it before yielding anything.
    """

    def __init__(self, rounds=None, gate: asyncio.Event | None = None):
        super().__init__(api_key="test", model="scripted")
        self.rounds = list(rounds or [])
        self.gate = gate
        self.calls: list[dict] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def stream(self, messages, tools=None, system_prompt=None):
        self.calls.append({
            "messages": list(messages),
            "tools": list(tools or []),
            "system_prompt": system_prompt,
        })
        if self.gate is not None:
            await self.gate.wait()

        events = self.rounds.pop(0) if self.rounds else [text("..."), done("...")]
        if isinstance(events, Exception):
            raise events
        for event in events:
            yield event


@pytest.fixture
def settings():
    return Settings(_env_file=None, anthropic_api_key="test-key")


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_llm():
    return ScriptedLLM


@pytest.fixture
def events():
    return {"text": text, "tool_call": tool_call, "done": done}
