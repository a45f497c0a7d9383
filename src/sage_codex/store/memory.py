"""
In-process row store.

Used by the test suite and for local development without a database. Every
read returns a copy, so callers never alias stored rows.
"""

import asyncio
import copy
from typing import Any

import structlog

from ..adventure import AdventureSession, AdventureState, ChatMessage
from ..errors import ActiveSessionExists
from ..stages import Stage
from .base import ContentKind, SessionStore

logger = structlog.get_logger()


class MemoryStore(SessionStore):
    """Dictionary-backed SessionStore guarded by an asyncio.Lock."""

    def __init__(self, content: dict[str, list[dict[str, Any]]] | None = None):
        self._sessions: dict[str, AdventureSession] = {}
        self._states: dict[str, dict[str, Any]] = {}
        self._messages: dict[str, list[ChatMessage]] = {}
        self._content: dict[str, list[dict[str, Any]]] = copy.deepcopy(content or {})
        self._lock = asyncio.Lock()

    async def find_active_session(self, user_id: str) -> AdventureSession | None:
        async with self._lock:
            for session in self._sessions.values():
                if session.user_id == user_id and session.is_active:
                    return copy.copy(session)
            return None

    async def get_session(self, session_id: str) -> AdventureSession | None:
        async with self._lock:
            session = self._sessions.get(session_id)
            return copy.copy(session) if session else None

    async def list_sessions(self, user_id: str) -> list[AdventureSession]:
        async with self._lock:
            sessions = [copy.copy(s) for s in self._sessions.values() if s.user_id == user_id]
        return sorted(sessions, key=lambda s: s.updated_at, reverse=True)

    async def create_session(self, session: AdventureSession, state: AdventureState) -> None:
        async with self._lock:
            if session.is_active and any(
                s.user_id == session.user_id and s.is_active for s in self._sessions.values()
            ):
                raise ActiveSessionExists(session.user_id)
            self._sessions[session.id] = copy.copy(session)
            self._states[session.id] = state.to_dict()
            self._messages.setdefault(session.id, [])

    async def swap_session(
        self,
        updated: AdventureSession,
        expected_stage: Stage,
        expected_active: bool,
    ) -> bool:
        async with self._lock:
            current = self._sessions.get(updated.id)
            if current is None:
                return False
            if current.stage != expected_stage or current.is_active != expected_active:
                logger.warning(
                    "Session swap lost",
                    session_id=updated.id,
                    expected_stage=expected_stage.value,
                    actual_stage=current.stage.value,
                )
                return False
            self._sessions[updated.id] = copy.copy(updated)
            return True

    async def get_state(self, session_id: str) -> AdventureState | None:
        async with self._lock:
            raw = self._states.get(session_id)
        if raw is None:
            return None
        return AdventureState.from_raw(raw)

    async def put_state(self, session_id: str, state: AdventureState) -> None:
        async with self._lock:
            self._states[session_id] = state.to_dict()

    async def put_raw_state(self, session_id: str, raw: Any) -> None:
        """Store an arbitrary state document (exercises default fill)."""
        async with self._lock:
            self._states[session_id] = copy.deepcopy(raw)

    async def delete_state(self, session_id: str) -> None:
        async with self._lock:
            self._states.pop(session_id, None)

    async def append_message(self, message: ChatMessage) -> None:
        async with self._lock:
            self._messages.setdefault(message.session_id, []).append(copy.copy(message))

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        async with self._lock:
            messages = [copy.copy(m) for m in self._messages.get(session_id, [])]
        # Stable sort keeps insertion order for equal timestamps
        return sorted(messages, key=lambda m: m.created_at)

    async def list_content(self, kind: ContentKind | str) -> list[dict[str, Any]]:
        key = ContentKind(kind).value
        async with self._lock:
            return copy.deepcopy(self._content.get(key, []))

    async def add_content(self, kind: ContentKind | str, entry: dict[str, Any]) -> None:
        key = ContentKind(kind).value
        async with self._lock:
            self._content.setdefault(key, []).append(copy.deepcopy(entry))
