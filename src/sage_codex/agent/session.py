"""
Session lifecycle for adventures.

Every operation returns a ServiceResult; nothing raises across this boundary.
Sessions are addressed by (session_id, user_id): a session owned by another
user is reported as not found.
"""

from dataclasses import dataclass, replace

import structlog

from ..adventure import AdventureSession, AdventureState, utcnow
from ..errors import ActiveSessionExists, ErrorKind, ServiceResult, StoreError
from ..stages import FINAL_STAGE, INITIAL_STAGE, next_stage
from ..store.base import SessionStore

logger = structlog.get_logger()

STORE_FAILURE_MESSAGE = "Session storage is unavailable. Please try again."


@dataclass
class LoadedSession:
    """A session together with its adventure state."""

    session: AdventureSession
    state: AdventureState


class SessionStateMachine:
    """Creates, loads, advances and closes adventure sessions."""

    def __init__(self, store: SessionStore):
        self.store = store

    async def create(self, user_id: str, title: str) -> ServiceResult:
        """Create a session at the initial stage with an empty state."""
        title = (title or "").strip()
        if not title:
            return ServiceResult.failure(ErrorKind.INVALID_INPUT, "Title is required")

        try:
            existing = await self.store.find_active_session(user_id)
            if existing is not None:
                return ServiceResult.failure(
                    ErrorKind.CONFLICT,
                    "An active session already exists. Abandon or complete it first.",
                )

            session = AdventureSession(user_id=user_id, title=title, stage=INITIAL_STAGE)
            await self.store.create_session(session, AdventureState())
        except ActiveSessionExists:
            return ServiceResult.failure(
                ErrorKind.CONFLICT,
                "An active session already exists. Abandon or complete it first.",
            )
        except StoreError as e:
            logger.error("Failed to create session", user_id=user_id, error=str(e))
            return ServiceResult.failure(ErrorKind.UPSTREAM_FAILURE, STORE_FAILURE_MESSAGE)

        logger.info("Session created", user_id=user_id, session_id=session.id)
        return ServiceResult.success(session)

    async def load(self, session_id: str, user_id: str) -> ServiceResult:
        """Load a session and its state; data is a LoadedSession."""
        try:
            session = await self.store.get_session(session_id)
            if session is None or session.user_id != user_id:
                return ServiceResult.failure(ErrorKind.NOT_FOUND, "Session not found")

            state = await self.store.get_state(session_id)
            if state is None:
                return ServiceResult.failure(ErrorKind.NOT_FOUND, "Adventure state not found for session")
        except StoreError as e:
            logger.error("Failed to load session", session_id=session_id, error=str(e))
            return ServiceResult.failure(ErrorKind.UPSTREAM_FAILURE, STORE_FAILURE_MESSAGE)

        return ServiceResult.success(LoadedSession(session=session, state=state))

    async def list(self, user_id: str) -> ServiceResult:
        """All of a user's sessions, most recently updated first."""
        try:
            sessions = await self.store.list_sessions(user_id)
        except StoreError as e:
            logger.error("Failed to list sessions", user_id=user_id, error=str(e))
            return ServiceResult.failure(ErrorKind.UPSTREAM_FAILURE, STORE_FAILURE_MESSAGE)

        return ServiceResult.success(sorted(sessions, key=lambda s: s.updated_at, reverse=True))

    async def abandon(self, session_id: str, user_id: str) -> ServiceResult:
        """Deactivate a session; already-inactive sessions are left as they are."""
        loaded = await self.load(session_id, user_id)
        if not loaded.ok:
            return loaded
        session = loaded.data.session

        if not session.is_active:
            return ServiceResult.success(session)

        updated = replace(session, is_active=False, updated_at=utcnow())
        result = await self._swap(session, updated)
        if result.ok:
            logger.info("Session abandoned", session_id=session_id, stage=session.stage.value)
        return result

    async def advance_stage(self, session_id: str, user_id: str) -> ServiceResult:
        """Move an active session to the next stage."""
        loaded = await self.load(session_id, user_id)
        if not loaded.ok:
            return loaded
        session = loaded.data.session

        if not session.is_active:
            return ServiceResult.failure(ErrorKind.INVALID_TRANSITION, "Cannot advance an inactive session")

        successor = next_stage(session.stage)
        if successor is None:
            return ServiceResult.failure(ErrorKind.INVALID_TRANSITION, "Session is already at the final stage")

        updated = replace(session, stage=successor, updated_at=utcnow())
        result = await self._swap(session, updated)
        if result.ok:
            logger.info(
                "Session advanced",
                session_id=session_id,
                from_stage=session.stage.value,
                to_stage=successor.value,
            )
        return result

    async def complete_session(self, session_id: str, user_id: str) -> ServiceResult:
        """Close a session that has reached the final stage."""
        loaded = await self.load(session_id, user_id)
        if not loaded.ok:
            return loaded
        session = loaded.data.session

        if not session.is_active:
            return ServiceResult.failure(ErrorKind.INVALID_TRANSITION, "Session is already inactive")

        if session.stage != FINAL_STAGE:
            return ServiceResult.failure(
                ErrorKind.INVALID_TRANSITION,
                "Session can only be completed from the delivering stage",
            )

        updated = replace(session, is_active=False, updated_at=utcnow())
        result = await self._swap(session, updated)
        if result.ok:
            logger.info("Session completed", session_id=session_id)
        return result

    async def _swap(self, current: AdventureSession, updated: AdventureSession) -> ServiceResult:
        """Conditionally write `updated` if the stored row still matches `current`."""
        try:
            swapped = await self.store.swap_session(
                updated,
                expected_stage=current.stage,
                expected_active=current.is_active,
            )
        except StoreError as e:
            logger.error("Failed to update session", session_id=current.id, error=str(e))
            return ServiceResult.failure(ErrorKind.UPSTREAM_FAILURE, STORE_FAILURE_MESSAGE)

        if not swapped:
            return ServiceResult.failure(ErrorKind.CONFLICT, "Session was modified concurrently")
        return ServiceResult.success(updated)
