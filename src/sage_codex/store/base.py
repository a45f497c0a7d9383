"""
Row store abstraction.

The session state machine, the orchestrator and the query tools only talk to
storage through this interface, so the backend can be swapped (in-memory for
tests and development, SQL for deployment).
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from ..adventure import AdventureSession, AdventureState, ChatMessage
from ..stages import Stage


class ContentKind(str, Enum):
    """Reference catalogues searched by the query tools."""
    FRAME = "frame"
    ADVERSARY = "adversary"
    ITEM = "item"


class SessionStore(ABC):
    """Abstract repository for sessions, adventure state and messages.

    Implementations raise StoreError (or a subclass) when the backend fails.
    """

    @abstractmethod
    async def find_active_session(self, user_id: str) -> AdventureSession | None:
        """Return the user's active session, if any."""
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> AdventureSession | None:
        ...

    @abstractmethod
    async def list_sessions(self, user_id: str) -> list[AdventureSession]:
        """All sessions for a user, most recently updated first."""
        ...

    @abstractmethod
    async def create_session(self, session: AdventureSession, state: AdventureState) -> None:
        """Write a session and its state together, or neither.

        Raises ActiveSessionExists when the user already has an active session.
        """
        ...

    @abstractmethod
    async def swap_session(
        self,
        updated: AdventureSession,
        expected_stage: Stage,
        expected_active: bool,
    ) -> bool:
        """Replace a session row only if its stage and activity are unchanged.

        Returns False when the stored row no longer matches.
        """
        ...

    @abstractmethod
    async def get_state(self, session_id: str) -> AdventureState | None:
        ...

    @abstractmethod
    async def put_state(self, session_id: str, state: AdventureState) -> None:
        ...

    @abstractmethod
    async def append_message(self, message: ChatMessage) -> None:
        ...

    @abstractmethod
    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        """Messages for a session in creation order."""
        ...

    @abstractmethod
    async def list_content(self, kind: ContentKind | str) -> list[dict[str, Any]]:
        """Catalogue entries of one kind."""
        ...

    @abstractmethod
    async def add_content(self, kind: ContentKind | str, entry: dict[str, Any]) -> None:
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None
