"""
SQLAlchemy-backed row store.
"""

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from ..adventure import AdventureSession, AdventureState, ChatMessage, MessageRole
from ..errors import ActiveSessionExists, StoreError
from ..models import AdventureStateRow, ContentEntry, MessageRow, SessionRow, init_database
from ..stages import Stage
from .base import ContentKind, SessionStore

logger = structlog.get_logger()


def _aware(value: datetime | None) -> datetime:
    # SQLite returns naive datetimes
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_session(row: SessionRow) -> AdventureSession:
    return AdventureSession(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        stage=Stage(row.stage),
        is_active=row.is_active,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _to_message(row: MessageRow) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        session_id=row.session_id,
        role=MessageRole(row.role),
        content=row.content,
        tool_calls=row.tool_calls,
        token_count=row.token_count,
        created_at=_aware(row.created_at),
    )


class SqlStore(SessionStore):
    """SessionStore on an async SQLAlchemy session maker."""

    def __init__(self, session_maker: async_sessionmaker, engine: AsyncEngine | None = None):
        self.session_maker = session_maker
        self.engine = engine

    @classmethod
    async def connect(cls, database_url: str) -> "SqlStore":
        """Create tables if needed and return a ready store."""
        try:
            session_maker = await init_database(database_url)
        except SQLAlchemyError as e:
            raise StoreError(f"Could not open database: {e}") from e
        return cls(session_maker, engine=session_maker.kw.get("bind"))

    async def find_active_session(self, user_id: str) -> AdventureSession | None:
        try:
            async with self.session_maker() as db:
                result = await db.execute(
                    select(SessionRow)
                    .where(SessionRow.user_id == user_id, SessionRow.is_active == True)  # noqa: E712
                    .limit(1)
                )
                row = result.scalar_one_or_none()
                return _to_session(row) if row else None
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def get_session(self, session_id: str) -> AdventureSession | None:
        try:
            async with self.session_maker() as db:
                row = await db.get(SessionRow, session_id)
                return _to_session(row) if row else None
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def list_sessions(self, user_id: str) -> list[AdventureSession]:
        try:
            async with self.session_maker() as db:
                result = await db.execute(
                    select(SessionRow)
                    .where(SessionRow.user_id == user_id)
                    .order_by(SessionRow.updated_at.desc())
                )
                return [_to_session(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def create_session(self, session: AdventureSession, state: AdventureState) -> None:
        try:
            async with self.session_maker() as db:
                async with db.begin():
                    db.add(SessionRow(
                        id=session.id,
                        user_id=session.user_id,
                        title=session.title,
                        stage=session.stage.value,
                        is_active=session.is_active,
                        created_at=session.created_at,
                        updated_at=session.updated_at,
                    ))
                    await db.flush()
                    db.add(AdventureStateRow(session_id=session.id, data=state.to_dict()))
        except IntegrityError as e:
            raise ActiveSessionExists(session.user_id) from e
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def swap_session(
        self,
        updated: AdventureSession,
        expected_stage: Stage,
        expected_active: bool,
    ) -> bool:
        try:
            async with self.session_maker() as db:
                async with db.begin():
                    result = await db.execute(
                        update(SessionRow)
                        .where(
                            SessionRow.id == updated.id,
                            SessionRow.stage == expected_stage.value,
                            SessionRow.is_active == expected_active,
                        )
                        .values(
                            title=updated.title,
                            stage=updated.stage.value,
                            is_active=updated.is_active,
                            updated_at=updated.updated_at,
                        )
                    )
                swapped = result.rowcount == 1
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

        if not swapped:
            logger.warning("Session swap lost", session_id=updated.id, expected_stage=expected_stage.value)
        return swapped

    async def get_state(self, session_id: str) -> AdventureState | None:
        try:
            async with self.session_maker() as db:
                row = await db.get(AdventureStateRow, session_id)
                if row is None:
                    return None
                return AdventureState.from_raw(row.data)
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def put_state(self, session_id: str, state: AdventureState) -> None:
        try:
            async with self.session_maker() as db:
                async with db.begin():
                    row = await db.get(AdventureStateRow, session_id)
                    if row is None:
                        db.add(AdventureStateRow(session_id=session_id, data=state.to_dict()))
                    else:
                        row.data = state.to_dict()
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def append_message(self, message: ChatMessage) -> None:
        try:
            async with self.session_maker() as db:
                async with db.begin():
                    db.add(MessageRow(
                        id=message.id,
                        session_id=message.session_id,
                        role=message.role.value,
                        content=message.content,
                        tool_calls=message.tool_calls,
                        token_count=message.token_count,
                        created_at=message.created_at,
                    ))
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        try:
            async with self.session_maker() as db:
                result = await db.execute(
                    select(MessageRow)
                    .where(MessageRow.session_id == session_id)
                    .order_by(MessageRow.created_at, MessageRow.seq)
                )
                return [_to_message(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def list_content(self, kind: ContentKind | str) -> list[dict[str, Any]]:
        try:
            async with self.session_maker() as db:
                result = await db.execute(
                    select(ContentEntry)
                    .where(ContentEntry.kind == ContentKind(kind).value)
                    .order_by(ContentEntry.name)
                )
                return [
                    {"id": row.id, "name": row.name, **(row.data or {})}
                    for row in result.scalars().all()
                ]
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def add_content(self, kind: ContentKind | str, entry: dict[str, Any]) -> None:
        data = {k: v for k, v in entry.items() if k not in ("id", "name")}
        try:
            async with self.session_maker() as db:
                async with db.begin():
                    row = ContentEntry(kind=ContentKind(kind).value, name=str(entry.get("name", "")), data=data)
                    if entry.get("id"):
                        row.id = str(entry["id"])
                    db.add(row)
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
