"""
Tests for the SQLAlchemy row store.
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from sage_codex.adventure import AdventureSession, AdventureState, ChatMessage, MessageRole, Spark, utcnow
from sage_codex.agent import SessionStateMachine
from sage_codex.errors import ActiveSessionExists, ErrorKind
from sage_codex.stages import Stage
from sage_codex.store import ContentKind, SqlStore


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'sage.db'}"


@pytest.mark.asyncio
async def test_create_and_get_session(database_url):
    """Test a session and its state are written together."""
    store = await SqlStore.connect(database_url)
    try:
        session = AdventureSession(user_id="user-1", title="The Drowned Bell")
        await store.create_session(session, AdventureState())

        loaded = await store.get_session(session.id)
        state = await store.get_state(session.id)

        assert loaded.id == session.id
        assert loaded.stage == Stage.INVOKING
        assert loaded.is_active is True
        assert loaded.created_at.tzinfo is not None
        assert state is not None
        assert (await store.find_active_session("user-1")).id == session.id
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_one_active_session_per_user(database_url):
    """Test the partial unique index refuses a second active session."""
    store = await SqlStore.connect(database_url)
    try:
        first = AdventureSession(user_id="user-1", title="First")
        await store.create_session(first, AdventureState())

        with pytest.raises(ActiveSessionExists):
            await store.create_session(AdventureSession(user_id="user-1", title="Second"), AdventureState())

        # Neither row of the failed create is left behind
        assert [s.title for s in await store.list_sessions("user-1")] == ["First"]

        inactive = AdventureSession(user_id="user-1", title="Old", is_active=False)
        await store.create_session(inactive, AdventureState())
        assert len(await store.list_sessions("user-1")) == 2
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_swap_session_is_conditional(database_url):
    """Test the stage update only applies when the row still matches."""
    store = await SqlStore.connect(database_url)
    try:
        session = AdventureSession(user_id="user-1", title="Mine")
        await store.create_session(session, AdventureState())

        advanced = replace(session, stage=Stage.ATTUNING, updated_at=utcnow())
        assert await store.swap_session(advanced, expected_stage=Stage.INVOKING, expected_active=True) is True

        stale = replace(session, stage=Stage.ATTUNING)
        assert await store.swap_session(stale, expected_stage=Stage.INVOKING, expected_active=True) is False

        assert (await store.get_session(session.id)).stage == Stage.ATTUNING
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_state_round_trip(database_url):
    """Test adventure state survives a write and read."""
    store = await SqlStore.connect(database_url)
    try:
        session = AdventureSession(user_id="user-1", title="Mine")
        await store.create_session(session, AdventureState())

        state = AdventureState(spark=Spark(name="Bells of Varn", vision="A drowned town still rings"))
        state.scene_arcs = [{"id": "arc-1", "sceneNumber": 1, "title": "The Bell Tolls"}]
        await store.put_state(session.id, state)

        loaded = await store.get_state(session.id)
        assert loaded.to_dict() == state.to_dict()
        assert await store.get_state("missing") is None
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_messages_in_creation_order(database_url):
    """Test messages list oldest first, insertion order breaking ties."""
    store = await SqlStore.connect(database_url)
    try:
        session = AdventureSession(user_id="user-1", title="Mine")
        await store.create_session(session, AdventureState())

        now = utcnow()
        later = ChatMessage(session_id=session.id, role=MessageRole.ASSISTANT, content="second",
                            created_at=now + timedelta(seconds=1))
        earlier = ChatMessage(session_id=session.id, role=MessageRole.USER, content="first", created_at=now)
        tie = ChatMessage(session_id=session.id, role=MessageRole.USER, content="third",
                          created_at=now + timedelta(seconds=1), tool_calls=[{"name": "set_spark"}])
        for message in (later, earlier, tie):
            await store.append_message(message)

        messages = await store.list_messages(session.id)

        assert [m.content for m in messages] == ["first", "second", "third"]
        assert messages[2].tool_calls == [{"name": "set_spark"}]
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_content_catalogue(database_url):
    """Test catalogue entries are stored by kind and listed by name."""
    store = await SqlStore.connect(database_url)
    try:
        await store.add_content(ContentKind.FRAME, {"id": "witherwild", "name": "The Witherwild", "themes": ["nature"]})
        await store.add_content("frame", {"name": "Five Banners Burning", "themes": ["war"]})
        await store.add_content("adversary", {"name": "Bramble Wolf", "tier": 1})

        frames = await store.list_content(ContentKind.FRAME)

        assert [f["name"] for f in frames] == ["Five Banners Burning", "The Witherwild"]
        assert frames[1] == {"id": "witherwild", "name": "The Witherwild", "themes": ["nature"]}
        assert len(await store.list_content("adversary")) == 1
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_state_machine_on_sql_store(database_url):
    """Test the session lifecycle end to end on SQLite."""
    store = await SqlStore.connect(database_url)
    try:
        machine = SessionStateMachine(store)
        created = await machine.create("user-1", "Mine")
        duplicate = await machine.create("user-1", "Again")
        advanced = await machine.advance_stage(created.data.id, "user-1")
        abandoned = await machine.abandon(created.data.id, "user-1")
        again = await machine.create("user-1", "Again")

        assert created.ok
        assert duplicate.error.kind == ErrorKind.CONFLICT
        assert advanced.data.stage == Stage.ATTUNING
        assert abandoned.data.is_active is False
        assert again.ok
    finally:
        await store.close()
