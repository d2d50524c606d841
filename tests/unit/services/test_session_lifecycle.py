"""Unit tests for SessionLifecycleManager."""

import asyncio
import logging
import re
from datetime import timedelta
from uuid import uuid4

import pytest

from notathome.core.errors import CodeSpaceExhausted, NotFound, StorageUnavailable
from notathome.core.pubsub import session_channel
from notathome.services.live_updates import LiveUpdateChannel
from notathome.services.session_lifecycle import SessionLifecycleManager, generate_session_code


@pytest.mark.unit
class TestGenerateSessionCode:
    """Tests for join code generation."""

    @pytest.mark.parametrize("length", [4, 5, 6])
    def test_code_is_numeric_with_fixed_length(self, length):
        for _ in range(200):
            code = generate_session_code(length)
            assert re.fullmatch(rf"[1-9][0-9]{{{length - 1}}}", code)

    def test_codes_vary(self):
        codes = {generate_session_code(4) for _ in range(50)}
        assert len(codes) > 1


@pytest.mark.unit
class TestCreateSession:
    """Tests for SessionLifecycleManager.create_session()."""

    async def test_create_session_sets_active_and_expiry(self, lifecycle, congregation, clock):
        """A new session is active, expires in 24h and has a 4-digit code."""
        user_id = uuid4()

        session = await lifecycle.create_session(congregation.id, user_id)

        assert session.is_active is True
        assert session.congregation_id == congregation.id
        assert session.created_by == user_id
        assert session.created_at == clock()
        assert session.expires_at - clock() == timedelta(hours=24)
        assert re.fullmatch(r"[0-9]{4}", session.code)
        assert session.map_number is None

    async def test_create_session_with_map_number(self, lifecycle, congregation):
        session = await lifecycle.create_session(congregation.id, uuid4(), map_number=7)
        assert session.map_number == 7

    async def test_back_to_back_sessions_get_different_codes(self, lifecycle, congregation):
        """Sessions created at the same instant never share a code."""
        first = await lifecycle.create_session(congregation.id, uuid4())
        second = await lifecycle.create_session(congregation.id, uuid4())

        assert first.code != second.code

    async def test_active_codes_stay_unique_under_load(self, lifecycle, congregation, session_repo):
        """Every active, unexpired session holds a distinct code."""
        for _ in range(200):
            await lifecycle.create_session(congregation.id, uuid4())

        codes = [s.code for s in session_repo.rows.values() if s.is_active]
        assert len(codes) == len(set(codes))

    async def test_code_of_ended_session_can_be_reused(self, lifecycle, congregation, session_repo):
        ended = session_repo.add(code="5555", is_active=False)

        assert await session_repo.code_in_use(ended.code) is False

    async def test_exhausted_code_space_raises_and_alerts(
        self, lifecycle, congregation, session_repo, caplog
    ):
        session_repo.codes_always_taken = True

        with caplog.at_level(logging.CRITICAL), pytest.raises(CodeSpaceExhausted):
            await lifecycle.create_session(congregation.id, uuid4())

        assert any(r.levelno == logging.CRITICAL for r in caplog.records)
        assert session_repo.rows == {}

    async def test_insert_race_is_retried(self, lifecycle, congregation, session_repo):
        """A unique-index violation on insert counts as a collision."""
        session_repo.insert_races = 2

        session = await lifecycle.create_session(congregation.id, uuid4())

        assert session.id in session_repo.rows
        assert session_repo.insert_races == 0

    async def test_create_publishes_on_congregation_channel(
        self, lifecycle, congregation, connection_manager
    ):
        received = []
        connection_manager.add_listener(f"congregation:{congregation.id}", received.append)

        session = await lifecycle.create_session(congregation.id, uuid4())

        assert len(received) == 1
        assert received[0].data["event"] == "session_created"
        assert received[0].data["session"]["id"] == str(session.id)


@pytest.mark.unit
class TestEndSession:
    """Tests for SessionLifecycleManager.end_session()."""

    async def test_end_session_deactivates(self, lifecycle, session_repo):
        session = session_repo.add()

        ended = await lifecycle.end_session(session.id)

        assert ended.is_active is False
        assert session_repo.rows[session.id].is_active is False

    async def test_end_session_twice_succeeds(self, lifecycle, session_repo):
        """Ending is idempotent: both calls succeed and the session stays ended."""
        session = session_repo.add()

        first = await lifecycle.end_session(session.id)
        second = await lifecycle.end_session(session.id)

        assert first.is_active is False
        assert second.is_active is False

    async def test_second_end_publishes_nothing(self, lifecycle, session_repo, connection_manager):
        session = session_repo.add()
        received = []
        connection_manager.add_listener(session_channel(session.id), received.append)

        await lifecycle.end_session(session.id)
        await lifecycle.end_session(session.id)

        assert len(received) == 1

    async def test_end_missing_session_raises_not_found(self, lifecycle):
        with pytest.raises(NotFound):
            await lifecycle.end_session(uuid4())

    async def test_end_keeps_map_number(self, lifecycle, session_repo):
        """Ending only touches is_active."""
        session = session_repo.add(map_number=12)

        ended = await lifecycle.end_session(session.id)

        assert ended.map_number == 12


@pytest.mark.unit
class TestAssignMap:
    """Tests for SessionLifecycleManager.assign_map()."""

    async def test_assign_map_sets_number(self, lifecycle, session_repo):
        session = session_repo.add()

        updated = await lifecycle.assign_map(session.id, 4)

        assert updated.map_number == 4
        assert updated.is_active is True

    async def test_assign_map_on_ended_session_keeps_it_ended(self, lifecycle, session_repo):
        session = session_repo.add(is_active=False)

        updated = await lifecycle.assign_map(session.id, 4)

        assert updated.map_number == 4
        assert updated.is_active is False

    async def test_assign_map_missing_session(self, lifecycle):
        with pytest.raises(NotFound):
            await lifecycle.assign_map(uuid4(), 1)


@pytest.mark.unit
class TestSweepExpiredSessions:
    """Tests for SessionLifecycleManager.sweep_expired_sessions()."""

    async def test_sweep_ends_only_expired_sessions(self, lifecycle, session_repo, clock):
        expired = [
            session_repo.add(code=f"10{i:02d}", expires_at=clock() - timedelta(minutes=5 + i))
            for i in range(3)
        ]
        running = [
            session_repo.add(code=f"20{i:02d}", expires_at=clock() + timedelta(hours=1 + i))
            for i in range(2)
        ]

        count = await lifecycle.sweep_expired_sessions()

        assert count == 3
        assert all(not s.is_active for s in expired)
        assert all(s.is_active for s in running)

    async def test_sweep_after_lifetime_elapsed(self, lifecycle, session_repo, clock):
        """A session created 25 hours ago is ended by the sweep."""
        created = clock() - timedelta(hours=25)
        session = session_repo.add(created_at=created, expires_at=created + timedelta(hours=24))

        count = await lifecycle.sweep_expired_sessions()

        assert count == 1
        assert session.is_active is False

    async def test_sweep_skips_failing_row(self, lifecycle, session_repo, clock, caplog):
        """One failing row is logged and the rest are still ended."""
        sessions = [
            session_repo.add(code=f"30{i:02d}", expires_at=clock() - timedelta(hours=1, minutes=i))
            for i in range(4)
        ]
        broken = sessions[1]
        session_repo.failing_ids.add(broken.id)

        with caplog.at_level(logging.ERROR):
            count = await lifecycle.sweep_expired_sessions()

        assert count == 3
        assert broken.is_active is True
        assert all(not s.is_active for s in sessions if s is not broken)
        assert set(session_repo.deactivate_calls) == {s.id for s in sessions}
        assert any(str(broken.id) in r.getMessage() for r in caplog.records)

    async def test_sweep_times_out_stuck_row(self, lifecycle, session_repo, clock):
        stuck = session_repo.add(code="4000", expires_at=clock() - timedelta(hours=2))
        other = session_repo.add(code="4001", expires_at=clock() - timedelta(hours=1))
        session_repo.hanging_ids.add(stuck.id)

        count = await asyncio.wait_for(lifecycle.sweep_expired_sessions(), timeout=3)

        assert count == 1
        assert other.is_active is False

    async def test_sweep_with_nothing_expired(self, lifecycle, session_repo):
        session_repo.add()
        assert await lifecycle.sweep_expired_sessions() == 0

    async def test_sweep_query_failure_raises_storage_unavailable(self, lifecycle, session_repo):
        session_repo.query_error = ConnectionError("connection refused")

        with pytest.raises(StorageUnavailable):
            await lifecycle.sweep_expired_sessions()

    async def test_sweep_query_timeout_raises_storage_unavailable(self, lifecycle, session_repo):
        session_repo.query_hangs = True

        with pytest.raises(StorageUnavailable):
            await asyncio.wait_for(lifecycle.sweep_expired_sessions(), timeout=3)

    async def test_sweep_does_not_count_sessions_ended_concurrently(
        self, lifecycle, session_repo, clock
    ):
        session = session_repo.add(expires_at=clock() - timedelta(minutes=1))
        original = session_repo.list_expired_active_ids

        async def list_then_end(now):
            ids = await original(now)
            session.is_active = False
            return ids

        session_repo.list_expired_active_ids = list_then_end

        assert await lifecycle.sweep_expired_sessions() == 0


@pytest.fixture
def deferred_lifecycle(session_repo, connection_manager, db, clock) -> SessionLifecycleManager:
    """Lifecycle whose events wait for the transaction to commit."""
    live = LiveUpdateChannel(connection_manager.broadcast, connection_manager, db=db)
    return SessionLifecycleManager(
        session_repo, live, sweep_query_timeout=0.2, sweep_row_timeout=0.2, clock=clock
    )


@pytest.mark.unit
class TestSweepCommits:
    """Each swept row is committed before its event goes out."""

    async def test_each_row_commits_then_publishes(
        self, deferred_lifecycle, session_repo, connection_manager, db, clock
    ):
        sessions = [
            session_repo.add(code=f"50{i:02d}", expires_at=clock() - timedelta(minutes=i + 1))
            for i in range(3)
        ]
        commits_at_delivery = []
        for session in sessions:
            connection_manager.add_listener(
                session_channel(session.id), lambda _: commits_at_delivery.append(db.commits)
            )

        count = await deferred_lifecycle.sweep_expired_sessions()

        assert count == 3
        assert db.commits == 3
        assert sorted(commits_at_delivery) == [1, 2, 3]

    async def test_failed_commit_sends_nothing(
        self, deferred_lifecycle, session_repo, connection_manager, db, clock
    ):
        session = session_repo.add(expires_at=clock() - timedelta(minutes=1))
        received = []
        connection_manager.add_listener(session_channel(session.id), received.append)
        db.commit_error = ConnectionError("connection lost during commit")

        count = await deferred_lifecycle.sweep_expired_sessions()

        assert count == 0
        assert received == []
        assert db.rollbacks == 1
        assert db.info == {}

    async def test_failed_row_does_not_hold_back_the_next(
        self, deferred_lifecycle, session_repo, connection_manager, db, clock
    ):
        broken = session_repo.add(code="6000", expires_at=clock() - timedelta(minutes=2))
        healthy = session_repo.add(code="6001", expires_at=clock() - timedelta(minutes=1))
        session_repo.failing_ids.add(broken.id)
        received = []
        connection_manager.add_listener(session_channel(healthy.id), received.append)

        count = await deferred_lifecycle.sweep_expired_sessions()

        assert count == 1
        assert len(received) == 1
        assert db.commits == 1
        assert db.rollbacks == 1


@pytest.mark.unit
class TestDeleteSession:
    async def test_delete_removes_session(self, lifecycle, session_repo):
        session = session_repo.add()

        deleted = await lifecycle.delete_session(session.id)

        assert deleted.id == session.id
        assert session.id not in session_repo.rows

    async def test_delete_publishes_deleted_event(
        self, lifecycle, session_repo, connection_manager
    ):
        session = session_repo.add()
        on_session, on_congregation = [], []
        connection_manager.add_listener(session_channel(session.id), on_session.append)
        connection_manager.add_listener(
            f"congregation:{session.congregation_id}", on_congregation.append
        )

        await lifecycle.delete_session(session.id)

        assert [m.data["event"] for m in on_session] == ["session_deleted"]
        assert [m.data["event"] for m in on_congregation] == ["session_deleted"]
        assert on_session[0].data["session"]["id"] == str(session.id)

    async def test_delete_missing_session(self, lifecycle):
        with pytest.raises(NotFound):
            await lifecycle.delete_session(uuid4())


@pytest.mark.unit
class TestListActiveSessions:
    async def test_lists_running_sessions_of_every_congregation(
        self, lifecycle, session_repo, congregation_repo, clock
    ):
        other = congregation_repo.add(name="Hillside Congregation")
        older = session_repo.add(code="7000", created_at=clock() - timedelta(hours=2))
        newer = session_repo.add(
            code="7001", congregation_id=other.id, created_at=clock() - timedelta(hours=1)
        )
        session_repo.add(code="7002", is_active=False)
        session_repo.add(code="7003", expires_at=clock() - timedelta(minutes=1))

        sessions = await lifecycle.list_active_sessions()

        assert [s.id for s in sessions] == [newer.id, older.id]
        assert sessions[0].congregation.name == "Hillside Congregation"
