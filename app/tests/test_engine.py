"""
End-to-end tests for the statistics engine.

Host events are fed through `dispatch`, network work runs against
FakeStatsServer, and `drain` waits for every spawned sync cycle.
"""
import asyncio
import json
import logging

import pytest

from arenastats.domain.engine.service import StatsEngine
from arenastats.domain.stats.models import WinState
from arenastats.domain.sync.client import PLAYER_ID_HEADER
from arenastats.domain.utils.storage import GAME_STATE_KEY, JsonFileStore, MemoryStore
from tests.fakes import (
    PEERS_URL,
    PUSH_URL,
    STATUS_URL,
    arena_entered,
    battle_result,
    feedback,
    hangar_status,
)

NOW = 1700000000.0


@pytest.fixture
def engine(settings, storage, server, recording_sleep) -> StatsEngine:
    return StatsEngine(
        settings,
        storage,
        transport=server.transport(),
        clock=lambda: NOW,
        sleep=recording_sleep,
    )


def play_battle(engine: StatsEngine) -> None:
    """One full match for player 1001 in arena A1."""
    engine.dispatch(hangar_status(1001, "alice"))
    engine.dispatch({"kind": "hangar_vehicle", "localized_short_name": "T-34"})
    engine.dispatch(arena_entered("A1", "Prokhorovka"))
    engine.dispatch(feedback("damage", {"damage": 500}))
    engine.dispatch(feedback("kill", {"targetId": 9}))
    engine.dispatch(battle_result("A1", 1001, team=1, winner_team=1, damage=1500, kills=3))


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class TestEventFlow:
    """Telemetry through to push, pull and persistence."""

    @pytest.mark.asyncio
    async def test_full_battle(self, engine, server, storage):
        updates = []
        engine.subscribe(lambda: updates.append(True))

        async with engine:
            play_battle(engine)
            await engine.drain()

            arena = engine.store.arenas["A1"]
            player = arena.players["1001"]
            assert arena.win == WinState.WIN
            assert arena.duration == 420
            assert (player.damage, player.kills, player.points) == (1500, 3, 1650)
            assert not engine.scheduler.is_running

        pushes = server.requests_to("POST", PUSH_URL)
        assert pushes
        assert all(r.headers[PLAYER_ID_HEADER] == "1001" for r in pushes)
        assert server.pushed[-1]["BattleStats"]["A1"]["players"]["1001"]["points"] == 1650
        assert server.requests_to("GET", STATUS_URL)
        assert updates

        saved = storage.get(GAME_STATE_KEY)
        assert saved["currentPlayerId"] == "1001"
        assert saved["BattleStats"]["A1"]["win"] == 1

    @pytest.mark.asyncio
    async def test_peer_data_is_merged(self, engine, server):
        server.peer_snapshot = {
            "success": True,
            "BattleStats": {
                "A1": {"players": {"2002": {"name": "bob", "vehicle": "IS-3", "damage": 700, "kills": 1, "points": 750}}},
            },
        }

        async with engine:
            play_battle(engine)
            await engine.drain()

        players = engine.store.arenas["A1"].players
        assert players["2002"].name == "bob"
        assert players["2002"].points == 750
        assert players["1001"].points == 1650
        extremes = engine.find_best_and_worst()
        assert extremes.best.points == 1650 + 750 + 150

    @pytest.mark.asyncio
    async def test_pull_failure_does_not_block_telemetry(self, engine, server):
        server.pull_status = 500

        async with engine:
            play_battle(engine)
            await engine.drain()

        assert engine.store.arenas["A1"].players["1001"].points == 1650
        assert server.pushed

    @pytest.mark.asyncio
    async def test_push_failure_still_persists(self, engine, server, storage, recording_sleep):
        server.push_statuses = [500] * 100

        async with engine:
            play_battle(engine)
            await engine.drain()

        assert server.pushed == []
        assert recording_sleep.calls
        assert storage.get(GAME_STATE_KEY)["BattleStats"]["A1"]["players"]["1001"]["points"] == 1650

    @pytest.mark.asyncio
    async def test_missing_access_key_keeps_local_stats(self, settings, server):
        engine = StatsEngine(settings, MemoryStore(), transport=server.transport(), clock=lambda: NOW)

        async with engine:
            engine.dispatch(hangar_status(1001, "alice"))
            engine.dispatch(arena_entered("A1"))
            engine.dispatch(feedback("damage", {"damage": 100}))
            await engine.drain()

        assert engine.store.arenas["A1"].players["1001"].damage == 100
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_invalid_event_is_ignored(self, engine, server, storage):
        async with engine:
            reaction = engine.dispatch({"kind": "arena_entered"})
            await engine.drain()

        assert reaction.is_noop
        assert server.requests == []
        assert storage.get(GAME_STATE_KEY) is None

    @pytest.mark.asyncio
    async def test_arena_entry_starts_polling(self, engine, server):
        async with engine:
            engine.dispatch(hangar_status(1001, "alice"))
            engine.dispatch(arena_entered("A1"))
            assert engine.scheduler.is_running

            await wait_until(lambda: len(server.requests_to("GET", PEERS_URL)) >= 3)

            engine.dispatch(battle_result("A1", 1001))
            assert not engine.scheduler.is_running
            await engine.drain()


class TestPersistence:
    """Restoring and clearing local state."""

    @pytest.mark.asyncio
    async def test_state_survives_restart(self, engine, settings, storage, server):
        async with engine:
            play_battle(engine)
            await engine.drain()

        restored = StatsEngine(settings, storage, transport=server.transport())
        async with restored:
            assert restored.store.arenas["A1"].players["1001"].points == 1650
            assert restored.session.current_player_id == "1001"
            assert restored.session.current_vehicle == "T-34"
            assert restored.store.directory.get("1001") == "alice"

    def test_unreadable_state_starts_fresh(self, settings):
        storage = MemoryStore({GAME_STATE_KEY: {"BattleStats": {"A1": {"win": 9}}}})

        engine = StatsEngine(settings, storage)

        assert engine.store.arenas == {}
        assert engine.session.current_player_id is None

    @pytest.mark.asyncio
    async def test_corrupt_state_file_does_not_break_events(self, settings, server, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        storage = JsonFileStore(str(path))

        engine = StatsEngine(settings, storage, transport=server.transport())
        assert engine.store.arenas == {}

        async with engine:
            reaction = engine.dispatch({"kind": "platoon_status", "in_platoon": True})
            await engine.drain()

        assert reaction.persist
        # The next save replaces the unreadable document
        saved = json.loads(path.read_text())
        assert saved[GAME_STATE_KEY]["isInPlatoon"] is True

    @pytest.mark.asyncio
    async def test_failed_save_is_logged_not_raised(self, settings, server):
        class ReadOnlyStore(MemoryStore):
            def set(self, key, value):
                raise OSError("read-only file system")

        engine = StatsEngine(settings, ReadOnlyStore(), transport=server.transport())

        async with engine:
            engine.dispatch({"kind": "platoon_status", "in_platoon": True})
            assert engine.save_state() is False
            engine.clear_all()

        assert engine.session.is_in_platoon is False

    @pytest.mark.asyncio
    async def test_clear_all(self, engine, storage):
        updates = []

        async with engine:
            play_battle(engine)
            await engine.drain()
            unsubscribe = engine.subscribe(lambda: updates.append(True))

            engine.clear_all()
            unsubscribe()

        assert engine.store.arenas == {}
        assert engine.store.directory.player_ids() == []
        assert engine.session.current_arena_id is None
        assert engine.session.is_in_platoon is False
        assert storage.get(GAME_STATE_KEY) is None
        assert updates == [True]

    @pytest.mark.asyncio
    async def test_clear_server_data(self, engine, server, storage):
        async with engine:
            play_battle(engine)
            await engine.drain()

            assert await engine.clear_server_data() is True

        assert engine.store.arenas == {}
        assert storage.get(GAME_STATE_KEY)["BattleStats"] == {}

    @pytest.mark.asyncio
    async def test_refused_server_clear_keeps_local_data(self, engine, server):
        server.clear_success = False

        async with engine:
            play_battle(engine)
            await engine.drain()

            assert await engine.clear_server_data() is False

        assert "A1" in engine.store.arenas


class TestLoadFromServer:
    """Adopting the own remote snapshot."""

    @pytest.mark.asyncio
    async def test_replaces_local_statistics(self, engine, server):
        server.own_snapshot = {
            "success": True,
            "BattleStats": {"A9": {"win": 0, "mapName": "Ensk", "players": {"3003": {"points": 10}}}},
            "PlayerInfo": {"3003": "carol"},
        }

        async with engine:
            play_battle(engine)
            await engine.drain()
            assert await engine.load_from_server() is True

        assert list(engine.store.arenas) == ["A9"]
        assert engine.store.arenas["A9"].win == WinState.LOSS
        assert engine.store.directory.names == {"3003": "carol"}

    @pytest.mark.asyncio
    async def test_empty_snapshot_keeps_local_statistics(self, engine, server):
        async with engine:
            play_battle(engine)
            await engine.drain()
            assert await engine.load_from_server() is True

        assert "A1" in engine.store.arenas

    @pytest.mark.asyncio
    async def test_unsuccessful_response(self, engine, server):
        server.own_snapshot = {"success": False}

        async with engine:
            assert await engine.load_from_server() is False


class TestBackgroundFailures:
    """Unexpected errors inside spawned cycles."""

    @pytest.mark.asyncio
    async def test_unexpected_cycle_error_is_logged(self, engine, caplog):
        def broken_reconcile(store, snapshot):
            raise RuntimeError("merge bug")

        engine.reconciler.reconcile = broken_reconcile

        with caplog.at_level(logging.ERROR, logger="arenastats.domain.engine.service"):
            async with engine:
                engine.dispatch(hangar_status(1001, "alice"))
                await engine.drain()

        failures = [r for r in caplog.records if "Background sync task failed" in r.getMessage()]
        assert len(failures) == 1
        assert "merge bug" in failures[0].getMessage()


class TestListeners:
    """stats_updated notifications."""

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_sync(self, engine, server):
        def broken():
            raise RuntimeError("listener bug")

        calls = []
        engine.subscribe(broken)
        engine.subscribe(lambda: calls.append(True))

        async with engine:
            play_battle(engine)
            await engine.drain()

        assert calls
        assert engine.store.arenas["A1"].win == WinState.WIN


class TestAnalytics:
    """Delegated scoring helpers."""

    @pytest.mark.asyncio
    async def test_totals(self, engine):
        async with engine:
            play_battle(engine)
            await engine.drain()

        assert engine.player_totals("1001").points == 1650
        team = engine.team_totals()
        assert team.wins == 1
        assert team.battles == 1
        assert team.points == 1650 + 150

    def test_no_finished_battles(self, engine):
        assert engine.find_best_and_worst() is None
