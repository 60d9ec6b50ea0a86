"""
Tests for the command line runner helpers.
"""
import json

import pytest

from arenastats.domain.engine.service import StatsEngine
from arenastats.main import build_parser, load_events, replay_events, run_command
from tests.fakes import arena_entered, battle_result, feedback, hangar_status


def test_load_events_skips_blank_and_bad_lines(tmp_path):
    path = tmp_path / "events.jsonl"
    path.write_text(
        json.dumps(hangar_status(1001, "alice")) + "\n"
        "\n"
        "{broken\n"
        + json.dumps(arena_entered("A1")) + "\n"
    )

    events = load_events(str(path))

    assert [e["kind"] for e in events] == ["hangar_status", "arena_entered"]


def test_parser_commands():
    parser = build_parser()

    args = parser.parse_args(["replay", "events.jsonl", "--poll"])
    assert args.command == "replay"
    assert args.poll is True
    assert args.load_remote is False

    args = parser.parse_args(["--state-file", "/tmp/s.json", "totals", "--player", "1001"])
    assert args.state_file == "/tmp/s.json"
    assert args.player == "1001"


@pytest.mark.asyncio
async def test_replay_events(settings, storage, server):
    engine = StatsEngine(settings, storage, transport=server.transport(), clock=lambda: 1700000000.0)
    events = [
        hangar_status(1001, "alice"),
        arena_entered("A1"),
        feedback("damage", {"damage": 400}),
        battle_result("A1", 1001, winner_team=2, damage=400),
    ]

    await replay_events(engine, events, load_remote=True)

    assert engine.store.arenas["A1"].players["1001"].points == 400
    assert engine.find_best_and_worst().best.points == 400
    assert server.pushed


@pytest.mark.asyncio
@pytest.mark.parametrize("argv", [["best-worst"], ["totals"], ["totals", "--player", "1001"], ["clear"]])
async def test_local_commands_close_engine(settings, storage, server, capsys, argv):
    engine = StatsEngine(settings, storage, transport=server.transport())

    await run_command(engine, build_parser().parse_args(argv))

    assert engine.sync_client._client.is_closed
    assert capsys.readouterr().out
    assert server.requests == []
