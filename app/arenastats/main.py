"""
Arena Stats - Command line runner for the statistics engine.

Replays recorded host events through the engine, inspects the local store,
and manages local/remote state.

Usage:
    python -m arenastats.main set-key <ACCESS_KEY>
    python -m arenastats.main replay events.jsonl --poll
    python -m arenastats.main best-worst
"""
import argparse
import asyncio
import json
import signal
from pathlib import Path

from arenastats.config import Settings
from arenastats.domain.engine.service import StatsEngine
from arenastats.domain.stats.models import ArenaRecord
from arenastats.domain.utils.storage import ACCESS_KEY_KEY, JsonFileStore
from arenastats.exceptions import ArenaStatsError
from arenastats.logging_config import get_logger, setup_logging

logger = get_logger(__name__)

# Global state for graceful shutdown
_shutdown_requested = False
_current_engine: StatsEngine | None = None


def _handle_sigint(signum, frame):
    """Handle SIGINT (Ctrl+C) by persisting state before exiting."""
    global _shutdown_requested
    if _shutdown_requested:
        print("\n⚠️ Force quit - exiting immediately")
        raise SystemExit(1)

    _shutdown_requested = True
    print("\n⚠️ Shutdown requested - saving current state...")

    if _current_engine is not None:
        _current_engine.save_state()

    raise KeyboardInterrupt


def load_events(path: str) -> list:
    """Read one JSON host event per line; blank lines are skipped."""
    events = []
    with open(path, "r") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping line {line_number}: {e}")
    return events


async def replay_events(
    engine: StatsEngine,
    events: list,
    poll: bool = False,
    load_remote: bool = False,
) -> None:
    """Feed recorded events through the engine one at a time."""
    global _current_engine
    _current_engine = engine

    try:
        if load_remote:
            try:
                await engine.load_from_server()
            except ArenaStatsError as e:
                logger.error(f"Could not load remote snapshot: {e.message}")

        if poll:
            engine.scheduler.start()

        for raw_event in events:
            engine.dispatch(raw_event)
            # Let in-flight network work progress between host events
            await asyncio.sleep(0)

        await engine.drain()
    finally:
        await engine.close()
        _current_engine = None


def format_arena(arena: ArenaRecord) -> str:
    players = ", ".join(
        f"{p.name} ({p.vehicle}): {p.points:.0f} pts / {p.damage:.0f} dmg / {p.kills} kills"
        for p in arena.players.values()
    )
    return f"Arena {arena.arena_id} on {arena.map_name} [{arena.win.name.lower()}] - {players}"


def print_best_worst(engine: StatsEngine) -> None:
    extremes = engine.find_best_and_worst()
    if extremes is None:
        print("No finished battles recorded yet.")
        return
    print(f"🏆 Best  ({extremes.best.points:.0f} pts): {format_arena(extremes.best.arena)}")
    print(f"💀 Worst ({extremes.worst.points:.0f} pts): {format_arena(extremes.worst.arena)}")


def print_totals(engine: StatsEngine, player_id: str | None) -> None:
    if player_id:
        totals = engine.player_totals(player_id)
        name = engine.store.directory.get(player_id) or player_id
        print(f"{name}: {totals.points:.0f} pts, {totals.damage:.0f} dmg, {totals.kills} kills")
        return
    team = engine.team_totals()
    print(
        f"Team: {team.points:.0f} pts, {team.damage:.0f} dmg, {team.kills} kills, "
        f"{team.wins}/{team.battles} battles won"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Arena Stats - Track and reconcile per-match player statistics"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--state-file",
        default=None,
        help="Override the JSON state file location",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    replay = subparsers.add_parser("replay", help="Replay recorded host events (JSON lines)")
    replay.add_argument("events_file", help="Path to the JSON-lines event file")
    replay.add_argument("--poll", action="store_true", help="Run background peer polling while replaying")
    replay.add_argument("--load-remote", action="store_true", help="Load the own remote snapshot first")

    subparsers.add_parser("best-worst", help="Show best and worst finished battles")

    totals = subparsers.add_parser("totals", help="Show aggregated totals")
    totals.add_argument("--player", default=None, help="Player id (default: whole team)")

    subparsers.add_parser("clear", help="Clear local statistics")
    subparsers.add_parser("clear-remote", help="Clear statistics held by the remote endpoint")

    set_key = subparsers.add_parser("set-key", help="Store the access key")
    set_key.add_argument("access_key")

    return parser


async def run_command(engine: StatsEngine, args: argparse.Namespace) -> None:
    """Run one engine-backed command; the engine is always closed afterwards."""
    if args.command == "replay":
        events = load_events(args.events_file)
        print(f"\n🎬 Replaying {len(events)} events from {args.events_file}...\n")
        await replay_events(engine, events, poll=args.poll, load_remote=args.load_remote)
        print_best_worst(engine)
        return

    try:
        if args.command == "clear-remote":
            cleared = await engine.clear_server_data()
            print("🧹 Remote statistics cleared." if cleared else "⚠️ Server refused to clear statistics.")
        elif args.command == "best-worst":
            print_best_worst(engine)
        elif args.command == "totals":
            print_totals(engine, args.player)
        elif args.command == "clear":
            engine.clear_all()
            print("🧹 Local statistics cleared.")
    finally:
        await engine.close()


def main():
    """Main entry point."""
    signal.signal(signal.SIGINT, _handle_sigint)

    args = build_parser().parse_args()

    settings = Settings()
    setup_logging("DEBUG" if args.verbose else settings.log_level, collect_logs=False)

    state_file = args.state_file or settings.state_file
    storage = JsonFileStore(state_file)

    if args.command == "set-key":
        storage.set(ACCESS_KEY_KEY, args.access_key)
        print(f"🔑 Access key saved to {state_file}")
        return

    if args.command == "replay" and not Path(args.events_file).exists():
        print(f"Events file not found: {args.events_file}")
        return

    try:
        asyncio.run(run_command(StatsEngine(settings, storage), args))
    except ArenaStatsError as e:
        print(f"Error: {e.message}")
    except KeyboardInterrupt:
        print("\n⚠️ Interrupted. Local state has been saved.")


if __name__ == "__main__":
    main()
