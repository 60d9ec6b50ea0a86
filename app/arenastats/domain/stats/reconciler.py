"""
Peer Reconciler - Merges snapshots reported by other clients into the local store.

Player counters (damage, kills, points) merge by pairwise maximum, so applying
the same snapshot any number of times converges to the same result and never
lowers a value already known locally.

Scalar arena fields (startTime, duration, win, mapName) are taken from the
peer on every merge. A stale peer snapshot arriving after a fresher local
finalization can therefore move `win`/`duration` backwards; counters are not
affected.
"""
from dataclasses import dataclass
from typing import Any

from arenastats.domain.stats.models import (
    ArenaRecord,
    PlayerRecord,
    StatisticsStore,
)
from arenastats.exceptions import DataError
from arenastats.logging_config import get_logger, log_reconcile

logger = get_logger(__name__)

# Wire key -> ArenaRecord attribute for fields the peer always overwrites
SCALAR_FIELDS = {
    "startTime": "start_time",
    "duration": "duration",
    "win": "win",
    "mapName": "map_name",
}


@dataclass
class ReconcileReport:
    """What a single reconciliation changed."""

    arenas_added: int = 0
    arenas_updated: int = 0
    players_added: int = 0
    players_merged: int = 0
    arenas_skipped: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.arenas_added or self.arenas_updated)


class PeerReconciler:
    """Applies peer snapshots (arenaId -> partial arena record) to a store."""

    def reconcile(self, store: StatisticsStore, snapshot: dict[str, Any] | None) -> ReconcileReport:
        """
        Merge a fetched peer snapshot into the store in place.

        Malformed arenas are skipped individually so one bad entry cannot
        block the rest of the snapshot.

        Args:
            store: The local statistics store (mutated)
            snapshot: Raw `BattleStats` mapping from the remote endpoint

        Returns:
            A report of what was added or merged
        """
        report = ReconcileReport()
        for arena_id, peer_arena in (snapshot or {}).items():
            arena_id = str(arena_id)
            try:
                self._merge_arena(store, arena_id, peer_arena, report)
            except DataError as e:
                report.arenas_skipped += 1
                logger.warning(
                    f"Skipping malformed peer arena: {e.message}",
                    extra={'arena_id': arena_id},
                )

        log_reconcile(
            logger,
            arenas_added=report.arenas_added,
            arenas_updated=report.arenas_updated,
            players_added=report.players_added,
            players_merged=report.players_merged,
        )
        return report

    def _merge_arena(
        self,
        store: StatisticsStore,
        arena_id: str,
        peer_arena: Any,
        report: ReconcileReport,
    ) -> None:
        existing = store.arenas.get(arena_id)
        if existing is None:
            store.arenas[arena_id] = ArenaRecord.from_dict(arena_id, peer_arena)
            report.arenas_added += 1
            report.players_added += len(store.arenas[arena_id].players)
            return

        if not isinstance(peer_arena, dict):
            raise DataError("invalid_arena", f"Arena {arena_id} must be an object")

        # Validate everything before touching the local record
        scalars = self._parse_scalars(arena_id, peer_arena)
        peer_players = ArenaRecord.from_dict(arena_id, {"players": peer_arena.get("players")}).players
        raw_players = peer_arena.get("players") or {}

        for attr, value in scalars.items():
            setattr(existing, attr, value)

        for player_id, peer_player in peer_players.items():
            local_player = existing.players.get(player_id)
            if local_player is None:
                existing.players[player_id] = peer_player
                report.players_added += 1
                continue
            merge_player(local_player, peer_player, raw_players.get(player_id) or {})
            report.players_merged += 1

        report.arenas_updated += 1

    def _parse_scalars(self, arena_id: str, peer_arena: dict[str, Any]) -> dict[str, Any]:
        parsed = ArenaRecord.from_dict(arena_id, {k: v for k, v in peer_arena.items() if k != "players"})
        scalars = {}
        for wire_key, attr in SCALAR_FIELDS.items():
            if wire_key not in peer_arena:
                continue
            scalars[attr] = getattr(parsed, attr)
        return scalars


def merge_player(local: PlayerRecord, peer: PlayerRecord, raw_peer: dict[str, Any]) -> None:
    """Monotonic merge of one player's counters; identity fields follow the peer."""
    local.damage = max(local.damage, peer.damage)
    local.kills = max(local.kills, peer.kills)
    local.points = max(local.points, peer.points)
    if raw_peer.get("name"):
        local.name = peer.name
    if raw_peer.get("vehicle"):
        local.vehicle = peer.vehicle
