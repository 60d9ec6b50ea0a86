"""
Arena and player statistics models.

These models hold everything one client knows about the matches it has
observed, both from its own telemetry and from snapshots reported by peers.
Serialized form uses the camelCase keys of the remote contract.
"""
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from arenastats.exceptions import DataError

UNKNOWN_PLAYER = "Unknown Player"
UNKNOWN_VEHICLE = "Unknown Vehicle"
UNKNOWN_MAP = "Unknown Map"


class WinState(IntEnum):
    """Outcome of an arena from the reporting player's side."""

    UNKNOWN = -1
    LOSS = 0
    WIN = 1
    DRAW = 2


def _number(data: dict[str, Any], key: str, default: float = 0) -> float:
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DataError("invalid_field", f"Field '{key}' must be numeric, got {value!r}")
    return value


@dataclass
class PlayerRecord:
    """Per-arena statistics for one player."""

    name: str = UNKNOWN_PLAYER
    vehicle: str = UNKNOWN_VEHICLE
    damage: float = 0
    kills: int = 0
    points: float = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "vehicle": self.vehicle,
            "damage": self.damage,
            "kills": self.kills,
            "points": self.points,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlayerRecord":
        if not isinstance(data, dict):
            raise DataError("invalid_player", f"Player record must be an object, got {data!r}")
        return cls(
            name=data.get("name") or UNKNOWN_PLAYER,
            vehicle=data.get("vehicle") or UNKNOWN_VEHICLE,
            damage=_number(data, "damage"),
            kills=int(_number(data, "kills")),
            points=_number(data, "points"),
        )


@dataclass
class ArenaRecord:
    """One match instance and the players recorded in it."""

    arena_id: str
    start_time: int = 0  # epoch milliseconds
    duration: float = 0
    win: WinState = WinState.UNKNOWN
    map_name: str = UNKNOWN_MAP
    players: dict[str, PlayerRecord] = field(default_factory=dict)

    @property
    def is_finished(self) -> bool:
        """An arena with a known outcome has been finalized."""
        return self.win != WinState.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        return {
            "startTime": self.start_time,
            "duration": self.duration,
            "win": int(self.win),
            "mapName": self.map_name,
            "players": {pid: p.to_dict() for pid, p in self.players.items()},
        }

    @classmethod
    def from_dict(cls, arena_id: str, data: dict[str, Any]) -> "ArenaRecord":
        if not isinstance(data, dict):
            raise DataError("invalid_arena", f"Arena {arena_id} must be an object")
        players = data.get("players") or {}
        if not isinstance(players, dict):
            raise DataError("invalid_arena", f"Arena {arena_id} players must be an object")
        return cls(
            arena_id=str(arena_id),
            start_time=int(_number(data, "startTime")),
            duration=_number(data, "duration"),
            win=parse_win(data.get("win", WinState.UNKNOWN)),
            map_name=data.get("mapName") or UNKNOWN_MAP,
            players={str(pid): PlayerRecord.from_dict(p) for pid, p in players.items()},
        )


def parse_win(value: Any) -> WinState:
    """Convert a wire value into a WinState, rejecting anything outside the four outcomes."""
    if value is None:
        return WinState.UNKNOWN
    try:
        return WinState(int(value))
    except (TypeError, ValueError) as e:
        raise DataError("invalid_win", f"Invalid win value: {value!r}") from e


@dataclass
class PlayerDirectory:
    """Display names of every player seen across all arenas."""

    names: dict[str, str] = field(default_factory=dict)

    def get(self, player_id: str) -> str | None:
        return self.names.get(player_id)

    def register(self, player_id: str, name: str) -> None:
        self.names[player_id] = name

    def player_ids(self) -> list[str]:
        """Ids of tracked players (numeric account ids only)."""
        return [pid for pid in self.names if pid.isdigit()]

    def __contains__(self, player_id: object) -> bool:
        return player_id in self.player_ids()

    def clear(self) -> None:
        self.names = {}

    def to_dict(self) -> dict[str, str]:
        return dict(self.names)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PlayerDirectory":
        return cls(names={str(pid): str(name) for pid, name in (data or {}).items()})


@dataclass
class SessionContext:
    """Ephemeral pointers used to route incoming host events."""

    current_player_id: str | None = None
    current_arena_id: str | None = None
    current_vehicle: str | None = None
    is_in_platoon: bool = False


@dataclass
class StatisticsStore:
    """
    All arenas known to this client plus the global player directory.

    The engine owns exactly one store; the sync client and reconciler only
    ever receive it by reference.
    """

    arenas: dict[str, ArenaRecord] = field(default_factory=dict)
    directory: PlayerDirectory = field(default_factory=PlayerDirectory)

    def get_arena(self, arena_id: str | None) -> ArenaRecord | None:
        if arena_id is None:
            return None
        return self.arenas.get(arena_id)

    def get_player(self, arena_id: str | None, player_id: str | None) -> PlayerRecord | None:
        arena = self.get_arena(arena_id)
        if arena is None or player_id is None:
            return None
        return arena.players.get(player_id)

    def ensure_player(
        self,
        arena_id: str,
        player_id: str,
        start_time: int,
        vehicle: str | None = None,
    ) -> PlayerRecord:
        """Create the arena and player records on first observation."""
        arena = self.arenas.get(arena_id)
        if arena is None:
            arena = ArenaRecord(arena_id=arena_id, start_time=start_time)
            self.arenas[arena_id] = arena

        player = arena.players.get(player_id)
        if player is None:
            player = PlayerRecord(
                name=self.directory.get(player_id) or UNKNOWN_PLAYER,
                vehicle=vehicle or UNKNOWN_VEHICLE,
            )
            arena.players[player_id] = player
        return player

    def clear(self) -> None:
        """Empty the arenas and the player directory together."""
        self.arenas = {}
        self.directory.clear()

    def battle_stats_dict(self) -> dict[str, Any]:
        return {arena_id: arena.to_dict() for arena_id, arena in self.arenas.items()}

    def to_payload(self) -> dict[str, Any]:
        """Body of a push request."""
        return {
            "BattleStats": self.battle_stats_dict(),
            "PlayerInfo": self.directory.to_dict(),
        }

    @classmethod
    def from_dicts(
        cls,
        battle_stats: dict[str, Any] | None,
        players_info: dict[str, Any] | None,
    ) -> "StatisticsStore":
        return cls(
            arenas={
                str(arena_id): ArenaRecord.from_dict(str(arena_id), data)
                for arena_id, data in (battle_stats or {}).items()
            },
            directory=PlayerDirectory.from_dict(players_info),
        )


def game_state_to_dict(store: StatisticsStore, session: SessionContext) -> dict[str, Any]:
    """Build the persisted `gameState` record."""
    return {
        "BattleStats": store.battle_stats_dict(),
        "PlayersInfo": store.directory.to_dict(),
        "currentPlayerId": session.current_player_id,
        "currentArenaId": session.current_arena_id,
        "currentVehicle": session.current_vehicle,
        "isInPlatoon": session.is_in_platoon,
    }


def game_state_from_dict(data: dict[str, Any]) -> tuple[StatisticsStore, SessionContext]:
    """Restore store and session from a persisted `gameState` record."""
    store = StatisticsStore.from_dicts(data.get("BattleStats"), data.get("PlayersInfo"))
    player_id = data.get("currentPlayerId")
    arena_id = data.get("currentArenaId")
    session = SessionContext(
        current_player_id=str(player_id) if player_id is not None else None,
        current_arena_id=str(arena_id) if arena_id is not None else None,
        current_vehicle=data.get("currentVehicle"),
        is_in_platoon=bool(data.get("isInPlatoon", False)),
    )
    return store, session
