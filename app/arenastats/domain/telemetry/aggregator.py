"""
Telemetry Aggregator - Applies locally observed match events to the store.

The aggregator only mutates in-memory state. What should happen next
(persisting, a sync cycle, starting or stopping background polling) is
returned as a Reaction so the engine owns every side effect.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from arenastats.config import ScoringRules
from arenastats.domain.stats.models import (
    UNKNOWN_MAP,
    UNKNOWN_PLAYER,
    UNKNOWN_VEHICLE,
    PlayerRecord,
    SessionContext,
    StatisticsStore,
    WinState,
)
from arenastats.domain.telemetry.events import (
    AnyDamage,
    ArenaEntered,
    BattleResult,
    DamageData,
    FeedbackType,
    HangarStatus,
    HangarVehicle,
    PlatoonStatus,
    PlayerFeedback,
    parse_event,
)
from arenastats.exceptions import DataError
from arenastats.logging_config import get_logger

logger = get_logger(__name__)

# Team id reported as winner when the match ended without one
NO_WINNER_TEAM = 0
# Team id of a player without a team
NO_TEAM = 0

# Other tracked players tolerated before this client stops registering itself
PLATOON_ROSTER_LIMIT = 3
SOLO_ROSTER_LIMIT = 1


class SyncRequest(str, Enum):
    """Network follow-up requested by an event."""

    NONE = "none"
    PULL = "pull"
    PUSH_PULL = "push_pull"


@dataclass
class Reaction:
    """Side effects the engine should perform after an event was applied."""

    persist: bool = False
    sync: SyncRequest = SyncRequest.NONE
    start_polling: bool = False
    stop_polling: bool = False
    warmup: bool = False

    @property
    def is_noop(self) -> bool:
        return self == Reaction()


def derive_win(player_team: int, winner_team: int) -> WinState | None:
    """
    Outcome from the reporting player's side.

    Returns None when the player had no team, leaving the arena's
    outcome untouched.
    """
    if player_team == NO_TEAM:
        return None
    if player_team == winner_team:
        return WinState.WIN
    if winner_team == NO_WINNER_TEAM:
        return WinState.DRAW
    return WinState.LOSS


class TelemetryAggregator:
    """
    Routes host events into the statistics store.

    Handlers never raise on bad input: invalid payloads are logged and
    dropped without touching state.
    """

    def __init__(
        self,
        store: StatisticsStore,
        session: SessionContext,
        rules: ScoringRules = ScoringRules(),
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize the aggregator.

        Args:
            store: Statistics store to mutate (owned by the engine)
            session: Session pointers used to route events
            rules: Point constants for damage and frags
            clock: Returns the current time in epoch seconds
        """
        self.store = store
        self.session = session
        self.rules = rules
        self._clock = clock or time.time

        self._feedback_handlers: dict[FeedbackType, Callable[[Any], Reaction]] = {
            FeedbackType.DAMAGE: self._on_damage_feedback,
            FeedbackType.KILL: self._on_kill_feedback,
            FeedbackType.RADIO_ASSIST: self._on_assist_feedback,
            FeedbackType.TRACK_ASSIST: self._on_assist_feedback,
            FeedbackType.TANKING: self._on_assist_feedback,
            FeedbackType.RECEIVED_DAMAGE: self._on_assist_feedback,
            FeedbackType.TARGET_VISIBILITY: self._on_passive_feedback,
            FeedbackType.OTHER: self._on_passive_feedback,
        }

    # ------------------------------------------------------------------
    # Reporting eligibility
    # ------------------------------------------------------------------

    def is_registered(self) -> bool:
        """True if the current player is recorded by this client."""
        player_id = self.session.current_player_id
        return player_id is not None and player_id in self.store.directory

    def can_register(self) -> bool:
        """Whether the roster still has room for this client to report."""
        others = [
            pid for pid in self.store.directory.player_ids()
            if pid != self.session.current_player_id
        ]
        limit = PLATOON_ROSTER_LIMIT if self.session.is_in_platoon else SOLO_ROSTER_LIMIT
        return len(others) < limit

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, raw_event: Any) -> Reaction:
        """Validate and apply one host event."""
        try:
            event = parse_event(raw_event)
        except DataError as e:
            logger.debug(f"Dropping host event: {e.message}")
            return Reaction()
        return self.apply(event)

    def apply(self, event) -> Reaction:
        """Apply an already validated event."""
        try:
            if isinstance(event, HangarStatus):
                return self.on_hangar_status(event)
            if isinstance(event, HangarVehicle):
                return self.on_hangar_vehicle(event)
            if isinstance(event, PlatoonStatus):
                return self.on_platoon_status(event)
            if isinstance(event, ArenaEntered):
                return self.on_arena_entered(event)
            if isinstance(event, AnyDamage):
                return self.on_any_damage(event)
            if isinstance(event, PlayerFeedback):
                return self.on_player_feedback(event)
            if isinstance(event, BattleResult):
                return self.on_battle_result(event)
        except DataError as e:
            logger.debug(f"Dropping {event.kind} event: {e.message}")
            return Reaction()
        raise TypeError(f"Unsupported event type: {type(event).__name__}")

    # ------------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------------

    def on_hangar_status(self, event: HangarStatus) -> Reaction:
        if not event.in_hangar or event.player_id is None:
            return Reaction()

        self.session.current_player_id = event.player_id

        if self.is_registered():
            return Reaction(persist=True)

        if not self.can_register():
            logger.info(
                "Roster already reported by other clients, not recording",
                extra={'player_id': event.player_id},
            )
            return Reaction(persist=True)

        self.store.directory.register(event.player_id, event.player_name or UNKNOWN_PLAYER)
        logger.info("Registered local player", extra={'player_id': event.player_id})
        return Reaction(persist=True, sync=SyncRequest.PUSH_PULL)

    def on_hangar_vehicle(self, event: HangarVehicle) -> Reaction:
        self.session.current_vehicle = event.localized_short_name or UNKNOWN_VEHICLE
        return Reaction(persist=True)

    def on_platoon_status(self, event: PlatoonStatus) -> Reaction:
        self.session.is_in_platoon = event.in_platoon
        return Reaction(persist=True)

    def on_arena_entered(self, event: ArenaEntered) -> Reaction:
        self.session.current_arena_id = event.arena_id

        player_id = self.session.current_player_id
        if player_id is None or not self.is_registered():
            return Reaction(persist=True)

        player = self.store.ensure_player(
            event.arena_id,
            player_id,
            start_time=int(self._clock() * 1000),
            vehicle=self.session.current_vehicle,
        )
        arena = self.store.arenas[event.arena_id]
        arena.map_name = event.map_name or UNKNOWN_MAP
        player.vehicle = self.session.current_vehicle or UNKNOWN_VEHICLE
        player.name = self.store.directory.get(player_id) or UNKNOWN_PLAYER

        logger.info(
            f"Entered arena on {arena.map_name}",
            extra={'arena_id': event.arena_id, 'player_id': player_id},
        )
        return Reaction(persist=True, sync=SyncRequest.PUSH_PULL, start_polling=True)

    def on_any_damage(self, event: AnyDamage) -> Reaction:
        if not self.session.current_arena_id or not self.session.current_player_id:
            return Reaction()

        attacker = event.attacker_player_id
        if attacker is None or attacker == self.session.current_player_id:
            return Reaction()
        if attacker in self.store.directory:
            return Reaction(sync=SyncRequest.PULL)
        return Reaction()

    # ------------------------------------------------------------------
    # Player feedback
    # ------------------------------------------------------------------

    def on_player_feedback(self, event: PlayerFeedback) -> Reaction:
        if not self.session.current_arena_id or not self.session.current_player_id:
            return Reaction()
        return self._feedback_handlers[event.type](event.data)

    def _current_player(self) -> PlayerRecord | None:
        return self.store.get_player(self.session.current_arena_id, self.session.current_player_id)

    def _on_damage_feedback(self, data: Any) -> Reaction:
        if data is None:
            return Reaction()
        try:
            damage = DamageData.model_validate(data).damage
        except ValueError as e:
            raise DataError("invalid_feedback", f"Invalid damage feedback: {e}") from e

        player = self._current_player()
        if player is None:
            return Reaction()

        player.damage += damage
        player.points += damage * self.rules.points_per_damage
        return self._after_counter_update()

    def _on_kill_feedback(self, data: Any) -> Reaction:
        if data is None:
            return Reaction()

        player = self._current_player()
        if player is None:
            return Reaction()

        player.kills += 1
        player.points += self.rules.points_per_frag
        return self._after_counter_update()

    def _after_counter_update(self) -> Reaction:
        if self.is_registered():
            return Reaction(persist=True, sync=SyncRequest.PUSH_PULL)
        return Reaction(persist=True)

    def _on_assist_feedback(self, data: Any) -> Reaction:
        if data is None:
            return Reaction()
        return Reaction(sync=SyncRequest.PULL)

    def _on_passive_feedback(self, data: Any) -> Reaction:
        return Reaction(sync=SyncRequest.PULL)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def on_battle_result(self, event: BattleResult) -> Reaction:
        arena = self.store.get_arena(event.arena_id)
        if arena is None:
            logger.warning("Battle result for an unknown arena", extra={'arena_id': event.arena_id})
            return Reaction()

        player_id = event.player_id
        self.session.current_player_id = player_id
        arena.duration = event.common.duration

        win = derive_win(event.players[player_id].team, event.common.winner_team)
        if win is not None:
            arena.win = win

        vehicle = event.find_vehicle(player_id)
        player = arena.players.get(player_id)
        if vehicle is not None and player is not None:
            player.damage = vehicle.damage_dealt
            player.kills = vehicle.kills
            player.points = vehicle.damage_dealt + vehicle.kills * self.rules.points_per_frag

        logger.info(
            f"Battle finished: {arena.win.name.lower()}",
            extra={'arena_id': event.arena_id, 'player_id': player_id},
        )

        registered = self.is_registered()
        return Reaction(
            persist=True,
            warmup=True,
            sync=SyncRequest.PUSH_PULL if registered else SyncRequest.NONE,
            stop_polling=registered,
        )
