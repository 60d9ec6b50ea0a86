"""
Stats Engine - Owns the statistics store and coordinates every component.

This is the main coordinator that:
1. Restores local state from the key-value store
2. Applies host events through the Telemetry Aggregator
3. Runs push/pull sync cycles without blocking event handling
4. Drives background peer reconciliation through the Poll Scheduler
5. Persists state and notifies listeners after every change

All store mutations run on the event loop that calls `dispatch`; network
calls only suspend, and merges are applied synchronously once a pull
resolves.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable

import httpx

from arenastats.config import Settings
from arenastats.domain.stats.models import (
    SessionContext,
    StatisticsStore,
    game_state_from_dict,
    game_state_to_dict,
)
from arenastats.domain.stats.reconciler import PeerReconciler, ReconcileReport
from arenastats.domain.stats.scorer import (
    BattleExtremes,
    TeamTotals,
    Totals,
    find_best_and_worst,
    player_totals,
    team_totals,
)
from arenastats.domain.sync.client import PullScope, SyncClient
from arenastats.domain.sync.scheduler import PollScheduler
from arenastats.domain.telemetry.aggregator import Reaction, SyncRequest, TelemetryAggregator
from arenastats.domain.utils.storage import ACCESS_KEY_KEY, GAME_STATE_KEY, KeyValueStore
from arenastats.exceptions import ConfigurationError, DataError, NetworkError
from arenastats.logging_config import get_logger

logger = get_logger(__name__)

SyncFailure = (NetworkError, ConfigurationError, DataError)


class StatsEngine:
    """
    Statistics reconciliation engine for one client.

    Collaborators (storage, HTTP transport, clock, backoff sleep) are
    injected so tests can substitute fakes.
    """

    def __init__(
        self,
        settings: Settings,
        storage: KeyValueStore,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the engine.

        Args:
            settings: Application settings
            storage: Durable key-value store for `gameState` and `accessKey`
            transport: Optional httpx transport for the sync client
            clock: Returns the current time in epoch seconds
            sleep: Awaitable used for push backoff
        """
        self._settings = settings
        self._storage = storage
        self._clock = clock

        self.store, self.session = self._restore_state()
        self.reconciler = PeerReconciler()
        self.aggregator = TelemetryAggregator(self.store, self.session, settings.scoring, clock)
        self.sync_client = SyncClient(settings, storage, transport=transport, sleep=sleep)
        self.scheduler = PollScheduler(
            action=self.pull_cycle,
            delay=settings.poll_delay,
            on_error=self._on_poll_error,
            on_stop=self._on_poll_stop,
            restart_grace=settings.restart_grace,
            clock=clock,
        )

        self._listeners: list[Callable[[], None]] = []
        self._pending: set[asyncio.Task] = set()

    async def __aenter__(self) -> "StatsEngine":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _restore_state(self) -> tuple[StatisticsStore, SessionContext]:
        try:
            data = self._storage.get(GAME_STATE_KEY)
            if not isinstance(data, dict):
                return StatisticsStore(), SessionContext()
            store, session = game_state_from_dict(data)
        except DataError as e:
            logger.warning(f"Discarding unreadable saved state: {e.message}")
            return StatisticsStore(), SessionContext()
        logger.info(f"Restored {len(store.arenas)} arenas from saved state")
        return store, session

    def save_state(self) -> bool:
        """Persist store and session. Failures are logged, never raised."""
        try:
            self._storage.set(GAME_STATE_KEY, game_state_to_dict(self.store, self.session))
        except DataError as e:
            logger.error(f"Could not save state: {e.message}")
            return False
        except OSError as e:
            logger.error(f"Could not save state: {e}")
            return False
        return True

    def set_access_key(self, access_key: str) -> None:
        self._storage.set(ACCESS_KEY_KEY, access_key)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a `stats_updated` listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit_stats_updated(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("stats_updated listener failed")

    # ------------------------------------------------------------------
    # Foreground event flow
    # ------------------------------------------------------------------

    def dispatch(self, raw_event: Any) -> Reaction:
        """
        Apply one host event and schedule its follow-up work.

        Must be called from the running event loop. Network cycles are
        started as tasks and never awaited here.
        """
        reaction = self.aggregator.handle(raw_event)

        if reaction.persist:
            self.save_state()

        if reaction.warmup and reaction.sync == SyncRequest.PUSH_PULL:
            self._spawn(self._warmup_then_sync())
        elif reaction.warmup:
            self._spawn(self._warmup())
        elif reaction.sync == SyncRequest.PUSH_PULL:
            self._spawn(self.sync_cycle())
        elif reaction.sync == SyncRequest.PULL:
            self._spawn(self._guarded_pull_cycle())

        if reaction.start_polling:
            self.scheduler.start()
        if reaction.stop_polling and self.scheduler.is_running:
            self.scheduler.stop()

        return reaction

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        task.add_done_callback(self._log_task_failure)
        return task

    def _log_task_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background sync task failed: {error!r}",
                exc_info=(type(error), error, error.__traceback__),
            )

    async def drain(self) -> None:
        """Wait for every sync cycle started so far (including ones they start)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Sync cycles
    # ------------------------------------------------------------------

    async def sync_cycle(self) -> None:
        """Push local state, pull peers, reconcile, persist and notify."""
        try:
            await self.sync_client.push(self.store, self.session.current_player_id)
        except SyncFailure as e:
            logger.error(f"Push failed: {e.message}")

        if self._settings.sync_settle_delay > 0:
            await asyncio.sleep(self._settings.sync_settle_delay)

        try:
            await self._pull_and_reconcile()
        except SyncFailure as e:
            logger.warning(f"Peer pull failed: {e.message}")

        self.save_state()
        self._emit_stats_updated()

    async def pull_cycle(self) -> ReconcileReport:
        """
        Pull peers, reconcile, persist and notify.

        Errors propagate so the scheduler can record them.
        """
        report = await self._pull_and_reconcile()
        self.save_state()
        self._emit_stats_updated()
        return report

    async def _guarded_pull_cycle(self) -> None:
        try:
            await self.pull_cycle()
        except SyncFailure as e:
            logger.warning(f"Peer pull failed: {e.message}")

    async def _pull_and_reconcile(self) -> ReconcileReport:
        snapshot = await self.sync_client.pull(PullScope.PEERS, self.session.current_player_id)
        if not snapshot.success:
            return ReconcileReport()
        return self.reconciler.reconcile(self.store, snapshot.battle_stats)

    async def _warmup(self) -> None:
        try:
            await self.sync_client.warmup()
        except SyncFailure as e:
            logger.warning(f"Warmup failed: {e.message}")

    async def _warmup_then_sync(self) -> None:
        await self._warmup()
        await self.sync_cycle()

    async def load_from_server(self) -> bool:
        """
        Replace local statistics with the own snapshot held remotely.

        Returns:
            The server's success flag
        """
        snapshot = await self.sync_client.pull(PullScope.OWN)
        if not snapshot.success:
            return False

        restored = StatisticsStore.from_dicts(snapshot.battle_stats, snapshot.player_info)
        if snapshot.battle_stats:
            self.store.arenas = restored.arenas
        if snapshot.player_info:
            self.store.directory.names = restored.directory.names

        self.save_state()
        self._emit_stats_updated()
        return True

    # ------------------------------------------------------------------
    # Scheduler callbacks
    # ------------------------------------------------------------------

    def _on_poll_error(self, error: BaseException) -> None:
        logger.warning(f"Background reconciliation failed: {error}")

    def _on_poll_stop(self) -> None:
        logger.info("Background reconciliation stopped")

    # ------------------------------------------------------------------
    # Clearing
    # ------------------------------------------------------------------

    def clear_all(self) -> None:
        """Empty the store and directory, reset the session and forget saved state."""
        self.store.clear()
        self.session.current_arena_id = None
        self.session.current_vehicle = None
        self.session.is_in_platoon = False
        try:
            self._storage.remove(GAME_STATE_KEY)
        except (DataError, OSError) as e:
            logger.error(f"Could not remove saved state: {e}")
        if self.scheduler.is_running:
            self.scheduler.stop()
        self._emit_stats_updated()

    async def clear_server_data(self) -> bool:
        """Drop remote state; on success also drop local statistics."""
        success = await self.sync_client.clear_remote()
        if success:
            self.store.clear()
            self.save_state()
            self._emit_stats_updated()
        return success

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def find_best_and_worst(self) -> BattleExtremes | None:
        return find_best_and_worst(self.store, self._settings.scoring)

    def player_totals(self, player_id: str) -> Totals:
        return player_totals(self.store, player_id)

    def team_totals(self) -> TeamTotals:
        return team_totals(self.store, self._settings.scoring)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Stop polling, finish outstanding cycles and release the HTTP client."""
        await self.scheduler.shutdown()
        await self.drain()
        await self.sync_client.aclose()
