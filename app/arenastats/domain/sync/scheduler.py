"""
Poll Scheduler - Background repeating task that drives peer reconciliation.

Two asyncio tasks cooperate per run:
- the ticker (background side) counts cycles and posts `execute` events,
  then waits for the cycle to be acknowledged and sleeps for `delay`;
- the dispatcher (foreground side) consumes the event queue and runs the
  bound action, so every store mutation happens on the consumer side.

Stopping cancels the ticker only. A cycle already being dispatched runs to
completion, after which the dispatcher sees the `stopped` event and fires
`on_stop`.
"""
import asyncio
import functools
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from arenastats.exceptions import ConfigurationError, SchedulerError
from arenastats.logging_config import get_logger

logger = get_logger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class EventKind(str, Enum):
    EXECUTE = "execute"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass
class SchedulerEvent:
    """Message posted from the ticker to the dispatcher."""

    kind: EventKind
    execution_count: int = 0
    error: BaseException | None = None
    ack: asyncio.Future | None = field(default=None, repr=False)


@dataclass
class SchedulerStats:
    """Snapshot returned by get_stats()."""

    is_running: bool
    execution_count: int
    last_execution_time: datetime | None
    last_error: BaseException | None
    delay: float


class PollScheduler:
    """
    Repeats an async action every `delay` seconds until stopped.

    Failures of the action are recorded and reported but never end the
    loop. A failure of the ticker itself raises SchedulerError through
    `on_error` and stops the scheduler.
    """

    def __init__(
        self,
        action: Callable[[], Awaitable[Any]],
        delay: float,
        on_success: Callable[[], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
        on_stop: Callable[[], None] | None = None,
        restart_grace: float = 0.1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        if action is None:
            raise ConfigurationError("missing_action", "Scheduler action is required")
        if delay is None or delay <= 0:
            raise ConfigurationError("invalid_delay", f"Invalid delay value: {delay}")

        self._action = action
        self._delay = delay
        self._on_success = on_success
        self._on_error = on_error
        self._on_stop = on_stop
        self._restart_grace = restart_grace
        self._sleep = sleep
        self._clock = clock

        self._state = SchedulerState.IDLE
        self._execution_count = 0
        self._last_execution_time: datetime | None = None
        self._last_error: BaseException | None = None

        # Bumped on every start so a stale run never touches the current one
        self._generation = 0
        self._events: asyncio.Queue | None = None
        self._ticker: asyncio.Task | None = None
        self._dispatcher: asyncio.Task | None = None
        self._restart_handle: asyncio.TimerHandle | None = None

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    @property
    def delay(self) -> float:
        return self._delay

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(self, delay: float | None = None) -> bool:
        """Idle -> Running. Returns False if already running."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return False
        if delay is not None:
            if delay <= 0:
                raise ConfigurationError("invalid_delay", f"Invalid delay value: {delay}")
            self._delay = delay

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            self._record_error(SchedulerError("no_event_loop", f"Cannot start scheduler: {e}"))
            return False

        self._cancel_pending_restart()
        self._generation += 1
        generation = self._generation
        self._state = SchedulerState.RUNNING
        self._execution_count = 0
        self._last_error = None

        events: asyncio.Queue = asyncio.Queue()
        self._events = events
        self._ticker = loop.create_task(self._tick(generation, self._delay, events))
        self._ticker.add_done_callback(functools.partial(self._on_ticker_done, generation))
        self._dispatcher = loop.create_task(self._dispatch(generation, events))

        logger.info(f"Scheduler started (every {self._delay}s)")
        return True

    def stop(self) -> bool:
        """Running -> Idle. Returns False if already idle."""
        self._cancel_pending_restart()
        if not self.is_running:
            logger.warning("Scheduler is not running")
            return False

        self._state = SchedulerState.IDLE
        if self._ticker is not None:
            self._ticker.cancel()
        if self._events is not None:
            self._events.put_nowait(SchedulerEvent(EventKind.STOPPED))
        logger.info("Scheduler stopped")
        return True

    def restart(self) -> None:
        """Stop, then start again after a short grace interval."""
        self.stop()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            self._record_error(SchedulerError("no_event_loop", f"Cannot restart scheduler: {e}"))
            return
        self._restart_handle = loop.call_later(self._restart_grace, self._restart_now)

    def update_delay(self, new_delay: float) -> None:
        """Change the polling period, restarting if currently running."""
        if new_delay is None or new_delay <= 0:
            raise ConfigurationError("invalid_delay", f"Invalid delay value: {new_delay}")
        self._delay = new_delay
        if self.is_running:
            self.restart()

    def get_stats(self) -> SchedulerStats:
        return SchedulerStats(
            is_running=self.is_running,
            execution_count=self._execution_count,
            last_execution_time=self._last_execution_time,
            last_error=self._last_error,
            delay=self._delay,
        )

    async def shutdown(self) -> None:
        """Stop if running and wait for the in-flight cycle to finish."""
        self._cancel_pending_restart()
        if self.is_running:
            self.stop()
        if self._dispatcher is not None:
            await self._dispatcher

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return self.is_running and generation == self._generation

    async def _tick(self, generation: int, delay: float, events: asyncio.Queue) -> None:
        loop = asyncio.get_running_loop()
        count = 0
        while self._is_current(generation):
            count += 1
            ack = loop.create_future()
            events.put_nowait(SchedulerEvent(EventKind.EXECUTE, execution_count=count, ack=ack))
            await ack
            await self._sleep(delay)

    async def _dispatch(self, generation: int, events: asyncio.Queue) -> None:
        while True:
            event = await events.get()

            if event.kind == EventKind.STOPPED:
                self._notify(self._on_stop)
                return

            if event.kind == EventKind.ERROR:
                self._record_error(event.error)
                continue

            try:
                if self._is_current(generation):
                    await self._execute(event.execution_count)
            finally:
                if event.ack is not None and not event.ack.done():
                    event.ack.set_result(None)

    async def _execute(self, execution_count: int) -> None:
        self._execution_count = execution_count
        self._last_execution_time = datetime.fromtimestamp(self._clock())
        try:
            await self._action()
        except Exception as e:
            self._record_error(e)
            return
        self._notify(self._on_success)

    def _on_ticker_done(self, generation: int, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None or generation != self._generation:
            return

        logger.error(f"Scheduler ticker failed: {error}")
        if self._events is not None:
            self._events.put_nowait(SchedulerEvent(
                EventKind.ERROR,
                error=SchedulerError("ticker_failed", f"Scheduler ticker failed: {error}"),
            ))
        self.stop()

    def _restart_now(self) -> None:
        self._restart_handle = None
        self.start()

    def _cancel_pending_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _record_error(self, error: BaseException | None) -> None:
        self._last_error = error
        logger.error(f"Scheduler error: {error}")
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception:
                logger.exception("on_error callback failed")

    def _notify(self, callback: Callable[[], None] | None) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("Scheduler callback failed")
