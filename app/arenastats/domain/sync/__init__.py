"""Sync domain - Remote endpoint client and background polling."""
from arenastats.domain.sync.client import PullScope, RemoteSnapshot, SyncClient
from arenastats.domain.sync.scheduler import PollScheduler, SchedulerStats

__all__ = [
    "PollScheduler",
    "PullScope",
    "RemoteSnapshot",
    "SchedulerStats",
    "SyncClient",
]
