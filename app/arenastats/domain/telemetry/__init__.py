"""Telemetry domain - Host events and their application to the store."""
from arenastats.domain.telemetry.aggregator import (
    Reaction,
    SyncRequest,
    TelemetryAggregator,
    derive_win,
)
from arenastats.domain.telemetry.events import FeedbackType, parse_event

__all__ = [
    "FeedbackType",
    "Reaction",
    "SyncRequest",
    "TelemetryAggregator",
    "derive_win",
    "parse_event",
]
