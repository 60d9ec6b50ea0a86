"""Engine domain - Coordinates telemetry, sync and reconciliation."""
from arenastats.domain.engine.service import StatsEngine

__all__ = [
    "StatsEngine",
]
