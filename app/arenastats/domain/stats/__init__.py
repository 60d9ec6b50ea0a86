"""Stats domain - Arena/player data model, peer reconciliation and scoring."""
from arenastats.domain.stats.models import (
    ArenaRecord,
    PlayerDirectory,
    PlayerRecord,
    SessionContext,
    StatisticsStore,
    WinState,
)
from arenastats.domain.stats.reconciler import PeerReconciler, ReconcileReport
from arenastats.domain.stats.scorer import (
    BattleExtremes,
    find_best_and_worst,
    score_arena,
)

__all__ = [
    "ArenaRecord",
    "BattleExtremes",
    "PeerReconciler",
    "PlayerDirectory",
    "PlayerRecord",
    "ReconcileReport",
    "SessionContext",
    "StatisticsStore",
    "WinState",
    "find_best_and_worst",
    "score_arena",
]
