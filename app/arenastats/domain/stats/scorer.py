"""
Battle Scorer - Derives per-arena scores and best/worst match analytics.
"""
from dataclasses import dataclass

from arenastats.config import ScoringRules
from arenastats.domain.stats.models import ArenaRecord, StatisticsStore, WinState


@dataclass
class ScoredArena:
    """An arena together with its computed score."""

    arena: ArenaRecord
    points: float


@dataclass
class BattleExtremes:
    """Best and worst scoring finished arenas."""

    best: ScoredArena
    worst: ScoredArena


@dataclass
class Totals:
    """Summed counters over a set of player records."""

    points: float = 0
    damage: float = 0
    kills: int = 0


@dataclass
class TeamTotals(Totals):
    """Totals across every arena, including team-win bonuses."""

    wins: int = 0
    battles: int = 0


def score_arena(arena: ArenaRecord, rules: ScoringRules = ScoringRules()) -> float:
    """Sum of player points plus the team-win bonus (only for an outright win)."""
    points = sum(player.points for player in arena.players.values())
    if arena.win == WinState.WIN:
        points += rules.points_per_team_win
    return points


def find_best_and_worst(
    store: StatisticsStore,
    rules: ScoringRules = ScoringRules(),
) -> BattleExtremes | None:
    """
    Find the highest and lowest scoring finished arenas.

    Arenas still in progress (win unknown) are ignored. Ties keep the
    first arena encountered in iteration order.

    Returns:
        BattleExtremes, or None if no arena has finished
    """
    finished = [arena for arena in store.arenas.values() if arena.win != WinState.UNKNOWN]
    if not finished:
        return None

    first = ScoredArena(arena=finished[0], points=score_arena(finished[0], rules))
    best = worst = first
    for arena in finished[1:]:
        points = score_arena(arena, rules)
        if points < worst.points:
            worst = ScoredArena(arena=arena, points=points)
        if points > best.points:
            best = ScoredArena(arena=arena, points=points)

    return BattleExtremes(best=best, worst=worst)


def battle_totals(arena: ArenaRecord) -> Totals:
    """Points, damage and kills summed over one arena."""
    totals = Totals()
    for player in arena.players.values():
        totals.points += player.points
        totals.damage += player.damage
        totals.kills += player.kills
    return totals


def player_totals(store: StatisticsStore, player_id: str) -> Totals:
    """Points, damage and kills of one player summed over every arena."""
    totals = Totals()
    for arena in store.arenas.values():
        player = arena.players.get(player_id)
        if player is None:
            continue
        totals.points += player.points
        totals.damage += player.damage
        totals.kills += player.kills
    return totals


def team_totals(store: StatisticsStore, rules: ScoringRules = ScoringRules()) -> TeamTotals:
    """Totals for the whole group across every recorded arena."""
    totals = TeamTotals()
    for arena in store.arenas.values():
        totals.battles += 1
        if arena.win == WinState.WIN:
            totals.points += rules.points_per_team_win
            totals.wins += 1
        arena_totals = battle_totals(arena)
        totals.points += arena_totals.points
        totals.damage += arena_totals.damage
        totals.kills += arena_totals.kills
    return totals
