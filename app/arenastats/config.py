"""
Configuration for the arena statistics engine.

Environment Variables:
- STATS_BASE_URL: Base URL of the statistics endpoint (access key is appended)
- STATUS_URL: Liveness check used to warm up the endpoint
- STATE_FILE: JSON file backing the local key-value store
- POLL_DELAY: Seconds between background peer reconciliations (default: 5)
- REQUEST_TIMEOUT: Per-attempt network deadline in seconds (default: 8)
- LOG_LEVEL: Logging level (default: INFO)
"""
from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class ScoringRules:
    """Point constants used by telemetry and battle scoring."""

    points_per_damage: float = 1.0
    points_per_frag: float = 50
    points_per_team_win: float = 150


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote endpoint
    stats_base_url: str = "http://localhost:8080/api/battle-stats/"
    status_url: str = "http://localhost:8080/api/status"

    # Network policy
    request_timeout: float = 8.0
    push_attempts: int = 3
    push_backoff: float = 0.75  # multiplied by the attempt number

    # Background polling
    poll_delay: float = 5.0
    restart_grace: float = 0.1

    # Pause between push and pull of one sync cycle
    sync_settle_delay: float = 0.25

    # Scoring
    points_per_damage: float = 1.0
    points_per_frag: float = 50
    points_per_team_win: float = 150

    # Local persistence
    state_file: str = "data/state.json"

    # Logging
    log_level: str = "INFO"

    @property
    def scoring(self) -> ScoringRules:
        """Get the point constants as a domain value object."""
        return ScoringRules(
            points_per_damage=self.points_per_damage,
            points_per_frag=self.points_per_frag,
            points_per_team_win=self.points_per_team_win,
        )

    @property
    def peers_url_prefix(self) -> str:
        """URL prefix for peer-aggregated snapshots."""
        return f"{self.stats_base_url}pid/"

    @property
    def clear_url_prefix(self) -> str:
        """URL prefix for clearing remote state."""
        return f"{self.stats_base_url}clear/"
