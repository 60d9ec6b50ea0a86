"""
Logging configuration for the arena statistics engine with structured logging support.
"""
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Extra fields recognised on log records (passed via logger.info(..., extra={...}))
STRUCTURED_FIELDS = [
    # Identifiers
    'arena_id', 'player_id', 'event_type',
    # Network
    'attempt', 'status_code', 'scope',
    # Reconciliation
    'arenas_added', 'arenas_updated', 'players_added', 'players_merged',
    # Scheduler
    'execution_count',
]


@dataclass
class LogCollector:
    """Collects structured log messages for JSON export."""

    entries: list[dict[str, Any]] = field(default_factory=list)
    enabled: bool = True

    def add(self, record: logging.LogRecord) -> None:
        """Add a log record to the collection with structured data."""
        if not self.enabled:
            return

        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        self.entries.append(entry)

    def get_entries(self) -> list[dict[str, Any]]:
        """Get all collected log entries."""
        return self.entries

    def get_entries_by_arena(self, arena_id: str) -> list[dict[str, Any]]:
        """Get log entries for a specific arena."""
        return [e for e in self.entries if e.get('arena_id') == arena_id]

    def get_entries_by_type(self, event_type: str) -> list[dict[str, Any]]:
        """Get log entries by event type."""
        return [e for e in self.entries if e.get('event_type') == event_type]

    def clear(self) -> None:
        """Clear all collected entries."""
        self.entries = []

    def to_dict(self) -> dict:
        """Export for JSON serialization."""
        return {
            "total_entries": len(self.entries),
            "entries": self.entries,
        }


# Global log collector instance
log_collector = LogCollector()


class CollectorHandler(logging.Handler):
    """Custom handler that collects logs to the global collector."""

    def emit(self, record: logging.LogRecord) -> None:
        log_collector.add(record)


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs JSON for structured logging to console."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in ['arena_id', 'player_id', 'event_type', 'attempt', 'status_code']:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    def format(self, record: logging.LogRecord) -> str:
        prefix_parts = []
        if hasattr(record, 'arena_id'):
            prefix_parts.append(f"A{record.arena_id}")
        if hasattr(record, 'player_id'):
            prefix_parts.append(f"[{record.player_id}]")

        prefix = " ".join(prefix_parts)
        if prefix:
            prefix = f"{prefix} "

        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")

        message = f"{timestamp} | {record.levelname:<8} | {record.name} | {prefix}{record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logging(
    level: str = "INFO",
    collect_logs: bool = True,
    json_console: bool = False,
) -> None:
    """Set up logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        collect_logs: Whether to collect logs for JSON export
        json_console: If True, output JSON to console; otherwise human-readable
    """
    console_handler = logging.StreamHandler(sys.stdout)
    if json_console:
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(HumanReadableFormatter())

    handlers: list[logging.Handler] = [console_handler]

    if collect_logs:
        log_collector.enabled = True
        log_collector.clear()  # Start fresh
        handlers.append(CollectorHandler())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()
    for handler in handlers:
        root_logger.addHandler(handler)

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)


def log_sync_attempt(
    logger: logging.Logger,
    scope: str,
    attempt: int,
    player_id: str | None = None,
    status_code: int | None = None,
    error: str | None = None,
) -> None:
    """Log one network attempt with structured data."""
    extra: dict[str, Any] = {
        'event_type': 'sync_attempt',
        'scope': scope,
        'attempt': attempt,
    }
    if player_id is not None:
        extra['player_id'] = player_id
    if status_code is not None:
        extra['status_code'] = status_code

    if error:
        logger.warning(f"{scope} attempt {attempt} failed: {error}", extra=extra)
    else:
        logger.debug(f"{scope} attempt {attempt} -> {status_code}", extra=extra)


def log_reconcile(
    logger: logging.Logger,
    arenas_added: int,
    arenas_updated: int,
    players_added: int,
    players_merged: int,
) -> None:
    """Log the outcome of a peer reconciliation with structured data."""
    if not (arenas_added or arenas_updated):
        return
    extra = {
        'event_type': 'reconcile',
        'arenas_added': arenas_added,
        'arenas_updated': arenas_updated,
        'players_added': players_added,
        'players_merged': players_merged,
    }
    logger.info(
        f"Reconciled peers: +{arenas_added} arenas, ~{arenas_updated} arenas, "
        f"+{players_added} players, ~{players_merged} players",
        extra=extra,
    )
