"""
File locking utilities for safe concurrent access.

Provides cross-process advisory locking so that two engine instances (or the
CLI and a running engine) never interleave writes to the same state file.
"""

import fcntl
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from arenastats.logging_config import get_logger

logger = get_logger(__name__)


@contextmanager
def file_lock(
    file_path: str,
    exclusive: bool = True,
) -> Generator[None, None, None]:
    """
    Context manager for file locking.

    Uses fcntl for Unix file locking. Creates a .lock file next to the target
    so the target itself can be replaced atomically while the lock is held.

    Args:
        file_path: Path to the file to lock
        exclusive: If True, use exclusive lock (write). If False, shared lock (read).

    Usage:
        with file_lock("data/state.json"):
            data = read_state()
            write_state(data)

    Note:
        - Locks are advisory - all processes must use this utility
        - Works across processes, not just threads
    """
    lock_path = str(file_path) + ".lock"

    Path(lock_path).parent.mkdir(parents=True, exist_ok=True)

    lock_type = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
    lock_name = "exclusive" if exclusive else "shared"

    lock_file = open(lock_path, "w")

    try:
        logger.debug(f"Acquiring {lock_name} lock on {file_path}")
        fcntl.flock(lock_file.fileno(), lock_type)

        yield

    finally:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        lock_file.close()
        logger.debug(f"Released {lock_name} lock on {file_path}")
