"""
Due-date scheduling for tracked objects.

Manages:
- Deciding whether a backup is due from the last run and the interval
- Persisting the last successful run per object ({state_dir}/{safe_name}.last)
"""

import os
import logging

from dbkeeper.models import TrackedObject


logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

# 9999-12-31 23:59:59 UTC, the last second datetime can represent
MAX_TIMESTAMP = 253402300799


class StateWriteError(Exception):
    """Raised when the last-run timestamp cannot be persisted."""
    pass


def next_allowed(last_run: int, interval_days: int) -> int:
    """Epoch second from which the next backup is due."""
    return last_run + interval_days * SECONDS_PER_DAY


def is_due(now: int, last_run: int, interval_days: int) -> bool:
    """
    Check whether a backup is due.

    Missed runs are not queued; the answer only depends on the arguments.

    Args:
        now: Current time (epoch seconds)
        last_run: Last successful run (epoch seconds, 0 if never)
        interval_days: Days between backups, 0 means always due

    Returns:
        True if now >= last_run + interval_days days
    """
    if interval_days == 0:
        return True
    return now >= next_allowed(last_run, interval_days)


class RunStateStore:
    """
    Per-object last-run timestamps stored as small text files.
    """

    SUFFIX = '.last'

    def __init__(self, state_dir: str):
        self.state_dir = state_dir

    def state_path(self, obj: TrackedObject) -> str:
        return os.path.join(self.state_dir, f"{obj.safe_name}{self.SUFFIX}")

    def read_last_run(self, obj: TrackedObject) -> int:
        """
        Read the last successful run for an object.

        Returns:
            Epoch seconds, or 0 if the object never ran or the file is unreadable
        """
        path = self.state_path(obj)

        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = f.read().strip()
        except FileNotFoundError:
            return 0
        except OSError as e:
            logger.warning("Cannot read state file %s: %s", path, e)
            return 0

        try:
            last_run = int(raw)
        except ValueError:
            logger.warning("Ignoring malformed state file %s: %r", path, raw)
            return 0

        if not 0 <= last_run <= MAX_TIMESTAMP:
            logger.warning("Ignoring out-of-range state file %s: %d", path, last_run)
            return 0

        return last_run

    def write_last_run(self, obj: TrackedObject, timestamp: int) -> bool:
        """
        Persist the last successful run.

        The stored value only moves forward; an older or equal timestamp is ignored.

        Returns:
            True if the file was written

        Raises:
            StateWriteError: If the file cannot be written
        """
        current = self.read_last_run(obj)
        if timestamp <= current:
            logger.warning(
                "Not moving last run of %s backwards (%d <= %d)",
                obj.local_path, timestamp, current
            )
            return False

        path = self.state_path(obj)
        tmp = path + '.tmp'

        try:
            with open(tmp, 'w', encoding='utf-8') as f:
                f.write(f"{timestamp}\n")
            os.replace(tmp, path)
        except OSError as e:
            try:
                if os.path.exists(tmp):
                    os.remove(tmp)
            except OSError:
                pass
            raise StateWriteError(f"Failed to write state file {path}: {e}")

        return True
