"""
Worker activity measurement.

The worker writes to a shared log file; each line containing the completion
marker counts as one unit of finished work. The supervisor reads the count at
both ends of a probe window and truncates the log once it has acted on the
result, so every window starts from zero.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class LogActivityProbe:
    """Counts completion markers in a log file."""

    def __init__(self, marker: str = "finish"):
        self.marker = marker

    def count(self, path: Path) -> int:
        """Count lines in ``path`` containing the marker.

        A missing or unreadable file counts as zero; a freshly truncated or
        not-yet-created log is normal between windows.
        """
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                return sum(1 for line in f if self.marker in line)
        except FileNotFoundError:
            logger.debug(f"Log file {path} does not exist yet")
            return 0
        except OSError as e:
            logger.warning(f"Cannot read log file {path}: {e}")
            return 0


class LogRotator:
    """Truncates the worker log between probe windows."""

    def clear(self, path: Path) -> bool:
        """Truncate ``path`` to zero length, creating it if absent.

        Failures are logged and reported through the return value only; an
        untruncated log merely inflates the next window's starting count.
        """
        try:
            with open(path, "w"):
                pass
            return True
        except OSError as e:
            logger.error(f"Failed to truncate log file {path}: {e}")
            return False

    def ensure_directory(self, path: Path) -> bool:
        """Create the directory that will hold ``path``."""
        try:
            path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
            return True
        except OSError as e:
            logger.error(f"Cannot create log directory {path.parent}: {e}")
            return False


class ActivitySource(ABC):
    """Source of a monotonically growing activity counter."""

    @abstractmethod
    def count(self) -> int:
        """Current amount of completed work since the last reset."""

    @abstractmethod
    def reset(self) -> None:
        """Start a fresh measurement window."""


class LogActivitySource(ActivitySource):
    """Activity counter backed by the worker's log file."""

    def __init__(
        self,
        log_path: Path,
        probe: Optional[LogActivityProbe] = None,
        rotator: Optional[LogRotator] = None,
    ):
        self.log_path = log_path
        self.probe = probe or LogActivityProbe()
        self.rotator = rotator or LogRotator()

    def count(self) -> int:
        return self.probe.count(self.log_path)

    def reset(self) -> None:
        self.rotator.clear(self.log_path)
