"""
Logging utilities for the splat compression pipeline.

Provides console logging with timestamps, stage timing, and progress tracking.
"""

import copy
import logging
import time
from typing import Optional, List
from dataclasses import dataclass, field

LOGGER_NAME = 'splatpack'


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels."""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[37m',     # White
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # Color a copy so other handlers still see the plain level name
        if record.levelname in self.COLORS:
            record = copy.copy(record)
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(verbose: bool = False, quiet: bool = False, color: bool = False) -> logging.Logger:
    """
    Configure logging for the pipeline.

    Args:
        verbose: Enable DEBUG level logging
        quiet: Only show WARNING and above
        color: Colorize level names with ANSI codes

    Returns:
        Configured logger
    """
    # Determine log level
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    formatter_cls = ColoredFormatter if color else logging.Formatter
    formatter = formatter_cls(
        '[%(asctime)s] [%(levelname)s] %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    return logger


class Timer:
    """Context manager for timing operations with automatic logging."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        """
        Initialize timer.

        Args:
            name: Name of the operation being timed
            logger: Logger to use (defaults to splatpack logger)
        """
        self.name = name
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.start_time = None
        self.elapsed = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug("[TIMER] %s started...", self.name)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed = time.perf_counter() - self.start_time
        if exc_type is None:
            self.logger.info("[OK] %s complete in %.2fs", self.name, self.elapsed)
        else:
            self.logger.debug("[FAIL] %s aborted after %.2fs", self.name, self.elapsed)


@dataclass
class TimingStats:
    """Track timing statistics for pipeline stages."""

    name: str
    elapsed: float
    substeps: List['TimingStats'] = field(default_factory=list)

    def add_substep(self, name: str, elapsed: float):
        self.substeps.append(TimingStats(name, elapsed))

    def get_percentage(self, total: float) -> float:
        """Get percentage of total time."""
        return (self.elapsed / total * 100) if total > 0 else 0

    def format_tree(self, total_time: float, indent: int = 0) -> str:
        """Format as a tree structure."""
        lines = []
        prefix = "  " * indent
        pct = self.get_percentage(total_time)

        if self.elapsed < 1:
            time_str = f"{self.elapsed*1000:.0f}ms"
        else:
            time_str = f"{self.elapsed:.1f}s"

        dots = "." * max(1, 50 - len(prefix) - len(self.name))
        lines.append(f"{prefix}{self.name} {dots} {time_str:>8} ({pct:>5.1f}%)")

        for substep in self.substeps:
            lines.extend(substep.format_tree(total_time, indent + 1).split('\n'))

        return '\n'.join(lines)


class ProgressTracker:
    """Log fractional progress of a long stage at most once per interval."""

    def __init__(self,
                 name: str,
                 update_interval: float = 5.0,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize progress tracker.

        Args:
            name: Name of the operation
            update_interval: Minimum seconds between log lines
            logger: Logger to use
        """
        self.name = name
        self.update_interval = update_interval
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.start_time = time.perf_counter()
        self.last_update = self.start_time
        self.fraction = 0.0

    def __call__(self, fraction: float) -> bool:
        """Record progress; usable directly as a progress callback."""
        self.fraction = max(self.fraction, min(1.0, float(fraction)))
        now = time.perf_counter()
        if now - self.last_update >= self.update_interval or self.fraction >= 1.0:
            self.logger.info("[PROGRESS] %s: %.0f%% (%.0fs elapsed)",
                             self.name, self.fraction * 100, now - self.start_time)
            self.last_update = now
        return True
