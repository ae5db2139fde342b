"""
Per-run execution logging.

Entries are accumulated in memory for the persisted execution record and
mirrored to the module logger.
"""

import logging
from typing import Any, Dict, List

from .models import ExecutionLogEntry, LogLevel

logger = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class ExecutionLogger:
    """Append-only, leveled log of one execution run."""

    def __init__(self, execution_id: int):
        self.execution_id = execution_id
        self.entries: List[ExecutionLogEntry] = []

    def _append(self, level: LogLevel, message: str) -> None:
        self.entries.append(ExecutionLogEntry(level=level, message=message))
        logger.log(_PY_LEVELS[level], f"[PlaybookExecution:{self.execution_id}] {message}")

    def info(self, message: str) -> None:
        self._append(LogLevel.INFO, message)

    def warning(self, message: str) -> None:
        self._append(LogLevel.WARNING, message)

    def error(self, message: str) -> None:
        self._append(LogLevel.ERROR, message)

    def debug(self, message: str) -> None:
        self._append(LogLevel.DEBUG, message)

    def messages(self, level: LogLevel = None) -> List[str]:
        """Messages, optionally filtered by level."""
        return [e.message for e in self.entries if level is None or e.level == level]

    def to_list(self) -> List[Dict[str, Any]]:
        """JSON-ready entries."""
        return [e.model_dump(mode="json") for e in self.entries]
