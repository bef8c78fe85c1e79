"""Bookkeeping for a single Terraform CLI operation."""

from __future__ import annotations

import threading
from datetime import datetime


class Operation:
    """The type and start/end times of the current Terraform CLI operation."""

    def __init__(
        self,
        type: str = "",
        started_at: datetime | None = None,
        ended_at: datetime | None = None,
    ) -> None:
        self.type = type
        self._start = started_at
        self._end = ended_at
        self._lock = threading.Lock()

    def mark_start(self, op_type: str) -> bool:
        """Start an operation; return False if one is still in progress."""
        with self._lock:
            if self._start is not None and self._end is None:
                return False
            self.type = op_type
            self._start = datetime.now()
            self._end = None
            return True

    def mark_end(self) -> None:
        """Mark the operation as ended."""
        with self._lock:
            self._end = datetime.now()

    def flush(self) -> None:
        """Clear all operation information."""
        with self._lock:
            self.type = ""
            self._start = None
            self._end = None

    def is_ended(self) -> bool:
        """Whether the operation has ended, regardless of its result."""
        with self._lock:
            return self._end is not None

    def is_running(self) -> bool:
        """Whether an operation is ongoing."""
        with self._lock:
            return self._start is not None and self._end is None

    def start_time(self) -> datetime:
        """The start time of the current operation."""
        with self._lock:
            if self._start is None:
                raise RuntimeError("operation has not been started")
            return self._start

    def end_time(self) -> datetime:
        """The end time of the current operation."""
        with self._lock:
            if self._end is None:
                raise RuntimeError("operation has not ended")
            return self._end