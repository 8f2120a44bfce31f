from typing import Callable, Optional
from datetime import datetime, timedelta
from collections import deque

from download_server.logger_config import get_logger

logger = get_logger("monitor")


class Monitor:
    def __init__(self, failure_threshold: int, window_seconds: int = 60, alert_handler: Optional[Callable[[str], None]] = None):
        """
        Initialize the monitor with a failure threshold and optional alert handler.

        Args:
            failure_threshold: Number of consecutive failures before raising an alert
            window_seconds: Time window in seconds to check for failures
            alert_handler: Optional callback function to handle alerts. If None, logs an error
        """
        if failure_threshold <= 0:
            raise ValueError("Failure threshold must be positive")
        if window_seconds <= 0:
            raise ValueError("Window seconds must be positive")

        self._failure_threshold = failure_threshold
        self._window_seconds = window_seconds
        self._alert_handler = alert_handler or self._default_alert_handler
        self._total_passes = 0
        self._total_failures = 0
        self._failure_timestamps = deque()
        self._last_status_time = datetime.now()

    def _clean_old_failures(self) -> None:
        """Remove failures outside the time window."""
        now = datetime.now()
        window_start = now - timedelta(seconds=self._window_seconds)

        while self._failure_timestamps and self._failure_timestamps[0] < window_start:
            self._failure_timestamps.popleft()

    def _default_alert_handler(self, message: str) -> None:
        logger.error(f"[ALERT] {message}")

    def pass_(self) -> None:
        """Record a successful counter update. Resets the consecutive failure run."""
        self._total_passes += 1
        self._last_status_time = datetime.now()
        self._failure_timestamps.clear()

    def fail(self) -> None:
        """
        Record a failed counter update.
        Triggers alert if consecutive failures reach threshold within the time window.
        """
        now = datetime.now()
        self._failure_timestamps.append(now)
        self._total_failures += 1
        self._last_status_time = now

        self._clean_old_failures()

        if len(self._failure_timestamps) == self._failure_threshold:
            self._alert_handler(
                f"{self._failure_threshold} consecutive counter update failures within {self._window_seconds}s "
                f"(total passes: {self._total_passes}, total failures: {self._total_failures})"
            )

    @property
    def consecutive_failures(self) -> int:
        """Get current number of consecutive failures within the window."""
        self._clean_old_failures()
        return len(self._failure_timestamps)

    @property
    def stats(self) -> dict:
        self._clean_old_failures()
        return {
            'total_passes': self._total_passes,
            'total_failures': self._total_failures,
            'consecutive_failures': len(self._failure_timestamps),
            'last_status_time': int(self._last_status_time.timestamp()),
            'window_seconds': self._window_seconds
        }
