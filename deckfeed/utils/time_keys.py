"""
Daily cache epoch keys and lightweight timing marks.
"""

import logging
import time
from datetime import datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

DEFAULT_TZ = "America/New_York"


def today_ymd(tz_name: str = DEFAULT_TZ, now: Optional[datetime] = None) -> str:
    """Calendar date (YYYY-MM-DD) in the given timezone."""
    tz = ZoneInfo(tz_name)
    current = now.astimezone(tz) if now is not None else datetime.now(tz)
    return current.strftime("%Y-%m-%d")


class Stopwatch:
    """Marks elapsed milliseconds since construction under a fixed label."""

    def __init__(self, label: str, enabled: bool = True, logger: Optional[logging.Logger] = None):
        self.label = label
        self.enabled = enabled
        self.logger = logger or logging.getLogger(__name__)
        self.closed = False
        self.t0 = time.monotonic()
        self.mark("t0 boot")

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.t0) * 1000.0

    def mark(self, name: str, **extra: Any) -> None:
        if not self.enabled:
            return
        suffix = f" {extra}" if extra else ""
        self.logger.debug(f"⏱️ [{self.label}] {name}: +{self.elapsed_ms():.0f}ms{suffix}")

    def end(self, name: str = "done", **extra: Any) -> None:
        """Emit the final mark once; later calls are ignored."""
        if self.closed:
            return
        self.closed = True
        if self.enabled:
            suffix = f" {extra}" if extra else ""
            self.logger.info(f"✅ [{self.label}] {name}: +{self.elapsed_ms():.0f}ms{suffix}")
