"""Recognise the Claude CLI usage-limit sentinel in failure output."""
from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Optional

RATE_LIMIT_PATTERN = re.compile(r"Claude (?:AI|Code) usage limit reached\|(\d+)")
LONG_WAIT_MS = 6 * 60 * 60 * 1000


@dataclass(frozen=True)
class RateLimitCheck:
    is_rate_limited: bool
    reset_time_ms: Optional[int] = None
    wait_ms: int = 0
    is_timeout: bool = False


def detect_rate_limit(*texts: Optional[str], now_ms: Optional[int] = None) -> RateLimitCheck:
    """
    Scan every given text (stdout, stderr, error message) for the sentinel.

    ``Claude AI usage limit reached|<unix seconds>`` is converted into a
    reset deadline in epoch milliseconds. ``is_timeout`` flags deadlines more
    than six hours away.
    """

    combined = "\n".join(text for text in texts if text)
    match = RATE_LIMIT_PATTERN.search(combined)
    if match is None:
        return RateLimitCheck(is_rate_limited=False)

    reset_time_ms = int(match.group(1)) * 1000
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    wait_ms = max(0, reset_time_ms - now_ms)
    return RateLimitCheck(
        is_rate_limited=True,
        reset_time_ms=reset_time_ms,
        wait_ms=wait_ms,
        is_timeout=wait_ms > LONG_WAIT_MS,
    )
