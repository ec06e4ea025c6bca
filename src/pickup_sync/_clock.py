"""Wall-clock helper; services take a clock callable so tests can pin time."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)
