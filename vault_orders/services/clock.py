"""
Wall clock in epoch milliseconds.

Services take a ``clock`` callable so tests can pin time.
"""

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)
