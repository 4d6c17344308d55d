"""
Injectable TTL memoizer.

Nothing in the package caches on its own.  A caller who wants repeated
analyses of the same window to be cheap builds a TTLMemo and hands it to
the TradePlanner, which wraps its analyzer calls with it.

    memo = TTLMemo(ttl_seconds=300, max_size=1000)
    planner = TradePlanner(memo=memo)
"""

from __future__ import annotations

import functools
import hashlib
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Tuple

logger = logging.getLogger(__name__)


def _fn_identity(fn: Callable) -> str:
    name = f"{getattr(fn, '__module__', '')}.{getattr(fn, '__qualname__', repr(fn))}"
    owner = getattr(fn, "__self__", None)
    if owner is not None:
        # Bound methods of different instances (different configs) never share entries
        name += f"@{id(owner):x}"
    return name


def make_key(fn: Callable, args: Tuple[Any, ...], kwargs: dict) -> str:
    """md5 over the function identity and the repr of its arguments."""
    key_str = repr((_fn_identity(fn), args, sorted(kwargs.items())))
    return hashlib.md5(key_str.encode()).hexdigest()


class TTLMemo:
    """
    Thread-safe memo with time-to-live and LRU eviction.

    Usable as a decorator (``@memo``) or by wrapping a callable
    (``memo(fn)``).  ``clock`` is injectable so expiry can be tested
    without sleeping.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def get_or_compute(self, fn: Callable, *args, **kwargs) -> Any:
        key = make_key(fn, args, kwargs)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                stored_at, value = entry
                if now - stored_at < self.ttl_seconds:
                    self._entries.move_to_end(key)
                    self.hits += 1
                    return value
                del self._entries[key]
            self.misses += 1

        # Computed outside the lock; concurrent misses on one key both compute
        value = fn(*args, **kwargs)

        with self._lock:
            self._entries[key] = (self._clock(), value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("TTLMemo evicted %s", evicted[:8])
        return value

    def __call__(self, fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            return self.get_or_compute(fn, *args, **kwargs)

        return wrapper
