"""
Stability gate: decide when a file has finished being written.

`wait_for_predicate` is the generic piece: take samples at a fixed interval
until `same(previous, current)` has held for `required_samples` consecutive
samples, or the timeout elapses.
"""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Generic, Optional, TypeVar

from config.constant import (
    STABILITY_INTERVAL_S,
    STABILITY_REQUIRED_SAMPLES,
    STABILITY_TIMEOUT_S,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PredicateResult(Generic[T]):
    held: bool
    samples: int
    elapsed: float
    last: Optional[T] = None


@dataclass(frozen=True)
class StabilityVerdict:
    stable: bool
    samples: int
    elapsed: float
    size: Optional[int] = None
    mtime: Optional[float] = None


def wait_for_predicate(
    sample: Callable[[], Optional[T]],
    *,
    same: Callable[[T, T], bool],
    required_samples: int = STABILITY_REQUIRED_SAMPLES,
    interval_s: float = STABILITY_INTERVAL_S,
    timeout_s: float = STABILITY_TIMEOUT_S,
    sleep: Callable[[float], Any] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PredicateResult[T]:
    """
    `sample()` returning None aborts with held=False. Consecutive samples are
    at least `interval_s` apart; no sample is taken past `timeout_s`.
    """
    if required_samples < 2:
        raise ValueError("required_samples must be >= 2")
    start = clock()
    previous = sample()
    taken = 1
    if previous is None:
        return PredicateResult(False, taken, clock() - start, None)
    streak = 1

    while True:
        elapsed = clock() - start
        if elapsed + interval_s > timeout_s:
            return PredicateResult(False, taken, elapsed, previous)
        sleep(interval_s)
        current = sample()
        taken += 1
        if current is None:
            return PredicateResult(False, taken, clock() - start, None)
        streak = streak + 1 if same(previous, current) else 1
        previous = current
        if streak >= required_samples:
            return PredicateResult(True, taken, clock() - start, current)


def _stat_sample(path: Path) -> Optional[tuple[int, float]]:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return None
    return st.st_size, st.st_mtime


def _unchanged_and_nonempty(a: tuple[int, float], b: tuple[int, float]) -> bool:
    return a == b and b[0] > 0


def wait_until_stable(
    path: str | Path,
    interval_s: float = STABILITY_INTERVAL_S,
    timeout_s: float = STABILITY_TIMEOUT_S,
    required_samples: int = STABILITY_REQUIRED_SAMPLES,
    *,
    sleep: Callable[[float], Any] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> StabilityVerdict:
    """
    Stable when (size, mtime) is unchanged across `required_samples`
    consecutive samples. Empty files are never stable; a file that vanishes
    while sampling is reported as not stable.
    """
    p = Path(path)
    result = wait_for_predicate(
        lambda: _stat_sample(p),
        same=_unchanged_and_nonempty,
        required_samples=required_samples,
        interval_s=interval_s,
        timeout_s=timeout_s,
        sleep=sleep,
        clock=clock,
    )
    size, mtime = result.last if result.last is not None else (None, None)
    if not result.held:
        logger.debug("File not stable after %.2fs (%d samples): %s",
                     result.elapsed, result.samples, p)
    return StabilityVerdict(
        stable=result.held,
        samples=result.samples,
        elapsed=result.elapsed,
        size=size,
        mtime=mtime,
    )


__all__ = [
    "PredicateResult",
    "StabilityVerdict",
    "wait_for_predicate",
    "wait_until_stable",
]
