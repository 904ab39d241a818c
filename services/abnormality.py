"""Abnormality evaluation for temperature vectors."""

from __future__ import annotations

from typing import Iterable, Optional

NORMAL_MIN = 20.0
NORMAL_MAX = 26.0
MAX_SPREAD = 5.0


def valid_temperatures(temperatures: Iterable[Optional[float]]) -> list[float]:
    return [value for value in temperatures if value is not None]


def evaluate(temperatures: Iterable[Optional[float]]) -> bool:
    """Return whether a temperature vector is abnormal.

    A vector is abnormal when any valid channel lies outside
    ``[NORMAL_MIN, NORMAL_MAX]`` or the spread between the warmest and coolest
    valid channel exceeds ``MAX_SPREAD``. Vectors with no valid channels are
    never abnormal.
    """
    valid = valid_temperatures(temperatures)
    if not valid:
        return False
    if any(value < NORMAL_MIN or value > NORMAL_MAX for value in valid):
        return True
    return max(valid) - min(valid) > MAX_SPREAD


def average(temperatures: Iterable[Optional[float]]) -> Optional[float]:
    valid = valid_temperatures(temperatures)
    if not valid:
        return None
    return sum(valid) / len(valid)
