"""Weighted k-nearest-neighbour occupancy predictor.

Each observation of the target weekday is weighted by

    1 / (weeks_away + 1) + 1 / (distance + 1)

where ``distance`` is the HHMM difference to the target time. Freshness and
proximity are additive, so neither can fully suppress the other. The top-k
observations by weight are averaged with normalized weights.

Weights are exact fractions, so top-k selection and the final truncation do
not depend on float rounding.
"""

import heapq
import itertools
import math
from collections.abc import Sequence
from fractions import Fraction

from occupancy.models.observation import Observation, PredictionCurve, TimeOfDay

MIN_OCCUPANCY = 0
MAX_OCCUPANCY = 100


def observation_weight(obs: Observation, target: TimeOfDay) -> Fraction:
    distance = target.distance_to(obs.time_of_day)
    return Fraction(1, obs.weeks_away + 1) + Fraction(1, distance + 1)


def nearest(
    series: Sequence[Observation], target: TimeOfDay, k: int
) -> list[tuple[Fraction, Observation]]:
    """Select the top-k observations by weight.

    Bounded min-heap keyed by (weight, -position): an equal-weight newcomer
    never displaces a retained observation, and among equal minima the
    latest-seen one is evicted first. Returned in first-seen order.
    """
    if k < 1:
        raise ValueError(f"k must be >= 1, got {k}")

    heap: list[tuple[Fraction, int, Observation]] = []
    for position, obs in enumerate(series):
        entry = (observation_weight(obs, target), -position, obs)
        if len(heap) < k:
            heapq.heappush(heap, entry)
        elif entry[0] > heap[0][0]:
            heapq.heapreplace(heap, entry)

    return [(weight, obs) for weight, _, obs in sorted(heap, key=lambda e: -e[1])]


def predict_one(series: Sequence[Observation], target: TimeOfDay, k: int) -> int:
    """Predict occupancy at ``target`` from one weekday's observations."""
    if not series:
        raise ValueError("Cannot predict from an empty series")

    selected = nearest(series, target, k)
    total_weight = sum(weight for weight, _ in selected)
    estimate = sum((weight / total_weight) * obs.occupancy for weight, obs in selected)
    return max(MIN_OCCUPANCY, min(MAX_OCCUPANCY, math.trunc(estimate)))


def sample_times(opening: TimeOfDay, closing: TimeOfDay, frequency: int) -> list[TimeOfDay]:
    """Sampling instants from opening to closing inclusive, every ``frequency``.

    Steps are raw HHMM additions; instants whose minute component reaches 60
    are skipped rather than carried into the next hour.
    """
    if frequency < 1:
        raise ValueError(f"frequency must be >= 1, got {frequency}")

    times = itertools.takewhile(
        lambda t: t <= closing,
        (opening.advance(step * frequency) for step in itertools.count()),
    )
    return [t for t in times if t.is_valid]


def predict_range(
    series: Sequence[Observation],
    opening: TimeOfDay,
    closing: TimeOfDay,
    frequency: int,
    k: int,
) -> PredictionCurve:
    """Forecast curve for one weekday's opening hours.

    Returns an empty curve when there is no history or when the opening
    window wraps past midnight.
    """
    if not series or opening > closing:
        return {}
    return {t.key: predict_one(series, t, k) for t in sample_times(opening, closing, frequency)}
