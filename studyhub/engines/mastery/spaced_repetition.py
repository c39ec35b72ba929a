"""
SM-2 spaced repetition scheduling.
"""

import math
from datetime import datetime, timedelta
from typing import NamedTuple

INITIAL_INTERVAL_DAYS = 1
SECOND_INTERVAL_DAYS = 6
MAX_INTERVAL_DAYS = 180
MIN_EASINESS = 1.3
DEFAULT_EASINESS = 2.5


class ReviewSchedule(NamedTuple):
    easiness_factor: float
    interval_days: int
    next_review_date: datetime


def score_to_quality(score: float) -> int:
    """Map a 0..1 score onto SM-2's 0..5 recall quality, rounding halves up."""
    return max(0, min(5, math.floor(score * 5 + 0.5)))


def next_easiness(easiness_factor: float, quality: int) -> float:
    miss = 5 - quality
    return max(MIN_EASINESS, easiness_factor + (0.1 - miss * (0.08 + miss * 0.02)))


def schedule_review(
    score: float,
    easiness_factor: float,
    previous_interval_days: int,
    now: datetime,
) -> ReviewSchedule:
    """
    Compute the next review from one graded outcome.

    quality < 3 resets the interval to 1 day. The first successful review
    after the initial interval jumps to 6 days; later ones multiply by the
    updated easiness factor. Intervals never exceed MAX_INTERVAL_DAYS.
    """
    quality = score_to_quality(score)
    ef = next_easiness(easiness_factor, quality)

    if quality < 3:
        interval = INITIAL_INTERVAL_DAYS
    elif previous_interval_days <= INITIAL_INTERVAL_DAYS:
        interval = SECOND_INTERVAL_DAYS
    else:
        interval = round(previous_interval_days * ef)

    interval = max(INITIAL_INTERVAL_DAYS, min(MAX_INTERVAL_DAYS, interval))
    return ReviewSchedule(
        easiness_factor=ef,
        interval_days=interval,
        next_review_date=now + timedelta(days=interval),
    )
