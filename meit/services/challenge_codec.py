"""Packing of typed challenge targets into the single ``target_value`` column.

Layouts and their limits:

- ``amount_min``: the minimum purchase amount itself, 1..2147483647.
- ``frequency``: ``visits * 1000 + days`` with visits in 1..999 and days in
  1..999 (the day window must stay below 1000 to fit its three digits).
- ``time_based``: ``startHHMM * 10000 + endHHMM``. Both times are whole
  minutes; start and end must differ. A start later than the end describes
  a window that wraps midnight.
- ``category``: always 0, the category name lives in ``Challenge.category``.

Out-of-range input raises ``InvalidChallengeTarget`` instead of truncating.
"""

from datetime import time

from meit.errors import InvalidChallengeTarget
from meit.schemas.challenge import (
    AmountMinTarget,
    CategoryTarget,
    FrequencyTarget,
    TimeWindowTarget,
)


INT32_MAX = 2_147_483_647

FREQUENCY_MULTIPLIER = 1000
MAX_VISITS = 999
MAX_DAYS = 999

TIME_MULTIPLIER = 10000

MAX_CATEGORY_LENGTH = 100


def _time_to_hhmm(value: time, field: str) -> int:
    if value.second or value.microsecond:
        raise InvalidChallengeTarget(f"{field} must be a whole minute")
    return value.hour * 100 + value.minute


def _hhmm_to_time(value: int, field: str) -> time:
    hours, minutes = divmod(value, 100)
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise InvalidChallengeTarget(f"Stored {field} {value:04d} is not a valid HHMM time")
    return time(hours, minutes)


def encode_target(target) -> int:
    if isinstance(target, AmountMinTarget):
        if not (1 <= target.amount <= INT32_MAX):
            raise InvalidChallengeTarget(f"amount must be between 1 and {INT32_MAX}")
        return target.amount

    if isinstance(target, FrequencyTarget):
        if not (1 <= target.visits <= MAX_VISITS):
            raise InvalidChallengeTarget(f"visits must be between 1 and {MAX_VISITS}")
        if not (1 <= target.days <= MAX_DAYS):
            raise InvalidChallengeTarget(f"days must be between 1 and {MAX_DAYS}")
        return target.visits * FREQUENCY_MULTIPLIER + target.days

    if isinstance(target, TimeWindowTarget):
        start = _time_to_hhmm(target.start, "start")
        end = _time_to_hhmm(target.end, "end")
        if start == end:
            raise InvalidChallengeTarget("start and end must differ")
        return start * TIME_MULTIPLIER + end

    if isinstance(target, CategoryTarget):
        name = (target.category or "").strip()
        if not name or len(name) > MAX_CATEGORY_LENGTH:
            raise InvalidChallengeTarget(f"category must be 1 to {MAX_CATEGORY_LENGTH} characters")
        return 0

    raise InvalidChallengeTarget(f"Unsupported challenge target: {type(target).__name__}")


def decode_target(challenge_type: str, target_value: int, category: str | None = None):
    value = int(target_value)

    if challenge_type == "amount_min":
        if not (1 <= value <= INT32_MAX):
            raise InvalidChallengeTarget(f"Stored amount {value} is out of range")
        return AmountMinTarget(amount=value)

    if challenge_type == "frequency":
        visits, days = divmod(value, FREQUENCY_MULTIPLIER)
        if not (1 <= visits <= MAX_VISITS and 1 <= days <= MAX_DAYS):
            raise InvalidChallengeTarget(f"Stored frequency target {value} is out of range")
        return FrequencyTarget(visits=visits, days=days)

    if challenge_type == "time_based":
        start, end = divmod(value, TIME_MULTIPLIER)
        if start == end:
            raise InvalidChallengeTarget(f"Stored time window {value} is empty")
        return TimeWindowTarget(start=_hhmm_to_time(start, "start"), end=_hhmm_to_time(end, "end"))

    if challenge_type == "category":
        if not category:
            raise InvalidChallengeTarget("Category challenge has no category")
        return CategoryTarget(category=category)

    raise InvalidChallengeTarget(f"Unsupported challenge type: {challenge_type}")
