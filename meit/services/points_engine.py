"""Pure points computations. No database access happens here.

Everything the rules need from the store (visit counts, completion history)
is handed in through ``ChallengeContext`` so the functions can be exercised
without a session.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Callable, Optional

from meit.errors import InvalidAmount, InvalidChallengeTarget, MerchantConfigMissing
from meit.schemas.challenge import AmountMinTarget, CategoryTarget, FrequencyTarget, TimeWindowTarget
from meit.services.challenge_codec import decode_target


logger = logging.getLogger(__name__)


def _as_decimal(value, *, error_cls, message: str) -> Decimal:
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise error_cls(message)
    if not result.is_finite():
        raise error_cls(message)
    return result


# ============================================================
# BASE POINTS
# ============================================================
def compute_base_points(amount, points_per_unit=None) -> int:
    amount_d = _as_decimal(amount, error_cls=InvalidAmount, message="Amount must be a number")
    if amount_d <= 0:
        raise InvalidAmount()

    if points_per_unit is None:
        rate = Decimal(1)
    else:
        rate = _as_decimal(
            points_per_unit,
            error_cls=MerchantConfigMissing,
            message="points_per_unit must be a number",
        )
        if rate < 0:
            raise MerchantConfigMissing("points_per_unit must not be negative")

    return int((amount_d * rate).to_integral_value(rounding=ROUND_FLOOR))


# ============================================================
# CHALLENGES
# ============================================================
@dataclass
class ChallengeContext:
    occurred_at: datetime
    local_time: time
    amount: Optional[Decimal] = None
    categories: frozenset = frozenset()
    # trailing window in days -> visits in that window, current visit included
    visit_counter: Optional[Callable[[int], int]] = None
    completions_total: dict = field(default_factory=dict)
    completions_today: dict = field(default_factory=dict)
    # operator-confirmed ids: predicate skipped, limits still enforced
    forced_ids: frozenset = frozenset()


@dataclass
class ChallengeEvaluation:
    completed: list
    bonus_points: int


def _in_validity_window(challenge, at: datetime) -> bool:
    if challenge.start_date and at < challenge.start_date:
        return False
    if challenge.end_date and at > challenge.end_date:
        return False
    return True


def _within_limits(challenge, context: ChallengeContext) -> bool:
    total = context.completions_total.get(challenge.id, 0)
    today = context.completions_today.get(challenge.id, 0)

    if not challenge.is_repeatable and total > 0:
        return False
    if challenge.max_completions_total is not None and total >= challenge.max_completions_total:
        return False
    if challenge.max_completions_per_day is not None and today >= challenge.max_completions_per_day:
        return False
    return True


def _in_time_window(local: time, target: TimeWindowTarget) -> bool:
    now_m = local.hour * 60 + local.minute
    start_m = target.start.hour * 60 + target.start.minute
    end_m = target.end.hour * 60 + target.end.minute
    if start_m < end_m:
        return start_m <= now_m < end_m
    # wraps midnight
    return now_m >= start_m or now_m < end_m


def _predicate(target, context: ChallengeContext) -> bool:
    if isinstance(target, AmountMinTarget):
        return context.amount is not None and context.amount >= target.amount

    if isinstance(target, TimeWindowTarget):
        return _in_time_window(context.local_time, target)

    if isinstance(target, FrequencyTarget):
        if context.visit_counter is None:
            return False
        return context.visit_counter(target.days) >= target.visits

    if isinstance(target, CategoryTarget):
        wanted = target.category.strip().lower()
        return wanted in {c.strip().lower() for c in context.categories}

    return False


def evaluate_challenges(active_challenges, context: ChallengeContext) -> ChallengeEvaluation:
    completed = []

    for challenge in active_challenges:
        if not challenge.is_active:
            continue
        if not _in_validity_window(challenge, context.occurred_at):
            continue
        if not _within_limits(challenge, context):
            continue

        if challenge.id in context.forced_ids:
            completed.append(challenge)
            continue

        try:
            target = decode_target(challenge.challenge_type, challenge.target_value, challenge.category)
        except InvalidChallengeTarget:
            logger.warning(
                "skipping misconfigured challenge",
                extra={"challenge_id": str(challenge.id), "challenge_type": challenge.challenge_type},
            )
            continue

        if _predicate(target, context):
            completed.append(challenge)

    bonus = sum(int(c.points) for c in completed)
    return ChallengeEvaluation(completed=completed, bonus_points=bonus)


# ============================================================
# GIFT CARD ISSUANCE
# ============================================================
@dataclass
class GiftCardDecision:
    issue: bool
    remainder_balance: int


def decide_gift_card_issuance(current_balance: int, new_points: int, threshold: int, reward_value) -> GiftCardDecision:
    if threshold is None or int(threshold) <= 0:
        raise MerchantConfigMissing("gift_card_threshold must be greater than zero")
    value = _as_decimal(
        reward_value,
        error_cls=MerchantConfigMissing,
        message="gift_card_value must be a number",
    )
    if value <= 0:
        raise MerchantConfigMissing("gift_card_value must be greater than zero")

    total = int(current_balance) + int(new_points)
    if total >= int(threshold):
        return GiftCardDecision(issue=True, remainder_balance=total - int(threshold))
    return GiftCardDecision(issue=False, remainder_balance=total)
