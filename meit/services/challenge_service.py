from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from meit.errors import ChallengeNotFound, InvalidChallengeTarget
from meit.models.challenge import Challenge
from meit.models.challenge_completion import ChallengeCompletion
from meit.models.checkin import Checkin
from meit.schemas.challenge import CategoryTarget, ChallengeOut
from meit.services.challenge_codec import decode_target, encode_target


def list_active_challenges(db: Session, merchant_id, at: datetime):
    return (
        db.query(Challenge)
        .filter(Challenge.merchant_id == merchant_id)
        .filter(Challenge.is_active.is_(True))
        .filter(or_(Challenge.start_date.is_(None), Challenge.start_date <= at))
        .filter(or_(Challenge.end_date.is_(None), Challenge.end_date >= at))
        .order_by(Challenge.points.asc(), Challenge.created_at.asc())
        .all()
    )


def get_challenge(db: Session, challenge_id, merchant_id) -> Challenge:
    challenge = db.query(Challenge).filter(Challenge.id == challenge_id).first()
    if not challenge or challenge.merchant_id != merchant_id:
        raise ChallengeNotFound()
    return challenge


def local_day_start_utc(now: datetime, tz) -> datetime:
    """Start of the merchant-local day containing ``now``, as naive UTC."""
    local = now.replace(tzinfo=timezone.utc).astimezone(tz)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc).replace(tzinfo=None)


def completion_counts(db: Session, *, customer_id, merchant_id, challenge_ids, since: datetime | None = None) -> dict:
    if not challenge_ids:
        return {}

    q = (
        db.query(ChallengeCompletion.challenge_id, func.count(ChallengeCompletion.id))
        .filter(ChallengeCompletion.customer_id == customer_id)
        .filter(ChallengeCompletion.merchant_id == merchant_id)
        .filter(ChallengeCompletion.challenge_id.in_(list(challenge_ids)))
    )
    if since is not None:
        q = q.filter(ChallengeCompletion.created_at >= since)

    return {challenge_id: int(count) for challenge_id, count in q.group_by(ChallengeCompletion.challenge_id).all()}


def make_visit_counter(db: Session, *, customer_id, merchant_id, now: datetime, include_current: bool = True):
    """Count visits in a trailing window of N days ending at ``now``."""
    cache = {}

    def count(days: int) -> int:
        if days not in cache:
            since = now - timedelta(days=int(days))
            visits = (
                db.query(func.count(Checkin.id))
                .filter(Checkin.customer_id == customer_id)
                .filter(Checkin.merchant_id == merchant_id)
                .filter(Checkin.created_at >= since)
                .filter(Checkin.created_at <= now)
                .scalar()
            )
            cache[days] = int(visits or 0) + (1 if include_current else 0)
        return cache[days]

    return count


def _apply_target(challenge: Challenge, target) -> None:
    challenge.target_value = encode_target(target)
    challenge.challenge_type = target.type
    challenge.category = target.category.strip() if isinstance(target, CategoryTarget) else None


def _check_dates(start, end):
    if start and end and end < start:
        raise InvalidChallengeTarget("end_date must be after start_date")


def create_challenge(db: Session, merchant_id, payload) -> Challenge:
    _check_dates(payload.start_date, payload.end_date)

    challenge = Challenge(
        merchant_id=merchant_id,
        name=payload.name,
        description=payload.description,
        points=payload.points,
        is_active=payload.is_active,
        is_repeatable=payload.is_repeatable,
        max_completions_per_day=payload.max_completions_per_day,
        max_completions_total=payload.max_completions_total,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    _apply_target(challenge, payload.target)

    db.add(challenge)
    db.flush()
    return challenge


def update_challenge(db: Session, challenge: Challenge, payload) -> Challenge:
    data = payload.model_dump(exclude_unset=True)

    if payload.target is not None:
        _apply_target(challenge, payload.target)
    data.pop("target", None)

    for k, v in data.items():
        if v is None and k in {"name", "points", "is_active", "is_repeatable"}:
            continue
        setattr(challenge, k, v)

    _check_dates(challenge.start_date, challenge.end_date)
    db.flush()
    return challenge


def to_out(challenge: Challenge) -> ChallengeOut:
    return ChallengeOut(
        id=challenge.id,
        merchant_id=challenge.merchant_id,
        name=challenge.name,
        description=challenge.description,
        challenge_type=challenge.challenge_type,
        target_value=challenge.target_value,
        target=decode_target(challenge.challenge_type, challenge.target_value, challenge.category),
        points=challenge.points,
        is_active=challenge.is_active,
        is_repeatable=challenge.is_repeatable,
        max_completions_per_day=challenge.max_completions_per_day,
        max_completions_total=challenge.max_completions_total,
        start_date=challenge.start_date,
        end_date=challenge.end_date,
        created_at=challenge.created_at,
        updated_at=challenge.updated_at,
    )
