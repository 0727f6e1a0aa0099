"""Points ledger writes: purchases, check-ins and manual adjustments.

Every public operation here runs as one database transaction. The balance on
``customer_merchants`` is only ever changed with relative ``UPDATE`` statements
on a row locked with ``SELECT ... FOR UPDATE``, and each change is paired
with a ``point_transactions`` row in the same commit, so the stored balance
always equals the signed sum of the ledger.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from meit.errors import (
    BranchNotFound,
    ConcurrencyConflict,
    GiftCardCodeCollision,
    InvalidAmount,
    NegativeBalanceRejected,
    PermissionDenied,
    TransactionFailed,
)
from meit.models.branch import Branch
from meit.models.challenge_completion import ChallengeCompletion
from meit.models.checkin import Checkin
from meit.models.customer_merchant import CustomerMerchant
from meit.models.gift_card import GiftCard
from meit.models.point_transaction import TRANSACTION_SIGNS, PointTransaction
from meit.services.audit_service import write_audit_log
from meit.services.challenge_service import (
    completion_counts,
    list_active_challenges,
    local_day_start_utc,
    make_visit_counter,
)
from meit.services.contact_service import (
    get_customer,
    get_or_create_customer,
    get_or_create_relationship,
    lock_relationship,
    normalize_phone,
    require_relationship,
)
from meit.services.gift_card_service import count_active_gift_cards, issue_gift_card
from meit.services.merchant_service import MerchantConfig, load_merchant_config
from meit.services.points_engine import (
    ChallengeContext,
    ChallengeEvaluation,
    compute_base_points,
    decide_gift_card_issuance,
    evaluate_challenges,
)


logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
_CREDIT_TYPES = tuple(t for t, sign in TRANSACTION_SIGNS.items() if sign > 0)


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass
class IssuedGiftCard:
    id: object
    code: str
    value: Decimal
    expires_at: datetime


@dataclass
class AssignResult:
    points_earned: int
    base_points: int
    bonus_points: int
    total_points: int
    gift_card: Optional[IssuedGiftCard]
    challenges_completed: list = field(default_factory=list)
    transaction_id: object = None
    replayed: bool = False


@dataclass
class CheckinResult:
    checkin_id: object
    customer_id: object
    phone: str
    visits_count: int
    points_earned: int
    points_balance: int
    gift_card: Optional[IssuedGiftCard]
    challenges_completed: list = field(default_factory=list)


@dataclass
class AdjustResult:
    adjustment: int
    previous_balance: int
    new_balance: int
    transaction_id: object


# ============================================================
# Balance primitives
# ============================================================
def _current_balance(db: Session, relationship_id) -> int:
    # column query, never served from the identity map
    return int(
        db.query(CustomerMerchant.points_balance)
        .filter(CustomerMerchant.id == relationship_id)
        .scalar()
    )


def _apply_delta(
    db: Session,
    relationship_id,
    delta: int,
    *,
    visit_at: datetime | None = None,
    guard_non_negative: bool = False,
) -> int:
    q = db.query(CustomerMerchant).filter(CustomerMerchant.id == relationship_id)
    if guard_non_negative:
        q = q.filter(CustomerMerchant.points_balance + delta >= 0)

    values = {CustomerMerchant.points_balance: CustomerMerchant.points_balance + delta}
    if visit_at is not None:
        values[CustomerMerchant.visits_count] = CustomerMerchant.visits_count + 1
        values[CustomerMerchant.last_visit_at] = visit_at

    return q.update(values, synchronize_session=False)


# ============================================================
# Shared earn path
# ============================================================
def _evaluate(
    db: Session,
    *,
    cfg: MerchantConfig,
    customer_id,
    merchant_id,
    now: datetime,
    amount: Decimal | None,
    categories,
    challenge_ids,
) -> ChallengeEvaluation:
    challenges = list_active_challenges(db, merchant_id, now)
    known = {c.id for c in challenges}

    forced = set(challenge_ids or [])
    unknown = forced - known
    if unknown:
        logger.warning(
            "ignoring inactive or unknown challenge ids",
            extra={"merchant_id": str(merchant_id), "challenge_ids": sorted(str(i) for i in unknown)},
        )

    context = ChallengeContext(
        occurred_at=now,
        local_time=cfg.local_time(now),
        amount=amount,
        categories=frozenset(categories or []),
        visit_counter=make_visit_counter(db, customer_id=customer_id, merchant_id=merchant_id, now=now),
        completions_total=completion_counts(
            db, customer_id=customer_id, merchant_id=merchant_id, challenge_ids=known
        ),
        completions_today=completion_counts(
            db,
            customer_id=customer_id,
            merchant_id=merchant_id,
            challenge_ids=known,
            since=local_day_start_utc(now, cfg.tz),
        ),
        forced_ids=frozenset(forced & known),
    )
    return evaluate_challenges(challenges, context)


def _maybe_mint(
    db: Session,
    *,
    cfg: MerchantConfig,
    relationship_id,
    customer_id,
    merchant_id,
    earned: int,
    balance: int,
    source_transaction_id,
    actor_id,
    now: datetime,
    progress: dict,
) -> tuple[Optional[GiftCard], int]:
    if not cfg.gift_card_auto_generate:
        return None, balance

    progress["step"] = "GIFT_CARD_CHECK"
    decision = decide_gift_card_issuance(balance - earned, earned, cfg.gift_card_threshold, cfg.gift_card_value)
    if not decision.issue:
        return None, balance

    if cfg.max_active_gift_cards is not None:
        active = count_active_gift_cards(db, customer_id, merchant_id, now)
        if active >= cfg.max_active_gift_cards:
            logger.info(
                "gift card cap reached, points kept",
                extra={"merchant_id": str(merchant_id), "customer_id": str(customer_id), "active_cards": active},
            )
            return None, balance

    progress["step"] = "MINT_GIFT_CARD"
    card = issue_gift_card(
        db,
        customer_id=customer_id,
        merchant_id=merchant_id,
        points_cost=cfg.gift_card_threshold,
        reward_value=cfg.gift_card_value,
        expiry_days=cfg.gift_card_expiry_days,
        source_transaction_id=source_transaction_id,
        now=now,
    )

    progress["step"] = "DEBIT_BALANCE"
    db.add(
        PointTransaction(
            customer_id=customer_id,
            merchant_id=merchant_id,
            transaction_type="redeem",
            points=cfg.gift_card_threshold,
            reference_type="gift_card",
            reference_id=card.id,
            description=f"Gift card {card.code} issued (${cfg.gift_card_value})",
            created_by=str(actor_id),
            created_at=now,
        )
    )
    if _apply_delta(db, relationship_id, -cfg.gift_card_threshold, guard_non_negative=True) != 1:
        raise ConcurrencyConflict()

    return card, _current_balance(db, relationship_id)


def _record_earn(
    db: Session,
    *,
    relationship_id,
    customer_id,
    merchant_id,
    earned: int,
    evaluation: ChallengeEvaluation,
    reference_type: str,
    description: str,
    actor_id,
    now: datetime,
    request_id: str | None,
    progress: dict,
) -> PointTransaction:
    progress["step"] = "PERSIST_TRANSACTION"
    earn = PointTransaction(
        customer_id=customer_id,
        merchant_id=merchant_id,
        transaction_type="earn",
        points=earned,
        reference_type=reference_type,
        description=description,
        request_id=request_id,
        created_by=str(actor_id),
        created_at=now,
    )
    db.add(earn)
    db.flush()

    for challenge in evaluation.completed:
        db.add(
            ChallengeCompletion(
                challenge_id=challenge.id,
                customer_id=customer_id,
                merchant_id=merchant_id,
                point_transaction_id=earn.id,
                created_at=now,
            )
        )

    progress["step"] = "UPDATE_BALANCE"
    if _apply_delta(db, relationship_id, earned, visit_at=now) != 1:
        raise ConcurrencyConflict()

    return earn


def _issued(card: Optional[GiftCard]) -> Optional[IssuedGiftCard]:
    if card is None:
        return None
    return IssuedGiftCard(id=card.id, code=card.code, value=card.reward_value, expires_at=card.expires_at)


def _commit(db: Session, progress: dict) -> None:
    progress["step"] = "COMMIT"
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("ledger commit failed", extra={"step": "COMMIT"}, exc_info=True)
        # the server may or may not have applied it, only a retry with the
        # same request id is safe
        raise TransactionFailed(step="COMMIT", durable_write=None) from e


# ============================================================
# ASSIGN POINTS (purchase)
# ============================================================
def _replay(db: Session, merchant_id, request_id: str) -> Optional[AssignResult]:
    earn = (
        db.query(PointTransaction)
        .filter(PointTransaction.merchant_id == merchant_id)
        .filter(PointTransaction.request_id == request_id)
        .first()
    )
    if not earn:
        return None

    meta = earn.meta or {}
    card = None
    if meta.get("gift_card_id"):
        card = db.query(GiftCard).filter(GiftCard.source_transaction_id == earn.id).first()

    logger.info(
        "replaying processed request",
        extra={"merchant_id": str(merchant_id), "request_id": request_id, "transaction_id": str(earn.id)},
    )
    return AssignResult(
        points_earned=int(earn.points),
        base_points=int(meta.get("base_points", earn.points)),
        bonus_points=int(meta.get("bonus_points", 0)),
        total_points=int(meta.get("balance_after", 0)),
        gift_card=_issued(card),
        challenges_completed=list(meta.get("challenge_ids", [])),
        transaction_id=earn.id,
        replayed=True,
    )


def _assign_once(
    db: Session,
    *,
    cfg: MerchantConfig,
    merchant_id,
    customer_id,
    amount: Decimal,
    base_points: int,
    actor_id,
    challenge_ids,
    categories,
    request_id: str | None,
    now: datetime,
) -> AssignResult:
    progress = {"step": "RECEIVE"}
    try:
        relationship = get_or_create_relationship(db, customer_id, merchant_id)
        relationship = lock_relationship(db, relationship.id)

        progress["step"] = "COMPUTE"
        evaluation = _evaluate(
            db,
            cfg=cfg,
            customer_id=customer_id,
            merchant_id=merchant_id,
            now=now,
            amount=amount,
            categories=categories,
            challenge_ids=challenge_ids,
        )
        earned = base_points + evaluation.bonus_points

        earn = _record_earn(
            db,
            relationship_id=relationship.id,
            customer_id=customer_id,
            merchant_id=merchant_id,
            earned=earned,
            evaluation=evaluation,
            reference_type="purchase",
            description=f"Purchase of ${amount}",
            actor_id=actor_id,
            now=now,
            request_id=request_id,
            progress=progress,
        )
        db.add(Checkin(customer_id=customer_id, merchant_id=merchant_id, source="purchase", created_by=str(actor_id), created_at=now))

        balance = _current_balance(db, relationship.id)
        card, balance = _maybe_mint(
            db,
            cfg=cfg,
            relationship_id=relationship.id,
            customer_id=customer_id,
            merchant_id=merchant_id,
            earned=earned,
            balance=balance,
            source_transaction_id=earn.id,
            actor_id=actor_id,
            now=now,
            progress=progress,
        )

        completed_ids = [c.id for c in evaluation.completed]
        progress["step"] = "AUDIT"
        earn.meta = {
            "amount": str(amount),
            "base_points": base_points,
            "bonus_points": evaluation.bonus_points,
            "balance_after": balance,
            "gift_card_id": str(card.id) if card else None,
            "challenge_ids": [str(i) for i in completed_ids],
        }
        write_audit_log(
            db,
            actor_id=actor_id,
            merchant_id=merchant_id,
            action="create",
            entity_type="point_transaction",
            entity_id=earn.id,
            data={
                "customer_id": customer_id,
                "amount": amount,
                "points": earned,
                "balance": balance,
                "gift_card": card.code if card else None,
                "challenges_completed": completed_ids,
            },
        )
        result = AssignResult(
            points_earned=earned,
            base_points=base_points,
            bonus_points=evaluation.bonus_points,
            total_points=balance,
            gift_card=_issued(card),
            challenges_completed=completed_ids,
            transaction_id=earn.id,
        )
    except ConcurrencyConflict:
        db.rollback()
        raise
    except (SQLAlchemyError, GiftCardCodeCollision) as e:
        db.rollback()
        logger.error(
            "assign points rolled back",
            extra={"merchant_id": str(merchant_id), "customer_id": str(customer_id), "step": progress["step"]},
            exc_info=True,
        )
        raise TransactionFailed(step=progress["step"], durable_write=False, request_id=request_id) from e
    except Exception:
        db.rollback()
        raise

    _commit(db, progress)

    logger.info(
        "points assigned",
        extra={
            "merchant_id": str(merchant_id),
            "customer_id": str(customer_id),
            "points": result.points_earned,
            "balance": result.total_points,
            "gift_card_minted": result.gift_card is not None,
        },
    )
    return result


def assign_points(
    db: Session,
    *,
    merchant_id,
    customer_id,
    amount,
    actor_id,
    challenge_ids=None,
    categories=None,
    request_id: str | None = None,
    now: datetime | None = None,
) -> AssignResult:
    """Credit a purchase and mint a gift card when the threshold is crossed.

    Configuration, amount and customer are checked before anything is
    written; those errors reach the caller unchanged. Once writing starts the
    whole operation commits or rolls back as one unit and storage failures
    surface as ``TransactionFailed``. A lost race on the balance row is
    retried once.
    """
    now = now or _utcnow()

    cfg = load_merchant_config(db, merchant_id)
    base_points = compute_base_points(amount, cfg.points_per_unit)
    get_customer(db, customer_id)
    amount = Decimal(str(amount))

    if request_id:
        replayed = _replay(db, merchant_id, request_id)
        if replayed:
            return replayed

    for attempt in (1, 2):
        try:
            return _assign_once(
                db,
                cfg=cfg,
                merchant_id=merchant_id,
                customer_id=customer_id,
                amount=amount,
                base_points=base_points,
                actor_id=actor_id,
                challenge_ids=challenge_ids,
                categories=categories,
                request_id=request_id,
                now=now,
            )
        except ConcurrencyConflict as e:
            if attempt == 2:
                raise TransactionFailed(
                    step=e.context.get("step", "UPDATE_BALANCE"), durable_write=False, request_id=request_id
                ) from e
            logger.warning(
                "balance update lost a race, retrying",
                extra={"merchant_id": str(merchant_id), "customer_id": str(customer_id)},
            )


# ============================================================
# CHECK-IN (WhatsApp / QR visit)
# ============================================================
def _checkin_once(
    db: Session,
    *,
    cfg: MerchantConfig,
    merchant_id,
    phone: str,
    actor_id,
    branch_id,
    name: str | None,
    now: datetime,
) -> CheckinResult:
    progress = {"step": "RECEIVE"}
    try:
        customer, created = get_or_create_customer(db, phone, name=name, opt_in_marketing=True)
        relationship = get_or_create_relationship(db, customer.id, merchant_id)
        relationship = lock_relationship(db, relationship.id)

        progress["step"] = "COMPUTE"
        evaluation = _evaluate(
            db,
            cfg=cfg,
            customer_id=customer.id,
            merchant_id=merchant_id,
            now=now,
            amount=None,
            categories=None,
            challenge_ids=None,
        )

        card = None
        if evaluation.bonus_points > 0:
            earn = _record_earn(
                db,
                relationship_id=relationship.id,
                customer_id=customer.id,
                merchant_id=merchant_id,
                earned=evaluation.bonus_points,
                evaluation=evaluation,
                reference_type="checkin",
                description="Check-in challenge bonus",
                actor_id=actor_id,
                now=now,
                request_id=None,
                progress=progress,
            )
            balance = _current_balance(db, relationship.id)
            card, balance = _maybe_mint(
                db,
                cfg=cfg,
                relationship_id=relationship.id,
                customer_id=customer.id,
                merchant_id=merchant_id,
                earned=evaluation.bonus_points,
                balance=balance,
                source_transaction_id=earn.id,
                actor_id=actor_id,
                now=now,
                progress=progress,
            )
        else:
            progress["step"] = "UPDATE_BALANCE"
            if _apply_delta(db, relationship.id, 0, visit_at=now) != 1:
                raise ConcurrencyConflict()
            balance = _current_balance(db, relationship.id)

        progress["step"] = "RECORD_VISIT"
        checkin = Checkin(
            customer_id=customer.id,
            merchant_id=merchant_id,
            branch_id=branch_id,
            source="checkin",
            created_by=str(actor_id),
            created_at=now,
        )
        db.add(checkin)
        db.flush()

        visits = int(
            db.query(CustomerMerchant.visits_count)
            .filter(CustomerMerchant.id == relationship.id)
            .scalar()
        )

        completed_ids = [c.id for c in evaluation.completed]
        progress["step"] = "AUDIT"
        write_audit_log(
            db,
            actor_id=actor_id,
            merchant_id=merchant_id,
            action="create",
            entity_type="checkin",
            entity_id=checkin.id,
            data={
                "customer_id": customer.id,
                "branch_id": branch_id,
                "new_customer": created,
                "points": evaluation.bonus_points,
                "gift_card": card.code if card else None,
                "challenges_completed": completed_ids,
            },
        )
        result = CheckinResult(
            checkin_id=checkin.id,
            customer_id=customer.id,
            phone=customer.phone,
            visits_count=visits,
            points_earned=evaluation.bonus_points,
            points_balance=balance,
            gift_card=_issued(card),
            challenges_completed=completed_ids,
        )
    except ConcurrencyConflict:
        db.rollback()
        raise
    except (SQLAlchemyError, GiftCardCodeCollision) as e:
        db.rollback()
        logger.error(
            "check-in rolled back",
            extra={"merchant_id": str(merchant_id), "step": progress["step"]},
            exc_info=True,
        )
        raise TransactionFailed(step=progress["step"], durable_write=False) from e
    except Exception:
        db.rollback()
        raise

    _commit(db, progress)

    logger.info(
        "check-in recorded",
        extra={"merchant_id": str(merchant_id), "customer_id": str(result.customer_id), "visits": result.visits_count},
    )
    return result


def record_checkin(
    db: Session,
    *,
    merchant_id,
    phone: str,
    actor_id,
    branch_id=None,
    name: str | None = None,
    now: datetime | None = None,
) -> CheckinResult:
    now = now or _utcnow()

    cfg = load_merchant_config(db, merchant_id)
    normalized = normalize_phone(phone)

    if branch_id is not None:
        branch = db.query(Branch).filter(Branch.id == branch_id).first()
        if not branch or branch.merchant_id != merchant_id or not branch.active:
            raise BranchNotFound()

    for attempt in (1, 2):
        try:
            return _checkin_once(
                db,
                cfg=cfg,
                merchant_id=merchant_id,
                phone=normalized,
                actor_id=actor_id,
                branch_id=branch_id,
                name=name,
                now=now,
            )
        except ConcurrencyConflict as e:
            if attempt == 2:
                raise TransactionFailed(step=e.context.get("step", "UPDATE_BALANCE"), durable_write=False) from e
            logger.warning("check-in lost a race, retrying", extra={"merchant_id": str(merchant_id)})


# ============================================================
# MANUAL ADJUSTMENT
# ============================================================
def adjust_points(
    db: Session,
    *,
    merchant_id,
    customer_id,
    points: int,
    reason: str,
    actor_id,
    actor_role: str,
) -> AdjustResult:
    if actor_role != ADMIN_ROLE:
        raise PermissionDenied("Only administrators can manually adjust points")
    if not points:
        raise InvalidAmount("Adjustment must be a non-zero number of points")

    points = int(points)
    relationship = require_relationship(db, customer_id, merchant_id)

    progress = {"step": "RECEIVE"}
    try:
        relationship = lock_relationship(db, relationship.id)
        previous = _current_balance(db, relationship.id)

        progress["step"] = "UPDATE_BALANCE"
        if _apply_delta(db, relationship.id, points, guard_non_negative=True) != 1:
            raise NegativeBalanceRejected()

        progress["step"] = "PERSIST_TRANSACTION"
        txn = PointTransaction(
            customer_id=customer_id,
            merchant_id=merchant_id,
            transaction_type="adjustment_add" if points > 0 else "adjustment_subtract",
            points=abs(points),
            reference_type="manual_adjustment",
            description=reason,
            created_by=str(actor_id),
        )
        db.add(txn)
        db.flush()

        new_balance = _current_balance(db, relationship.id)

        progress["step"] = "AUDIT"
        write_audit_log(
            db,
            actor_id=actor_id,
            merchant_id=merchant_id,
            action="update",
            entity_type="point_adjustment",
            entity_id=customer_id,
            data={"points": points, "reason": reason, "previous_balance": previous, "new_balance": new_balance},
        )
    except NegativeBalanceRejected:
        db.rollback()
        logger.warning(
            "adjustment rejected, balance would go negative",
            extra={"merchant_id": str(merchant_id), "customer_id": str(customer_id), "points": points},
        )
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("adjustment rolled back", extra={"step": progress["step"]}, exc_info=True)
        raise TransactionFailed(step=progress["step"], durable_write=False) from e
    except Exception:
        db.rollback()
        raise

    _commit(db, progress)

    logger.info(
        "points adjusted",
        extra={"merchant_id": str(merchant_id), "customer_id": str(customer_id), "points": points, "actor_id": str(actor_id)},
    )
    return AdjustResult(adjustment=points, previous_balance=previous, new_balance=new_balance, transaction_id=txn.id)


# ============================================================
# READS
# ============================================================
def get_balance(db: Session, customer_id, merchant_id) -> CustomerMerchant:
    return require_relationship(db, customer_id, merchant_id)


def reconstruct_balance(db: Session, customer_id, merchant_id) -> int:
    signed = case(
        (PointTransaction.transaction_type.in_(_CREDIT_TYPES), PointTransaction.points),
        else_=-PointTransaction.points,
    )
    total = (
        db.query(func.coalesce(func.sum(signed), 0))
        .filter(
            PointTransaction.customer_id == customer_id,
            PointTransaction.merchant_id == merchant_id,
            PointTransaction.affects_balance.is_(True),
        )
        .scalar()
    )
    return int(total or 0)


def verify_balance(db: Session, customer_id, merchant_id) -> dict:
    relationship = require_relationship(db, customer_id, merchant_id)
    stored = _current_balance(db, relationship.id)
    ledger = reconstruct_balance(db, customer_id, merchant_id)
    if stored != ledger:
        logger.error(
            "balance does not match ledger",
            extra={"merchant_id": str(merchant_id), "customer_id": str(customer_id), "stored": stored, "ledger": ledger},
        )
    return {
        "customer_id": customer_id,
        "merchant_id": merchant_id,
        "stored_balance": stored,
        "ledger_balance": ledger,
        "consistent": stored == ledger,
    }


def list_transactions(
    db: Session,
    merchant_id,
    *,
    customer_id=None,
    limit: int = 50,
    offset: int = 0,
):
    q = db.query(PointTransaction).filter(PointTransaction.merchant_id == merchant_id)
    if customer_id:
        q = q.filter(PointTransaction.customer_id == customer_id)

    limit = max(1, min(limit, 200))
    offset = max(0, offset)

    return (
        q.order_by(PointTransaction.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
