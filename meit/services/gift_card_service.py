import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from meit import config
from meit.errors import (
    GiftCardAlreadyRedeemed,
    GiftCardCancelled,
    GiftCardCodeCollision,
    GiftCardExpired,
    GiftCardMerchantMismatch,
    GiftCardNotFound,
    InvalidAmount,
    TransactionFailed,
)
from meit.models.gift_card import GiftCard
from meit.models.point_transaction import PointTransaction
from meit.services.audit_service import write_audit_log


logger = logging.getLogger(__name__)

# no 0/O or 1/I, codes are read aloud and typed at the till
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8

REDEEM_FAILED = "Gift card redemption failed, no changes were applied"
CANCEL_FAILED = "Gift card cancellation failed, no changes were applied"
OUTCOME_UNKNOWN = "Gift card update outcome is unknown, check the card status before retrying"

# active is the only state with outgoing edges
ALLOWED_TRANSITIONS = {
    "active": {"redeemed", "expired", "cancelled"},
}


def _utcnow() -> datetime:
    return datetime.utcnow()


def generate_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _code_exists(db: Session, merchant_id, code: str) -> bool:
    return (
        db.query(GiftCard.id)
        .filter(GiftCard.merchant_id == merchant_id, GiftCard.code == code)
        .first()
        is not None
    )


def count_active_gift_cards(db: Session, customer_id, merchant_id, now: datetime | None = None) -> int:
    now = now or _utcnow()
    return (
        db.query(GiftCard)
        .filter(GiftCard.customer_id == customer_id)
        .filter(GiftCard.merchant_id == merchant_id)
        .filter(GiftCard.status == "active")
        .filter(GiftCard.expires_at >= now)
        .count()
    )


# ============================================================
# MINT
# ============================================================
def issue_gift_card(
    db: Session,
    *,
    customer_id,
    merchant_id,
    points_cost: int,
    reward_value,
    expiry_days: int,
    source_transaction_id=None,
    now: datetime | None = None,
    max_attempts: int | None = None,
) -> GiftCard:
    """Insert an active gift card with a fresh code. Does not commit.

    Collisions are expected with an 8 character code space shared by every
    card a merchant ever issued, so a few attempts are made before giving up.
    A code committed by another transaction after the existence check is
    caught by the unique constraint; the insert runs under a savepoint so
    only that attempt is discarded. Call it after the transaction has
    written something, sqlite releases an outermost savepoint as a commit.
    """
    now = now or _utcnow()
    attempts = max_attempts or config.GIFT_CARD_CODE_MAX_ATTEMPTS

    for attempt in range(1, attempts + 1):
        code = generate_code()
        if _code_exists(db, merchant_id, code):
            logger.warning(
                "gift card code collision",
                extra={"merchant_id": str(merchant_id), "attempt": attempt},
            )
            continue

        card = GiftCard(
            code=code,
            customer_id=customer_id,
            merchant_id=merchant_id,
            points_cost=int(points_cost),
            reward_value=reward_value,
            status="active",
            expires_at=now + timedelta(days=int(expiry_days)),
            source_transaction_id=source_transaction_id,
            created_at=now,
        )
        try:
            with db.begin_nested():
                db.add(card)
                db.flush()
        except IntegrityError:
            logger.warning(
                "gift card code taken on insert",
                extra={"merchant_id": str(merchant_id), "attempt": attempt},
            )
            continue
        return card

    raise GiftCardCodeCollision(attempts=attempts)


def _commit(db: Session, gift_card_id) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "gift card commit failed",
            extra={"gift_card_id": str(gift_card_id), "step": "COMMIT"},
            exc_info=True,
        )
        raise TransactionFailed(OUTCOME_UNKNOWN, step="COMMIT", durable_write=None) from e


# ============================================================
# VALIDATE
# ============================================================
def _find_card(db: Session, code: str, merchant_id) -> GiftCard:
    normalized = normalize_code(code)
    card = (
        db.query(GiftCard)
        .filter(GiftCard.code == normalized)
        .filter(GiftCard.merchant_id == merchant_id)
        .first()
    )
    if not card:
        raise GiftCardNotFound()
    return card


def _ensure_redeemable(card: GiftCard, now: datetime) -> None:
    if card.status == "redeemed":
        raise GiftCardAlreadyRedeemed()
    if card.status == "cancelled":
        raise GiftCardCancelled()
    if card.status == "expired":
        raise GiftCardExpired()
    if card.status != "active":
        raise GiftCardNotFound()
    if now > card.expires_at:
        raise GiftCardExpired()


def validate_gift_card(db: Session, code: str, merchant_id, now: datetime | None = None) -> GiftCard:
    now = now or _utcnow()
    card = _find_card(db, code, merchant_id)
    _ensure_redeemable(card, now)
    return card


def _transition(db: Session, card: GiftCard, new_status: str, values: dict | None = None) -> bool:
    if new_status not in ALLOWED_TRANSITIONS.get(card.status, set()):
        return False
    updated = (
        db.query(GiftCard)
        .filter(GiftCard.id == card.id, GiftCard.status == "active")
        .update({GiftCard.status: new_status, **(values or {})}, synchronize_session=False)
    )
    return updated == 1


# ============================================================
# REDEEM
# ============================================================
def redeem_gift_card(
    db: Session,
    code: str,
    merchant_id,
    actor_id: str,
    *,
    amount=None,
    now: datetime | None = None,
) -> GiftCard:
    now = now or _utcnow()

    card = validate_gift_card(db, code, merchant_id, now)

    if amount is not None and (amount <= 0 or amount > card.reward_value):
        raise InvalidAmount("Redemption amount must be positive and not exceed the card value")

    step = "MARK_REDEEMED"
    try:
        if not _transition(
            db,
            card,
            "redeemed",
            {GiftCard.redeemed_at: now, GiftCard.redeemed_by: str(actor_id)},
        ):
            db.rollback()
            logger.warning(
                "gift card redeemed concurrently",
                extra={"gift_card_id": str(card.id), "merchant_id": str(merchant_id)},
            )
            raise GiftCardAlreadyRedeemed()

        # memo row: the points left the balance when the card was minted
        step = "RECORD_TRANSACTION"
        db.add(
            PointTransaction(
                customer_id=card.customer_id,
                merchant_id=merchant_id,
                transaction_type="redeem",
                points=card.points_cost,
                affects_balance=False,
                reference_type="gift_card_redemption",
                reference_id=card.id,
                description=f"Redeemed gift card {card.code} for ${card.reward_value}",
                created_by=str(actor_id),
                created_at=now,
            )
        )

        step = "AUDIT"
        write_audit_log(
            db,
            actor_id=actor_id,
            merchant_id=merchant_id,
            action="redeem",
            entity_type="gift_card",
            entity_id=card.id,
            data={"status": "redeemed", "code": card.code, "reward_value": card.reward_value},
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "gift card redemption rolled back",
            extra={"gift_card_id": str(card.id), "step": step},
            exc_info=True,
        )
        raise TransactionFailed(REDEEM_FAILED, step=step, durable_write=False) from e

    _commit(db, gift_card_id=card.id)

    db.refresh(card)
    logger.info(
        "gift card redeemed",
        extra={"gift_card_id": str(card.id), "merchant_id": str(merchant_id), "actor_id": str(actor_id)},
    )
    return card


# ============================================================
# CANCEL / EXPIRE
# ============================================================
def get_gift_card(db: Session, gift_card_id, merchant_id) -> GiftCard:
    card = db.query(GiftCard).filter(GiftCard.id == gift_card_id).first()
    if not card:
        raise GiftCardNotFound()
    if card.merchant_id != merchant_id:
        raise GiftCardMerchantMismatch()
    return card


def cancel_gift_card(db: Session, gift_card_id, merchant_id, actor_id: str) -> GiftCard:
    card = get_gift_card(db, gift_card_id, merchant_id)

    if card.status == "redeemed":
        raise GiftCardAlreadyRedeemed()
    if card.status == "cancelled":
        raise GiftCardCancelled()
    if card.status == "expired":
        raise GiftCardExpired()

    try:
        if not _transition(db, card, "cancelled"):
            db.rollback()
            raise GiftCardAlreadyRedeemed()

        write_audit_log(
            db,
            actor_id=actor_id,
            merchant_id=merchant_id,
            action="cancel",
            entity_type="gift_card",
            entity_id=card.id,
            data={"status": "cancelled", "code": card.code},
        )
    except SQLAlchemyError as e:
        db.rollback()
        raise TransactionFailed(CANCEL_FAILED, step="CANCEL", durable_write=False) from e

    _commit(db, gift_card_id=card.id)

    db.refresh(card)
    return card


def expire_gift_cards(db: Session, merchant_id=None, now: datetime | None = None) -> int:
    now = now or _utcnow()

    q = (
        db.query(GiftCard)
        .filter(GiftCard.status == "active")
        .filter(GiftCard.expires_at < now)
    )
    if merchant_id is not None:
        q = q.filter(GiftCard.merchant_id == merchant_id)

    expired = q.all()
    for card in expired:
        card.status = "expired"

    db.flush()
    return len(expired)


def list_gift_cards(
    db: Session,
    merchant_id,
    *,
    status: str | None = None,
    customer_id=None,
    limit: int = 50,
    offset: int = 0,
):
    q = db.query(GiftCard).filter(GiftCard.merchant_id == merchant_id)
    if status:
        q = q.filter(GiftCard.status == status)
    if customer_id:
        q = q.filter(GiftCard.customer_id == customer_id)

    limit = max(1, min(limit, 200))
    offset = max(0, offset)

    return q.order_by(GiftCard.created_at.desc()).offset(offset).limit(limit).all()
