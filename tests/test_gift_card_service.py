# tests/test_gift_card_service.py

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from meit.errors import (
    GiftCardAlreadyRedeemed,
    GiftCardCancelled,
    GiftCardCodeCollision,
    GiftCardExpired,
    GiftCardNotFound,
    InvalidAmount,
    TransactionFailed,
)
from meit.models.gift_card import GiftCard
from meit.models.point_transaction import PointTransaction
from meit.services import gift_card_service
from meit.services.gift_card_service import (
    CODE_ALPHABET,
    cancel_gift_card,
    expire_gift_cards,
    generate_code,
    issue_gift_card,
    redeem_gift_card,
    validate_gift_card,
)
from meit.services.ledger_service import assign_points, reconstruct_balance


@pytest.fixture
def card(db_session, merchant, customer):
    result = assign_points(
        db_session,
        merchant_id=merchant.id,
        customer_id=customer.id,
        amount=100,
        actor_id="cashier-1",
    )
    return db_session.query(GiftCard).filter(GiftCard.code == result.gift_card.code).one()


def disk_error(*args, **kwargs):
    raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))


def redemption_rows(db):
    return (
        db.query(PointTransaction)
        .filter(PointTransaction.reference_type == "gift_card_redemption")
        .all()
    )


class TestCodes:
    def test_generated_codes_use_unambiguous_alphabet(self):
        for _ in range(50):
            code = generate_code()
            assert len(code) == 8
            assert set(code) <= set(CODE_ALPHABET)
            assert not set(code) & set("01IO")

    def test_gives_up_after_repeated_collisions(self, db_session, merchant, customer, monkeypatch):
        monkeypatch.setattr(gift_card_service, "_code_exists", lambda *args: True)

        with pytest.raises(GiftCardCodeCollision):
            issue_gift_card(
                db_session,
                customer_id=customer.id,
                merchant_id=merchant.id,
                points_cost=100,
                reward_value=5,
                expiry_days=30,
                max_attempts=3,
            )

    def test_retries_on_collision(self, db_session, merchant, customer, monkeypatch):
        answers = iter([True, True, False])
        monkeypatch.setattr(gift_card_service, "_code_exists", lambda *args: next(answers))

        card = issue_gift_card(
            db_session,
            customer_id=customer.id,
            merchant_id=merchant.id,
            points_cost=100,
            reward_value=5,
            expiry_days=30,
        )
        assert card.status == "active"


class TestValidate:
    def test_valid_card(self, db_session, merchant, card):
        assert validate_gift_card(db_session, card.code.lower(), merchant.id).id == card.id

    def test_unknown_code(self, db_session, merchant, card):
        with pytest.raises(GiftCardNotFound):
            validate_gift_card(db_session, "ZZZZZZZZ", merchant.id)

    def test_other_merchant_sees_nothing(self, db_session, other_merchant, card):
        with pytest.raises(GiftCardNotFound):
            validate_gift_card(db_session, card.code, other_merchant.id)

    def test_past_expiry(self, db_session, merchant, card):
        with pytest.raises(GiftCardExpired):
            validate_gift_card(db_session, card.code, merchant.id, now=card.expires_at + timedelta(seconds=1))


class TestRedeem:
    def test_redeem_marks_card_and_records_memo(self, db_session, merchant, customer, card):
        redeemed = redeem_gift_card(db_session, card.code, merchant.id, "cashier-2")

        assert redeemed.status == "redeemed"
        assert redeemed.redeemed_by == "cashier-2"
        assert redeemed.redeemed_at is not None

        rows = redemption_rows(db_session)
        assert len(rows) == 1
        assert rows[0].affects_balance is False
        assert rows[0].reference_id == card.id

        # points left the balance when the card was minted
        assert reconstruct_balance(db_session, customer.id, merchant.id) == 0

    def test_second_redeem_is_rejected(self, db_session, merchant, card):
        redeem_gift_card(db_session, card.code, merchant.id, "cashier-2")

        with pytest.raises(GiftCardAlreadyRedeemed):
            redeem_gift_card(db_session, card.code, merchant.id, "cashier-2")
        assert len(redemption_rows(db_session)) == 1

    def test_concurrent_redeem_loses_cleanly(self, session_factory, merchant, card):
        first = session_factory()
        second = session_factory()
        try:
            # second session validated the card before the first one redeemed it
            stale = validate_gift_card(second, card.code, merchant.id)
            assert stale.status == "active"

            redeem_gift_card(first, card.code, merchant.id, "cashier-1")

            with pytest.raises(GiftCardAlreadyRedeemed):
                redeem_gift_card(second, card.code, merchant.id, "cashier-2")
            assert len(redemption_rows(first)) == 1
        finally:
            first.close()
            second.close()

    def test_expired_card(self, db_session, merchant, card):
        with pytest.raises(GiftCardExpired):
            redeem_gift_card(db_session, card.code, merchant.id, "cashier-2", now=card.expires_at + timedelta(days=1))
        assert redemption_rows(db_session) == []

    def test_amount_above_value(self, db_session, merchant, card):
        with pytest.raises(InvalidAmount):
            redeem_gift_card(db_session, card.code, merchant.id, "cashier-2", amount=card.reward_value + 1)

    def test_failed_write_rolls_back_redemption(self, db_session, merchant, card, monkeypatch):
        monkeypatch.setattr(gift_card_service, "write_audit_log", disk_error)

        with pytest.raises(TransactionFailed) as exc_info:
            redeem_gift_card(db_session, card.code, merchant.id, "cashier-2")

        assert exc_info.value.message == "Gift card redemption failed, no changes were applied"
        assert exc_info.value.step == "AUDIT"
        assert exc_info.value.durable_write is False
        assert validate_gift_card(db_session, card.code, merchant.id).status == "active"
        assert redemption_rows(db_session) == []

    def test_failed_commit_is_reported_as_unknown(self, db_session, merchant, card, monkeypatch):
        monkeypatch.setattr(db_session, "commit", disk_error)

        with pytest.raises(TransactionFailed) as exc_info:
            redeem_gift_card(db_session, card.code, merchant.id, "cashier-2")

        assert exc_info.value.step == "COMMIT"
        assert exc_info.value.durable_write is None
        assert "check the card status" in exc_info.value.message


class TestCancelAndExpire:
    def test_cancel_blocks_redemption(self, db_session, merchant, card):
        cancelled = cancel_gift_card(db_session, card.id, merchant.id, "owner-1")
        assert cancelled.status == "cancelled"

        with pytest.raises(GiftCardCancelled):
            redeem_gift_card(db_session, card.code, merchant.id, "cashier-2")

    def test_cancel_redeemed_card(self, db_session, merchant, card):
        redeem_gift_card(db_session, card.code, merchant.id, "cashier-2")
        with pytest.raises(GiftCardAlreadyRedeemed):
            cancel_gift_card(db_session, card.id, merchant.id, "owner-1")

    def test_cancel_from_other_merchant(self, db_session, other_merchant, card):
        with pytest.raises(GiftCardNotFound):
            cancel_gift_card(db_session, card.id, other_merchant.id, "owner-1")

    def test_failed_cancel_names_the_operation(self, db_session, merchant, card, monkeypatch):
        monkeypatch.setattr(gift_card_service, "write_audit_log", disk_error)

        with pytest.raises(TransactionFailed) as exc_info:
            cancel_gift_card(db_session, card.id, merchant.id, "owner-1")

        assert exc_info.value.message == "Gift card cancellation failed, no changes were applied"
        assert exc_info.value.durable_write is False
        assert validate_gift_card(db_session, card.code, merchant.id).status == "active"

    def test_sweep_expires_only_past_cards(self, db_session, merchant, card):
        assert expire_gift_cards(db_session, merchant.id, now=datetime.utcnow()) == 0

        later = card.expires_at + timedelta(days=1)
        assert expire_gift_cards(db_session, merchant.id, now=later) == 1
        db_session.commit()

        db_session.refresh(card)
        assert card.status == "expired"
        with pytest.raises(GiftCardExpired):
            validate_gift_card(db_session, card.code, merchant.id)
