# tests/test_api.py

import uuid
from decimal import Decimal

from sqlalchemy.exc import OperationalError

from meit.errors import TransactionFailed
from meit.services import gift_card_service, ledger_service


def enroll(client, headers, phone="+5491122220000"):
    response = client.post("/customers", json={"phone": phone, "name": "Ana"}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["id"]


class TestRequestContext:
    def test_missing_merchant_header(self, client):
        response = client.get("/points/transactions", headers={"X-Actor-Id": "cashier-1"})
        assert response.status_code == 400

    def test_malformed_merchant_header(self, client):
        response = client.get(
            "/points/transactions",
            headers={"X-Merchant-Id": "not-a-uuid", "X-Actor-Id": "cashier-1"},
        )
        assert response.status_code == 400

    def test_unknown_role(self, client, headers):
        response = client.get("/points/transactions", headers={**headers, "X-Actor-Role": "root"})
        assert response.status_code == 400


class TestMerchants:
    def test_provision_with_defaults(self, client):
        response = client.post("/merchants", json={"name": "Heladeria"})
        assert response.status_code == 201
        body = response.json()
        assert body["gift_card_threshold"] == 100
        assert Decimal(str(body["gift_card_value"])) == Decimal("5")
        assert body["timezone"] == "UTC"

    def test_unknown_timezone(self, client):
        response = client.post("/merchants", json={"name": "Heladeria", "timezone": "Mars/Olympus"})
        assert response.status_code == 422
        assert response.json()["code"] == "MERCHANT_CONFIG_MISSING"

    def test_config_update_requires_admin(self, client, headers, admin_headers):
        denied = client.put("/merchants/config", json={"gift_card_threshold": 50}, headers=headers)
        assert denied.status_code == 403
        assert denied.json()["code"] == "PERMISSION_DENIED"

        updated = client.put("/merchants/config", json={"gift_card_threshold": 50}, headers=admin_headers)
        assert updated.status_code == 200
        assert client.get("/merchants/config", headers=headers).json()["gift_card_threshold"] == 50

    def test_branches(self, client, headers, admin_headers):
        created = client.post("/branches", json={"name": "Centro", "qr_code": "QR-1"}, headers=admin_headers)
        assert created.status_code == 201

        duplicate = client.post("/branches", json={"name": "Otro", "qr_code": "QR-1"}, headers=admin_headers)
        assert duplicate.status_code == 409

        assert [b["qr_code"] for b in client.get("/branches", headers=headers).json()] == ["QR-1"]


class TestCustomers:
    def test_enroll_and_read(self, client, headers):
        customer_id = enroll(client, headers, phone="+54 9 11 2222-0000")

        body = client.get(f"/customers/{customer_id}", headers=headers).json()
        assert body["phone"] == "+5491122220000"

        balance = client.get(f"/customers/{customer_id}/balance", headers=headers).json()
        assert balance["points_balance"] == 0

    def test_enrolling_twice_conflicts(self, client, headers):
        enroll(client, headers)
        response = client.post("/customers", json={"phone": "+5491122220000"}, headers=headers)
        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_CUSTOMER"

    def test_invisible_to_other_merchants(self, client, headers, other_merchant):
        customer_id = enroll(client, headers)
        other = {**headers, "X-Merchant-Id": str(other_merchant.id)}

        response = client.get(f"/customers/{customer_id}", headers=other)
        assert response.status_code == 404
        assert response.json()["code"] == "CUSTOMER_NOT_FOUND"

    def test_patch(self, client, headers):
        customer_id = enroll(client, headers)
        response = client.patch(
            f"/customers/{customer_id}",
            json={"email": "ana@example.com", "opt_in_marketing": True},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["email"] == "ana@example.com"
        assert response.json()["opt_in_marketing"] is True


class TestPointsFlow:
    def test_purchase_then_redeem(self, client, headers):
        customer_id = enroll(client, headers)

        first = client.post("/points/assign", json={"customer_id": customer_id, "amount": 80}, headers=headers)
        assert first.status_code == 200
        assert first.json()["total_points"] == 80
        assert first.json()["gift_card"] is None

        second = client.post("/points/assign", json={"customer_id": customer_id, "amount": 25}, headers=headers)
        body = second.json()
        assert body["points_earned"] == 25
        assert body["total_points"] == 5
        code = body["gift_card"]["code"]

        valid = client.post("/gift-cards/validate", json={"code": code}, headers=headers).json()
        assert valid["valid"] is True
        assert valid["customer_id"] == customer_id

        redeemed = client.post("/gift-cards/redeem", json={"code": code}, headers=headers)
        assert redeemed.status_code == 200
        assert redeemed.json()["success"] is True
        assert Decimal(str(redeemed.json()["redeemed_value"])) == Decimal("5")

        again = client.post("/gift-cards/redeem", json={"code": code}, headers=headers)
        assert again.status_code == 400
        assert again.json()["code"] == "GIFT_CARD_ALREADY_REDEEMED"

        verify = client.get(f"/customers/{customer_id}/balance/verify", headers=headers).json()
        assert verify["consistent"] is True
        assert verify["stored_balance"] == 5

        cards = client.get(f"/customers/{customer_id}/gift-cards", headers=headers).json()
        assert [c["status"] for c in cards] == ["redeemed"]

    def test_unknown_code_is_not_an_error(self, client, headers):
        response = client.post("/gift-cards/validate", json={"code": "NOPE2345"}, headers=headers)
        assert response.status_code == 200
        assert response.json() == {
            "valid": False,
            "code": None,
            "value": None,
            "expires_at": None,
            "customer_id": None,
            "error": "Gift card not found",
        }

    def test_invalid_amount(self, client, headers):
        customer_id = enroll(client, headers)
        response = client.post("/points/assign", json={"customer_id": customer_id, "amount": 0}, headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_AMOUNT"

    def test_unknown_customer(self, client, headers):
        response = client.post(
            "/points/assign",
            json={"customer_id": str(uuid.uuid4()), "amount": 10},
            headers=headers,
        )
        assert response.status_code == 404

    def test_idempotency_key(self, client, headers):
        customer_id = enroll(client, headers)
        keyed = {**headers, "Idempotency-Key": "till-7-0001"}

        first = client.post("/points/assign", json={"customer_id": customer_id, "amount": 30}, headers=keyed)
        second = client.post("/points/assign", json={"customer_id": customer_id, "amount": 30}, headers=keyed)

        assert first.json() == second.json()
        balance = client.get(f"/customers/{customer_id}/balance", headers=headers).json()
        assert balance["points_balance"] == 30

        transactions = client.get(
            "/points/transactions",
            params={"customer_id": customer_id},
            headers=headers,
        ).json()
        assert len(transactions) == 1

    def test_adjust(self, client, headers, admin_headers):
        customer_id = enroll(client, headers)
        client.post("/points/assign", json={"customer_id": customer_id, "amount": 20}, headers=headers)

        denied = client.post(
            "/points/adjust",
            json={"customer_id": customer_id, "points": 5, "reason": "goodwill"},
            headers=headers,
        )
        assert denied.status_code == 403

        negative = client.post(
            "/points/adjust",
            json={"customer_id": customer_id, "points": -30, "reason": "fraud"},
            headers=admin_headers,
        )
        assert negative.status_code == 400
        assert negative.json()["code"] == "NEGATIVE_BALANCE_REJECTED"

        ok = client.post(
            "/points/adjust",
            json={"customer_id": customer_id, "points": -5, "reason": "fraud"},
            headers=admin_headers,
        )
        assert ok.json() == {"success": True, "adjustment": -5, "previous_balance": 20, "new_balance": 15}

    def test_checkin(self, client, headers):
        response = client.post("/checkins", json={"phone": "+5491133330000"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["visits_count"] == 1


class TestChallenges:
    def test_crud_with_typed_target(self, client, headers, admin_headers):
        payload = {
            "name": "Happy hour",
            "points": 10,
            "target": {"type": "time_based", "start": "17:00", "end": "19:00"},
        }
        denied = client.post("/challenges", json=payload, headers=headers)
        assert denied.status_code == 403

        created = client.post("/challenges", json=payload, headers=admin_headers)
        assert created.status_code == 201
        body = created.json()
        assert body["target_value"] == 17001900
        assert body["target"]["type"] == "time_based"
        challenge_id = body["id"]

        patched = client.patch(
            f"/challenges/{challenge_id}",
            json={"target": {"type": "frequency", "visits": 5, "days": 30}},
            headers=admin_headers,
        )
        assert patched.json()["target_value"] == 5030
        assert patched.json()["challenge_type"] == "frequency"

        listed = client.get("/challenges", headers=headers).json()
        assert [c["id"] for c in listed] == [challenge_id]

        assert client.delete(f"/challenges/{challenge_id}", headers=admin_headers).json() == {"success": True}
        missing = client.get(f"/challenges/{challenge_id}", headers=headers)
        assert missing.status_code == 404

    def test_out_of_range_target(self, client, admin_headers):
        payload = {
            "name": "Loyal",
            "points": 10,
            "target": {"type": "frequency", "visits": 1000, "days": 7},
        }
        response = client.post("/challenges", json=payload, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_CHALLENGE_TARGET"


class TestFailureReporting:
    def purchase(self, client, headers, customer_id, amount):
        return client.post("/points/assign", json={"customer_id": customer_id, "amount": amount}, headers=headers)

    def test_rolled_back_purchase_says_nothing_was_written(self, client, headers, monkeypatch):
        customer_id = enroll(client, headers)
        self.purchase(client, headers, customer_id, 80)
        monkeypatch.setattr(gift_card_service, "_code_exists", lambda *args: True)

        response = self.purchase(client, headers, customer_id, 25)

        assert response.status_code == 503
        body = response.json()
        assert body["code"] == "TRANSACTION_FAILED"
        assert body["step"] == "MINT_GIFT_CARD"
        assert body["durable_write"] is False
        assert "no changes were applied" in body["detail"]
        balance = client.get(f"/customers/{customer_id}/balance", headers=headers).json()
        assert balance["points_balance"] == 80

    def test_failed_commit_reports_unknown_outcome(self, client, headers, monkeypatch):
        customer_id = enroll(client, headers)

        def failing_commit(db, progress):
            db.rollback()
            raise TransactionFailed(step="COMMIT", durable_write=None)

        monkeypatch.setattr(ledger_service, "_commit", failing_commit)

        response = self.purchase(client, headers, customer_id, 30)

        assert response.status_code == 503
        body = response.json()
        assert body["step"] == "COMMIT"
        assert body["durable_write"] is None
        assert "no changes" not in body["detail"]
        assert "Idempotency-Key" in body["detail"]

    def test_failed_redemption_names_the_operation(self, client, headers, monkeypatch):
        customer_id = enroll(client, headers)
        self.purchase(client, headers, customer_id, 80)
        code = self.purchase(client, headers, customer_id, 25).json()["gift_card"]["code"]

        def broken_audit(*args, **kwargs):
            raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))

        monkeypatch.setattr(gift_card_service, "write_audit_log", broken_audit)

        response = client.post("/gift-cards/redeem", json={"code": code}, headers=headers)

        assert response.status_code == 503
        body = response.json()
        assert body["detail"] == "Gift card redemption failed, no changes were applied"
        assert body["step"] == "AUDIT"
        assert body["durable_write"] is False
        assert "disk" not in body["detail"]

        valid = client.post("/gift-cards/validate", json={"code": code}, headers=headers).json()
        assert valid["valid"] is True

    def test_storage_errors_stay_generic(self, client, admin_headers, monkeypatch):
        def broken_expire(*args, **kwargs):
            raise OperationalError("UPDATE gift_cards", {}, Exception("disk I/O error"))

        monkeypatch.setattr("meit.routes.gift_cards.expire_gift_cards", broken_expire)

        response = client.post("/gift-cards/expire", headers=admin_headers)

        assert response.status_code == 503
        assert response.json() == {"detail": "Storage backend error", "code": "PERSISTENCE_FAILURE"}
