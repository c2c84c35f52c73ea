"""
Tests for Payments API and provider webhook endpoints
"""
import json
import logging
from unittest.mock import patch

from app.application.errors import StorageUnavailable
from app.application.webhook_parsers import mpesa_signature
from app.config import Settings, get_settings
from app.infrastructure.db.models import Contribution
from app.main import app


def _webhook(client, path, body, headers=None):
    raw = json.dumps(body).encode()
    return client.post(path, content=raw, headers={"content-type": "application/json", **(headers or {})})


class TestPaymentsApi:
    def test_initiate_get_and_cancel(self, client, make_goal):
        goal = make_goal()
        response = client.post("/api/v1/payments/initiate", json={
            "amount": "250", "type": "savings_contribution", "provider": "card", "saving_id": goal.id,
        })
        assert response.status_code == 201
        data = response.json()
        assert data["transaction"]["status"] == "pending"
        assert data["provider_response"]["message"] == "Card payment processing"

        tx_id = data["transaction"]["id"]
        assert client.get(f"/api/v1/payments/{tx_id}").json()["amount"] == "250.00"

        cancelled = client.post(f"/api/v1/payments/{tx_id}/cancel")
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "failed"

        again = client.post(f"/api/v1/payments/{tx_id}/cancel")
        assert again.status_code == 422

    def test_unsupported_provider(self, client):
        response = client.post("/api/v1/payments/initiate", json={
            "amount": "10", "type": "refund", "provider": "paypal",
        })
        assert response.status_code == 422
        assert response.json()["error"] == "Unsupported payment provider"

    def test_list_and_stats(self, client, make_transaction):
        make_transaction(amount="10")
        make_transaction(amount="20")

        listing = client.get("/api/v1/payments").json()
        assert listing["pagination"]["total"] == 2

        stats = client.get("/api/v1/payments/stats").json()
        assert stats["pending_payments"] == 2
        assert stats["total_amount"] == "0.00"

    def test_foreign_transaction_not_found(self, client, make_transaction):
        tx = make_transaction(user_id=2)
        assert client.get(f"/api/v1/payments/{tx.id}").status_code == 404


class TestGenericWebhook:
    def test_success_then_duplicate(self, client, db_session, make_goal, make_transaction):
        goal = make_goal(target="1000")
        tx = make_transaction(amount="300", saving_id=goal.id)
        body = {"transactionId": str(tx.id), "status": "success", "reference": "R-1"}

        first = _webhook(client, "/webhooks/mpesa", body)
        second = _webhook(client, "/webhooks/mpesa", body)

        assert first.status_code == 200
        assert first.json()["data"]["status"] == "completed"
        assert first.json()["data"]["already_reconciled"] is False
        assert second.status_code == 200
        assert second.json()["data"]["already_reconciled"] is True
        assert db_session.query(Contribution).filter(Contribution.transaction_id == tx.id).count() == 1

    def test_unknown_transaction_asks_for_retry(self, client):
        response = _webhook(client, "/webhooks/card", {"transactionId": "777", "status": "success"})
        assert response.status_code == 404
        assert response.json() == {
            "error": "Transaction 777 not found",
            "code": "TRANSACTION_NOT_FOUND",
            "retryable": True,
        }

    def test_unknown_provider(self, client):
        response = _webhook(client, "/webhooks/paypal", {"transactionId": "1", "status": "success"})
        assert response.status_code == 404

    def test_invalid_json(self, client):
        response = client.post("/webhooks/bank", content=b"{oops", headers={"content-type": "application/json"})
        assert response.status_code == 422


class TestProviderWebhooks:
    def test_mpesa_payment_signature_enforced(self, client, make_goal, make_transaction):
        app.dependency_overrides[get_settings] = lambda: Settings(WEBHOOK_SECRET_MPESA="mpesa-secret")
        goal = make_goal()
        tx = make_transaction(saving_id=goal.id)
        raw = json.dumps({"TransactionID": str(tx.id), "ResultCode": 0, "MpesaReceiptNumber": "QK1"}).encode()

        unsigned = client.post("/webhooks/mpesa/payment", content=raw)
        signed = client.post(
            "/webhooks/mpesa/payment", content=raw,
            headers={"signature": mpesa_signature("mpesa-secret", raw)},
        )

        assert unsigned.status_code == 401
        assert signed.status_code == 200
        assert signed.json()["data"]["reference"] == "QK1"

    def test_mpesa_callback_answers_daraja_format(self, client, make_goal, make_transaction):
        goal = make_goal()
        tx = make_transaction(saving_id=goal.id)
        body = {
            "MerchantRequestID": str(tx.id),
            "ResultCode": 0,
            "CallbackMetadata": {"Item": [{"Name": "MpesaReceiptNumber", "Value": "NLJ7"}]},
        }

        assert _webhook(client, "/webhooks/mpesa/callback", body).json() == {"ResultCode": 0, "ResultDesc": "Success"}

    def test_mpesa_callback_failure_reported_in_body(self, client):
        response = _webhook(client, "/webhooks/mpesa/callback", {"MerchantRequestID": "9999", "ResultCode": 0})
        assert response.status_code == 200
        assert response.json() == {"ResultCode": 1, "ResultDesc": "Failed"}

    def test_mpesa_callback_retryable_failure_logged_with_transaction(self, client, caplog):
        body = {"MerchantRequestID": "9999", "ResultCode": 0}
        with caplog.at_level(logging.WARNING, logger="app.api.v1.webhooks"):
            _webhook(client, "/webhooks/mpesa/callback", body)

        errors = [r for r in caplog.records if r.name == "app.api.v1.webhooks" and r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "transaction 9999" in errors[0].getMessage()
        assert "TRANSACTION_NOT_FOUND" in errors[0].getMessage()

    def test_mpesa_callback_storage_failure_logged(self, client, make_transaction, caplog):
        tx = make_transaction()
        body = {"MerchantRequestID": str(tx.id), "ResultCode": 0}
        with patch("app.api.v1.webhooks.ReconcilePaymentUseCase.execute", side_effect=StorageUnavailable()), \
                caplog.at_level(logging.WARNING, logger="app.api.v1.webhooks"):
            response = _webhook(client, "/webhooks/mpesa/callback", body)

        assert response.json() == {"ResultCode": 1, "ResultDesc": "Failed"}
        errors = [
            r.getMessage() for r in caplog.records
            if r.name == "app.api.v1.webhooks" and r.levelno == logging.ERROR
        ]
        assert errors == [
            f"M-Pesa callback for transaction {tx.id} not reconciled: "
            "Ledger store unavailable, retry later (STORAGE_UNAVAILABLE, retryable=True)"
        ]

    def test_stripe_unhandled_event_acknowledged(self, client):
        response = _webhook(client, "/webhooks/card/stripe", {"type": "charge.refunded", "data": {}})
        assert response.json() == {"received": True}

    def test_stripe_payment_failed(self, client, make_transaction):
        tx = make_transaction(provider="card")
        response = _webhook(client, "/webhooks/card/stripe", {
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_9", "metadata": {"transactionId": str(tx.id)}}},
        })
        assert response.json()["data"]["status"] == "failed"

    def test_flutterwave_hash_checked(self, client, make_transaction):
        app.dependency_overrides[get_settings] = lambda: Settings(WEBHOOK_SECRET_FLUTTERWAVE="flw-hash")
        tx = make_transaction(provider="card")
        body = {"event": "charge.completed", "data": {"status": "successful", "tx_ref": str(tx.id), "flw_ref": "F1"}}

        assert _webhook(client, "/webhooks/card/flutterwave", body, {"verif-hash": "wrong"}).status_code == 401
        response = _webhook(client, "/webhooks/card/flutterwave", body, {"verif-hash": "flw-hash"})
        assert response.json()["data"]["status"] == "completed"

    def test_bank_rejected_when_signatures_required_without_key(self, client, make_transaction):
        app.dependency_overrides[get_settings] = lambda: Settings(WEBHOOK_SIGNATURE_REQUIRED=True)
        tx = make_transaction(provider="bank")
        body = {"transactionId": str(tx.id), "status": "completed", "referenceNumber": "B1"}

        assert _webhook(client, "/webhooks/bank/transfer", body).status_code == 401

    def test_bank_transfer(self, client, make_transaction):
        tx = make_transaction(provider="bank")
        response = _webhook(client, "/webhooks/bank/transfer", {
            "transactionId": str(tx.id), "status": "completed", "referenceNumber": "B1",
        })
        assert response.status_code == 200
        assert response.json()["message"] == "Bank transfer processed successfully"
        assert response.json()["data"]["reference"] == "B1"
