import base64
import json

import pytest

from donation_core.errors import GatewayTimeout


def place_order(client, headers, amount=1000, **extra):
    body = {
        "amount": amount,
        "donor_name": "Asha Rao",
        "donor_email": "asha@example.com",
        "donor_pan": "ABCPR1234F",
        **extra,
    }
    response = client.post("/api/donations/order", json=body, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


def complete_donation(client, headers, amount=1000, **extra):
    order = place_order(client, headers, amount, **extra)
    response = client.post(
        "/api/donations/verify",
        json={"order_id": order["order_id"], "gateway_payment_id": f"pay_{order['order_id']}", "signature": "sig"},
        headers=headers,
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestDonations:

    def test_checkout(self, client, gateway, donor_headers):
        gateway.fee = 2360
        order = place_order(client, donor_headers, amount="1000.00")

        assert order["amount"] == 100000
        assert order["status"] == "pending"
        assert order["order_id"] == gateway.orders[0].order_id

        response = client.post(
            "/api/donations/verify",
            json={"order_id": order["order_id"], "gateway_payment_id": "pay_1", "signature": "sig"},
            headers=donor_headers,
        )
        payment = response.json()
        assert response.status_code == 200
        assert payment["status"] == "completed"
        assert payment["net_amount"] == 97640
        assert payment["receipt_number"].startswith("HF-")

    def test_bad_signature(self, client, gateway, donor_headers):
        gateway.signature_ok = False
        order = place_order(client, donor_headers)

        response = client.post(
            "/api/donations/verify",
            json={"order_id": order["order_id"], "gateway_payment_id": "pay_1", "signature": "forged"},
            headers=donor_headers,
        )

        assert response.status_code == 403
        assert response.json()["error_code"] == "FORBIDDEN"

    def test_gateway_timeout_keeps_payment_pending_and_hides_detail(self, client, gateway, donor_headers):
        gateway.capture_error = GatewayTimeout("The payment provider did not respond in time", detail="read timeout=10")
        order = place_order(client, donor_headers)

        response = client.post(
            "/api/donations/verify",
            json={"order_id": order["order_id"], "gateway_payment_id": "pay_1", "signature": "sig"},
            headers=donor_headers,
        )

        assert response.status_code == 504
        assert response.json() == {
            "detail": "The payment provider did not respond in time",
            "error_code": "GATEWAY_TIMEOUT",
        }
        mine = client.get("/api/donations/mine", headers=donor_headers).json()
        assert [p["status"] for p in mine["items"]] == ["pending"]

    def test_sub_paisa_amount_rejected(self, client, donor_headers):
        response = client.post(
            "/api/donations/order",
            json={"amount": "10.005", "donor_name": "Asha Rao", "donor_email": "asha@example.com"},
            headers=donor_headers,
        )
        assert response.status_code == 422

    def test_missing_identity(self, client):
        assert client.get("/api/donations/mine").status_code == 422

    def test_unknown_role(self, client):
        response = client.get("/api/donations/mine", headers={"x-actor-id": "x", "x-actor-role": "root"})
        assert response.status_code == 403

    def test_fail_checkout(self, client, donor_headers):
        order = place_order(client, donor_headers)
        response = client.post(
            f"/api/donations/{order['payment_id']}/fail", json={"reason": "Closed the window"}, headers=donor_headers,
        )
        assert response.json()["status"] == "failed"

        again = client.post(f"/api/donations/{order['payment_id']}/fail", json={}, headers=donor_headers)
        assert again.status_code == 409
        assert again.json()["error_code"] == "INVALID_TRANSITION"

    def test_receipt(self, client, donor_headers):
        payment = complete_donation(client, donor_headers)

        response = client.get(f"/api/donations/{payment['id']}/receipt", headers=donor_headers)

        assert response.status_code == 200
        document = response.json()
        assert document["media_type"] == "text/html"
        html = base64.b64decode(document["content_base64"]).decode("utf-8")
        assert payment["receipt_number"] in html

    def test_receipt_for_pending_payment(self, client, donor_headers):
        order = place_order(client, donor_headers)
        response = client.get(f"/api/donations/{order['payment_id']}/receipt", headers=donor_headers)
        assert response.status_code == 409

    def test_receipt_of_someone_else(self, client, donor_headers):
        payment = complete_donation(client, donor_headers)
        stranger = {"x-actor-id": "donor-2", "x-actor-email": "ravi@example.com"}
        response = client.get(f"/api/donations/{payment['id']}/receipt", headers=stranger)
        assert response.status_code == 403

    def test_my_donations_are_scoped(self, client, donor_headers):
        complete_donation(client, donor_headers)
        other = {"x-actor-id": "donor-2", "x-actor-email": "ravi@example.com"}
        complete_donation(client, other, donor_name="Ravi", donor_email="ravi@example.com")

        mine = client.get("/api/donations/mine", headers=donor_headers).json()

        assert mine["total"] == 1
        assert mine["items"][0]["donor_email"] == "asha@example.com"


class TestAdmin:

    def test_donors_cannot_use_admin_routes(self, client, donor_headers):
        assert client.get("/api/admin/payments", headers=donor_headers).status_code == 403
        assert client.get("/api/admin/payments/stats", headers=donor_headers).status_code == 403

    def test_payments_and_stats(self, client, admin_headers, donor_headers):
        for _ in range(4):
            complete_donation(client, donor_headers, campaign_id="education")
        order = place_order(client, donor_headers, campaign_id="education")
        client.post(f"/api/donations/{order['payment_id']}/fail", json={}, headers=donor_headers)

        listing = client.get("/api/admin/payments", params={"campaign_id": "education", "limit": 2},
                             headers=admin_headers).json()
        stats = client.get("/api/admin/payments/stats", params={"campaign_id": "education"},
                           headers=admin_headers).json()

        assert listing["total"] == 5
        assert listing["pages"] == 3
        assert len(listing["items"]) == 2
        assert stats["count_by_status"]["completed"] == 4
        assert stats["success_rate"] == 80.0

    def test_refund_flow(self, client, admin_headers, donor_headers):
        payment = complete_donation(client, donor_headers, amount=1000)
        url = f"/api/admin/payments/{payment['id']}/refund"

        first = client.post(url, json={"amount": 900, "reason": "Partial"}, headers=admin_headers)
        second = client.post(url, json={"amount": 200, "reason": "Too much"}, headers=admin_headers)

        assert first.status_code == 200
        assert first.json()["refunded_amount"] == 90000
        assert first.json()["status"] == "completed"
        assert second.status_code == 422
        assert second.json()["error_code"] == "INVALID_AMOUNT"
        assert "admin_detail" in second.json()

        final = client.post(url, json={"amount": 100, "reason": "Rest"}, headers=admin_headers)
        assert final.json()["status"] == "refunded"

    def test_audit_trail(self, client, admin_headers, donor_headers):
        payment = complete_donation(client, donor_headers)

        trail = client.get(f"/api/admin/audit/payment/{payment['id']}", headers=admin_headers).json()
        verify = client.get(f"/api/admin/audit/payment/{payment['id']}/verify", headers=admin_headers).json()

        assert [e["action"] for e in trail] == ["PAYMENT_CREATED", "PAYMENT_COMPLETED"]
        assert verify["valid"] is True
        assert client.get("/api/admin/audit/session/1", headers=admin_headers).status_code == 404


class TestSubscriptions:

    def create(self, client, headers, **extra):
        body = {
            "amount": 500,
            "frequency": "monthly",
            "donor_name": "Asha Rao",
            "donor_email": "asha@example.com",
            "start_date": "2023-12-15",
            **extra,
        }
        response = client.post("/api/subscriptions", json=body, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    def test_create_and_pause(self, client, donor_headers):
        subscription = self.create(client, donor_headers)
        assert subscription["next_payment_date"] == "2024-01-15"

        response = client.patch(
            f"/api/subscriptions/{subscription['id']}/status", json={"status": "paused"}, headers=donor_headers,
        )
        assert response.json()["status"] == "paused"
        assert response.json()["next_payment_date"] is None

        mine = client.get("/api/subscriptions/mine", headers=donor_headers).json()
        assert mine["total"] == 1

    def test_minimum_amount(self, client, donor_headers):
        response = client.post("/api/subscriptions", json={
            "amount": 50, "donor_name": "Asha Rao", "donor_email": "asha@example.com",
        }, headers=donor_headers)
        assert response.status_code == 422
        assert response.json()["error_code"] == "INVALID_AMOUNT"

    def test_cancelled_is_terminal(self, client, donor_headers):
        subscription = self.create(client, donor_headers)
        url = f"/api/subscriptions/{subscription['id']}/status"

        client.patch(url, json={"status": "cancelled"}, headers=donor_headers)
        response = client.patch(url, json={"status": "active"}, headers=donor_headers)

        assert response.status_code == 409

    def test_run_due_twice(self, client, gateway, admin_headers, donor_headers):
        subscription = self.create(client, donor_headers)

        first = client.post("/api/admin/subscriptions/run-due", json={"as_of": "2024-01-15"}, headers=admin_headers)
        second = client.post("/api/admin/subscriptions/run-due", json={"as_of": "2024-01-15"}, headers=admin_headers)

        assert first.json()["charged"] == [subscription["id"]]
        assert second.json()["charged"] == []
        assert len(gateway.recurring) == 1

        listing = client.get("/api/admin/subscriptions", headers=admin_headers).json()
        assert listing["items"][0]["total_payments"] == 1
        assert listing["items"][0]["next_payment_date"] == "2024-02-15"

        stats = client.get("/api/admin/subscriptions/stats", headers=admin_headers).json()
        assert stats["total_collected"] == 50000

    def test_admin_can_cancel_any(self, client, admin_headers, donor_headers):
        subscription = self.create(client, donor_headers)
        response = client.patch(
            f"/api/admin/subscriptions/{subscription['id']}/status",
            json={"status": "cancelled", "reason": "Chargeback"}, headers=admin_headers,
        )
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancel_reason"] == "Chargeback"


class TestTaxCertificates:

    def test_issue_render_verify_cancel(self, client, admin_headers, donor_headers):
        payment = complete_donation(client, donor_headers, amount=1001)

        issued = client.post("/api/admin/tax-certificates", json={"payment_id": payment["id"]}, headers=admin_headers)
        assert issued.status_code == 201, issued.text
        cert = issued.json()
        assert cert["deductible_amount"] == 50100
        assert cert["status"] == "issued"

        listing = client.get("/api/admin/tax-certificates", headers=admin_headers).json()
        assert listing["total"] == 1

        document = client.get(f"/api/admin/tax-certificates/{cert['id']}/document", headers=admin_headers).json()
        html = base64.b64decode(document["content_base64"]).decode("utf-8")
        assert cert["verification_code"] in html

        public = client.get(f"/api/certificates/verify/{cert['verification_code']}")
        assert public.status_code == 200
        assert public.json()["valid"] is True
        assert public.json()["certificate"]["payment_id"] == payment["id"]

        cancelled = client.post(
            f"/api/admin/tax-certificates/{cert['id']}/cancel", json={"reason": "Wrong PAN"}, headers=admin_headers,
        )
        assert cancelled.json()["status"] == "cancelled"
        assert client.get(f"/api/certificates/verify/{cert['verification_code']}").json()["valid"] is False

    def test_missing_pan(self, client, admin_headers, donor_headers):
        payment = complete_donation(client, donor_headers, donor_pan=None)
        response = client.post("/api/admin/tax-certificates", json={"payment_id": payment["id"]}, headers=admin_headers)
        assert response.status_code == 422
        assert response.json()["error_code"] == "MISSING_TAX_INFO"

    def test_unknown_certificate(self, client, admin_headers):
        assert client.get("/api/admin/tax-certificates/99", headers=admin_headers).status_code == 404
        assert client.get("/api/certificates/verify/UNKNOWN").status_code == 404


class TestWebhooks:

    @pytest.fixture
    def pending_order(self, client, donor_headers):
        return place_order(client, donor_headers)

    def event(self, order_id, name="payment.captured"):
        return json.dumps({
            "event": name,
            "payload": {"payment": {"entity": {"id": "pay_hook", "order_id": order_id, "fee": 2360}}},
        })

    def test_invalid_signature(self, client, pending_order):
        response = client.post(
            "/api/webhooks/razorpay", content=self.event(pending_order["order_id"]),
            headers={"x-razorpay-signature": "bad", "content-type": "application/json"},
        )
        assert response.status_code == 403

    def test_captured(self, client, pending_order):
        response = client.post(
            "/api/webhooks/razorpay", content=self.event(pending_order["order_id"]),
            headers={"x-razorpay-signature": "valid-signature", "content-type": "application/json"},
        )
        body = response.json()
        assert body["status"] == "processed"
        assert body["payment_status"] == "completed"

    def test_failed_attempt_leaves_order_open(self, client, pending_order):
        response = client.post(
            "/api/webhooks/razorpay", content=self.event(pending_order["order_id"], "payment.failed"),
            headers={"x-razorpay-signature": "valid-signature", "content-type": "application/json"},
        )
        assert response.json()["payment_status"] == "pending"

        response = client.post(
            "/api/webhooks/razorpay", content=self.event(pending_order["order_id"]),
            headers={"x-razorpay-signature": "valid-signature", "content-type": "application/json"},
        )
        assert response.json()["payment_status"] == "completed"

    def test_unmatched_capture_is_acknowledged(self, client, donor_headers):
        donation = complete_donation(client, donor_headers)

        response = client.post(
            "/api/webhooks/razorpay", content=self.event(donation["order_id"]),
            headers={"x-razorpay-signature": "valid-signature", "content-type": "application/json"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "reconciliation_required"
        assert body["payment_status"] == "completed"

    def test_unhandled_event(self, client, pending_order):
        response = client.post(
            "/api/webhooks/razorpay", content=self.event(pending_order["order_id"], "refund.created"),
            headers={"x-razorpay-signature": "valid-signature", "content-type": "application/json"},
        )
        assert response.json() == {"status": "ignored", "event": "refund.created"}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
