# tests/test_api.py
import json

from conftest import gateway_webhook

PAYMENT_BODY = {
    "amount": 5000,
    "customerName": "Ana Silva",
    "customerEmail": "ana@example.com",
    "paymentMethod": "referencia",
    "courseId": "course-1",
}


def sse_events(text: str) -> list:
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


def test_health_and_probes(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert "X-Request-ID" in r.headers
    assert "X-Response-Time-Ms" in r.headers
    assert client.get("/ready").json() == {"ready": True}
    assert client.get("/live").json() == {"live": True}
    assert client.get("/").json()["name"] == "Vibe Coding API"


def test_create_payment_returns_201_with_reference(client):
    r = client.post("/api/payments", json=PAYMENT_BODY)
    assert r.status_code == 201
    body = r.json()
    assert body["referenceCode"] == "987654321"
    assert body["entity"] == "11424"
    assert body["merchantTransactionId"].startswith("T")
    assert "appyResponse" in body


def test_create_payment_accepts_reference_method_name(client):
    r = client.post("/api/payments", json={**PAYMENT_BODY, "paymentMethod": "reference"})
    assert r.status_code == 201
    assert r.json()["referenceCode"] == "987654321"

    payment_id = r.json()["paymentId"]
    assert client.get(f"/api/payments/status/{payment_id}").status_code == 200


def test_create_payment_alias_route(client):
    r = client.post("/api/payments/create", json={**PAYMENT_BODY, "paymentMethod": "multicaixa",
                                                  "multicaixaPhone": "923111222"})
    assert r.status_code == 201
    assert r.json()["status"] == "processing"


def test_create_payment_missing_fields_is_400(client):
    r = client.post("/api/payments", json={"amount": 5000})
    assert r.status_code == 400
    assert r.json() == {"error": "Missing required fields"}


def test_malformed_body_is_400(client):
    r = client.post("/api/payments", json={**PAYMENT_BODY, "amount": "lots"})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid request"


def test_payment_status_lookup_by_either_id(client):
    created = client.post("/api/payments", json=PAYMENT_BODY).json()

    by_id = client.get(f"/api/payments/{created['paymentId']}")
    by_external = client.get(f"/api/payments/status/{created['merchantTransactionId']}")
    assert by_id.status_code == by_external.status_code == 200
    assert by_id.json() == by_external.json()
    assert by_id.json()["status"] == "pending"
    assert by_id.json()["amount"] == 5000

    missing = client.get("/api/payments/does-not-exist")
    assert missing.status_code == 404
    assert missing.json() == {"error": "Payment not found"}


def test_gateway_webhook_completes_payment(client, services, notifier):
    created = client.post("/api/payments", json=PAYMENT_BODY).json()

    r = client.post("/api/webhooks/gateway", json=gateway_webhook(created["merchantTransactionId"], "Paid"))
    assert r.status_code == 200
    assert r.text == "OK"

    again = client.post("/api/payments/webhook/appypay",
                        json=gateway_webhook(created["merchantTransactionId"], "Paid"))
    assert again.status_code == 200

    payment = client.get(f"/api/payments/{created['paymentId']}").json()
    assert payment["status"] == "completed"
    assert payment["paid_at"] is not None
    assert len(notifier.welcome) == 1


def test_gateway_webhook_errors(client):
    assert client.post("/api/webhooks/gateway", json={"responseStatus": {"status": "Paid"}}).status_code == 400
    assert client.post("/api/webhooks/gateway", json=gateway_webhook("T00000000000000", "Paid")).status_code == 404
    assert client.post("/api/webhooks/gateway", content=b"not json",
                       headers={"content-type": "application/json"}).status_code == 400


def test_legacy_confirmation_webhook(client):
    created = client.post("/api/payments", json=PAYMENT_BODY).json()
    r = client.post("/api/webhooks/appypay", json={"externalId": created["merchantTransactionId"],
                                                   "status": "paid"})
    assert r.status_code == 200
    assert r.json()["success"] is True

    again = client.post("/api/webhooks/appypay", json={"externalId": created["merchantTransactionId"],
                                                       "status": "confirmed"})
    assert again.json() == {"received": True, "message": "already processed"}


def test_subscribe_to_finished_payment_streams_status_then_final(client):
    created = client.post("/api/payments", json=PAYMENT_BODY).json()
    client.post("/api/webhooks/gateway", json=gateway_webhook(created["merchantTransactionId"], "Failed"))

    r = client.get(f"/api/payments/subscribe/{created['merchantTransactionId']}")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["cache-control"] == "no-cache"

    events = sse_events(r.text)
    assert [e["type"] for e in events] == ["connected", "status", "final"]
    assert events[-1]["status"] == "failed"


def test_subscribe_to_unknown_payment_reports_error(client):
    events = sse_events(client.get("/api/payments/subscribe/nope").text)
    assert events[-1] == {"type": "error", "error": "Payment not found"}
