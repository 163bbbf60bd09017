# tests/test_vendors.py
import asyncio
import json

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from conftest import mock_client
from vibe_backend.config import AppyPayConfig, BrevoConfig, MuxConfig
from vibe_backend.errors import ServiceUnavailableError, UpstreamError, ValidationError
from vibe_backend.pipeline.appypay import AppyPayClient, ChargeRequest, extract_reference
from vibe_backend.pipeline.brevo import BrevoClient
from vibe_backend.pipeline.mux import MuxClient
from vibe_backend.schemas.payments import PaymentMethod
from vibe_backend.services.notifications import EmailNotifier, format_kwanza, render_payment_pending


# =====================================================================================
# AppyPay
# =====================================================================================

def appypay_config(**overrides) -> AppyPayConfig:
    values = dict(client_id="cid", client_secret="secret", resource="res",
                  base_url="https://gwy.test/v2.0", token_url="https://login.test/token",
                  gpo_method_id="gpo-1", ref_method_id="ref-1")
    values.update(overrides)
    return AppyPayConfig(**values)


def charge(method=PaymentMethod.REFERENCE, **overrides) -> ChargeRequest:
    values = dict(amount=5000, merchant_transaction_id="T26101908300501", method=method,
                  description="Vibe Coding - Curso c1", phone_number="923111222")
    values.update(overrides)
    return ChargeRequest(**values)


class AppyPayStub:
    def __init__(self, charge_status=200, charge_text=None, token_body=None):
        self.token_requests = 0
        self.charges = []
        self.charge_status = charge_status
        self.charge_text = charge_text
        self.token_body = token_body or {"access_token": "tok", "expires_in": 3600}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            self.token_requests += 1
            form = dict(httpx.QueryParams(request.content.decode()))
            assert form["grant_type"] == "client_credentials"
            assert form["resource"] == "res"
            return httpx.Response(200, json=self.token_body)
        self.charges.append(request)
        if self.charge_text is not None:
            return httpx.Response(self.charge_status, text=self.charge_text)
        if self.charge_status != 200:
            return httpx.Response(self.charge_status, json={"message": "Invalid phone"})
        return httpx.Response(200, json={"responseStatus": {
            "status": "Pending", "successful": True,
            "reference": {"referenceNumber": "987654321", "entity": "11424"},
        }})


def test_reference_charge_payload_and_token_cache():
    stub = AppyPayStub()
    client = AppyPayClient(appypay_config(), client=mock_client(stub))

    async def scenario():
        first = await client.create_charge(charge())
        await client.create_charge(charge(merchant_transaction_id="T26101908300502"))
        return first

    body = asyncio.run(scenario())
    assert stub.token_requests == 1
    assert extract_reference(body)["reference_number"] == "987654321"

    sent = stub.charges[0]
    assert str(sent.url) == "https://gwy.test/v2.0/charges"
    assert sent.headers["Authorization"] == "Bearer tok"
    assert sent.headers["Accept-Language"] == "pt-PT"
    payload = json.loads(sent.content)
    assert payload["paymentMethod"] == "REF_ref-1"
    assert payload["merchantTransactionId"] == "T26101908300501"
    assert payload["amount"] == 5000
    assert "paymentInfo" not in payload


def test_push_charge_carries_phone_number():
    stub = AppyPayStub()
    client = AppyPayClient(appypay_config(), client=mock_client(stub))
    asyncio.run(client.create_charge(charge(PaymentMethod.MULTICAIXA)))

    payload = json.loads(stub.charges[0].content)
    assert payload["paymentMethod"] == "GPO_gpo-1"
    assert payload["paymentInfo"] == {"phoneNumber": "923111222"}


def test_rejected_charge_raises_upstream_error_with_details():
    client = AppyPayClient(appypay_config(), client=mock_client(AppyPayStub(charge_status=400)))
    with pytest.raises(UpstreamError) as exc:
        asyncio.run(client.create_charge(charge()))
    assert exc.value.message == "Payment provider error"
    assert exc.value.details == {"message": "Invalid phone"}
    assert exc.value.status_code == 502


def test_unreadable_charge_answer_is_an_upstream_error():
    stub = AppyPayStub(charge_text="<html>maintenance</html>")
    client = AppyPayClient(appypay_config(), client=mock_client(stub))
    with pytest.raises(UpstreamError) as exc:
        asyncio.run(client.create_charge(charge()))
    assert exc.value.status_code == 502
    assert "maintenance" in exc.value.details


def test_token_answer_without_access_token_is_an_upstream_error():
    stub = AppyPayStub(token_body={"token_type": "Bearer"})
    client = AppyPayClient(appypay_config(), client=mock_client(stub))
    with pytest.raises(UpstreamError) as exc:
        asyncio.run(client.create_charge(charge()))
    assert exc.value.message == "Invalid token response from AppyPay"
    assert stub.charges == []


def test_missing_method_id_is_a_configuration_error():
    client = AppyPayClient(appypay_config(ref_method_id=""), client=mock_client(AppyPayStub()))
    with pytest.raises(UpstreamError) as exc:
        asyncio.run(client.create_charge(charge()))
    assert exc.value.status_code == 500


# =====================================================================================
# Brevo + notifications
# =====================================================================================

def test_format_kwanza():
    assert format_kwanza(5000) == "5.000 Kz"
    assert format_kwanza(1234567.5) == "1.234.567,50 Kz"


def test_payment_pending_template_escapes_input():
    html = render_payment_pending("<Ana>", "11424", "987654321", 5000, "2026-10-25")
    assert "&lt;Ana&gt;" in html
    assert "5.000 Kz" in html
    assert "2026-10-25" in html


def test_notifier_skips_when_brevo_not_configured():
    notifier = EmailNotifier(BrevoClient(BrevoConfig(), client=mock_client()))
    assert asyncio.run(notifier.send_welcome("a@example.com", "Ana", "vibeana@1234", "https://x")) is False


def test_notifier_sends_welcome_through_brevo():
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        return httpx.Response(201, json={"messageId": "<m1>"})

    notifier = EmailNotifier(BrevoClient(BrevoConfig(api_key="xkeysib-1"), client=mock_client(handler)))
    assert asyncio.run(notifier.send_welcome("a@example.com", "Ana", "vibeana@1234", "https://x")) is True

    [payload] = sent
    assert payload["to"] == [{"email": "a@example.com", "name": "Ana"}]
    assert payload["subject"] == "🎉 Bem-vindo à Vibe Coding!"
    assert "vibeana@1234" in payload["htmlContent"]
    assert payload["sender"] == {"email": "noreply@vibecoding.com", "name": "Vibe Coding"}


def test_notifier_reports_brevo_failure_without_raising():
    notifier = EmailNotifier(BrevoClient(
        BrevoConfig(api_key="xkeysib-1"),
        client=mock_client(lambda request: httpx.Response(401, json={"code": "unauthorized"})),
    ))
    assert asyncio.run(notifier.send_payment_pending("a@example.com", "Ana", "1", "11424", 10)) is False


def test_placeholder_api_key_counts_as_unconfigured():
    assert BrevoConfig(api_key="your_brevo_api_key_here").configured is False


def test_sms_marked_marketing_when_it_carries_stop_code():
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        return httpx.Response(201, json={"messageId": 42})

    brevo = BrevoClient(BrevoConfig(api_key="k"), client=mock_client(handler))
    asyncio.run(brevo.send_sms("+244923000000", "Promo! [STOP CODE]"))
    asyncio.run(brevo.send_sms("+244923000000", "Código 1234", sender="Vibe"))

    assert [p["type"] for p in sent] == ["marketing", "transactional"]
    assert sent[0]["sender"] == "VibeCoding"
    assert sent[1]["sender"] == "Vibe"


# =====================================================================================
# Mux
# =====================================================================================

@pytest.fixture(scope="module")
def rsa_keys():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    return private_pem, key.public_key()


def test_playback_token_is_rs256_signed(rsa_keys):
    private_pem, public_key = rsa_keys
    mux = MuxClient(MuxConfig(token_id="t", token_secret="s", signing_key_id="kid-1",
                              private_key=private_pem), client=mock_client())

    token = mux.sign_playback_token("play-1", "thumbnail", expires_in_seconds=60)
    assert jwt.get_unverified_header(token)["kid"] == "kid-1"
    claims = jwt.decode(token, public_key, algorithms=["RS256"], audience="t")
    assert claims["sub"] == "play-1"


def test_playback_token_accepts_base64_key(rsa_keys):
    import base64

    private_pem, public_key = rsa_keys
    encoded = base64.b64encode(private_pem.encode()).decode()
    mux = MuxClient(MuxConfig(signing_key_id="kid-1", private_key=encoded), client=mock_client())
    claims = jwt.decode(mux.sign_playback_token("play-1"), public_key, algorithms=["RS256"], audience="v")
    assert claims["sub"] == "play-1"


def test_playback_token_errors():
    unsigned = MuxClient(MuxConfig(), client=mock_client())
    with pytest.raises(ServiceUnavailableError):
        unsigned.sign_playback_token("play-1")

    signing = MuxClient(MuxConfig(signing_key_id="k", private_key="-----BEGIN-----"), client=mock_client())
    with pytest.raises(ValidationError):
        signing.sign_playback_token("play-1", "poster")


def test_mux_requires_credentials():
    with pytest.raises(ServiceUnavailableError):
        asyncio.run(MuxClient(MuxConfig(), client=mock_client()).get_asset("a1"))


def test_mux_error_response_is_upstream_error():
    mux = MuxClient(MuxConfig(token_id="t", token_secret="s"),
                    client=mock_client(lambda request: httpx.Response(404, json={"error": "nope"})))
    with pytest.raises(UpstreamError) as exc:
        asyncio.run(mux.get_asset("a1"))
    assert exc.value.status_code == 500
