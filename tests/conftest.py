# tests/conftest.py
import asyncio
import copy

import httpx
import pytest
from fastapi.testclient import TestClient

from vibe_backend.api.dependencies import Services
from vibe_backend.api.server import create_app
from vibe_backend.config import AppConfig
from vibe_backend.pipeline.appypay import ChargeRequest, IPaymentGateway
from vibe_backend.pipeline.brevo import BrevoClient
from vibe_backend.pipeline.mux import MuxClient
from vibe_backend.schemas.payments import CreatePaymentRequest
from vibe_backend.services.accounts import LocalIdentityProvider
from vibe_backend.services.notifications import INotifier
from vibe_backend.storage import InMemoryRecordStore

REFERENCE_RESPONSE = {
    "id": "chg_ref_1",
    "responseStatus": {
        "status": "Pending",
        "successful": True,
        "reference": {
            "referenceNumber": "987654321",
            "entity": "11424",
            "dueDate": "2026-10-22",
        },
    },
}

PUSH_RESPONSE = {
    "id": "chg_gpo_1",
    "responseStatus": {"status": "Pending", "successful": True},
}


# =====================================================================================
# Fakes
# =====================================================================================

class FakeGateway(IPaymentGateway):
    """Records charges; answers with a canned body or raises `error`."""

    def __init__(self, error=None):
        self.error = error
        self.charges: list[ChargeRequest] = []

    async def create_charge(self, charge):
        self.charges.append(charge)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(PUSH_RESPONSE if charge.method.value == "multicaixa" else REFERENCE_RESPONSE)


class RecordingNotifier(INotifier):
    def __init__(self):
        self.welcome = []
        self.pending = []

    async def send_welcome(self, email, name, password, dashboard_url):
        self.welcome.append({"email": email, "name": name, "password": password,
                             "dashboard_url": dashboard_url})
        return True

    async def send_payment_pending(self, email, name, reference, entity, amount, due_date=None):
        self.pending.append({"email": email, "name": name, "reference": reference,
                             "entity": entity, "amount": amount, "due_date": due_date})
        return True


def _unexpected(request: httpx.Request) -> httpx.Response:
    return httpx.Response(500, json={"error": f"unexpected call to {request.url.path}"})


def mock_client(handler=_unexpected, base_url="https://vendor.test") -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


# =====================================================================================
# Builders
# =====================================================================================

def payment_request(**overrides) -> CreatePaymentRequest:
    body = {
        "amount": 5000,
        "customerName": "Ana Silva",
        "customerEmail": "ana@example.com",
        "customerPhone": "923000000",
        "paymentMethod": "referencia",
        "courseId": "course-1",
    }
    body.update(overrides)
    return CreatePaymentRequest.model_validate(body)


def gateway_webhook(external_id, status, successful=True, **extra) -> dict:
    return {
        "merchantTransactionId": external_id,
        "responseStatus": {"status": status, "successful": successful},
        **extra,
    }


async def collect_events(stream, identifier, timeout=2.0) -> list:
    async def _drain():
        return [event async for event in stream.events(identifier) if event is not None]
    return await asyncio.wait_for(_drain(), timeout)


# =====================================================================================
# Fixtures
# =====================================================================================

@pytest.fixture
def config():
    cfg = AppConfig()
    cfg.payments.stream_keepalive_seconds = 0.05
    return cfg


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_services(config, gateway, notifier):
    def _make(brevo_handler=_unexpected, mux_handler=_unexpected, **overrides):
        params = {
            "store": InMemoryRecordStore(),
            "identity": LocalIdentityProvider(),
            "gateway": gateway,
            "notifier": notifier,
            "brevo": BrevoClient(config.brevo, client=mock_client(brevo_handler)),
            "mux": MuxClient(config.mux, client=mock_client(mux_handler)),
        }
        params.update(overrides)
        return Services.build(config, **params)
    return _make


@pytest.fixture
def services(make_services):
    return make_services()


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client
