from __future__ import annotations

import base64
import json
from decimal import Decimal

import httpx
import pytest

from app.api.errors import AppError, ExternalGatewayError
from app.core.config import settings
from app.integrations import paymongo
from app.integrations.paymongo import PayMongoClient, compute_signature, parse_checkout_session, to_centavos


@pytest.fixture
def live(monkeypatch):
    monkeypatch.setattr(settings, "PAYMONGO_MOCK", False)
    monkeypatch.setattr(settings, "PAYMONGO_SECRET_KEY", "sk_test_123")


def _client(handler) -> PayMongoClient:
    return PayMongoClient(transport=httpx.MockTransport(handler))


def test_to_centavos_rounds_half_up():
    assert to_centavos(Decimal("112.00")) == 11200
    assert to_centavos(Decimal("0.005")) == 1
    assert to_centavos(Decimal("19.994")) == 1999


def test_create_checkout_session_request(live):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "data": {
                    "id": "cs_live_1",
                    "attributes": {"status": "active", "checkout_url": "https://checkout.paymongo.com/cs_live_1"},
                }
            },
        )

    result = _client(handler).create_checkout_session(
        line_items=[{"name": "Tile", "quantity": 2, "amount": Decimal("100.00")}],
        payment_method_types=["gcash"],
        description="Order ORD-1",
        reference_number="ORD-1",
        metadata={"order_id": "42", "order_number": "ORD-1"},
        billing={"name": "Juan", "email": "juan@example.com"},
    )

    assert result.id == "cs_live_1"
    assert result.checkout_url == "https://checkout.paymongo.com/cs_live_1"
    assert not result.paid
    assert seen["method"] == "POST"
    assert seen["url"] == "https://api.paymongo.com/v1/checkout_sessions"
    assert seen["auth"] == "Basic " + base64.b64encode(b"sk_test_123:").decode()

    attrs = seen["body"]["data"]["attributes"]
    assert attrs["line_items"] == [{"name": "Tile", "quantity": 2, "amount": 10000, "currency": "PHP"}]
    assert attrs["payment_method_types"] == ["gcash"]
    assert attrs["reference_number"] == "ORD-1"
    assert attrs["metadata"] == {"order_id": "42", "order_number": "ORD-1"}
    assert attrs["success_url"].endswith("?order_id=42")
    assert attrs["billing"] == {"name": "Juan", "email": "juan@example.com", "phone": ""}


def test_get_checkout_session_reports_paid_amount(live):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/checkout_sessions/cs_1")
        return httpx.Response(
            200,
            json={
                "data": {
                    "id": "cs_1",
                    "attributes": {
                        "status": "active",
                        "payment_intent": {"id": "pi_1"},
                        "payments": [
                            {"attributes": {"status": "paid", "amount": 6000}},
                            {"attributes": {"status": "failed", "amount": 9999}},
                            {"attributes": {"status": "paid", "amount": 5200}},
                        ],
                    },
                }
            },
        )

    result = _client(handler).get_checkout_session("cs_1")
    assert result.paid is True
    assert result.paid_amount == 11200
    assert result.payment_intent_id == "pi_1"


def test_payment_intent_round_trip(live):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            attrs = json.loads(request.content)["data"]["attributes"]
            assert attrs["amount"] == 11200
            assert attrs["payment_method_allowed"] == ["paymaya"]
            return httpx.Response(
                200,
                json={"data": {"id": "pi_1", "attributes": {"status": "awaiting_payment_method", "amount": 11200, "client_key": "pi_1_client_x"}}},
            )
        return httpx.Response(200, json={"data": {"id": "pi_1", "attributes": {"status": "succeeded", "amount": 11200}}})

    client = _client(handler)
    created = client.create_payment_intent(
        amount=Decimal("112.00"), payment_method_allowed=["paymaya"], description="d", metadata={}
    )
    fetched = client.get_payment_intent("pi_1")

    assert created.client_key == "pi_1_client_x"
    assert not created.paid
    assert fetched.paid


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"errors": [{"detail": "amount is invalid"}]}),
        httpx.Response(200, content=b"<html>"),
        httpx.Response(200, json={"data": {}}),
    ],
)
def test_gateway_errors_raise_external_gateway_error(live, response):
    with pytest.raises(ExternalGatewayError) as exc_info:
        _client(lambda request: response).get_checkout_session("cs_1")
    assert exc_info.value.status_code == 502


def test_transport_error_raises_external_gateway_error(live):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalGatewayError):
        _client(handler).get_payment_intent("pi_1")


def test_missing_secret_key(monkeypatch):
    monkeypatch.setattr(settings, "PAYMONGO_MOCK", False)
    monkeypatch.setattr(settings, "PAYMONGO_SECRET_KEY", None)
    with pytest.raises(AppError) as exc_info:
        PayMongoClient().get_checkout_session("cs_1")
    assert exc_info.value.code == 500401


def test_mock_mode_never_calls_the_network():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("network call in mock mode")

    client = _client(handler)
    result = client.create_checkout_session(
        line_items=[], payment_method_types=["gcash"], description="d", reference_number="r", metadata={}
    )
    assert result.id.startswith("cs_mock_")
    assert client.get_checkout_session(result.id).paid is False


# ============================================================================
# 签名校验
# ============================================================================

BODY = b'{"data": {"id": "evt_1"}}'
NOW = 1_700_000_000


def _header(secret: str, *, t: int = NOW, key: str = "te") -> str:
    return f"t={t},{key}={compute_signature(secret, str(t), BODY)}"


def test_signature_accepts_test_and_live_keys():
    client = PayMongoClient()
    secret = settings.PAYMONGO_WEBHOOK_SECRET
    assert client.verify_webhook_signature(BODY, _header(secret, key="te"), now=NOW)
    assert client.verify_webhook_signature(BODY, _header(secret, key="li"), now=NOW + 10)


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "te=abc",
        "t=abc,te=abc",
        _header("other-secret"),
        _header("whsec_test", t=NOW - 301),
        f"t={NOW},te=\u00e9\u00e9",
        f"t={NOW},li=\u00e9\u00e9,te=abc",
    ],
)
def test_signature_rejections(header):
    assert PayMongoClient().verify_webhook_signature(BODY, header, now=NOW) is False


def test_signature_rejects_tampered_body():
    header = _header(settings.PAYMONGO_WEBHOOK_SECRET)
    assert PayMongoClient().verify_webhook_signature(BODY + b" ", header, now=NOW) is False


def test_missing_webhook_secret_only_passes_locally(monkeypatch):
    monkeypatch.setattr(settings, "PAYMONGO_WEBHOOK_SECRET", None)
    assert PayMongoClient().verify_webhook_signature(BODY, None) is True

    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    assert PayMongoClient().verify_webhook_signature(BODY, None) is False


def test_get_paymongo_client_is_a_singleton(monkeypatch):
    monkeypatch.setattr(paymongo, "_client", None)
    assert paymongo.get_paymongo_client() is paymongo.get_paymongo_client()


def test_parse_checkout_session_tolerates_malformed_nested_fields():
    result = parse_checkout_session(
        {
            "attributes": {
                "payments": ["x", None, {"attributes": "oops"}, {"attributes": {"status": "paid", "amount": 500}}],
                "payment_intent": "pi_oops",
                "metadata": ["oops"],
            }
        }
    )
    assert result.id is None
    assert result.paid is True
    assert result.paid_amount == 500
    assert result.payment_intent_id is None
    assert result.metadata is None


def test_parse_checkout_session_with_non_object_attributes():
    result = parse_checkout_session({"id": "cs_1", "attributes": "oops"})
    assert result.id == "cs_1"
    assert result.status == "active"
    assert result.paid is False
