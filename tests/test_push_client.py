from datetime import datetime, timezone

import pytest
import requests

from dispatch.models import OfferPayload
from notifications import push_client
from notifications.push_client import NotificationDeliveryError, PushGatewayNotifier


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


@pytest.fixture
def payload():
    return OfferPayload(
        attempt_id="att-1",
        order_id="O1",
        pickup=(6.45, 3.40),
        destination=(6.465, 3.42),
        distance_to_pickup_km=1.234,
        delivery_distance_km=2.71,
        estimated_earnings=771.0,
        expires_at=datetime(2026, 3, 2, 12, 0, 30, tzinfo=timezone.utc),
    )


@pytest.fixture
def calls(monkeypatch):
    recorded = []

    def install(response):
        def fake_post(url, json=None, headers=None, timeout=None):
            recorded.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
            if isinstance(response, Exception):
                raise response
            return response
        monkeypatch.setattr(push_client.requests, "post", fake_post)
        return recorded

    return install


def test_offer_is_posted_to_rider_endpoint(calls, payload):
    recorded = calls(FakeResponse(200, {"delivered": True}))
    notifier = PushGatewayNotifier(base_url="https://push.test/", api_key="secret", timeout=3)

    assert notifier.notify_rider_of_offer("R1", "O1", payload) is True

    [call] = recorded
    assert call["url"] == "https://push.test/riders/R1/offers"
    assert call["json"]["type"] == "offer_extended"
    assert call["json"]["attempt_id"] == "att-1"
    assert call["json"]["distance_to_pickup_km"] == 1.23
    assert call["headers"]["Authorization"] == "Bearer secret"
    assert call["timeout"] == 3


def test_gateway_can_report_undelivered(calls, payload):
    calls(FakeResponse(200, {"delivered": False}))
    notifier = PushGatewayNotifier(base_url="https://push.test")

    assert notifier.notify_rider_of_offer("R1", "O1", payload) is False


def test_empty_body_counts_as_delivered(calls, payload):
    calls(FakeResponse(202, None))
    notifier = PushGatewayNotifier(base_url="https://push.test")

    assert notifier.notify_rider_of_offer("R1", "O1", payload) is True


@pytest.mark.parametrize("body", [["delivered"], "ok", 1])
def test_non_object_acknowledgement_is_a_delivery_error(calls, payload, body):
    calls(FakeResponse(200, body))
    notifier = PushGatewayNotifier(base_url="https://push.test")

    with pytest.raises(NotificationDeliveryError):
        notifier.notify_rider_of_offer("R1", "O1", payload)


@pytest.mark.parametrize("response", [
    FakeResponse(503, None, "unavailable"),
    requests.ConnectionError("connection refused"),
    requests.Timeout("read timeout"),
])
def test_transport_failures_raise_delivery_error(calls, payload, response):
    calls(response)
    notifier = PushGatewayNotifier(base_url="https://push.test")

    with pytest.raises(NotificationDeliveryError):
        notifier.notify_rider_of_offer("R1", "O1", payload)


def test_revoke_is_best_effort(calls):
    recorded = calls(FakeResponse(500, None, "boom"))
    notifier = PushGatewayNotifier(base_url="https://push.test")

    notifier.revoke_offer("R1", "O1", "offer expired")

    assert recorded[0]["url"] == "https://push.test/riders/R1/offers/O1/revoke"
    assert recorded[0]["json"]["reason"] == "offer expired"


def test_missing_gateway_url(monkeypatch):
    monkeypatch.delenv("PUSH_GATEWAY_URL", raising=False)

    with pytest.raises(ValueError):
        PushGatewayNotifier()
