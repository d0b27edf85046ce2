import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import stripe

from printshop.cart import CartStore
from printshop.catalog import get_paper, get_size
from printshop.checkout import (
    SHIPPING_COUNTRIES,
    CheckoutError,
    EmptyCart,
    WebhookError,
    build_line_items,
    create_checkout_session,
    handle_event,
    parse_webhook,
    verify_paid_session,
)
from printshop.persistence import MemorySlot

WEBHOOK_SECRET = "whsec_test_secret"


def sign(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    ts = int(time.time())
    mac = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def sample_cart():
    store = CartStore(MemorySlot())
    store.add("prints/cliff-01.jpg", "Cliff 01", "/media/prints/cliff-01.jpg",
              get_size("medium"), get_paper("metallic"), 2)
    store.add("prints/dunes.jpg", "Dunes", "https://cdn.test/prints/dunes.jpg",
              get_size("large"), get_paper("canvas"), 1)
    return store


class TestLineItems:

    def test_build_line_items(self):
        items = sample_cart().read().items
        line_items = build_line_items(items, "usd")

        first, second = line_items
        assert first["quantity"] == 2
        assert first["price_data"]["unit_amount"] == 16300
        assert first["price_data"]["currency"] == "usd"
        product = first["price_data"]["product_data"]
        assert product["name"] == "Cliff 01"
        assert product["description"] == 'Medium (16" × 20") on Metallic Print'
        assert product["metadata"] == {
            "productId": "prints/cliff-01.jpg",
            "size": "medium",
            "paper": "metallic",
        }
        # relative urls are not reachable by Stripe
        assert "images" not in product

        assert second["price_data"]["unit_amount"] == 29300
        assert second["price_data"]["product_data"]["images"] == ["https://cdn.test/prints/dunes.jpg"]


class TestCreateSession:

    def setup_method(self):
        self.calls = []

    def test_creates_session(self, monkeypatch):
        def fake_create(**kwargs):
            self.calls.append(kwargs)
            return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/pay/cs_test_1")

        monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
        session = create_checkout_session(sample_cart().read().items, "http://shop.test/")

        assert session.id == "cs_test_1"
        assert session.url.startswith("https://checkout.stripe.com/")
        kwargs = self.calls[0]
        assert kwargs["mode"] == "payment"
        assert kwargs["success_url"] == "http://shop.test/success?session_id={CHECKOUT_SESSION_ID}"
        assert kwargs["cancel_url"] == "http://shop.test/cart"
        assert kwargs["shipping_address_collection"] == {"allowed_countries": SHIPPING_COUNTRIES}
        assert kwargs["metadata"] == {"orderType": "photography_prints"}
        assert len(kwargs["line_items"]) == 2

    def test_empty_cart(self, monkeypatch):
        monkeypatch.setattr(stripe.checkout.Session, "create", lambda **kw: self.calls.append(kw))
        with pytest.raises(EmptyCart):
            create_checkout_session((), "http://shop.test")
        assert self.calls == []

    def test_stripe_failure_leaves_cart_unchanged(self, monkeypatch):
        def fake_create(**kwargs):
            raise stripe.StripeError("card network down")

        monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
        store = sample_cart()
        before = store.read()
        with pytest.raises(CheckoutError):
            create_checkout_session(before.items, "http://shop.test")
        assert store.read() == before

    def test_missing_url(self, monkeypatch):
        monkeypatch.setattr(
            stripe.checkout.Session, "create", lambda **kw: SimpleNamespace(id="cs_1", url=None)
        )
        with pytest.raises(CheckoutError):
            create_checkout_session(sample_cart().read().items, "http://shop.test")


class TestVerifyPaidSession:

    def test_paid(self, monkeypatch):
        monkeypatch.setattr(
            stripe.checkout.Session, "retrieve", lambda sid: SimpleNamespace(id=sid, payment_status="paid")
        )
        assert verify_paid_session("cs_test_1") is True

    def test_unpaid(self, monkeypatch):
        monkeypatch.setattr(
            stripe.checkout.Session, "retrieve", lambda sid: SimpleNamespace(id=sid, payment_status="unpaid")
        )
        assert verify_paid_session("cs_test_1") is False

    def test_unknown_session(self, monkeypatch):
        def fake_retrieve(sid):
            raise stripe.InvalidRequestError("No such checkout.session", "id")

        monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
        with pytest.raises(CheckoutError):
            verify_paid_session("cs_missing")


class TestWebhook:

    payload = json.dumps(
        {
            "id": "evt_test_1",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_test_1",
                    "object": "checkout.session",
                    "payment_status": "paid",
                    "amount_total": 16300,
                    "customer_details": {"email": "buyer@example.com", "name": "Buyer"},
                }
            },
        }
    )

    def test_valid_signature(self):
        event = parse_webhook(self.payload.encode(), sign(self.payload), WEBHOOK_SECRET)
        order = handle_event(event)
        assert order["sessionId"] == "cs_test_1"
        assert order["customerEmail"] == "buyer@example.com"
        assert order["amountTotal"] == 16300

    def test_missing_signature(self):
        with pytest.raises(WebhookError):
            parse_webhook(self.payload.encode(), None, WEBHOOK_SECRET)

    def test_bad_signature(self):
        with pytest.raises(WebhookError):
            parse_webhook(self.payload.encode(), sign(self.payload, "whsec_other"), WEBHOOK_SECRET)

    def test_unpaid_completion_is_not_an_order(self):
        event = {
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_2", "payment_status": "unpaid"}},
        }
        assert handle_event(event) is None

    @pytest.mark.parametrize(
        "event_type",
        ["payment_intent.succeeded", "payment_intent.payment_failed", "customer.created"],
    )
    def test_other_events_are_logged_only(self, event_type):
        assert handle_event({"type": event_type, "data": {"object": {"id": "pi_1"}}}) is None
