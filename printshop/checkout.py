from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import stripe

from printshop.cart import CartItem

logger = logging.getLogger(__name__)

SHIPPING_COUNTRIES = ["US", "CA", "GB", "AU"]


class CheckoutError(Exception):
    pass


class EmptyCart(CheckoutError):
    pass


class WebhookError(Exception):
    pass


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


def build_line_items(items: Sequence[CartItem], currency: str = "usd") -> List[Dict[str, Any]]:
    """Convert cart items to Stripe Checkout line_items."""
    line_items: List[Dict[str, Any]] = []
    for item in items:
        product_data: Dict[str, Any] = {
            "name": item.title,
            "description": f"{item.size.name} ({item.size.dimensions}) on {item.paper.name}",
            "metadata": {
                "productId": item.product_id,
                "size": item.size.id,
                "paper": item.paper.id,
            },
        }
        # Stripe only accepts publicly reachable image URLs
        if re.match(r"^https?://", item.image_url or ""):
            product_data["images"] = [item.image_url]

        line_items.append(
            {
                "quantity": int(item.quantity),
                "price_data": {
                    "currency": currency,
                    "unit_amount": int(round(item.price * 100)),
                    "product_data": product_data,
                },
            }
        )
    return line_items


def create_checkout_session(
    items: Sequence[CartItem],
    site_url: str,
    currency: str = "usd",
) -> CheckoutSession:
    """Create a hosted Stripe Checkout session for ``items``.

    The items are passed through verbatim; the cart itself is never touched
    here, so a failure leaves it as it was.
    """
    if not items:
        raise EmptyCart("No items in cart")

    base_url = site_url.rstrip("/")
    try:
        cs = stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            line_items=build_line_items(items, currency),
            success_url=base_url + "/success?session_id={CHECKOUT_SESSION_ID}",
            cancel_url=base_url + "/cart",
            shipping_address_collection={"allowed_countries": SHIPPING_COUNTRIES},
            metadata={"orderType": "photography_prints"},
        )
    except stripe.StripeError as e:
        logger.error("Checkout session creation failed: %s", e)
        raise CheckoutError("Failed to create checkout session") from e

    url = getattr(cs, "url", None)
    if not url:
        raise CheckoutError("Stripe did not return a checkout URL")
    logger.info("Created checkout session %s for %d line(s)", cs.id, len(items))
    return CheckoutSession(id=cs.id, url=url)


def verify_paid_session(session_id: str) -> bool:
    """True when the Checkout session exists and is paid."""
    try:
        cs = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        logger.warning("Could not retrieve checkout session %s: %s", session_id, e)
        raise CheckoutError("Invalid session_id") from e
    return getattr(cs, "payment_status", None) == "paid"


def parse_webhook(payload: bytes, signature: Optional[str], secret: str):
    if not signature:
        raise WebhookError("No signature provided")
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.error("Webhook signature verification failed: %s", e)
        raise WebhookError("Invalid signature") from e


def _get(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    try:
        return obj[name]
    except (KeyError, TypeError, IndexError):
        return getattr(obj, name, default)


def handle_event(event: Any) -> Optional[Dict[str, Any]]:
    """Log a verified webhook event.

    Returns the order summary for a paid ``checkout.session.completed``
    event, otherwise ``None``. Orders are not stored.
    """
    event_type = _get(event, "type")
    obj = _get(_get(event, "data"), "object")

    if event_type == "checkout.session.completed":
        details = _get(obj, "customer_details")
        order = {
            "sessionId": _get(obj, "id"),
            "customerEmail": _get(details, "email"),
            "customerName": _get(details, "name"),
            "amountTotal": _get(obj, "amount_total"),
            "paymentStatus": _get(obj, "payment_status"),
            "orderDate": datetime.now(timezone.utc).isoformat(),
        }
        logger.info("Payment successful: %s", order)
        if order["paymentStatus"] == "paid":
            logger.info("Order confirmed: %s", order["sessionId"])
            return order
        return None

    if event_type == "payment_intent.succeeded":
        logger.info("PaymentIntent succeeded: %s", _get(obj, "id"))
    elif event_type == "payment_intent.payment_failed":
        logger.warning("PaymentIntent failed: %s", _get(obj, "id"))
    else:
        logger.info("Unhandled event type: %s", event_type)
    return None
