"""Cart state for one browser session.

``CartStore`` owns a single ``Cart`` value. It is loaded lazily from a
persistence slot, and every mutation computes the new cart, writes it back
to the slot once and then notifies every subscriber once, in that order,
before returning.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from printshop.catalog import PaperType, PrintSize, calculate_price

logger = logging.getLogger(__name__)

CART_STORAGE_KEY = "mh-photography-cart"
SCHEMA_VERSION = 1

Subscriber = Callable[["Cart"], None]


class InvalidQuantity(ValueError):
    pass


class MalformedCartState(ValueError):
    pass


def make_item_key(product_id: str, size: PrintSize, paper: PaperType) -> str:
    return f"{product_id}-{size.id}-{paper.id}"


# -------------------------
# Model
# -------------------------
@dataclass(frozen=True)
class CartItem:
    key: str
    product_id: str
    title: str
    image_url: str
    size: PrintSize
    paper: PaperType
    quantity: int
    price: int  # unit price captured when the line was added

    @property
    def line_total(self) -> int:
        return self.price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.key,
            "productId": self.product_id,
            "title": self.title,
            "imageUrl": self.image_url,
            "size": {
                "id": self.size.id,
                "name": self.size.name,
                "dimensions": self.size.dimensions,
                "price": self.size.price,
                "description": self.size.description,
            },
            "paper": {
                "id": self.paper.id,
                "name": self.paper.name,
                "description": self.paper.description,
                "priceMultiplier": self.paper.price_multiplier,
            },
            "quantity": self.quantity,
            "price": self.price,
        }


@dataclass(frozen=True)
class Cart:
    items: Tuple[CartItem, ...] = ()

    @classmethod
    def empty(cls) -> "Cart":
        return cls(())

    @property
    def total(self) -> int:
        return sum(item.price * item.quantity for item in self.items)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def find(self, key: str) -> Optional[CartItem]:
        for item in self.items:
            if item.key == key:
                return item
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "itemCount": self.item_count,
        }


# -------------------------
# Serialization
# -------------------------
def dump_cart(cart: Cart) -> str:
    payload = {"schemaVersion": SCHEMA_VERSION}
    payload.update(cart.to_dict())
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def _require(mapping: Any, field: str, kinds) -> Any:
    if not isinstance(mapping, dict) or field not in mapping:
        raise MalformedCartState(f"missing field {field!r}")
    value = mapping[field]
    # bool is an int subclass; never accept it for numeric fields
    if isinstance(value, bool) or not isinstance(value, kinds):
        raise MalformedCartState(f"field {field!r} has type {type(value).__name__}")
    return value


def _load_item(raw: Any) -> CartItem:
    size_raw = _require(raw, "size", dict)
    paper_raw = _require(raw, "paper", dict)
    size = PrintSize(
        id=_require(size_raw, "id", str),
        name=_require(size_raw, "name", str),
        dimensions=_require(size_raw, "dimensions", str),
        price=_require(size_raw, "price", int),
        description=_require(size_raw, "description", str),
    )
    paper = PaperType(
        id=_require(paper_raw, "id", str),
        name=_require(paper_raw, "name", str),
        description=_require(paper_raw, "description", str),
        price_multiplier=float(_require(paper_raw, "priceMultiplier", (int, float))),
    )
    item = CartItem(
        key=_require(raw, "id", str),
        product_id=_require(raw, "productId", str),
        title=_require(raw, "title", str),
        image_url=_require(raw, "imageUrl", str),
        size=size,
        paper=paper,
        quantity=_require(raw, "quantity", int),
        price=_require(raw, "price", int),
    )
    if item.quantity < 1:
        raise MalformedCartState(f"item {item.key!r} has quantity {item.quantity}")
    if item.price < 0:
        raise MalformedCartState(f"item {item.key!r} has negative price")
    if item.key != make_item_key(item.product_id, size, paper):
        raise MalformedCartState(f"item key {item.key!r} does not match its configuration")
    return item


def load_cart(raw: str) -> Cart:
    """Parse a persisted cart. Raises ``MalformedCartState`` on anything unexpected."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedCartState(f"not JSON: {e}") from e

    version = _require(data, "schemaVersion", int)
    if version != SCHEMA_VERSION:
        raise MalformedCartState(f"unsupported schemaVersion {version}")

    items: List[CartItem] = []
    seen = set()
    for raw_item in _require(data, "items", list):
        item = _load_item(raw_item)
        if item.key in seen:
            raise MalformedCartState(f"duplicate item {item.key!r}")
        seen.add(item.key)
        items.append(item)

    cart = Cart(tuple(items))
    if _require(data, "total", int) != cart.total or _require(data, "itemCount", int) != cart.item_count:
        raise MalformedCartState("stored totals disagree with items")
    return cart


# -------------------------
# Store
# -------------------------
class CartStore:
    """Authoritative cart for one browser session.

    ``slot`` is any object with ``get(key) -> Optional[str]`` and
    ``set(key, value)``; see ``printshop.persistence``.
    """

    def __init__(self, slot, storage_key: str = CART_STORAGE_KEY):
        self.slot = slot
        self.storage_key = storage_key
        self._cart: Optional[Cart] = None
        self._subscribers: List[Subscriber] = []

    # ---------- observers ----------
    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a disposer that unregisters it."""
        self._subscribers.append(callback)

        def dispose() -> None:
            self.unsubscribe(callback)

        return dispose

    def unsubscribe(self, callback: Subscriber) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _notify(self, cart: Cart) -> None:
        for callback in list(self._subscribers):
            try:
                callback(cart)
            except Exception:
                logger.exception("Cart subscriber %r failed", callback)

    # ---------- state ----------
    def read(self) -> Cart:
        if self._cart is None:
            self._cart = self._load()
        return self._cart

    def _load(self) -> Cart:
        try:
            raw = self.slot.get(self.storage_key)
        except Exception:
            logger.exception("Could not read cart slot %r", self.storage_key)
            return Cart.empty()
        if raw is None:
            return Cart.empty()
        try:
            return load_cart(raw)
        except MalformedCartState as e:
            logger.warning("Discarding malformed cart state: %s", e)
            return Cart.empty()

    def _commit(self, cart: Cart) -> Cart:
        self._cart = cart
        try:
            self.slot.set(self.storage_key, dump_cart(cart))
        except Exception:
            logger.exception("Could not persist cart to slot %r", self.storage_key)
        self._notify(cart)
        return cart

    # ---------- mutations ----------
    def add(
        self,
        product_id: str,
        title: str,
        image_url: str,
        size: PrintSize,
        paper: PaperType,
        quantity: int = 1,
    ) -> Cart:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantity(f"quantity must be a positive integer, got {quantity!r}")

        cart = self.read()
        key = make_item_key(product_id, size, paper)
        existing = cart.find(key)

        if existing is not None:
            items = tuple(
                replace(item, quantity=item.quantity + quantity) if item.key == key else item
                for item in cart.items
            )
        else:
            new_item = CartItem(
                key=key,
                product_id=product_id,
                title=title,
                image_url=image_url,
                size=size,
                paper=paper,
                quantity=quantity,
                price=calculate_price(size, paper),
            )
            items = cart.items + (new_item,)

        return self._commit(Cart(items))

    def set_quantity(self, key: str, quantity: int) -> Cart:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidQuantity(f"quantity must be an integer, got {quantity!r}")

        cart = self.read()
        if quantity <= 0:
            items = tuple(item for item in cart.items if item.key != key)
        else:
            items = tuple(
                replace(item, quantity=quantity) if item.key == key else item
                for item in cart.items
            )
        return self._commit(Cart(items))

    def remove(self, key: str) -> Cart:
        cart = self.read()
        return self._commit(Cart(tuple(item for item in cart.items if item.key != key)))

    def clear(self) -> Cart:
        return self._commit(Cart.empty())
