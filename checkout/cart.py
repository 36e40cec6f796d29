# checkout/cart.py
"""
Cart store with pluggable persistence and change broadcast.

``CartStore`` knows nothing about HTTP. It talks to a storage adapter
(``load() -> list[dict]``, ``save(list[dict])``) and announces every change on
a channel (``publish(state)``, ``subscribe(callback)``) so other consumers of
the same cart (another tab's session view, a mini-cart cache) stay in sync.
"""
import logging
from dataclasses import dataclass, replace
from decimal import Decimal

from django.dispatch import Signal

from storefront.exceptions import NotFound, ValidationFailed

from .pricing import ZERO, to_money

logger = logging.getLogger(__name__)

cart_changed = Signal()


@dataclass(frozen=True)
class CartItem:
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int = 1
    image: str = ""
    size: str = ""
    color: str = ""

    def __post_init__(self):
        if self.quantity < 1:
            raise ValidationFailed("Quantity must be at least 1", fields={"quantity": "invalid"})
        if self.unit_price < 0:
            raise ValidationFailed("Price cannot be negative", fields={"unitPrice": "invalid"})

    @property
    def key(self):
        return f"{self.product_id}:{self.size}:{self.color}"

    @property
    def line_total(self):
        return self.unit_price * self.quantity

    def to_dict(self):
        return {
            "key": self.key,
            "productId": self.product_id,
            "name": self.name,
            "image": self.image,
            "size": self.size,
            "color": self.color,
            "unitPrice": str(self.unit_price),
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, data):
        try:
            quantity = int(data.get("quantity", 1))
            unit_price = to_money(data.get("unitPrice", data.get("price")))
        except (TypeError, ValueError):
            raise ValidationFailed("Invalid cart item")
        product_id = str(data.get("productId") or data.get("id") or "").strip()
        if not product_id:
            raise ValidationFailed("productId is required", fields={"productId": "required"})
        return cls(
            product_id=product_id,
            name=str(data.get("name") or ""),
            unit_price=unit_price,
            quantity=quantity,
            image=str(data.get("image") or ""),
            size=str(data.get("size") or ""),
            color=str(data.get("color") or ""),
        )


class SessionCartStorage:
    """Persists the cart in the Django session under ``cart``."""

    SESSION_KEY = "cart"

    def __init__(self, session):
        self.session = session

    def load(self):
        return list(self.session.get(self.SESSION_KEY, []))

    def save(self, state):
        self.session[self.SESSION_KEY] = state
        self.session.modified = True


class MemoryCartStorage:
    def __init__(self, state=None):
        self.state = list(state or [])

    def load(self):
        return list(self.state)

    def save(self, state):
        self.state = list(state)


class SignalCartChannel:
    """Pub/sub over a Django signal, scoped to one cart owner."""

    def __init__(self, owner, signal=cart_changed):
        self.owner = owner
        self.signal = signal
        self._receivers = []

    def publish(self, state):
        self.signal.send(sender=self.__class__, owner=self.owner, state=state)

    def subscribe(self, callback):
        def receiver(sender, owner, state, **kwargs):
            if owner == self.owner:
                callback(state)

        # Strong reference: the closure would otherwise be garbage collected
        self.signal.connect(receiver, weak=False)
        self._receivers.append(receiver)
        return receiver

    def close(self):
        for receiver in self._receivers:
            self.signal.disconnect(receiver)
        self._receivers = []


class CartStore:
    def __init__(self, storage, channel=None):
        self.storage = storage
        self.channel = channel

    @property
    def items(self):
        return [CartItem.from_dict(data) for data in self.storage.load()]

    def _commit(self, items):
        state = [item.to_dict() for item in items]
        self.storage.save(state)
        if self.channel is not None:
            self.channel.publish(state)
        return items

    def add(self, item):
        """Add a line, or bump the quantity of an existing (product, size, color) line."""
        items = self.items
        for index, existing in enumerate(items):
            if existing.key == item.key:
                items[index] = replace(existing, quantity=existing.quantity + item.quantity)
                break
        else:
            items.append(item)
        logger.debug(f"Cart add {item.key} x{item.quantity}")
        return self._commit(items)

    def update_quantity(self, key, quantity):
        """A quantity of zero or less removes the line."""
        quantity = int(quantity)
        if quantity <= 0:
            return self.remove(key)
        items = self.items
        for index, existing in enumerate(items):
            if existing.key == key:
                items[index] = replace(existing, quantity=quantity)
                return self._commit(items)
        raise NotFound("Item not found in cart")

    def remove(self, key):
        items = self.items
        remaining = [item for item in items if item.key != key]
        if len(remaining) == len(items):
            raise NotFound("Item not found in cart")
        return self._commit(remaining)

    def clear(self):
        return self._commit([])

    def subtotal(self):
        return sum((item.line_total for item in self.items), ZERO)

    def count(self):
        return sum(item.quantity for item in self.items)

    def to_dict(self):
        items = self.items
        return {
            "items": [item.to_dict() for item in items],
            "count": sum(item.quantity for item in items),
            "subtotal": str(sum((item.line_total for item in items), ZERO)),
        }


def session_cart(request):
    """CartStore bound to the request's session."""
    if not request.session.session_key:
        request.session.save()
    channel = SignalCartChannel(owner=request.session.session_key)
    return CartStore(SessionCartStorage(request.session), channel)
