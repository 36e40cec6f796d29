from decimal import Decimal

from django.test import SimpleTestCase

from checkout.cart import CartItem, CartStore, MemoryCartStorage, SignalCartChannel
from storefront.exceptions import NotFound, ValidationFailed


def shirt(quantity=1, size="M", color="white"):
    return CartItem(
        product_id="7",
        name="Linen Shirt",
        unit_price=Decimal("1000.00"),
        quantity=quantity,
        size=size,
        color=color,
    )


class CartStoreTests(SimpleTestCase):

    def setUp(self):
        self.storage = MemoryCartStorage()
        self.cart = CartStore(self.storage)

    def test_same_variant_merges(self):
        self.cart.add(shirt())
        self.cart.add(shirt(quantity=2))

        self.assertEqual(len(self.cart.items), 1)
        self.assertEqual(self.cart.count(), 3)
        self.assertEqual(self.cart.subtotal(), Decimal("3000.00"))

    def test_variants_are_separate_lines(self):
        self.cart.add(shirt(size="M"))
        self.cart.add(shirt(size="L"))
        self.cart.add(shirt(size="L", color="black"))

        self.assertEqual([item.key for item in self.cart.items], ["7:M:white", "7:L:white", "7:L:black"])

    def test_update_quantity(self):
        self.cart.add(shirt())
        self.cart.update_quantity("7:M:white", 4)
        self.assertEqual(self.cart.count(), 4)

        self.cart.update_quantity("7:M:white", 0)
        self.assertEqual(self.cart.items, [])

    def test_unknown_line(self):
        with self.assertRaises(NotFound):
            self.cart.update_quantity("nope", 2)
        with self.assertRaises(NotFound):
            self.cart.remove("nope")

    def test_clear(self):
        self.cart.add(shirt())
        self.cart.clear()
        self.assertEqual(self.storage.state, [])
        self.assertEqual(self.cart.to_dict(), {"items": [], "count": 0, "subtotal": "0.00"})

    def test_state_is_plain_data(self):
        self.cart.add(shirt(quantity=2))
        self.assertEqual(self.storage.state[0]["unitPrice"], "1000.00")
        self.assertEqual(self.storage.state[0]["quantity"], 2)

    def test_invalid_items(self):
        with self.assertRaises(ValidationFailed):
            shirt(quantity=0)
        with self.assertRaises(ValidationFailed):
            CartItem(product_id="7", name="x", unit_price=Decimal("-1"))
        with self.assertRaises(ValidationFailed):
            CartItem.from_dict({"productId": "7", "unitPrice": "abc"})
        with self.assertRaises(ValidationFailed):
            CartItem.from_dict({"unitPrice": "10"})


class CartChannelTests(SimpleTestCase):

    def test_changes_reach_subscribers_of_the_same_owner(self):
        storage = MemoryCartStorage()
        writer = CartStore(storage, SignalCartChannel(owner="session-a"))

        same_owner = SignalCartChannel(owner="session-a")
        other_owner = SignalCartChannel(owner="session-b")
        seen, unrelated = [], []
        same_owner.subscribe(seen.append)
        other_owner.subscribe(unrelated.append)
        self.addCleanup(same_owner.close)
        self.addCleanup(other_owner.close)

        writer.add(shirt())
        writer.clear()

        self.assertEqual(len(seen), 2)
        self.assertEqual(seen[0][0]["key"], "7:M:white")
        self.assertEqual(seen[1], [])
        self.assertEqual(unrelated, [])

    def test_closed_channel_stops_listening(self):
        writer = CartStore(MemoryCartStorage(), SignalCartChannel(owner="session-a"))
        listener = SignalCartChannel(owner="session-a")
        seen = []
        listener.subscribe(seen.append)
        listener.close()

        writer.add(shirt())
        self.assertEqual(seen, [])
