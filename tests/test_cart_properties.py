"""Property-based tests for CartService using Hypothesis.

Random sequences of add/remove/decrease must keep the cart's derived
values (item count, total) consistent with a plain model of the lines.
"""

from decimal import Decimal

from hypothesis import settings, strategies as st
from hypothesis.stateful import RuleBasedStateMachine, invariant, rule

from storefront.cart import CartService
from storefront.models import Clothing, Electronics

PRODUCTS = [
    Electronics(1, "Laptop", "9999.00", "Dell", 24),
    Electronics(2, "Smartphone", "6999.99", "Samsung", 12),
    Electronics(3, "Cable", "0.05", "Generic", 0),
    Clothing(4, "Caftan", "1200.00", "M", "Silk"),
    Clothing(5, "Socks", "0.00", "42", "Cotton"),
    Clothing(6, "Jeans", "350.10", "L", "Denim"),
]

products = st.sampled_from(PRODUCTS)
product_ids = st.sampled_from([p.id for p in PRODUCTS] + [99])


class CartMachine(RuleBasedStateMachine):
    def __init__(self):
        super().__init__()
        self.cart = CartService()
        self.model: dict[int, int] = {}
        self.prices = {p.id: p.price for p in PRODUCTS}

    @rule(item=products)
    def add(self, item):
        self.cart.add_item(item)
        self.model[item.id] = self.model.get(item.id, 0) + 1

    @rule(item_id=product_ids)
    def remove(self, item_id):
        self.cart.remove_item(item_id)
        self.model.pop(item_id, None)

    @rule(item_id=product_ids)
    def decrease(self, item_id):
        self.cart.decrease_quantity(item_id)
        if item_id in self.model:
            self.model[item_id] -= 1
            if self.model[item_id] == 0:
                del self.model[item_id]

    @rule()
    def clear(self):
        self.cart.clear()
        self.model.clear()
        assert self.cart.is_empty()

    @invariant()
    def item_count_matches(self):
        assert self.cart.total_item_count() == sum(self.model.values())
        assert self.cart.total_item_count() == sum(l.quantity for l in self.cart.lines())

    @invariant()
    def total_matches(self):
        expected = sum(
            (self.prices[item_id] * qty for item_id, qty in self.model.items()), Decimal("0")
        )
        assert self.cart.total() == expected

    @invariant()
    def quantities_positive(self):
        for line in self.cart.lines():
            assert line.quantity >= 1
            assert self.model[line.item.id] == line.quantity

    @invariant()
    def emptiness_matches(self):
        assert self.cart.is_empty() == (not self.model)


CartMachine.TestCase.settings = settings(max_examples=50, stateful_step_count=30, deadline=None)
TestCartMachine = CartMachine.TestCase
