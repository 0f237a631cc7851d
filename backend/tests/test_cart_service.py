"""
Cart engine tests: totals recompute, item mutations, coupons, shipping and expiry.
"""

import random
from datetime import timedelta

import pytest

from storefront.errors import CouponError, InsufficientStockError, NotFoundError
from storefront.money import apply_bps
from storefront.services import cart_service, coupon_service, products_service
from storefront.time_utils import utcnow
from storefront.validation import ValidationError


def _expected_total(cart):
    return (
        sum(item.price_cents * item.quantity for item in cart_service.get_items(cart.id))
        + cart.total_tax_cents
        + cart.total_shipping_cents
        - cart.coupon_discount_cents
    )


def test_totals_scenario_with_shipping_and_coupon(store, make_product):
    """1000 x 2 + 500 x 1 at 10% tax, then shipping, then a discount."""
    a = make_product(store.id, price_cents=1000)
    b = make_product(store.id, price_cents=500)
    cart = cart_service.create_cart(store.id, user_id="u-1")

    cart_service.add_item(cart.id, a.id, 2, 1000)
    cart_service.add_item(cart.id, b.id, 1, 500)
    cart = cart_service.require_cart(cart.id)
    assert cart_service.subtotal_cents(cart.id) == 2500
    assert cart.total_tax_cents == 250
    assert cart.total_price_cents == 2750

    cart = cart_service.set_shipping(cart.id, 500)
    assert cart.total_price_cents == 3250

    cart = cart_service.apply_coupon(cart.id, "save3", 300)
    assert cart.coupon_code == "SAVE3"
    assert cart.total_price_cents == 2950


def test_tax_rounds_half_up_to_the_cent(make_store, make_product):
    store = make_store(tax_rate_bps=500)
    product = make_product(store.id, price_cents=105)
    cart = cart_service.create_cart(store.id, session_id="s-1")
    cart_service.add_item(cart.id, product.id, 1, 105)

    cart = cart_service.require_cart(cart.id)
    assert cart.total_tax_cents == 5
    assert cart.total_price_cents == 110


def test_totals_identity_holds_after_random_mutations(store, make_product):
    rng = random.Random(20261019)
    products = [make_product(store.id, price_cents=rng.randint(1, 5000)) for _ in range(4)]
    cart = cart_service.create_cart(store.id, user_id="u-rand")

    for _ in range(40):
        action = rng.choice(["add", "update", "remove", "shipping", "coupon"])
        items = cart_service.get_items(cart.id)
        if action == "add" or not items:
            product = rng.choice(products)
            cart_service.add_item(cart.id, product.id, rng.randint(1, 4), product.price_cents)
        elif action == "update":
            cart_service.update_item(rng.choice(items).id, rng.randint(0, 5))
        elif action == "remove":
            cart_service.remove_item(rng.choice(items).id)
        elif action == "shipping":
            cart_service.set_shipping(cart.id, rng.randint(0, 1500))
        else:
            cart_service.apply_coupon(cart.id, "RAND", rng.randint(0, 800))

        cart = cart_service.require_cart(cart.id)
        subtotal = cart_service.subtotal_cents(cart.id)
        assert cart.total_tax_cents == apply_bps(subtotal, store.tax_rate_bps)
        assert cart.total_price_cents == _expected_total(cart)


def test_update_item_to_zero_removes_line(store, make_product):
    product = make_product(store.id)
    cart = cart_service.create_cart(store.id, user_id="u-2")
    item = cart_service.add_item(cart.id, product.id, 3, 1000)

    assert cart_service.update_item(item.id, 0) is None
    assert cart_service.get_items(cart.id) == []
    cart = cart_service.require_cart(cart.id)
    assert cart.total_price_cents == 0
    assert cart.total_tax_cents == 0


def test_update_item_changes_quantity_and_totals(store, make_product):
    product = make_product(store.id)
    cart = cart_service.create_cart(store.id, user_id="u-3")
    item = cart_service.add_item(cart.id, product.id, 1, 1000)

    updated = cart_service.update_item(item.id, 4)
    assert updated.quantity == 4
    cart = cart_service.require_cart(cart.id)
    assert cart.total_price_cents == 4400


def test_add_item_rejects_non_positive_quantity(store, make_product):
    product = make_product(store.id)
    cart = cart_service.create_cart(store.id, user_id="u-4")
    with pytest.raises(ValidationError):
        cart_service.add_item(cart.id, product.id, 0, 1000)


def test_add_product_uses_catalog_price_and_checks_stock(store, make_product):
    product = make_product(store.id, price_cents=1234, stock_quantity=2)
    cart = cart_service.create_cart(store.id, user_id="u-5")

    item = cart_service.add_product(cart.id, product.id, 2)
    assert item.price_cents == 1234

    with pytest.raises(InsufficientStockError):
        cart_service.add_product(cart.id, product.id, 3)


def test_add_product_digital_ignores_stock(store, digital_product):
    cart = cart_service.create_cart(store.id, user_id="u-6")
    item = cart_service.add_product(cart.id, digital_product.id, 5)
    assert item.quantity == 5


def test_add_product_from_other_store_is_not_found(store, make_store, make_product):
    other = make_store()
    foreign = make_product(other.id)
    cart = cart_service.create_cart(store.id, user_id="u-7")
    with pytest.raises(NotFoundError):
        cart_service.add_product(cart.id, foreign.id, 1)


def test_add_product_uses_variant_price(store, make_product):
    product = make_product(store.id, price_cents=1000)
    variant = products_service.create_variant(product.id, {"name": "Large", "price_cents": 1500, "stock_quantity": 3})
    cart = cart_service.create_cart(store.id, user_id="u-8")

    item = cart_service.add_product(cart.id, product.id, 1, variant_id=variant.id)
    assert item.price_cents == 1500
    assert item.variant_id == variant.id


def test_clear_cart_resets_everything(store, make_product):
    product = make_product(store.id)
    cart = cart_service.create_cart(store.id, user_id="u-9")
    cart_service.add_item(cart.id, product.id, 2, 1000)
    cart_service.set_shipping(cart.id, 700)
    cart_service.apply_coupon(cart.id, "X", 100)

    cart = cart_service.clear_cart(cart.id)
    assert cart_service.get_items(cart.id) == []
    assert cart.total_price_cents == 0
    assert cart.total_tax_cents == 0
    assert cart.total_shipping_cents == 0
    assert cart.coupon_code is None
    assert cart.coupon_discount_cents == 0


def test_remove_coupon_restores_total(store, make_product):
    product = make_product(store.id)
    cart = cart_service.create_cart(store.id, user_id="u-10")
    cart_service.add_item(cart.id, product.id, 1, 1000)
    cart_service.apply_coupon(cart.id, "X", 100)

    cart = cart_service.remove_coupon(cart.id)
    assert cart.total_price_cents == 1100


def test_apply_coupon_code_computes_discount_server_side(store, make_product):
    product = make_product(store.id)
    coupon_service.create_coupon(store.id, {"code": "tenoff", "discount_type": "percentage", "discount_value": 1000})
    cart = cart_service.create_cart(store.id, user_id="u-11")
    cart_service.add_item(cart.id, product.id, 2, 1000)

    cart = cart_service.apply_coupon_code(cart.id, "TENOFF")
    assert cart.coupon_code == "TENOFF"
    assert cart.coupon_discount_cents == 200
    assert cart.total_price_cents == 2000 + 200 - 200


def test_apply_unknown_coupon_code_raises(store, make_product):
    cart = cart_service.create_cart(store.id, user_id="u-12")
    with pytest.raises(CouponError):
        cart_service.apply_coupon_code(cart.id, "NOPE")


def test_create_cart_requires_exactly_one_owner(store):
    with pytest.raises(ValidationError):
        cart_service.create_cart(store.id)
    with pytest.raises(ValidationError):
        cart_service.create_cart(store.id, user_id="u", session_id="s")


def test_create_cart_for_missing_store(db_session):
    with pytest.raises(NotFoundError):
        cart_service.create_cart(999, user_id="u")


def test_user_and_session_lookup_skip_expired_carts(store):
    now = utcnow()
    old = cart_service.create_cart(store.id, user_id="u-13", now=now - timedelta(days=40))
    fresh = cart_service.create_cart(store.id, user_id="u-13", now=now)
    session_cart = cart_service.create_cart(store.id, session_id="sess-13", now=now)

    assert cart_service.get_user_cart(store.id, "u-13").id == fresh.id
    assert cart_service.get_user_cart(store.id, "u-13", now=now + timedelta(days=31)) is None
    assert cart_service.get_session_cart(store.id, "sess-13").id == session_cart.id
    assert old.id != fresh.id


def test_delete_expired_carts_removes_carts_and_items(store, make_product):
    product = make_product(store.id)
    now = utcnow()
    stale = cart_service.create_cart(store.id, user_id="u-14", now=now - timedelta(days=31))
    cart_service.add_item(stale.id, product.id, 1, 1000)
    live = cart_service.create_cart(store.id, user_id="u-15", now=now)
    stale_id, live_id = stale.id, live.id

    assert cart_service.delete_expired_carts(now=now) == 1
    assert cart_service.get_cart(stale_id) is None
    assert cart_service.get_items(stale_id) == []
    assert cart_service.get_cart(live_id) is not None


def test_cart_summary_counts_items(store, make_product):
    a = make_product(store.id, price_cents=300)
    b = make_product(store.id, price_cents=200)
    cart = cart_service.create_cart(store.id, user_id="u-16")
    cart_service.add_item(cart.id, a.id, 2, 300)
    cart_service.add_item(cart.id, b.id, 3, 200)

    summary = cart_service.get_cart_summary(cart.id)
    assert summary["item_count"] == 5
    assert summary["subtotal_cents"] == 1200
    assert len(summary["items"]) == 2
    assert summary["cart"]["total_price_cents"] == 1320
