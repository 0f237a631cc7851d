"""
End-to-end checkout: cart -> order -> payment -> stock and download links.
"""

from datetime import timedelta

import pytest

from storefront.errors import CouponError, GatewayError, InvalidTransitionError
from storefront.extensions import db
from storefront.models import OrderItem
from storefront.services import (
    cart_service,
    checkout_service,
    coupon_service,
    download_service,
    maintenance_service,
    order_service,
    payment_service,
    products_service,
)
from storefront.time_utils import utcnow
from storefront.validation import ConflictError, ValidationError


@pytest.fixture
def shirt(store, make_product):
    return make_product(store.id, name="T-Shirt", sku="TS-1", price_cents=1000, stock_quantity=5)


@pytest.fixture
def ebook_file(object_store, digital_product):
    download = download_service.create_digital_download(
        digital_product.id, "ebook.epub", mime_type="application/epub+zip", download_limit=3, expiration_days=7
    )
    return download_service.upload_file(object_store, download.id, b"epub-bytes")


@pytest.fixture
def filled_cart(store, shirt, digital_product, ebook_file):
    """2 x T-Shirt (1000) + 1 x E-Book (1500), 500 shipping, WELCOME (-500)."""
    coupon_service.create_coupon(store.id, {"code": "WELCOME", "discount_type": "fixed", "discount_value": 500, "max_uses": 1})
    cart = cart_service.create_cart(store.id, user_id="shopper-1")
    cart_service.add_product(cart.id, shirt.id, 2)
    cart_service.add_product(cart.id, digital_product.id, 1)
    cart_service.set_shipping(cart.id, 500)
    cart_service.apply_coupon_code(cart.id, "welcome")
    return cart_service.require_cart(cart.id)


def test_checkout_freezes_cart_into_order(store, filled_cart, shirt, digital_product):
    assert filled_cart.total_price_cents == 3850
    cart_id = filled_cart.id

    order = checkout_service.checkout_cart(cart_id, email="shopper@example.com", shipping_address={"city": "Austin"})

    assert order.status == "pending"
    assert order.payment_status == "unpaid"
    assert order.user_id == "shopper-1"
    assert order.coupon_code == "WELCOME"
    assert (order.subtotal_cents, order.tax_cents, order.shipping_cents, order.discount_cents, order.total_cents) == (
        3500, 350, 500, 500, 3850,
    )
    assert order.shipping_address == {"city": "Austin"}

    items = order_service.get_items(order.id)
    assert [(i.product_name, i.sku, i.quantity, i.price_cents, i.total_cents) for i in items] == [
        ("T-Shirt", "TS-1", 2, 1000, 2000),
        ("E-Book", digital_product.sku, 1, 1500, 1500),
    ]

    cart = cart_service.require_cart(cart_id)
    assert cart_service.get_items(cart_id) == []
    assert cart.total_price_cents == 0
    assert cart.coupon_code is None
    assert coupon_service.get_coupon_by_code(store.id, "WELCOME").current_uses == 1
    assert products_service.require_product(shirt.id).stock_quantity == 5


def test_pay_order_completes_stock_and_links(gateways, fake_gateway, filled_cart, shirt):
    order = checkout_service.checkout_cart(filled_cart.id, email="shopper@example.com")

    payment = checkout_service.pay_order(gateways, order.id, "stripe")

    assert payment.status == "completed"
    assert payment.amount_cents == 3850
    assert fake_gateway.charges[0][0] == 3850
    paid = order_service.require_order(order.id)
    assert (paid.status, paid.payment_status, paid.payment_id) == ("processing", "paid", payment.id)
    assert products_service.require_product(shirt.id).stock_quantity == 3

    ebook_line = order_service.get_items(order.id)[1]
    links = download_service.get_order_item_download_links(ebook_line.id)
    assert len(links) == 1
    assert links[0].max_downloads == 3
    assert links[0].expires_at is not None
    assert order_service.get_items(order.id)[0].id not in [link.order_item_id for link in links]


def test_issue_download_links_is_idempotent(gateways, filled_cart):
    order = checkout_service.checkout_cart(filled_cart.id, email="shopper@example.com")
    checkout_service.pay_order(gateways, order.id, "stripe")

    assert checkout_service.issue_download_links(order.id) == []
    ebook_line = order_service.get_items(order.id)[1]
    assert len(download_service.get_order_item_download_links(ebook_line.id)) == 1


def test_new_file_is_issued_on_reissue(gateways, digital_product, filled_cart):
    order = checkout_service.checkout_cart(filled_cart.id, email="shopper@example.com")
    checkout_service.pay_order(gateways, order.id, "stripe")

    bonus = download_service.create_digital_download(digital_product.id, "bonus.pdf")
    created = checkout_service.issue_download_links(order.id)
    assert [link.digital_download_id for link in created] == [bonus.id]
    assert created[0].max_downloads is None
    assert created[0].expires_at is None


def test_links_require_paid_order(filled_cart):
    order = checkout_service.checkout_cart(filled_cart.id, email="shopper@example.com")
    with pytest.raises(InvalidTransitionError):
        checkout_service.issue_download_links(order.id)


def test_payment_failure_marks_order_failed(gateways, fake_gateway, filled_cart, shirt):
    order = checkout_service.checkout_cart(filled_cart.id, email="shopper@example.com")
    fake_gateway.fail_with = GatewayError("insufficient funds")

    with pytest.raises(GatewayError):
        checkout_service.pay_order(gateways, order.id, "stripe")

    failed = order_service.require_order(order.id)
    assert (failed.status, failed.payment_status) == ("pending", "failed")
    assert products_service.require_product(shirt.id).stock_quantity == 5
    assert download_service.get_order_item_download_links(order_service.get_items(order.id)[1].id) == []

    fake_gateway.fail_with = None
    retry = checkout_service.pay_order(gateways, order.id, "stripe")
    assert retry.status == "completed"
    assert order_service.require_order(order.id).payment_status == "paid"
    assert [p.status for p in payment_service.get_order_payments(order.id)] == ["failed", "completed"]


def test_paid_order_cannot_be_paid_again(gateways, filled_cart):
    order = checkout_service.checkout_cart(filled_cart.id, email="shopper@example.com")
    checkout_service.pay_order(gateways, order.id, "custom")

    with pytest.raises(InvalidTransitionError):
        checkout_service.pay_order(gateways, order.id, "custom")


def test_cancelled_order_cannot_be_paid(gateways, filled_cart):
    order = checkout_service.checkout_cart(filled_cart.id, email="shopper@example.com")
    order_service.cancel_order(order.id)
    with pytest.raises(InvalidTransitionError):
        checkout_service.pay_order(gateways, order.id, "stripe")


def test_zero_total_order_skips_gateway(gateways, fake_gateway, make_store, make_product):
    store = make_store(tax_rate_bps=0)
    product = make_product(store.id, price_cents=1000)
    coupon_service.create_coupon(store.id, {"code": "FREE", "discount_type": "percentage", "discount_value": 10000})
    cart = cart_service.create_cart(store.id, session_id="anon-1")
    cart_service.add_product(cart.id, product.id, 1)
    cart_service.apply_coupon_code(cart.id, "FREE")

    order = checkout_service.checkout_cart(cart.id, email="free@example.com")
    assert order.total_cents == 0

    assert checkout_service.pay_order(gateways, order.id, "stripe") is None
    assert fake_gateway.charges == []
    assert order_service.require_order(order.id).payment_status == "paid"


def test_empty_cart_and_missing_email(store, filled_cart):
    empty = cart_service.create_cart(store.id, user_id="nobody")
    with pytest.raises(ValidationError):
        checkout_service.checkout_cart(empty.id, email="x@example.com")

    with pytest.raises(ValidationError):
        checkout_service.checkout_cart(filled_cart.id, email="  ")
    assert coupon_service.get_coupon_by_code(store.id, "WELCOME").current_uses == 0
    assert len(cart_service.get_items(filled_cart.id)) == 2


def test_exhausted_coupon_blocks_second_checkout(store, shirt, filled_cart):
    other = cart_service.create_cart(store.id, user_id="shopper-2")
    cart_service.add_product(other.id, shirt.id, 1)
    cart_service.apply_coupon_code(other.id, "WELCOME")

    checkout_service.checkout_cart(filled_cart.id, email="first@example.com")
    with pytest.raises(CouponError) as excinfo:
        checkout_service.checkout_cart(other.id, email="second@example.com")
    assert excinfo.value.details["reason"] == "exhausted"
    assert len(cart_service.get_items(other.id)) == 1


def test_coupon_use_released_when_order_write_fails(store, filled_cart, monkeypatch):
    def _boom(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(order_service, "create_order", _boom)
    with pytest.raises(RuntimeError):
        checkout_service.checkout_cart(filled_cart.id, email="shopper@example.com")

    assert coupon_service.get_coupon_by_code(store.id, "WELCOME").current_uses == 0
    assert len(cart_service.get_items(filled_cart.id)) == 2


def test_variant_lines_are_named_after_variant(gateways, store, shirt):
    large = products_service.create_variant(shirt.id, {"name": "Large", "sku": "TS-1-L", "stock_quantity": 4})
    cart = cart_service.create_cart(store.id, user_id="shopper-3")
    cart_service.add_product(cart.id, shirt.id, 2, variant_id=large.id)

    order = checkout_service.checkout_cart(cart.id, email="v@example.com")
    line = order_service.get_items(order.id)[0]
    assert (line.product_name, line.sku, line.variant_id) == ("T-Shirt - Large", "TS-1-L", large.id)

    checkout_service.pay_order(gateways, order.id, "custom")
    assert products_service.require_product(shirt.id).stock_quantity == 3
    assert products_service.get_variants(shirt.id)[0].stock_quantity == 2


def test_maintenance_sweeps_respect_grace(store):
    now = utcnow()
    cart_service.create_cart(store.id, user_id="old", now=now - timedelta(days=33))
    cart_service.create_cart(store.id, user_id="older", now=now - timedelta(days=40))

    assert maintenance_service.purge_expired_carts(grace_days=5, now=now) == 1
    assert maintenance_service.purge_expired_carts(now=now) == 1
    assert maintenance_service.cleanup_download_links(now=now) == 0


def test_externally_priced_discount_is_frozen(store, shirt):
    cart = cart_service.create_cart(store.id, user_id="partner-buyer")
    cart_service.add_product(cart.id, shirt.id, 2)
    cart_service.apply_coupon(cart.id, "PARTNER5", 300)

    order = checkout_service.checkout_cart(cart.id, email="partner@example.com")

    assert order.coupon_code == "PARTNER5"
    assert (order.subtotal_cents, order.tax_cents, order.discount_cents, order.total_cents) == (2000, 200, 300, 1900)
    assert coupon_service.get_coupon_by_code(store.id, "PARTNER5") is None
    assert cart_service.get_items(cart.id) == []


def test_failed_line_write_leaves_no_order(store, filled_cart, monkeypatch):
    real_build_item = order_service._build_item
    calls = []

    def _fail_second_line(order, **line):
        calls.append(line["product_id"])
        if len(calls) == 2:
            raise ConflictError("line rejected")
        return real_build_item(order, **line)

    monkeypatch.setattr(order_service, "_build_item", _fail_second_line)
    with pytest.raises(ConflictError):
        checkout_service.checkout_cart(filled_cart.id, email="shopper@example.com")

    assert order_service.list_store_orders(store.id) == []
    assert db.session.query(OrderItem).count() == 0
    assert coupon_service.get_coupon_by_code(store.id, "WELCOME").current_uses == 0
    assert len(cart_service.get_items(filled_cart.id)) == 2

    monkeypatch.setattr(order_service, "_build_item", real_build_item)
    order = checkout_service.checkout_cart(filled_cart.id, email="shopper@example.com")
    assert order.order_number.endswith("-000001")
    assert len(order_service.get_items(order.id)) == 2
