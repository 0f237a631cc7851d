"""
Race tests against a file-backed SQLite database.

Each worker thread pushes its own app context, so each gets its own session
and connection; SQLite serializes their writes.
"""

import threading

import pytest

from storefront import create_app
from storefront.errors import DownloadLimitReachedError
from storefront.extensions import db
from storefront.services import cart_service, coupon_service, download_service, order_service, products_service, store_service
from storefront.storage import MemoryObjectStore


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.db'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'OBJECT_STORE_PATH': None,
        'LOG_LEVEL': 'WARNING',
    })
    app.extensions["object_store"] = MemoryObjectStore()
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _run_concurrently(app, worker, count):
    """Start `count` threads at once; return what each returned or raised."""
    barrier = threading.Barrier(count)
    results = [None] * count

    def _target(index):
        with app.app_context():
            barrier.wait()
            try:
                results[index] = worker(index)
            except Exception as exc:
                results[index] = exc

    threads = [threading.Thread(target=_target, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


def test_single_use_link_downloads_exactly_once(file_app):
    store_obj = file_app.extensions["object_store"]
    with file_app.app_context():
        store = store_service.create_store("Race", "race")
        product = products_service.create_product(store.id, {
            "name": "Zine", "slug": "zine", "type": "digital", "price_cents": 500,
        })
        download = download_service.create_digital_download(product.id, "zine.pdf")
        download_service.upload_file(store_obj, download.id, b"zine")
        order = order_service.create_order(store.id, email="r@example.com", subtotal_cents=500, total_cents=500)
        item = order_service.add_item(order.id, product_id=product.id, quantity=1, price_cents=500)
        token = download_service.create_download_link(item.id, download.id, max_downloads=1).token

    def worker(_):
        return download_service.get_download_file(store_obj, token)

    results = _run_concurrently(file_app, worker, 2)

    served = [r for r in results if isinstance(r, download_service.DownloadFile)]
    refused = [r for r in results if isinstance(r, DownloadLimitReachedError)]
    assert len(served) == 1, results
    assert len(refused) == 1, results

    with file_app.app_context():
        assert download_service.find_link_by_token(token).download_count == 1


def test_concurrent_orders_get_distinct_numbers(file_app):
    with file_app.app_context():
        store_id = store_service.create_store("Numbers", "numbers").id
        order_service.create_order(store_id, email="seed@example.com", subtotal_cents=100, total_cents=100)

    def worker(index):
        order = order_service.create_order(
            store_id, email=f"buyer{index}@example.com", subtotal_cents=100, total_cents=100
        )
        return order.order_number

    results = _run_concurrently(file_app, worker, 6)

    assert all(isinstance(r, str) for r in results), results
    assert sorted(results) == [f"ORD-{store_id:03d}-{n:06d}" for n in range(2, 8)]


def test_coupon_redemptions_never_exceed_max_uses(file_app):
    with file_app.app_context():
        store_id = store_service.create_store("Coupons", "coupons").id
        coupon_id = coupon_service.create_coupon(store_id, {
            "code": "LIMITED", "discount_type": "fixed", "discount_value": 100, "max_uses": 3,
        }).id

    results = _run_concurrently(file_app, lambda _: coupon_service.redeem_coupon(coupon_id), 6)

    assert results.count(True) == 3, results
    assert results.count(False) == 3, results
    with file_app.app_context():
        assert coupon_service.get_coupon_by_code(store_id, "LIMITED").current_uses == 3


def test_concurrent_cart_adds_keep_totals_consistent(file_app):
    with file_app.app_context():
        store_id = store_service.create_store("Carts", "carts", tax_rate_bps=1000).id
        product_id = products_service.create_product(store_id, {
            "name": "Mug", "slug": "mug", "price_cents": 100, "stock_quantity": 50,
        }).id
        cart_id = cart_service.create_cart(store_id, user_id="racer").id

    def worker(index):
        return cart_service.add_item(cart_id, product_id, 1, 100 * (index + 1)).id

    results = _run_concurrently(file_app, worker, 4)

    assert all(isinstance(r, int) for r in results), results
    with file_app.app_context():
        summary = cart_service.get_cart_summary(cart_id)
        assert len(summary["items"]) == 4
        assert summary["subtotal_cents"] == 100 + 200 + 300 + 400
        assert summary["cart"]["total_tax_cents"] == 100
        assert summary["cart"]["total_price_cents"] == 1100


def test_concurrent_stock_decrements_are_not_lost(file_app):
    with file_app.app_context():
        store_id = store_service.create_store("Stock", "stock").id
        product_id = products_service.create_product(store_id, {
            "name": "Kettle", "slug": "kettle", "price_cents": 2500, "stock_quantity": 20,
        }).id

    results = _run_concurrently(file_app, lambda _: products_service.decrease_stock(product_id, 3), 6)

    assert results == [True] * 6
    with file_app.app_context():
        assert products_service.require_product(product_id).stock_quantity == 2
