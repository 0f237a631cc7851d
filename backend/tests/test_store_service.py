import pytest

from storefront.errors import NotFoundError
from storefront.services import store_service
from storefront.validation import ConflictError, ValidationError


def test_create_store_normalizes_slug_and_currency(db_session):
    store = store_service.create_store("Corner Shop", "Corner-Shop", currency="eur", tax_rate_bps=825)
    assert store.slug == "corner-shop"
    assert store.currency == "EUR"
    assert store.tax_rate_bps == 825
    assert store.is_active is True
    assert store_service.get_store_by_slug("CORNER-SHOP").id == store.id


def test_slug_must_be_unique(store):
    with pytest.raises(ConflictError):
        store_service.create_store("Copy", "store-a")


def test_create_store_rejects_bad_values(db_session):
    with pytest.raises(ValidationError):
        store_service.create_store("Bad Tax", "bad-tax", tax_rate_bps=10001)
    with pytest.raises(ValidationError):
        store_service.create_store("Bad Currency", "bad-cur", currency="DOLLARS")
    with pytest.raises(ValidationError):
        store_service.create_store(None, "nameless")


def test_require_store(store):
    assert store_service.require_store(store.id).id == store.id
    with pytest.raises(ValidationError):
        store_service.require_store(None)
    with pytest.raises(NotFoundError):
        store_service.require_store(404)


def test_update_and_toggle(store, make_store):
    other = make_store(slug="taken")
    with pytest.raises(ConflictError):
        store_service.update_store(store.id, {"slug": other.slug})

    updated = store_service.update_store(store.id, {"name": "Store A+", "tax_rate_bps": 0})
    assert (updated.name, updated.tax_rate_bps) == ("Store A+", 0)

    store_service.deactivate_store(store.id)
    assert [s.id for s in store_service.list_stores(active_only=True)] == [other.id]
    store_service.activate_store(store.id)
    assert len(store_service.list_stores(active_only=True)) == 2


def test_settings_are_shallow_merged(store):
    store_service.update_store_settings(store.id, {"theme": "dark", "support_email": "help@example.com"})
    merged = store_service.update_store_settings(store.id, {"theme": "light"})

    assert merged == {"theme": "light", "support_email": "help@example.com"}
    assert store_service.get_store_settings(store.id) == merged
    with pytest.raises(ValidationError):
        store_service.update_store_settings(store.id, ["not", "a", "dict"])
