import pytest

from storefront.errors import NotFoundError
from storefront.services import products_service
from storefront.validation import ConflictError, ValidationError


def test_create_defaults_to_physical(store, make_product):
    product = make_product(store.id)
    assert product.type == "physical"
    assert product.is_digital is False
    assert product.is_active is True


def test_slug_and_sku_unique_per_store(store, make_store, make_product):
    make_product(store.id, slug="mug", sku="MUG-1")
    with pytest.raises(ConflictError):
        make_product(store.id, slug="mug")
    with pytest.raises(ConflictError):
        make_product(store.id, sku="MUG-1")

    other = make_store()
    assert make_product(other.id, slug="mug", sku="MUG-1").store_id == other.id


def test_create_validates_price_and_type(store, make_product):
    with pytest.raises(ValidationError):
        make_product(store.id, price_cents=-1)
    with pytest.raises(ValidationError):
        make_product(store.id, price_cents="9.99")
    with pytest.raises(ValidationError):
        make_product(store.id, type="service")


def test_create_for_missing_store(db_session):
    with pytest.raises(NotFoundError):
        products_service.create_product(404, {"name": "X", "slug": "x", "price_cents": 100})


def test_type_cannot_change_after_creation(store, make_product):
    product = make_product(store.id)
    with pytest.raises(ValidationError):
        products_service.update_product(product.id, {"type": "digital"})

    updated = products_service.update_product(product.id, {"name": "Renamed", "metadata": {"color": "red"}})
    assert updated.name == "Renamed"
    assert updated.metadata_json == {"color": "red"}
    assert updated.type == "physical"


def test_delete_is_soft(store, make_product):
    product = make_product(store.id)
    assert products_service.delete_product(product.id) is True

    kept = products_service.get_product(product.id)
    assert kept is not None
    assert kept.is_active is False
    assert product.id not in [p.id for p in products_service.list_store_products(store.id)]
    assert product.id in [p.id for p in products_service.list_store_products(store.id, active_only=False)]
    assert products_service.delete_product(999999) is False


def test_decrease_stock_clamps_at_zero(store, make_product):
    product = make_product(store.id, stock_quantity=3)

    assert products_service.decrease_stock(product.id, 2) is True
    assert products_service.require_product(product.id).stock_quantity == 1

    assert products_service.decrease_stock(product.id, 5) is True
    assert products_service.require_product(product.id).stock_quantity == 0


def test_decrease_stock_leaves_digital_untouched(store, digital_product):
    assert products_service.decrease_stock(digital_product.id, 1) is False
    assert products_service.require_product(digital_product.id).stock_quantity == 0


def test_decrease_stock_also_decrements_variant(store, make_product):
    product = make_product(store.id, stock_quantity=10)
    variant = products_service.create_variant(product.id, {"name": "Blue", "stock_quantity": 4})

    assert products_service.decrease_stock(product.id, 3, variant_id=variant.id) is True
    assert products_service.require_product(product.id).stock_quantity == 7
    assert products_service.get_variants(product.id)[0].stock_quantity == 1


def test_update_stock_sets_absolute_value(store, make_product):
    product = make_product(store.id, stock_quantity=3)
    assert products_service.update_stock(product.id, 42).stock_quantity == 42
    with pytest.raises(ValidationError):
        products_service.update_stock(product.id, -1)


def test_variant_price_falls_back_to_product(store, make_product):
    product = make_product(store.id, price_cents=800)
    plain = products_service.create_variant(product.id, {"name": "Default"})
    priced = products_service.create_variant(product.id, {"name": "Deluxe", "price_cents": 1200})

    assert products_service.resolve_unit_price(product.id) == 800
    assert products_service.resolve_unit_price(product.id, plain.id) == 800
    assert products_service.resolve_unit_price(product.id, priced.id) == 1200

    assert products_service.delete_variant(plain.id) is True
    assert [v.id for v in products_service.get_variants(product.id)] == [priced.id]


def test_featured_listing_respects_limit(store, make_product):
    for _ in range(3):
        make_product(store.id, is_featured=True)
    make_product(store.id)

    assert len(products_service.list_featured_products(store.id, limit=2)) == 2
    assert len(products_service.list_featured_products(store.id)) == 3


def test_categories_are_store_scoped(store, make_store, make_product):
    parent = products_service.create_category(store.id, {"name": "Books", "slug": "books"})
    child = products_service.create_category(store.id, {"name": "Comics", "slug": "comics", "parent_id": parent.id})
    assert child.parent_id == parent.id

    with pytest.raises(ConflictError):
        products_service.create_category(store.id, {"name": "Other Books", "slug": "books"})

    other = make_store()
    with pytest.raises(ValidationError):
        products_service.create_category(other.id, {"name": "Orphan", "slug": "orphan", "parent_id": parent.id})
    with pytest.raises(ValidationError):
        make_product(other.id, category_id=parent.id)

    assert [c.name for c in products_service.get_categories(store.id)] == ["Books", "Comics"]
