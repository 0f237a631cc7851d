from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import NotFoundError
from ..models import Store
from ..validation import (
    ModelValidationPolicy,
    ConflictError,
    ValidationError,
    enforce_rules_store,
    validate_payload,
)
from .concurrency import lock_for_update, run_with_retry


STORE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "slug", "description", "logo_url", "currency",
        "tax_rate_bps", "shipping_enabled", "is_active", "settings",
    },
    required_on_create={"name", "slug"},
)


def _clean_store_patch(payload: dict, *, partial: bool) -> dict:
    patch = validate_payload(model=Store, payload=payload, policy=STORE_POLICY, partial=partial)
    enforce_rules_store(patch)
    if "slug" in patch and patch["slug"] is not None:
        patch["slug"] = patch["slug"].lower()
    return patch


def _ensure_slug_free(slug: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Store.id).filter(Store.slug == slug)
    if exclude_id is not None:
        query = query.filter(Store.id != exclude_id)
    if query.first():
        raise ConflictError(f"Store slug already exists: {slug}")


def create_store(
    name: str | None = None,
    slug: str | None = None,
    *,
    description: str | None = None,
    logo_url: str | None = None,
    currency: str | None = None,
    tax_rate_bps: int = 0,
    shipping_enabled: bool = True,
    settings: dict | None = None,
) -> Store:
    payload = {
        "name": name,
        "slug": slug,
        "description": description,
        "logo_url": logo_url,
        "currency": currency or "USD",
        "tax_rate_bps": tax_rate_bps,
        "shipping_enabled": shipping_enabled,
        "settings": settings or {},
    }
    patch = _clean_store_patch(payload, partial=False)

    def _op():
        _ensure_slug_free(patch["slug"])
        store = Store(**patch)
        db.session.add(store)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"Store slug already exists: {patch['slug']}")
        return store

    return run_with_retry(_op)


def get_store(store_id: int) -> Store | None:
    return db.session.get(Store, store_id)


def get_store_by_slug(slug: str) -> Store | None:
    if not slug:
        return None
    return db.session.query(Store).filter_by(slug=slug.lower()).first()


def require_store(store_id: int | None) -> Store:
    if store_id is None:
        raise ValidationError("store_id is required")
    store = get_store(store_id)
    if not store:
        raise NotFoundError(f"Store not found: {store_id}")
    return store


def list_stores(active_only: bool = False) -> list[Store]:
    query = db.session.query(Store)
    if active_only:
        query = query.filter(Store.is_active.is_(True))
    return query.order_by(Store.name.asc(), Store.id.asc()).all()


def update_store(store_id: int, payload: dict) -> Store:
    patch = _clean_store_patch(payload, partial=True)

    def _op():
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if not store:
            raise NotFoundError(f"Store not found: {store_id}")

        if "slug" in patch and patch["slug"] != store.slug:
            _ensure_slug_free(patch["slug"], exclude_id=store.id)

        for key, value in patch.items():
            setattr(store, key, value)

        db.session.commit()
        return store

    return run_with_retry(_op)


def _set_active(store_id: int, active: bool) -> Store:
    def _op():
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if not store:
            raise NotFoundError(f"Store not found: {store_id}")
        store.is_active = active
        db.session.commit()
        return store

    return run_with_retry(_op)


def activate_store(store_id: int) -> Store:
    return _set_active(store_id, True)


def deactivate_store(store_id: int) -> Store:
    return _set_active(store_id, False)


def get_store_settings(store_id: int) -> dict:
    return dict(require_store(store_id).settings or {})


def update_store_settings(store_id: int, settings: dict) -> dict:
    """Shallow-merge `settings` into the store's settings bag."""
    if not isinstance(settings, dict):
        raise ValidationError("settings must be a JSON object")

    def _op():
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if not store:
            raise NotFoundError(f"Store not found: {store_id}")
        merged = dict(store.settings or {})
        merged.update(settings)
        # Reassign so the JSON column is marked dirty
        store.settings = merged
        db.session.commit()
        return merged

    return run_with_retry(_op)
