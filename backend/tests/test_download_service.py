import re
from datetime import timedelta

import pytest

from storefront.errors import DownloadExpiredError, DownloadLimitReachedError, NotFoundError
from storefront.services import download_service, order_service
from storefront.time_utils import utcnow
from storefront.validation import ConflictError, ValidationError


PDF_BYTES = b"%PDF-1.4 storefront test file"


@pytest.fixture
def order_item(store, digital_product):
    order = order_service.create_order(store.id, email="reader@example.com", subtotal_cents=1500, total_cents=1500)
    return order_service.add_item(order.id, product_id=digital_product.id, quantity=1, price_cents=1500)


@pytest.fixture
def download(object_store, digital_product):
    created = download_service.create_digital_download(
        digital_product.id, "book.pdf", mime_type="application/pdf", download_limit=3, expiration_days=7
    )
    return download_service.upload_file(object_store, created.id, PDF_BYTES)


def test_token_is_lowercase_hex_of_configured_length(app, db_session):
    token = download_service.generate_token()
    assert re.fullmatch(r"[0-9a-f]{32}", token)
    assert len(download_service.generate_token(64)) == 64
    assert download_service.generate_token() != download_service.generate_token()


def test_storage_key_and_upload(object_store, download):
    assert download.storage_key == f"digital-downloads/{download.id}/book.pdf"
    assert download.file_size == len(PDF_BYTES)
    stored = object_store.get(download.storage_key)
    assert stored.body.read() == PDF_BYTES
    assert stored.content_type == "application/pdf"
    assert stored.content_disposition == 'attachment; filename="book.pdf"'


def test_downloads_only_for_digital_products(store, make_product):
    physical = make_product(store.id)
    with pytest.raises(ValidationError):
        download_service.create_digital_download(physical.id, "book.pdf")


def test_file_name_must_be_plain(digital_product):
    for bad in ("../etc/passwd", "dir/book.pdf", "", ".."):
        with pytest.raises(ValidationError):
            download_service.create_digital_download(digital_product.id, bad)


def test_download_counts_until_limit(object_store, download, order_item):
    link = download_service.create_download_link(order_item.id, download.id, max_downloads=2)
    assert len(link.token) == 32

    for _ in range(2):
        result = download_service.get_download_file(object_store, link.token)
        assert result.stream.read() == PDF_BYTES
        assert result.file_name == "book.pdf"
        assert result.mime_type == "application/pdf"
        assert result.size == len(PDF_BYTES)

    with pytest.raises(DownloadLimitReachedError):
        download_service.get_download_file(object_store, link.token)

    refreshed = download_service.find_link_by_token(link.token)
    assert refreshed.download_count == 2
    assert refreshed.remaining_downloads == 0
    assert refreshed.last_downloaded_at is not None


def test_unlimited_link_without_expiry(object_store, download, order_item):
    link = download_service.create_download_link(order_item.id, download.id)
    for _ in range(5):
        download_service.get_download_file(object_store, link.token)
    assert download_service.find_link_by_token(link.token).download_count == 5


def test_expired_link_is_refused_without_counting(object_store, download, order_item):
    issued = utcnow()
    link = download_service.create_download_link(order_item.id, download.id, max_downloads=5, expiration_days=1, now=issued)

    download_service.get_download_file(object_store, link.token, now=issued + timedelta(hours=23))
    with pytest.raises(DownloadExpiredError):
        download_service.get_download_file(object_store, link.token, now=issued + timedelta(days=1, seconds=1))

    assert download_service.find_link_by_token(link.token).download_count == 1


def test_zero_day_link_is_usable_only_at_issue_instant(object_store, download, order_item):
    issued = utcnow()
    link = download_service.create_download_link(order_item.id, download.id, expiration_days=0, now=issued)

    download_service.get_download_file(object_store, link.token, now=issued)
    with pytest.raises(DownloadExpiredError):
        download_service.get_download_link_by_token(link.token, now=issued + timedelta(microseconds=1))


def test_expiry_uses_module_clock(object_store, download, order_item, monkeypatch):
    issued = utcnow()
    link = download_service.create_download_link(order_item.id, download.id, expiration_days=3, now=issued)

    monkeypatch.setattr(download_service, "utcnow", lambda: issued + timedelta(days=4))
    with pytest.raises(DownloadExpiredError):
        download_service.get_download_file(object_store, link.token)
    assert download_service.get_download_link_info(link.token)["is_expired"] is True


def test_storage_drift_does_not_consume_a_download(object_store, digital_product, order_item, caplog):
    missing = download_service.create_digital_download(digital_product.id, "lost.zip")
    link = download_service.create_download_link(order_item.id, missing.id, max_downloads=1)

    with caplog.at_level("ERROR"):
        with pytest.raises(NotFoundError, match="File not found in storage"):
            download_service.get_download_file(object_store, link.token)
    assert "Storage drift" in caplog.text
    assert download_service.find_link_by_token(link.token).download_count == 0


def test_unknown_token(object_store, db_session):
    with pytest.raises(NotFoundError):
        download_service.get_download_file(object_store, "0" * 32)
    with pytest.raises(NotFoundError):
        download_service.get_download_link_info("")


def test_record_download_refuses_past_limit(download, order_item):
    link = download_service.create_download_link(order_item.id, download.id, max_downloads=1)
    assert download_service.record_download(link.id) is True
    assert download_service.record_download(link.id) is False


def test_link_info_is_read_only(object_store, download, order_item):
    link = download_service.create_download_link(order_item.id, download.id, max_downloads=3, expiration_days=7)
    download_service.get_download_file(object_store, link.token)

    info = download_service.get_download_link_info(link.token)
    info_again = download_service.get_download_link_info(link.token)
    assert info == info_again
    assert info["file_name"] == "book.pdf"
    assert info["download_count"] == 1
    assert info["remaining_downloads"] == 2
    assert info["is_expired"] is False
    assert info["expires_at"].endswith("Z")


def test_invalid_link_parameters(download, order_item):
    with pytest.raises(ValidationError):
        download_service.create_download_link(order_item.id, download.id, max_downloads=0)
    with pytest.raises(ValidationError):
        download_service.create_download_link(order_item.id, download.id, expiration_days=-1)
    with pytest.raises(NotFoundError):
        download_service.create_download_link(999999, download.id)


def test_cleanup_removes_only_expired_links(download, order_item):
    now = utcnow()
    stale = download_service.create_download_link(order_item.id, download.id, expiration_days=1, now=now - timedelta(days=3))
    fresh = download_service.create_download_link(order_item.id, download.id, expiration_days=1, now=now)
    forever = download_service.create_download_link(order_item.id, download.id)
    stale_token, fresh_token, forever_token = stale.token, fresh.token, forever.token

    assert download_service.cleanup_expired_links(now=now) == 1
    assert download_service.find_link_by_token(stale_token) is None
    assert download_service.find_link_by_token(fresh_token) is not None
    assert download_service.find_link_by_token(forever_token) is not None


def test_delete_download_link(download, order_item):
    link = download_service.create_download_link(order_item.id, download.id)
    link_id = link.id
    assert download_service.delete_download_link(link_id) is True
    assert download_service.delete_download_link(link_id) is False


def test_delete_digital_download_refused_while_linked(object_store, download, order_item):
    link = download_service.create_download_link(order_item.id, download.id)
    with pytest.raises(ConflictError):
        download_service.delete_digital_download(object_store, download.id)

    download_service.delete_download_link(link.id)
    key = download.storage_key
    download_id = download.id
    download_service.delete_digital_download(object_store, download_id)
    assert key not in object_store
    assert download_service.get_digital_download(download_id) is None
