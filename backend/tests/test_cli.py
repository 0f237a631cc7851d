from datetime import timedelta

from storefront.services import cart_service, store_service
from storefront.time_utils import utcnow


def test_stores_create_and_list(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["stores", "create", "--name", "Cli Shop", "--slug", "cli-shop", "--tax-rate-bps", "825"])
    assert "PASS Created store: Cli Shop" in result.output
    store = store_service.get_store_by_slug("cli-shop")
    assert store.tax_rate_bps == 825

    duplicate = runner.invoke(args=["stores", "create", "--name", "Again", "--slug", "cli-shop"])
    assert duplicate.output.startswith("FAIL")

    listing = runner.invoke(args=["stores", "list"])
    assert "cli-shop" in listing.output


def test_stores_list_when_empty(app, db_session):
    result = app.test_cli_runner().invoke(args=["stores", "list"])
    assert "No stores found." in result.output


def test_purge_carts_command(app, store):
    cart_service.create_cart(store.id, user_id="gone", now=utcnow() - timedelta(days=45))
    cart_service.create_cart(store.id, user_id="kept")

    result = app.test_cli_runner().invoke(args=["maintenance", "purge-carts"])
    assert result.exit_code == 0
    assert "Deleted 1 expired carts." in result.output


def test_cleanup_download_links_command(app, db_session):
    result = app.test_cli_runner().invoke(args=["maintenance", "cleanup-download-links", "--grace-days", "3"])
    assert result.exit_code == 0
    assert "Deleted 0 expired download links." in result.output
