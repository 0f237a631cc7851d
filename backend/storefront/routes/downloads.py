# Overview: Flask API routes for bearer-token digital downloads.

from flask import Blueprint, current_app, send_file

from ..responses import HANDLED_ERRORS, error_response, fail, ok
from ..services import download_service

downloads_bp = Blueprint("downloads", __name__, url_prefix="/api/downloads")


@downloads_bp.get("/<token>")
def download_route(token: str):
    """
    Stream the file behind a download token and count the download.

    Returns:
        200: file bytes as an attachment
        403: download limit reached
        404: unknown token, or the file is missing from storage
        410: link expired
    """
    try:
        result = download_service.get_download_file(current_app.extensions["object_store"], token)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to serve download")
        return fail("Internal server error", 500)

    response = send_file(
        result.stream,
        mimetype=result.mime_type,
        as_attachment=True,
        download_name=result.file_name,
    )
    if result.size is not None:
        response.content_length = result.size
    return response


@downloads_bp.get("/<token>/info")
def download_info_route(token: str):
    """Link status without consuming a download."""
    try:
        return ok(download_service.get_download_link_info(token))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Failed to load download info")
        return fail("Internal server error", 500)
