from __future__ import annotations

import logging
from http import HTTPStatus

from flask import Blueprint, Response, current_app, render_template_string, request
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from pastebin.api.schemas import (
    ErrorResponse,
    HealthResponse,
    PasteCreatedResponse,
    PasteMetadataResponse,
    PasteViewResponse,
)
from pastebin.clock import resolve_now_ms
from pastebin.observability import get_correlation_id
from pastebin.services.paste_service import (
    IdentifierExhaustedError,
    InvalidPasteParameters,
    PasteNotFoundError,
    PasteService,
    StorageError,
)


logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)

TEST_NOW_HEADER = "x-test-now-ms"
SERVICE_EXTENSION = "pastebin.service"

_PASTE_PAGE = """<!DOCTYPE html>
<html>
  <head>
    <title>Paste</title>
    <meta charset="utf-8" />
  </head>
  <body>
    <pre>{{ content }}</pre>
    {% if remaining_views is not none %}<p>Remaining views: {{ remaining_views }}</p>{% endif %}
  </body>
</html>
"""


def _service() -> PasteService:
    return current_app.extensions[SERVICE_EXTENSION]


def _now_ms() -> int:
    return resolve_now_ms(
        request.headers.get(TEST_NOW_HEADER),
        test_mode=current_app.config.get("TEST_MODE", False),
    )


def _error(message: str, status: HTTPStatus, field: str | None = None) -> tuple[dict, int]:
    return ErrorResponse(error=message, field=field).model_dump(exclude_none=True), status


def _paste_url(paste_id: str) -> str:
    base_url = current_app.config.get("BASE_URL")
    if base_url:
        base_url = base_url.strip().rstrip("/")
    else:
        host = request.host
        scheme = "http" if "localhost" in host else "https"
        base_url = f"{scheme}://{host}"
    return f"{base_url}/p/{paste_id}"


@api_bp.route("/api/healthz", methods=["GET"])
def health() -> tuple[dict, int]:
    """Report which store is serving and whether it answers."""

    store = _service().repository.store
    body = HealthResponse(ok=store.ping(), storage=store.name)
    return body.model_dump(mode="json"), HTTPStatus.OK


@api_bp.route("/api/pastes", methods=["POST"])
def create_paste() -> tuple[dict, int]:
    """
    Create a new paste.

    Type and range checks live in the service layer so that every caller
    gets the same rules.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _error("Invalid JSON format", HTTPStatus.BAD_REQUEST)

    try:
        dto = _service().create_paste(
            payload.get("content"),
            payload.get("ttl_seconds"),
            payload.get("max_views"),
            now_ms=_now_ms(),
        )
    except InvalidPasteParameters as exc:
        return _error(str(exc), HTTPStatus.BAD_REQUEST, field=exc.field)

    body = PasteCreatedResponse(url=_paste_url(dto["id"]), **dto)
    return body.model_dump(mode="json"), HTTPStatus.CREATED


@api_bp.route("/api/pastes/<paste_id>", methods=["GET"])
def fetch_paste(paste_id: str) -> tuple[dict, int]:
    """Counted fetch: every successful call spends one view."""
    try:
        dto = _service().fetch_counted(paste_id, now_ms=_now_ms())
    except PasteNotFoundError as exc:
        return _error(str(exc), HTTPStatus.NOT_FOUND)

    return PasteViewResponse(**dto).model_dump(mode="json"), HTTPStatus.OK


@api_bp.route("/api/pastes/<paste_id>/metadata", methods=["GET"])
def fetch_paste_metadata(paste_id: str) -> tuple[dict, int]:
    """Uncounted fetch used when a person re-renders the share page."""
    try:
        dto = _service().fetch_metadata(paste_id, now_ms=_now_ms())
    except PasteNotFoundError as exc:
        return _error(str(exc), HTTPStatus.NOT_FOUND)

    return PasteMetadataResponse(**dto).model_dump(mode="json"), HTTPStatus.OK


@api_bp.route("/p/<paste_id>", methods=["GET"])
def view_paste_page(paste_id: str) -> Response | tuple[str, int]:
    try:
        dto = _service().fetch_metadata(paste_id, now_ms=_now_ms())
    except PasteNotFoundError:
        return "Paste not found", HTTPStatus.NOT_FOUND

    # Jinja autoescaping keeps paste content inert.
    html = render_template_string(
        _PASTE_PAGE,
        content=dto["content"],
        remaining_views=dto["remaining_views"],
    )
    return Response(html, status=HTTPStatus.OK, mimetype="text/html")


# -----------------------------------------------------------------------------
# Error handling: server faults never expose internal detail.
# -----------------------------------------------------------------------------
@api_bp.app_errorhandler(RequestEntityTooLarge)
def _too_large(_exc: RequestEntityTooLarge) -> tuple[dict, int]:
    return _error("Request body too large", HTTPStatus.REQUEST_ENTITY_TOO_LARGE)


@api_bp.app_errorhandler(StorageError)
@api_bp.app_errorhandler(IdentifierExhaustedError)
def _server_fault(exc: Exception) -> tuple[dict, int]:
    logger.error(
        "Request failed on storage",
        extra={
            "event": "request_failed",
            "error_type": type(exc).__name__,
            "correlation_id": get_correlation_id(),
        },
    )
    return _error("Internal server error", HTTPStatus.INTERNAL_SERVER_ERROR)


@api_bp.app_errorhandler(Exception)
def _unhandled(exc: Exception) -> tuple[dict, int] | HTTPException:
    if isinstance(exc, HTTPException):
        return exc
    logger.exception(
        "Unhandled error",
        extra={
            "event": "unhandled_error",
            "error_type": type(exc).__name__,
            "correlation_id": get_correlation_id(),
        },
    )
    return _error("Internal server error", HTTPStatus.INTERNAL_SERVER_ERROR)
