import logging
from typing import Optional

from flask import Blueprint, Flask, Response, current_app, jsonify, render_template, request, send_from_directory, url_for
from werkzeug.exceptions import HTTPException, MethodNotAllowed, NotFound, RequestEntityTooLarge

from .config import Config
from .image_store import ImageStore
from .listing_cache import ListingCache
from .scanner import ScanFailure

logger = logging.getLogger(__name__)

bp = Blueprint("imagestore", __name__)


def store() -> ImageStore:
    return current_app.extensions["image_store"]


def cache() -> ListingCache:
    return current_app.extensions["listing_cache"]


def _error(status: int, message: str, error: Optional[str] = None) -> Response:
    payload = {"success": False, "message": message}
    if error is not None:
        cfg: Config = current_app.config["IMAGESTORE"]
        payload["error"] = "Internal Server Error" if cfg.production else error
    resp = jsonify(payload)
    resp.status_code = status
    return resp


def _image_url(filename: str) -> str:
    return url_for("imagestore.image_file", filename=filename, _external=True)


@bp.route("/")
def home() -> str:
    return render_template("index.html")


@bp.route("/healthz")
def healthz() -> Response:
    return Response("ok\n", mimetype="text/plain")


@bp.route("/upload", methods=["POST"])
def upload() -> Response:
    file = request.files.get("image")
    if file is None or not file.filename:
        return _error(400, "No file was uploaded")

    filename = store().save_upload(file)
    # file is fsynced; the next listing must see it
    cache().invalidate()

    return jsonify(
        success=True,
        message="Image uploaded",
        imageUrl=_image_url(filename),
        filename=filename,
    )


@bp.route("/images/list")
def list_images() -> Response:
    try:
        snapshot = cache().get_listing()
    except ScanFailure as exc:
        logger.error("Listing images failed: %s", exc)
        return _error(500, "Failed to list images", str(exc))

    images = [{"filename": name, "url": _image_url(name)} for name in snapshot.filenames]
    return jsonify(success=True, images=images, timestamp=snapshot.fetched_at_ms)


@bp.route("/images/refresh-cache")
def refresh_cache() -> Response:
    try:
        snapshot = cache().force_refresh()
    except ScanFailure as exc:
        logger.error("Refreshing image cache failed: %s", exc)
        return _error(500, "Failed to refresh cache", str(exc))

    return jsonify(success=True, message="Cache refreshed", count=len(snapshot.entries))


@bp.route("/images/<filename>")
def image_file(filename: str) -> Response:
    if not store().has_image(filename):
        raise NotFound()
    return send_from_directory(current_app.config["IMAGE_DIR"], filename)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(NotFound)
    @app.errorhandler(MethodNotAllowed)
    def not_found(exc: HTTPException) -> Response:
        return _error(404, "The requested resource does not exist")

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(exc: RequestEntityTooLarge) -> Response:
        return _error(413, "Uploaded file is too large")

    @app.errorhandler(Exception)
    def internal_error(exc: Exception) -> Response:
        if isinstance(exc, HTTPException):
            return _error(exc.code or 500, exc.description or exc.name)
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return _error(500, "Internal server error", str(exc))
