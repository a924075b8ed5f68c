import time
import logging
from typing import Callable, Optional

from flask import Flask, g, request

from .config import Config
from .image_store import ImageStore
from .listing_cache import ListingCache
from .logs import configure_logging

logger = logging.getLogger(__name__)


def create_app(config: Optional[Config] = None, clock: Optional[Callable[[], int]] = None) -> Flask:
    if config is None:
        config = Config.from_env()

    configure_logging(config.log_level, config.log_file)

    app = Flask(__name__)
    app.config.update(
        IMAGESTORE=config,
        IMAGE_DIR=config.image_dir,
        MAX_CONTENT_LENGTH=config.max_upload_mb * 1024 * 1024 if config.max_upload_mb else None,
        PROPAGATE_EXCEPTIONS=False,
    )

    app.extensions["image_store"] = ImageStore(config.image_dir, clock=clock)
    app.extensions["listing_cache"] = ListingCache(
        config.image_dir,
        ttl_ms=config.cache_ttl_ms,
        clock=clock,
        scan_max_seconds=config.scan_max_seconds,
    )

    _register_request_hooks(app, config)

    from .routes import bp, register_error_handlers

    app.register_blueprint(bp)
    register_error_handlers(app)

    logger.info("Image store serving %s (cache ttl=%dms)", config.image_dir, config.cache_ttl_ms)
    return app


def _register_request_hooks(app: Flask, config: Config) -> None:
    @app.before_request
    def _t_start():
        g.t0 = time.perf_counter()

    @app.after_request
    def _t_end(resp):
        resp.headers["Access-Control-Allow-Origin"] = config.cors_origin
        resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"

        t0 = g.get("t0")
        if t0 is not None:
            dt_ms = (time.perf_counter() - t0) * 1000
            if dt_ms > config.slow_request_ms:
                logger.warning("Slow request: %s %s - %.0fms", request.method, request.path, dt_ms)
            elif config.debug_requests:
                logger.info("REQ %s %s -> %s (%.1fms)",
                            request.method, request.path, resp.status_code, dt_ms)
        return resp


__all__ = ["create_app"]
