from . import create_app
from .scheduler import start_cache_warmer


def main() -> None:
    app = create_app()
    config = app.config["IMAGESTORE"]

    # Warmer shares the in-memory cache, so it runs in this process
    scheduler = start_cache_warmer(app.extensions["listing_cache"], config.cache_warm_interval_seconds)

    try:
        app.run(host=config.host, port=config.port, threaded=True)
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
