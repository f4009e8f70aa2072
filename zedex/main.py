import asyncio
import logging
import os
import time

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from zedex import __version__
from zedex.api.extensions import router as extensions_router
from zedex.api.releases import router as releases_router
from zedex.core.dependencies import get_config, get_resolver, get_store
from zedex.core.errors import MirrorError, NotFound, UpstreamUnavailable
from zedex.services.scheduler import index_refresh_loop

# Configure logging
logging.basicConfig(
    level=os.environ.get("ZEDEX_LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="zedex",
    version=__version__,
    description="Local mirror and caching proxy for the Zed extension registry and release API.",
)

_started_at = time.monotonic()


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound) -> PlainTextResponse:
    logger.info(f"404 {request.url.path}: {exc}")
    return PlainTextResponse(str(exc), status_code=404)


@app.exception_handler(UpstreamUnavailable)
async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable) -> PlainTextResponse:
    logger.error(f"502 {request.url.path}: {exc}")
    return PlainTextResponse(str(exc), status_code=502)


@app.exception_handler(MirrorError)
async def mirror_error_handler(request: Request, exc: MirrorError) -> PlainTextResponse:
    logger.error(f"500 {request.url.path}: {exc}")
    return PlainTextResponse(str(exc), status_code=500)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

@app.on_event("startup")
async def startup_event() -> None:
    """
    Load the cached index snapshot, log what is being served and start the
    periodic index refresh when configured.
    """
    global _started_at
    _started_at = time.monotonic()

    config = get_config()
    resolver = get_resolver()
    try:
        resolver.cached_index()
    except MirrorError as e:
        logger.error(f"Cached extension index is unusable: {e}")

    details = get_store().describe()
    logger.info(f"zedex {__version__} serving {details['root']} in {resolver.mode_name} mode")
    logger.info(f"Indexed extensions: {resolver.indexed_extensions}")
    logger.info(f"Release channels on disk: {', '.join(details['release_channels']) or 'none'}")

    app.state.refresh_task = None
    if config.proxy_mode and config.index_refresh_interval_seconds > 0:
        app.state.refresh_task = asyncio.create_task(
            index_refresh_loop(resolver, config.index_refresh_interval_seconds)
        )


@app.on_event("shutdown")
async def shutdown_event() -> None:
    task = getattr(app.state, "refresh_task", None)
    if task is not None:
        task.cancel()


@app.get("/health")
async def health() -> dict:
    """
    Lightweight health check endpoint.
    """
    resolver = get_resolver()
    return {
        "status": "ok",
        "version": __version__,
        "mode": resolver.mode_name,
        "uptime_seconds": int(time.monotonic() - _started_at),
        "extensions_loaded": resolver.indexed_extensions,
    }


app.include_router(extensions_router, tags=["extensions"])
app.include_router(releases_router, tags=["releases"])


if __name__ == "__main__":
    import uvicorn

    config = get_config()
    uvicorn.run(
        "zedex.main:app",
        host=config.host,
        port=config.port,
    )
