"""Entry point for the FastAPI-powered Stremio addon."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import Settings, settings
from .database import Database
from .services.addon import AddonService
from .services.cache import (
    CacheBackend,
    CacheStore,
    DatabaseBackend,
    JsonFileBackend,
    MemoryBackend,
)
from .services.jellyfin import JellyfinClient
from .services.session import SessionManager
from .services.tmdb import TMDBClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ADDON_VERSION = "4.0.0"
CONTENT_TYPES = ("movie", "series")
CATALOG_IDS = {"movie": "jellyfin-movies", "series": "jellyfin-series"}

app: FastAPI


def build_cache_stores(
    config: Settings, database: Database | None
) -> tuple[CacheStore, CacheStore]:
    """Return the library and metadata cache stores for the configured backend."""

    library_backend: CacheBackend
    metadata_backend: CacheBackend
    if config.cache_backend == "database" and database is not None:
        library_backend = DatabaseBackend(database.session_factory, "library")
        metadata_backend = DatabaseBackend(database.session_factory, "metadata")
    elif config.cache_backend == "memory":
        library_backend = MemoryBackend()
        metadata_backend = MemoryBackend()
    else:
        library_backend = JsonFileBackend(config.data_dir / "library-cache.json")
        metadata_backend = JsonFileBackend(config.data_dir / "tmdb-cache.json")
    return (
        CacheStore(library_backend, name="library"),
        CacheStore(metadata_backend, name="metadata"),
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    jellyfin_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=10.0))
    )
    tmdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
    )
    database: Database | None = None
    if settings.cache_backend == "database":
        database = Database(settings.database_url)
        await database.create_all()

    library_cache, metadata_cache = build_cache_stores(settings, database)
    sessions = SessionManager(settings, jellyfin_http)
    library = JellyfinClient(settings, jellyfin_http, sessions, library_cache)
    metadata = TMDBClient(settings, tmdb_http, metadata_cache)
    app.state.addon_service = AddonService(settings, sessions, library, metadata)

    logger.info("Addon ready at %s/manifest.json", settings.public_url)
    logger.info("Jellyfin server: %s", settings.jellyfin_server or "<not configured>")
    if not settings.metadata_enabled:
        logger.info("TMDB_API_KEY not set; serving library metadata only")

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        if database is not None:
            await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Stremio addon serving a Jellyfin library enriched by TMDB",
        version=ADDON_VERSION,
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_addon_service(app: FastAPI) -> AddonService:
    service = getattr(app.state, "addon_service", None)
    if not isinstance(service, AddonService):
        raise RuntimeError("Addon service not initialised")
    return service


def build_manifest(config: Settings) -> dict[str, Any]:
    return {
        "id": "org.jellyfin.stremio",
        "version": ADDON_VERSION,
        "name": config.app_name,
        "description": "Movies and series from your Jellyfin library.",
        "resources": ["catalog", "meta", "stream"],
        "types": list(CONTENT_TYPES),
        "catalogs": [
            {
                "type": content_type,
                "id": CATALOG_IDS[content_type],
                "name": f"{config.app_name} {'Movies' if content_type == 'movie' else 'Series'}",
            }
            for content_type in CONTENT_TYPES
        ],
        "idPrefixes": ["lib:", "jf:"],
    }


def register_routes(fastapi_app: FastAPI) -> None:
    def _validate_type(content_type: str) -> None:
        if content_type not in CONTENT_TYPES:
            raise HTTPException(status_code=400, detail="Unsupported content type")

    async def _catalog_endpoint(content_type: str, catalog_id: str) -> JSONResponse:
        _validate_type(content_type)
        if catalog_id != CATALOG_IDS[content_type]:
            raise HTTPException(status_code=404, detail=f"Unknown catalog {catalog_id}")
        service = get_addon_service(fastapi_app)
        entries = await service.list_catalog(content_type)  # type: ignore[arg-type]
        return JSONResponse({"metas": [entry.to_payload() for entry in entries]})

    @fastapi_app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return f"OK - {settings.app_name}"

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/manifest.json")
    async def manifest() -> dict[str, Any]:
        return build_manifest(settings)

    @fastapi_app.get("/catalog/{content_type}/{catalog_id}.json")
    async def catalog(content_type: str, catalog_id: str) -> JSONResponse:
        return await _catalog_endpoint(content_type, catalog_id)

    @fastapi_app.get("/catalog/{content_type}/{catalog_id}/{extra}.json")
    async def catalog_with_extra(
        content_type: str, catalog_id: str, extra: str
    ) -> JSONResponse:
        return await _catalog_endpoint(content_type, catalog_id)

    @fastapi_app.get("/meta/{content_type}/{media_id}.json")
    async def meta(content_type: str, media_id: str) -> JSONResponse:
        _validate_type(content_type)
        service = get_addon_service(fastapi_app)
        result = await service.get_meta(media_id, content_type)  # type: ignore[arg-type]
        return JSONResponse({"meta": result.to_payload()})

    @fastapi_app.get("/stream/{content_type}/{media_id}.json")
    async def stream(content_type: str, media_id: str) -> JSONResponse:
        _validate_type(content_type)
        service = get_addon_service(fastapi_app)
        streams = await service.get_streams(media_id, content_type)  # type: ignore[arg-type]
        return JSONResponse({"streams": [target.to_payload() for target in streams]})


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
