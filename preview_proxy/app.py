from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse, Response

from preview_proxy.cache_store import ArtifactKind, is_cache_key
from preview_proxy.config import PreviewSettings, load_settings
from preview_proxy.dispatcher import PreviewService
from preview_proxy.errors import InternalError, NotFound, PreviewError
from preview_proxy.type_detection import detect

logger = logging.getLogger(__name__)


def _error_response(exc: PreviewError) -> PlainTextResponse:
    message = exc.message if exc.status_code < 500 else f"Server error: {exc.message}"
    return PlainTextResponse(message, status_code=exc.status_code)


def create_app(
    settings: PreviewSettings | None = None,
    service: PreviewService | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    service = service or PreviewService(settings)
    cache = service.cache

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await asyncio.to_thread(cache.ensure_dir)
        if settings.cache_max_entries or settings.cache_max_bytes:
            await asyncio.to_thread(
                cache.prune,
                max_entries=settings.cache_max_entries,
                max_bytes=settings.cache_max_bytes,
            )
        logger.info("Office viewer ready: http://localhost:%s/preview?src=...", settings.port)
        yield

    app = FastAPI(title="Document Preview Proxy", lifespan=lifespan)
    app.state.settings = settings
    app.state.preview_service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allowed_origins),
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(PreviewError)
    async def preview_error_handler(_: Request, exc: PreviewError):
        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc.message)
        return _error_response(exc)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    @app.get("/preview")
    async def preview(src: str | None = Query(None)):
        try:
            result = await service.preview(src)
        except PreviewError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure while previewing %s", src)
            raise InternalError(str(exc) or exc.__class__.__name__) from exc
        return HTMLResponse(result.body)

    @app.get("/pdf/{key}")
    async def cached_pdf(key: str):
        if not is_cache_key(key) or not await cache.exists(key, ArtifactKind.PDF):
            return PlainTextResponse("PDF not found", status_code=404)
        return FileResponse(
            path=cache.path_for(key, ArtifactKind.PDF),
            media_type="application/pdf",
            filename="preview.pdf",
            content_disposition_type="inline",
        )

    @app.get("/download/{key}")
    async def cached_download(key: str):
        if not is_cache_key(key):
            return PlainTextResponse("File not found", status_code=404)
        try:
            content = await cache.read_bytes(key, ArtifactKind.RAW)
        except NotFound:
            return PlainTextResponse("File not found", status_code=404)
        except OSError:
            logger.exception("Reading cached raw artifact %s failed", key)
            return PlainTextResponse("Error downloading file", status_code=500)

        detected = detect(content, "")
        return Response(
            content=content,
            media_type=detected.mime_type or "application/octet-stream",
            headers={"Content-Disposition": f'attachment; filename="file{detected.extension}"'},
        )

    return app


app = create_app()
