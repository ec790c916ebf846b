# rsizevideo/main.py
"""HTTP surfaces.

Two apps share one job store: the processing app (upload + status, API key
protected, runs the cleanup sweep) and the download app (public, the job id
is the capability).
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from .cache import ResponseCache
from .config import Settings
from .delivery import RangeNotSatisfiable, content_disposition, expires_in, iter_file, parse_range
from .errors import AuthError, EngineError, NotFoundError, ServiceError
from .jobs import JobOrchestrator
from .lifecycle import is_expired, remaining_seconds, run_periodic_sweep
from .notify import Notifier
from .store import JobStore

logger = logging.getLogger(__name__)

EXPOSE_HEADERS = ["Content-Disposition", "X-Expires-In", "Content-Range", "Accept-Ranges", "Content-Length"]


# ------------ Shared plumbing ------------
async def service_error_handler(request: Request, exc: ServiceError):
    if isinstance(exc, EngineError):
        # diagnostic detail stays in the log
        return JSONResponse({"error": "Failed to process video"}, status_code=exc.status_code)
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


async def security_headers(request: Request, call_next):
    resp = await call_next(request)
    resp.headers["X-Content-Type-Options"] = "nosniff"
    resp.headers["Referrer-Policy"] = "no-referrer"
    resp.headers["Cross-Origin-Resource-Policy"] = "cross-origin"
    return resp


def _configure(app: FastAPI, settings: Settings) -> None:
    app.state.settings = settings
    app.add_exception_handler(ServiceError, service_error_handler)
    app.middleware("http")(security_headers)
    if settings.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["GET", "HEAD", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "Range"],
            expose_headers=EXPOSE_HEADERS,
            max_age=86400,
        )


def _health(service: str) -> dict:
    body = {"status": "ok", "service": service}
    try:
        import resource

        body["maxrss_kb"] = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    except ImportError:
        # Not available on this platform
        body["maxrss_kb"] = None
    return body


def get_orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator


def get_cache(request: Request) -> ResponseCache:
    return request.app.state.response_cache


def require_api_key(request: Request, authorization: Optional[str] = Header(None)) -> None:
    expected = request.app.state.settings.api_key
    parts = (authorization or "").split(" ", 1)
    token = parts[1].strip() if len(parts) == 2 and parts[0].lower() == "bearer" else ""
    if not expected or not token or not secrets.compare_digest(token, expected):
        raise AuthError("Unauthorized: Invalid API Key")


# ------------ Processing app ------------
def create_processing_app(
    settings: Settings,
    store: Optional[JobStore] = None,
    notifier: Optional[Notifier] = None,
    cache: Optional[ResponseCache] = None,
) -> FastAPI:
    store = store if store is not None else JobStore(settings.videos_dir)
    notifier = notifier if notifier is not None else Notifier(settings)
    orchestrator = JobOrchestrator(settings, store, notifier)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
        logger.info("Processing server starting; videos in %s", store.root)
        sweeper = asyncio.create_task(
            run_periodic_sweep(
                store,
                settings.uploads_dir,
                settings.ttl_seconds,
                settings.cleanup_interval_min * 60,
            )
        )
        yield
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        if orchestrator.active_jobs:
            logger.info("Waiting for %d background job(s)", orchestrator.active_jobs)
        await orchestrator.drain()

    app = FastAPI(title="rsizevideo processing", lifespan=lifespan)
    _configure(app, settings)
    app.add_middleware(GZipMiddleware, minimum_size=10 * 1024)
    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.response_cache = cache if cache is not None else ResponseCache()

    @app.post("/process-video", dependencies=[Depends(require_api_key)])
    async def process_video(
        video: Optional[UploadFile] = File(None),
        targetSize: Optional[str] = Form(None),
        email: Optional[str] = Form(None),
        orchestrator: JobOrchestrator = Depends(get_orchestrator),
    ):
        return await orchestrator.submit(video, targetSize, email)

    @app.get("/video-status/{job_id}", dependencies=[Depends(require_api_key)])
    def video_status(
        job_id: str,
        orchestrator: JobOrchestrator = Depends(get_orchestrator),
        cache: ResponseCache = Depends(get_cache),
    ):
        return orchestrator.status(job_id, cache=cache)

    @app.get("/health")
    def health():
        body = _health("processing")
        body["activeJobs"] = orchestrator.active_jobs
        return body

    return app


# ------------ Download app ------------
def _delete_expired(store: JobStore, job_id: str) -> None:
    try:
        store.delete(job_id)
        logger.info("Deleted expired job %s on download", job_id)
    except OSError:
        logger.exception("Error deleting expired folder %s", job_id)


def create_download_app(settings: Settings, store: Optional[JobStore] = None) -> FastAPI:
    store = store if store is not None else JobStore(settings.videos_dir)

    app = FastAPI(title="rsizevideo download")
    _configure(app, settings)
    app.state.store = store

    @app.api_route("/download-video/{job_id}/{filename}", methods=["GET", "HEAD"])
    def download_video(job_id: str, filename: str, request: Request):
        try:
            doc = store.read_status(job_id)
        except NotFoundError:
            return JSONResponse({"error": "Video not found"}, status_code=404)

        if is_expired(doc, settings.ttl_seconds):
            return JSONResponse(
                {"error": "File has expired"},
                status_code=404,
                background=BackgroundTask(_delete_expired, store, job_id),
            )

        recorded = str(doc.get("filename") or "")
        if filename != recorded:
            return JSONResponse({"error": "Video file not found"}, status_code=404)
        path = store.file_path(job_id, recorded)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            logger.warning("Job %s is completed but %s is missing", job_id, recorded)
            return JSONResponse({"error": "Video file not found"}, status_code=404)

        headers = {
            "Content-Disposition": content_disposition(recorded),
            "X-Expires-In": expires_in(remaining_seconds(doc, settings.ttl_seconds)),
            "Cache-Control": "public, max-age=3600",
            "Accept-Ranges": "bytes",
        }
        try:
            rng = parse_range(request.headers.get("range"), size)
        except RangeNotSatisfiable:
            headers["Content-Range"] = f"bytes */{size}"
            return Response(status_code=416, headers=headers)

        if request.method == "HEAD":
            # headers only; Content-Length describes the body a GET would send
            if rng is None:
                headers["Content-Length"] = str(size)
                return Response(status_code=200, media_type="video/mp4", headers=headers)
            start, end = rng
            headers["Content-Range"] = f"bytes {start}-{end}/{size}"
            headers["Content-Length"] = str(end - start + 1)
            return Response(status_code=206, media_type="video/mp4", headers=headers)

        if rng is None:
            headers["Content-Length"] = str(size)
            return StreamingResponse(iter_file(path, 0, size), media_type="video/mp4", headers=headers)

        start, end = rng
        length = end - start + 1
        headers["Content-Range"] = f"bytes {start}-{end}/{size}"
        headers["Content-Length"] = str(length)
        return StreamingResponse(
            iter_file(path, start, length), status_code=206, media_type="video/mp4", headers=headers
        )

    @app.get("/health")
    def health():
        return _health("download")

    return app


settings = Settings.from_env()
processing_app = create_processing_app(settings)
download_app = create_download_app(settings, store=processing_app.state.store)
app = processing_app
