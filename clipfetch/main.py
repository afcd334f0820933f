"""
FastAPI clipfetch service
Downloads social/video platform URLs through a resolver API with a yt-dlp
fallback, and manages the per-platform cookies both backends rely on.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import yt_dlp

from . import config
from .archive import DriveUploader
from .backend_client import BackendClient
from .credentials import CredentialStore
from .extractor import ExtractorAdapter
from .models import (
    CookieSubmitRequest,
    CookieSubmitResponse,
    DownloadRequest,
    DownloadSuccessResponse,
    ErrorResponse,
    HealthStats,
    UrlRequest,
)
from .orchestrator import DownloadOrchestrator
from .platforms import CREDENTIAL_PLATFORMS, parse_platform
from .prober import StatusProber
from .resolver import ResolverAdapter
from .storage import StorageManager
from .validator import REASON_EMPTY, ArtifactValidator

# Logging configuration
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

start_time = time.time()

# Statistics tracking
stats = {
    "total_downloads": 0,
    "active_downloads": 0,
    "failed_downloads": 0,
}

# ============================================================================
# COMPOSITION ROOT
# ============================================================================

backend = BackendClient()
storage = StorageManager()
validator = ArtifactValidator()
credentials = CredentialStore(backend)
prober = StatusProber()
orchestrator = DownloadOrchestrator(
    credentials=credentials,
    prober=prober,
    resolver=ResolverAdapter(storage, validator),
    extractor=ExtractorAdapter(storage, validator),
    uploader=DriveUploader(backend),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for startup/shutdown tasks"""
    logger.info("🚀 Starting clipfetch service...")
    logger.info(f"Version: {config.VERSION}")
    logger.info(f"yt-dlp version: {yt_dlp.version.__version__}")
    logger.info(f"Resolver API: {config.RESOLVER_URL}")
    logger.info(f"Backend candidates: {', '.join(config.BACKEND_URL_CANDIDATES)}")
    logger.info(f"📊 Quality limits: {config.MAX_VIDEO_HEIGHT}p max, {config.MAX_VIDEO_FILESIZE_MB}MB max filesize")

    await storage.start_cleanup_scheduler()
    # Don't hold up startup on the credential backend
    cookie_task = asyncio.create_task(credentials.load_all())

    yield

    logger.info("Shutting down clipfetch service...")
    if not cookie_task.done():
        cookie_task.cancel()
    await storage.stop_cleanup_scheduler()


app = FastAPI(
    title="clipfetch",
    description="Social video download service with multi-backend fallback",
    version=config.VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


def _require_url(url):
    if not url or not url.strip():
        raise HTTPException(status_code=400, detail="URL is required")
    return url.strip()


# ============================================================================
# API ENDPOINTS
# ============================================================================


@app.post("/api/check")
async def check_video(request: UrlRequest):
    """Availability probe without downloading"""
    url = _require_url(request.url)
    logger.info(f"🔎 Checking video status: {url}")
    result = await prober.probe(url)
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


@app.post("/api/info")
async def get_video_info(request: UrlRequest):
    """Video metadata without downloading"""
    url = _require_url(request.url)
    logger.info(f"ℹ️ Info request: {url}")
    info = await prober.get_info(url)
    if info is None:
        raise HTTPException(status_code=404, detail="Could not get video info")
    return info.to_wire()


@app.post("/api/download")
async def download_video(request: DownloadRequest):
    """
    Download a video, falling back between the resolver and yt-dlp.

    **Responses** (always HTTP 200 once the request is valid):
    - `success`: file downloaded (and archived if userId/contentHash given)
    - `private` / `geo-blocked` / `removed` / `unavailable`: probe verdict, nothing downloaded
    - `needs-extension`: both backends failed
    """
    url = _require_url(request.url)
    stats["active_downloads"] += 1
    try:
        run = await orchestrator.handle(
            url,
            user_id=request.user_id,
            content_hash=request.content_hash,
            cookies=request.cookies,
        )
        if isinstance(run.response, DownloadSuccessResponse):
            stats["total_downloads"] += 1
        else:
            stats["failed_downloads"] += 1
        return JSONResponse(content=run.response.to_wire())
    except Exception as e:
        stats["failed_downloads"] += 1
        logger.exception(f"💥 Unexpected error during download: {e}")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(message="Internal server error. Please try again later.").to_wire(),
        )
    finally:
        stats["active_downloads"] -= 1


@app.get("/api/file/{filename}")
async def serve_file(filename: str, background_tasks: BackgroundTasks):
    """
    Serve a downloaded file, deleting it shortly after the transfer
    """
    path = storage.resolve(filename)
    if path is None or not path.is_file():
        logger.warning(f"⚠️ File not found: {filename}")
        raise HTTPException(status_code=404, detail="File not found")

    validation = validator.validate(path)
    if not validation.ok:
        logger.warning(f"❌ Refusing to serve {filename}: {validation.reason}")
        if validation.reason == REASON_EMPTY:
            raise HTTPException(status_code=400, detail="File is empty (0KB) - download failed")
        raise HTTPException(status_code=400, detail="File is too small - likely corrupted")

    logger.info(f"📤 Serving file: {filename} ({validation.size_bytes / 1024 / 1024:.2f} MB)")
    background_tasks.add_task(storage.delete_later, path, config.FILE_DELETE_DELAY_SECONDS)

    return FileResponse(
        path=path,
        media_type="video/mp4",
        filename=filename,
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0",
        },
    )


@app.post("/api/cookies")
async def submit_cookies(request: CookieSubmitRequest):
    """Receive cookies pushed by the browser extension"""
    if not request.platform or not request.cookies or not request.cookies.strip():
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(message="Missing platform or cookies").to_wire(),
        )

    try:
        platform = parse_platform(request.platform)
    except ValueError:
        supported = ", ".join(p.value for p in CREDENTIAL_PLATFORMS)
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(message=f"Invalid platform. Supported: {supported}").to_wire(),
        )

    credential = credentials.submit(platform, request.cookies.strip())
    days = credentials.expiry_days(platform)
    logger.info(f"🍪 Received {platform.value} cookies from extension (expires in {days} days)")

    return CookieSubmitResponse(
        message=f"{request.platform} cookies synced successfully! Valid for {days} days.",
        platform=platform.value,
        expires_in=f"{days} days",
        expires_at=credential.expires_at,
    ).to_wire()


@app.get("/api/cookies/status")
async def cookie_status():
    return {"success": True, "cookies": credentials.snapshot()}


@app.get("/api/health")
async def health_check():
    """
    Health check endpoint for monitoring

    **Reports:**
    - Service status and uptime
    - Download statistics and disk usage
    - Cookie sync status per platform
    """
    return {
        "status": "ok",
        "version": config.VERSION,
        "uptimeSeconds": round(time.time() - start_time, 1),
        "environment": config.APP_ENV,
        "resolver": config.RESOLVER_URL,
        "ytDlpVersion": yt_dlp.version.__version__,
        "stats": HealthStats(
            total_downloads=stats["total_downloads"],
            active_downloads=stats["active_downloads"],
            failed_downloads=stats["failed_downloads"],
            disk_usage_percent=storage.get_disk_usage(),
        ).to_wire(),
        "cookies": credentials.snapshot(),
    }


@app.get("/")
async def root():
    """Root endpoint with service info"""
    return {
        "name": "clipfetch",
        "version": config.VERSION,
        "endpoints": {
            "health": "GET /api/health",
            "download": "POST /api/download",
            "info": "POST /api/info",
            "check": "POST /api/check",
            "cookies": "POST /api/cookies",
            "cookiesStatus": "GET /api/cookies/status",
            "file": "GET /api/file/{filename}",
        },
        "docs": "/docs",
    }


# ============================================================================
# ERROR HANDLERS
# ============================================================================


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request, exc: StarletteHTTPException):
    """Every error body carries a human-readable message"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail, "message": exc.detail},
    )


@app.exception_handler(500)
async def server_error_handler(request, exc):
    logger.exception("Internal server error")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error. Please try again later."},
    )


def run():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)


if __name__ == "__main__":
    run()
