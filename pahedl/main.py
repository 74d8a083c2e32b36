"""
FastAPI pahe.win Download Service
Runs the pahe.win -> Kwik pipeline on request and serves the resulting files
"""

import os
import time
import asyncio
import logging
import mimetypes
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Response
from fastapi.responses import FileResponse, JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .models import (
    DownloadRequest,
    DownloadResponse,
    ErrorResponse,
    HealthResponse,
    HealthStats,
    ErrorCode,
    ErrorDetail,
)
from .downloader import downloader

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# App metadata
VERSION = __version__
start_time = time.time()

# Statistics tracking
stats = {
    "total_downloads": 0,
    "active_downloads": 0,
    "failed_downloads": 0,
}

ERROR_STATUS = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.FETCH_FAILED: 502,
    ErrorCode.EXTRACTION_FAILED: 502,
    ErrorCode.DECODE_FAILED: 502,
    ErrorCode.SUBMISSION_REJECTED: 502,
    ErrorCode.WRITE_FAILED: 500,
}

# One pipeline at a time
download_lock = asyncio.Lock()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for startup/shutdown tasks"""
    logger.info("🚀 Starting pahe.win download service...")
    logger.info(f"Version: {VERSION}")
    logger.info(f"📁 Downloads directory: {downloader.storage.downloads_dir.resolve()}")
    yield
    logger.info("Shutting down pahe.win download service...")


# Create FastAPI app
app = FastAPI(
    title="pahe.win Download Service",
    description="Resolves pahe.win links through Kwik and downloads the file",
    version=VERSION,
    lifespan=lifespan,
)

# CORS configuration
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# API ENDPOINTS
# ============================================================================


@app.post("/api/v1/download", response_model=DownloadResponse)
async def download_file(request: DownloadRequest) -> Response:
    """
    Resolve a pahe.win link and download the file

    **Flow:**
    1. Validate the pahe.win URL
    2. Follow it to the Kwik page and decode the download form
    3. Submit the form and stream the file into the downloads directory
    4. Return a path under /downloads/ serving the file
    """
    logger.info(f"📥 Download request: {request.page_url}")

    stats["active_downloads"] += 1
    try:
        async with download_lock:
            result, error = await downloader.download(request.page_url)

        if error or not result:
            stats["failed_downloads"] += 1
            if error is None:
                error = ErrorDetail(code=ErrorCode.SERVER_ERROR, stage="unknown", message="Unknown error")
            return JSONResponse(
                status_code=ERROR_STATUS.get(error.code, 500),
                content=ErrorResponse(error=error).model_dump(mode='json')
            )

        stats["total_downloads"] += 1
        download_url = f"/downloads/{os.path.basename(result.file_path)}"
        logger.info(f"✅ Download URL: {download_url}")

        return JSONResponse(
            content=DownloadResponse(
                download_url=download_url,
                result=result,
            ).model_dump(mode='json')
        )

    except Exception as e:
        stats["failed_downloads"] += 1
        logger.exception(f"💥 Unexpected error during download: {e}")
        error = ErrorDetail(
            code=ErrorCode.SERVER_ERROR,
            stage="service",
            message=f"Internal server error: {str(e)}",
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error=error).model_dump(mode='json')
        )
    finally:
        stats["active_downloads"] -= 1


@app.get("/downloads/{filename}")
async def serve_download(filename: str):
    """
    Serve a downloaded file
    """
    try:
        file_path = downloader.storage.get_download_path(filename)
    except ValueError:
        raise HTTPException(status_code=404, detail="File not found")

    if not file_path.is_file():
        logger.warning(f"⚠️ File not found: {filename}")
        raise HTTPException(status_code=404, detail="File not found")

    media_type, _ = mimetypes.guess_type(file_path.name)
    logger.info(f"📤 Serving file: {file_path.name} ({file_path.stat().st_size / 1024 / 1024:.2f} MB)")

    return FileResponse(
        path=file_path,
        media_type=media_type or "application/octet-stream",
        filename=file_path.name,
    )


@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint for monitoring
    """
    return HealthResponse(
        status="healthy",
        version=VERSION,
        uptime_seconds=time.time() - start_time,
        stats=HealthStats(
            total_downloads=stats["total_downloads"],
            active_downloads=stats["active_downloads"],
            failed_downloads=stats["failed_downloads"],
            disk_usage_percent=downloader.storage.get_disk_usage(),
        ),
    )


@app.get("/")
async def root():
    """Root endpoint with service info"""
    return {
        "service": "pahe.win Download Service",
        "version": VERSION,
        "status": "running",
        "endpoints": {
            "download": "/api/v1/download",
            "health": "/api/v1/health",
        },
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
