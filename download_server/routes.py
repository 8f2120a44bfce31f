"""Route handlers and the route table the app is built from."""
import asyncio
import html
import mimetypes
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
from starlette.datastructures import UploadFile

from download_server.auth import require_token, require_token_if_configured
from download_server.config import KV_PROBE_KEY, Settings
from download_server.headers import download_headers, json_headers
from download_server.logger_config import get_logger, structured_log
from download_server.schemas import (
    AllStatsResponse,
    ErrorResponse,
    FileEntry,
    FileListResponse,
    KVTestResponse,
    LinkDescriptor,
    ResetStatsResponse,
    StatsResponse,
    UploadResponse,
)
from download_server.services.counter_store import CounterStore, counter_key
from download_server.services.download_tracker import DownloadTracker
from download_server.services.storage_manager import StorageManager
from download_server.validation import validate_filename

logger = get_logger("routes")


def json_response(model: BaseModel, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        content=model.model_dump(mode="json", exclude_none=True),
        status_code=status_code,
        headers=json_headers(),
    )


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _object_store(request: Request) -> StorageManager:
    return request.app.state.object_store


def _counter_store(request: Request) -> CounterStore:
    return request.app.state.counter_store


def _tracker(request: Request) -> DownloadTracker:
    return request.app.state.download_tracker


def _base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def _require_filename(filename: str) -> None:
    if not filename:
        raise HTTPException(status_code=400, detail="Filename required")


async def generate_link(request: Request, filename: str):
    """Return a download link descriptor. Storage is not touched."""
    settings = _settings(request)
    logger.debug(f"Generating download URL for: {filename}")

    validate_filename(filename, settings.allowed_extensions)
    require_token_if_configured(request, settings)

    descriptor = LinkDescriptor(
        url=f"{_base_url(request)}/download/{quote(filename)}",
        filename=filename,
        expires=int(time.time() * 1000) + settings.download_expiry * 1000,
    )
    logger.debug(f"Generated URL response: {descriptor}")
    return json_response(descriptor)


async def download_file(request: Request, filename: str):
    """Stream a stored file and queue a download count update."""
    settings = _settings(request)
    logger.info(f"Receiving download request for: {filename}")

    validate_filename(filename, settings.allowed_extensions)

    try:
        stored = await _object_store(request).get(filename)
    except Exception as e:
        logger.error(f"Error retrieving file {filename}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error retrieving file")

    if stored is None:
        logger.debug(f"File not found in storage: {filename}")
        raise HTTPException(status_code=404, detail="File not found")

    headers = download_headers(filename, settings.download_expiry, settings.cors_allow_headers)
    headers['Content-Length'] = str(stored.size)
    if settings.debug and request.headers.get("X-Debug") == "true":
        # Keys may be non-ASCII, header values must be latin-1
        headers['X-Debug-Filename'] = quote(filename, safe="/")
        headers['X-Debug-Count-Key'] = quote(counter_key(filename, settings.counter_prefix), safe="/:")

    content_type = stored.content_type
    if not content_type:
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"

    if request.method == "HEAD":
        return Response(status_code=200, media_type=content_type, headers=headers)

    _tracker(request).submit(filename)
    logger.info(structured_log("Download served", event="download_served", filename=filename, size=stored.size))
    return StreamingResponse(stored.iter_chunks(), media_type=content_type, headers=headers)


async def upload_file(request: Request):
    """Store a multipart upload (`file`, optional `filename`)."""
    settings = _settings(request)
    logger.info("Upload request received")

    require_token(request, settings)

    form = await request.form()
    file = form.get("file")
    if not isinstance(file, UploadFile):
        file = None
    filename = form.get("filename")
    if not isinstance(filename, str) or not filename:
        filename = file.filename if file else None

    if file is None or not filename:
        logger.debug("No file provided in upload")
        raise HTTPException(status_code=400, detail="No file provided")

    validate_filename(filename, settings.allowed_extensions, detail="Invalid file extension")

    try:
        stored = await _object_store(request).put(filename, file, content_type=file.content_type)
    except Exception as e:
        logger.error(f"Upload failed for {filename}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Upload failed")
    finally:
        await file.close()

    logger.info(structured_log("File uploaded", event="file_uploaded", filename=filename, size=stored.size))
    base = _base_url(request)
    return json_response(UploadResponse(
        filename=filename,
        url=f"{base}/download/{quote(filename)}",
        size=stored.size,
        stats_url=f"{base}/stats/{quote(filename)}",
    ))


async def list_files(request: Request):
    """List stored files with their download counts."""
    counters = _counter_store(request)
    try:
        objects = await _object_store(request).list()
        counts = await asyncio.gather(*(counters.read(obj.key) for obj in objects))
    except Exception as e:
        logger.error(f"Error listing files: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing files")

    files = [
        FileEntry(
            key=obj.key,
            size=obj.size,
            uploaded=obj.uploaded,
            downloads=count,
            stats_url=f"/stats/{quote(obj.key, safe='')}",
            download_url=f"/download/{quote(obj.key, safe='')}",
        )
        for obj, count in zip(objects, counts)
    ]
    logger.debug(f"Files listed: {len(files)}")
    return json_response(FileListResponse(
        files=files,
        total_files=len(files),
        total_downloads=sum(f.downloads for f in files),
    ))


async def file_stats(request: Request, filename: str):
    """Download count for one file. Backend failures still answer 200 with zero downloads."""
    _require_filename(filename)
    settings = _settings(request)
    key = counter_key(filename, settings.counter_prefix)

    try:
        downloads = await _counter_store(request).read(filename)
    except Exception as e:
        logger.error(f"Error getting stats for {filename}: {e}", exc_info=True)
        return json_response(StatsResponse(
            success=False,
            filename=filename,
            downloads=0,
            error=str(e),
            message="Could not retrieve stats",
        ))

    return json_response(StatsResponse(
        success=True,
        filename=filename,
        downloads=downloads,
        key=key,
        timestamp=datetime.now(timezone.utc).isoformat(),
    ))


async def all_stats(request: Request):
    try:
        stats = await _counter_store(request).all_counts()
    except Exception as e:
        logger.error(f"Error getting all stats: {e}", exc_info=True)
        return json_response(
            ErrorResponse(error=str(e), message="Could not retrieve stats"),
            status_code=500,
        )

    return json_response(AllStatsResponse(
        stats=stats,
        total_files=len(stats),
        total_downloads=sum(stats.values()),
    ))


async def reset_stats(request: Request, filename: str):
    """Delete the download counter for a file."""
    require_token(request, _settings(request))
    _require_filename(filename)

    try:
        await _counter_store(request).reset(filename)
    except Exception as e:
        logger.error(f"Error resetting download count for {filename}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error resetting count")

    logger.info(structured_log("Download count reset", event="count_reset", filename=filename))
    return json_response(ResetStatsResponse(
        message=f"Download count reset for {filename}",
        filename=filename,
    ))


async def kv_selftest(request: Request):
    """Write, read back and delete a probe value in the counter backend."""
    if not _settings(request).kv_selftest_enabled:
        raise HTTPException(status_code=404, detail="Not found")

    counters = _counter_store(request)
    written = f"kv_is_working_{int(time.time() * 1000)}"
    try:
        await counters.put(KV_PROBE_KEY, written)
        read = await counters.get(KV_PROBE_KEY)
        await counters.delete(KV_PROBE_KEY)
    except Exception as e:
        logger.error(f"KV test failed: {e}", exc_info=True)
        return json_response(
            KVTestResponse(success=False, kv_test="FAILED", error=str(e), message="KV is NOT working"),
            status_code=500,
        )

    success = read == written
    return json_response(KVTestResponse(
        success=success,
        kv_test="PASSED" if success else "FAILED",
        written=written,
        read=read,
        message="KV is working correctly" if success else "KV read/write mismatch",
    ))


async def docs_page(request: Request):
    rows = "\n".join(
        f"<tr><td><code>{route.method}</code></td><td><code>{html.escape(route.path)}</code></td>"
        f"<td>{html.escape(route.summary)}</td></tr>"
        for route in ROUTES
    )
    page = f"""<!DOCTYPE html>
<html>
<head><title>Direct Download Service</title></head>
<body>
<h1>Direct Download Service</h1>
<p>File downloads with download tracking.</p>
<table>
<tr><th>Method</th><th>Path</th><th>Description</th></tr>
{rows}
</table>
</body>
</html>"""
    return HTMLResponse(page)


@dataclass(frozen=True)
class Route:
    method: str
    path: str
    endpoint: Callable
    name: str
    summary: str


# Paths are disjoint, so matching does not depend on order
ROUTES: List[Route] = [
    Route("GET", "/", docs_page, "docs", "This page"),
    Route("GET", "/generate/{filename:path}", generate_link, "generate",
          "Download link for a file (Bearer token when configured)"),
    Route("GET", "/download/{filename:path}", download_file, "download",
          "Download a file and count the download"),
    Route("HEAD", "/download/{filename:path}", download_file, "download_head",
          "Download headers only, not counted"),
    Route("POST", "/upload", upload_file, "upload",
          "Upload a file as multipart form data (Bearer token)"),
    Route("GET", "/files", list_files, "files", "List files with download counts"),
    Route("GET", "/stats/{filename:path}", file_stats, "stats", "Download count for one file"),
    Route("GET", "/all-stats", all_stats, "all_stats", "Download counts for every file"),
    Route("POST", "/reset-stats/{filename:path}", reset_stats, "reset_stats",
          "Reset the download count for a file (Bearer token)"),
    Route("GET", "/debug/kv", kv_selftest, "kv_selftest", "Counter backend self-test"),
]


def build_router() -> APIRouter:
    router = APIRouter()
    for route in ROUTES:
        router.add_api_route(
            route.path,
            route.endpoint,
            methods=[route.method],
            name=route.name,
            summary=route.summary,
        )
    return router
