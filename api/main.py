"""HTTP surface for enqueueing work and polling queue/failure state."""

from __future__ import annotations

import logging
import os
import shutil

from fastapi import FastAPI, File, HTTPException, UploadFile
from pydantic import BaseModel

from config.settings import load_settings
from engine.errors import InvalidUrlError
from engine.events import setup_logging
from engine.ingest import build_ingest_service, new_item_id
from engine.paths import build_engine_paths
from engine.scope import upload_temp_name
from media.mime import file_extension
from scheduler.runner import build_scheduler

logger = logging.getLogger(__name__)

APP_NAME = "ingestr"


class DownloadRequest(BaseModel):
    url: str


app = FastAPI(
    title=APP_NAME,
    description="ingestr API for queueing media downloads and uploads and inspecting failures.",
)


def _service():
    service = getattr(app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ingest service is not ready")
    return service


@app.on_event("startup")
async def startup():
    app.state.paths = build_engine_paths()
    setup_logging(app.state.paths.log_dir)
    app.state.settings = load_settings(os.environ.get("INGESTR_CONFIG"))
    app.state.service = build_ingest_service(app.state.settings, app.state.paths)
    app.state.scheduler = build_scheduler(app.state.service, app.state.settings, app.state.paths)
    app.state.scheduler.start()
    logger.info("ingestr started workers=%s db=%s", app.state.settings.workers, app.state.paths.db_path)


@app.on_event("shutdown")
async def shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler:
        scheduler.shutdown(wait=False)
    service = getattr(app.state, "service", None)
    if service:
        service.shutdown(wait=False)


@app.get("/api/queue")
def get_queue():
    return _service().queue_snapshot()


@app.post("/api/downloads", status_code=202)
def enqueue_download(payload: DownloadRequest):
    try:
        item_id = _service().enqueue_download(payload.url)
    except InvalidUrlError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"id": item_id, "status": "queued"}


@app.post("/api/uploads", status_code=202)
def enqueue_upload(file: UploadFile = File(...)):
    service = _service()
    original_name = os.path.basename(file.filename or "")
    if not original_name:
        raise HTTPException(status_code=400, detail="Uploaded file has no name")
    upload_id = new_item_id()
    temp_path = os.path.join(
        app.state.paths.upload_temp_dir, upload_temp_name(upload_id, file_extension(original_name))
    )
    with open(temp_path, "wb") as handle:
        shutil.copyfileobj(file.file, handle)
    service.enqueue_upload(temp_path, original_name, file.content_type, upload_id=upload_id)
    return {"id": upload_id, "status": "queued"}


@app.delete("/api/queue/{item_id}")
def cancel_item(item_id: str):
    if not _service().cancel(item_id):
        raise HTTPException(status_code=404, detail="Queue item not found")
    return {"id": item_id, "status": "cancelled"}


@app.get("/api/failed-downloads")
def list_failed_downloads(status: str | None = None):
    records = _service().failed_downloads.list(status=status)
    return {"items": [record.to_dict() for record in records]}


@app.post("/api/failed-downloads/{record_id}/retry", status_code=202)
def retry_failed_download(record_id: int):
    service = _service()
    if service.failed_downloads.get(record_id) is None:
        raise HTTPException(status_code=404, detail="Failed download not found")
    item_id = service.retry_failed_download(record_id)
    if item_id is None:
        raise HTTPException(status_code=409, detail="Failed download is not retryable right now")
    return {"id": item_id, "failed_download_id": record_id, "status": "queued"}


@app.delete("/api/failed-downloads/{record_id}")
def delete_failed_download(record_id: int):
    if not _service().failed_downloads.delete(record_id):
        raise HTTPException(status_code=404, detail="Failed download not found")
    return {"id": record_id, "deleted": True}


@app.get("/api/failed-uploads")
def list_failed_uploads():
    return {"items": [record.to_dict() for record in _service().failed_uploads.list()]}


if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("INGESTR_HOST", "127.0.0.1")
    port = int(os.environ.get("INGESTR_PORT", "8000"))
    uvicorn.run("api.main:app", host=host, port=port, reload=False)
