"""FastAPI application exposing the MusicSheet library over HTTP."""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from musicsheet.config import LibrarySettings
from musicsheet.errors import (
    AlreadyExists,
    InvalidMetadata,
    LibraryError,
    NotFound,
    PartialFailure,
)
from musicsheet.index.search import filter_entries, sort_entries, unique_values
from musicsheet.library import DocumentStore
from musicsheet.models import AppConfig

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="MusicSheet", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_CODES = (
    (NotFound, 404),
    (AlreadyExists, 409),
    (InvalidMetadata, 422),
)

_state_lock = threading.Lock()
_settings: Optional[LibrarySettings] = None
_library: Optional[DocumentStore] = None


class MetadataPatch(BaseModel):
    """Partial metadata update. Immutable and unknown keys are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: Optional[str] = None
    composer: Optional[str] = None
    instrument: Optional[str] = None
    last_accessed: Optional[str] = Field(None, alias="lastAccessed")
    sort_order: Optional[int] = Field(None, alias="sortOrder")
    side_by_side: Optional[bool] = Field(None, alias="sideBySide")
    page_offset: Optional[bool] = Field(None, alias="pageOffset")


class ConfigPatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sort_by: Optional[Literal["title", "composer", "dateAdded", "lastAccessed"]] = Field(
        None, alias="sortBy"
    )
    sort_direction: Optional[Literal["asc", "desc"]] = Field(None, alias="sortDirection")
    last_opened_document_id: Optional[str] = Field(None, alias="lastOpenedDocumentId")
    recent_documents: Optional[List[str]] = Field(None, alias="recentDocuments")


class RecentPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(..., alias="documentId")


def configure(settings: LibrarySettings) -> None:
    """Point the app at a library; the previous instance is closed."""
    global _settings, _library
    with _state_lock:
        previous = _library
        _settings = settings
        _library = None
    if previous is not None:
        previous.close()


def get_library() -> DocumentStore:
    global _library
    with _state_lock:
        if _library is None:
            settings = _settings or LibrarySettings()
            library = DocumentStore.from_settings(settings, Path.cwd())
            library.initialize()
            _library = library
        return _library


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    global _library
    with _state_lock:
        library, _library = _library, None
    if library is not None:
        library.close()


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError) -> JSONResponse:
    status_code = next((code for kind, code in _STATUS_CODES if isinstance(exc, kind)), 500)
    body: Dict[str, Any] = {"success": False, "error": str(exc), "kind": type(exc).__name__}
    if isinstance(exc, PartialFailure):
        body["documentId"] = exc.document_id
        body["failedStep"] = exc.failed_step
    if status_code == 500:
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=body)


@app.post("/api/storage/init")
def initialize_storage(library: DocumentStore = Depends(get_library)) -> dict[str, Any]:
    library.initialize()
    return {"success": True}


@app.get("/api/documents")
def list_documents(
    sort_by: Optional[Literal["title", "composer", "dateAdded", "lastAccessed"]] = None,
    direction: Literal["asc", "desc"] = "asc",
    instrument: Optional[str] = None,
    composer: Optional[str] = None,
    library: DocumentStore = Depends(get_library),
) -> dict[str, Any]:
    """List catalog entries, optionally filtered and sorted."""
    entries = library.list()
    if instrument or composer:
        entries = filter_entries(entries, instrument=instrument, composer=composer)
    if sort_by is not None:
        entries = sort_entries(entries, sort_by, direction)
    return {"success": True, "documents": [entry.to_dict() for entry in entries]}


@app.get("/api/documents/facets")
def document_facets(library: DocumentStore = Depends(get_library)) -> dict[str, Any]:
    entries = library.list()
    return {
        "success": True,
        "instruments": unique_values(entries, "instrument"),
        "composers": unique_values(entries, "composer"),
    }


@app.post("/api/documents")
async def upload_document(
    file: UploadFile = File(...),
    file_name: Optional[str] = Form(None, alias="fileName"),
    library: DocumentStore = Depends(get_library),
) -> dict[str, Any]:
    payload = await file.read()
    name = file_name or file.filename
    record = await asyncio.to_thread(library.upload, payload, name)
    return {"success": True, "documentId": record.id, "metadata": record.to_dict()}


@app.get("/api/documents/{document_id}")
def get_document(document_id: str, library: DocumentStore = Depends(get_library)) -> dict[str, Any]:
    return {"success": True, "metadata": library.get(document_id).to_dict()}


@app.patch("/api/documents/{document_id}")
def update_document(
    document_id: str, payload: MetadataPatch, library: DocumentStore = Depends(get_library)
) -> dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True)
    record = library.edit(document_id, changes)
    return {"success": True, "metadata": record.to_dict()}


@app.delete("/api/documents/{document_id}")
def delete_document(document_id: str, library: DocumentStore = Depends(get_library)) -> dict[str, Any]:
    deleted = library.remove(document_id)
    return {"success": True, "deleted": deleted}


@app.post("/api/documents/{document_id}/open")
def open_document(document_id: str, library: DocumentStore = Depends(get_library)) -> dict[str, Any]:
    record = library.open(document_id)
    return {"success": True, "metadata": record.to_dict()}


@app.get("/api/documents/{document_id}/pdf")
def document_pdf(document_id: str, library: DocumentStore = Depends(get_library)) -> FileResponse:
    path = library.pdf_file(document_id)
    return FileResponse(path, media_type="application/pdf")


@app.get("/api/documents/{document_id}/thumbnail")
def document_thumbnail(
    document_id: str, refresh: bool = False, library: DocumentStore = Depends(get_library)
) -> FileResponse:
    path = library.thumbnail(document_id, refresh=refresh)
    if path is None:
        raise NotFound("thumbnail", document_id)
    return FileResponse(path, media_type="image/png")


@app.get("/api/search")
def search_documents(
    q: str = "", limit: int = 10, library: DocumentStore = Depends(get_library)
) -> dict[str, Any]:
    limit = max(1, min(limit, 50))
    results = library.search(q, limit=limit)
    return {
        "success": True,
        "results": [{"document": result.entry.to_dict(), "score": result.score} for result in results],
    }


@app.get("/api/config")
def get_config(library: DocumentStore = Depends(get_library)) -> dict[str, Any]:
    return {"success": True, "config": library.preferences.load().to_dict()}


@app.patch("/api/config")
def update_config(payload: ConfigPatch, library: DocumentStore = Depends(get_library)) -> dict[str, Any]:
    """Merge the supplied preference fields into the stored record."""
    changes = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key == "last_opened_document_id"
    }
    last_opened = changes.get("last_opened_document_id")
    if last_opened is not None and not library.metadata.exists(last_opened):
        raise InvalidMetadata(f"Cannot mark unknown document '{last_opened}' as last opened.")
    recents = changes.pop("recent_documents", None)

    def apply(config: AppConfig) -> None:
        for key, value in changes.items():
            setattr(config, key, value)
        if recents is not None:
            # oldest first so the head of the submitted list ends up in front
            config.recent_documents = []
            for document_id in reversed(recents):
                config.add_recent(document_id)

    config = library.preferences.update(apply)
    return {"success": True, "config": config.to_dict()}


@app.post("/api/config/recent")
def add_recent_document(
    payload: RecentPayload, library: DocumentStore = Depends(get_library)
) -> dict[str, Any]:
    config = library.preferences.add_recent(payload.document_id)
    return {"success": True, "config": config.to_dict()}


@app.post("/api/maintenance/reconcile")
def reconcile_catalog(library: DocumentStore = Depends(get_library)) -> dict[str, Any]:
    report = library.reconcile()
    return {
        "success": True,
        "added": report.added,
        "refreshed": report.refreshed,
        "removed": report.removed,
        "corrupt": report.corrupt,
    }
