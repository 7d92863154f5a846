"""FastAPI application exposing the translation pipeline to thin clients."""

from __future__ import annotations

import shutil
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from fastapi import (
    FastAPI,
    File,
    Form,
    HTTPException,
    UploadFile,
    status,
)
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from .. import __version__
from ..config import APP_DIR, load_config
from ..errors import (
    ConfigurationMissing,
    KreyolError,
    NetworkFailure,
)
from ..history import HistoryError, HistoryStore
from ..models import Direction, TranslationEntry
from ..pipeline import TranslationPipeline
from ..providers import TranslationProvider, select_provider

MEDIA_ROOT = APP_DIR / "uploads"

app = FastAPI(
    title="kreyol API",
    description="Haitian Creole / English speech translation for kreyol clients.",
    version=__version__,
)

_history: Optional[HistoryStore] = None
_history_lock = threading.Lock()
_pipeline_lock = threading.Lock()
_provider_factory: Callable[[], TranslationProvider] = select_provider


class HealthResponse(BaseModel):
    status: str = "ok"
    provider: Optional[str] = None
    detail: Optional[str] = None


class EntryPayload(BaseModel):
    id: uuid.UUID
    timestamp: datetime
    source_text: str
    translated_text: str
    direction: Direction


class TranslationResponse(BaseModel):
    source_text: str
    translated_text: str
    provider: str
    direction: Direction
    entry_id: Optional[uuid.UUID] = None
    saved: bool


def _ensure_media_root() -> Path:
    MEDIA_ROOT.mkdir(parents=True, exist_ok=True)
    return MEDIA_ROOT


def _get_history() -> HistoryStore:
    global _history
    if _history is not None:
        return _history
    with _history_lock:
        if _history is None:
            _history = HistoryStore(max_entries=load_config().history_limit)
    return _history


def _entry_to_payload(entry: TranslationEntry) -> EntryPayload:
    return EntryPayload(
        id=entry.id,
        timestamp=entry.timestamp,
        source_text=entry.source_text,
        translated_text=entry.translated_text,
        direction=entry.direction,
    )


def _error_status(exc: KreyolError) -> int:
    if isinstance(exc, ConfigurationMissing):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, NetworkFailure):
        return status.HTTP_504_GATEWAY_TIMEOUT
    return status.HTTP_502_BAD_GATEWAY


@app.on_event("startup")
async def prepare_storage() -> None:
    _ensure_media_root()


@app.get("/health", response_model=HealthResponse)
async def healthcheck() -> HealthResponse:
    try:
        provider = _provider_factory()
    except ConfigurationMissing as exc:
        return HealthResponse(status="unconfigured", detail=str(exc))
    return HealthResponse(provider=provider.label)


@app.get("/history", response_model=list[EntryPayload])
async def list_history() -> list[EntryPayload]:
    return [_entry_to_payload(entry) for entry in _get_history().entries]


@app.get("/history/{entry_id}", response_model=EntryPayload)
async def get_history_entry(entry_id: str) -> EntryPayload:
    try:
        entry = _get_history().get_entry(entry_id)
    except HistoryError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _entry_to_payload(entry)


@app.delete("/history/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_history_entry(entry_id: str) -> None:
    if not _get_history().delete_entry(entry_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"History entry {entry_id} not found",
        )


@app.delete("/history", status_code=status.HTTP_204_NO_CONTENT)
async def clear_history() -> None:
    _get_history().clear_all()


@app.post("/translations", response_model=TranslationResponse, status_code=status.HTTP_201_CREATED)
async def create_translation(
    file: UploadFile = File(...),
    direction: Direction = Form(Direction.CREOLE_TO_ENGLISH),
) -> TranslationResponse:
    if not _pipeline_lock.acquire(blocking=False):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A translation is already in progress.",
        )
    try:
        media_dir = _ensure_media_root()
        suffix = Path(file.filename or "recording.m4a").suffix or ".m4a"
        destination = media_dir / f"{uuid.uuid4().hex}{suffix}"
        try:
            with destination.open("wb") as output:
                shutil.copyfileobj(file.file, output)
        except Exception:
            destination.unlink(missing_ok=True)
            raise

        pipeline = TranslationPipeline(
            history=_get_history(),
            provider_factory=_provider_factory,
            direction=direction,
        )
        outcome = await run_in_threadpool(pipeline.process_recording, destination)
    finally:
        _pipeline_lock.release()

    if outcome.error is not None:
        raise HTTPException(status_code=_error_status(outcome.error), detail=str(outcome.error))

    result = outcome.result
    return TranslationResponse(
        source_text=result.source_text,
        translated_text=result.translated_text,
        provider=result.provider_label,
        direction=direction,
        entry_id=outcome.entry.id if outcome.entry else None,
        saved=outcome.entry is not None,
    )
