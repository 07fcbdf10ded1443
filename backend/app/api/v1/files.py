"""Workout file uploads: single GPX/FIT import, batch import, supported formats."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, http_error
from app.config import settings
from app.db.session import get_db
from app.models.user import User
from app.schemas.ingestion import BatchImportResponse, ImportResponse
from app.services.errors import IngestionError
from app.services.ingestion import import_workout_file, import_workout_files, source_for_filename, spooled_upload

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/files", tags=["files"])

SUPPORTED_FORMATS = [
    {
        "extension": ".gpx",
        "name": "GPS Exchange Format",
        "description": "Track points with position, elevation, time and optional heart rate",
        "mime_types": ["application/gpx+xml", "application/xml", "text/xml"],
    },
    {
        "extension": ".fit",
        "name": "Flexible and Interoperable Data Transfer",
        "description": "Garmin/ANT+ binary activity file with session, lap and record messages",
        "mime_types": ["application/octet-stream", "application/vnd.ant.fit"],
    },
]


@router.post(
    "/upload",
    response_model=ImportResponse,
    status_code=201,
    summary="Import one GPX or FIT file",
    responses={
        400: {"description": "Unsupported, empty, oversized or unparseable file"},
        409: {"description": "Workout already imported"},
    },
)
async def upload_file(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    file: UploadFile = File(...),
) -> ImportResponse:
    uid = user.id
    try:
        source = source_for_filename(file.filename)
        async with spooled_upload(file) as spooled:
            result = await import_workout_file(session, uid, source, spooled.content, spooled.file_name)
    except IngestionError as e:
        logger.info("File import rejected for user_id=%s: %s", uid, e.message)
        raise http_error(e) from e
    if result.duplicate:
        raise HTTPException(status_code=409, detail=result.message)
    return result


@router.post(
    "/upload-multiple",
    response_model=BatchImportResponse,
    summary="Import several GPX/FIT files",
    responses={400: {"description": "No files or too many files"}},
)
async def upload_multiple(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    files: list[UploadFile] = File(...),
) -> BatchImportResponse:
    """Each file is imported on its own; the response counts imported, skipped and failed files."""
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded")
    if len(files) > settings.max_batch_files:
        raise HTTPException(status_code=400, detail=f"At most {settings.max_batch_files} files per upload")
    return await import_workout_files(session, user.id, files)


@router.get("/supported-formats", summary="List importable file formats")
async def supported_formats() -> dict:
    return {
        "formats": SUPPORTED_FORMATS,
        "max_file_size": settings.max_upload_bytes,
        "max_files": settings.max_batch_files,
    }
