"""Screenshot import: OCR + AI extraction of a workout summary screenshot."""

import logging
import os
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, http_error
from app.config import settings
from app.db.session import get_db
from app.models.user import User
from app.schemas.ingestion import ImportResponse
from app.services.errors import IngestionError
from app.services.gemini_workout_extractor import GeminiTextExtractor, GeminiWorkoutExtractor, gemini_configured
from app.services.ingestion import SCREENSHOT_MIME_TYPES, import_screenshot, spooled_upload
from app.services.providers import TextExtractor, WorkoutExtractor

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/screenshots", tags=["screenshots"])


def get_text_extractor() -> TextExtractor:
    return GeminiTextExtractor()


def get_workout_extractor() -> WorkoutExtractor:
    return GeminiWorkoutExtractor()


@router.post(
    "",
    response_model=ImportResponse,
    status_code=201,
    summary="Create a workout from a screenshot",
    responses={
        400: {"description": "Not a JPEG/PNG image, too large, or no date could be read"},
        422: {"description": "AI extraction failed or is not configured"},
    },
)
async def upload_screenshot(
    session: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)],
    text_extractor: Annotated[TextExtractor, Depends(get_text_extractor)],
    workout_extractor: Annotated[WorkoutExtractor, Depends(get_workout_extractor)],
    screenshot: UploadFile = File(...),
) -> ImportResponse:
    uid = user.id
    if (screenshot.content_type or "").lower() not in SCREENSHOT_MIME_TYPES:
        raise HTTPException(status_code=400, detail="Invalid file type. Only JPEG and PNG are allowed.")
    try:
        async with spooled_upload(screenshot, max_bytes=settings.max_screenshot_bytes) as spooled:
            return await import_screenshot(
                session,
                uid,
                spooled.content,
                text_extractor,
                workout_extractor,
                file_name=spooled.file_name,
                content_type=spooled.content_type,
            )
    except IngestionError as e:
        logger.info("Screenshot import failed for user_id=%s: %s", uid, e.message)
        raise http_error(e) from e


@router.get("/status", summary="Screenshot import service status")
async def screenshot_status(user: Annotated[User, Depends(get_current_user)]) -> dict:
    return {
        "upload_dir": settings.upload_dir,
        "upload_dir_exists": os.path.isdir(settings.upload_dir),
        "gemini_configured": gemini_configured(),
        "max_file_size": settings.max_screenshot_bytes,
    }
