"""
Ingestion orchestrator: route a payload to its normalizer, check for duplicates, persist and report.

Each item moves RECEIVED -> PARSING -> DUPLICATE_CHECK -> (PERSISTED | SKIPPED_DUPLICATE | FAILED).
Single-item paths raise IngestionError subclasses to the caller; the batch path folds every item into a
BatchImportResponse and never raises for one bad file.
"""
import logging
import os
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from fastapi import UploadFile
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.core.metrics import record_import
from app.models.workout import WorkoutSource
from app.schemas.ingestion import BatchImportResponse, ImportDetail, ImportResponse, ImportStatus, NormalizedWorkout
from app.services.audit import AuditAction, log_workout_change
from app.services.duplicates import is_duplicate
from app.services.errors import IngestionError, StorageError, UnsupportedFileError
from app.services.fit_parser import parse_fit_workout
from app.services.gpx_parser import parse_gpx_workout
from app.services.image_resize import prepare_screenshot
from app.services.providers import TextExtractor, WorkoutExtractor
from app.services.screenshot_parser import normalize_screenshot_extraction
from app.services.workout_repository import create_workout, workout_from_normalized, workout_to_dict

logger = logging.getLogger(__name__)

FILE_EXTENSIONS: dict[str, str] = {
    ".gpx": WorkoutSource.GPX_FILE.value,
    ".fit": WorkoutSource.FIT_FILE.value,
}

SCREENSHOT_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png"}

FileParser = Callable[[bytes, int, str | None], NormalizedWorkout]

PARSERS: dict[str, FileParser] = {
    WorkoutSource.GPX_FILE.value: parse_gpx_workout,
    WorkoutSource.FIT_FILE.value: parse_fit_workout,
}


@dataclass
class SpooledFile:
    path: Path
    content: bytes
    file_name: str
    content_type: str | None

    @property
    def size(self) -> int:
        return len(self.content)


def source_for_filename(file_name: str | None) -> str:
    """Workout source from the file extension (case-insensitive). Raises UnsupportedFileError."""
    ext = os.path.splitext(file_name or "")[1].lower()
    source = FILE_EXTENSIONS.get(ext)
    if source is None:
        raise UnsupportedFileError(
            f"Unsupported file type {ext or '(none)'}. Supported: {', '.join(sorted(FILE_EXTENSIONS))}"
        )
    return source


def _write_file(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


@asynccontextmanager
async def spooled_upload(upload: UploadFile, max_bytes: int | None = None) -> AsyncIterator[SpooledFile]:
    """
    Read an upload into memory and spool it under settings.upload_dir for the duration of the block.
    The spooled file is removed on exit, whether or not processing succeeded.
    """
    limit = max_bytes or settings.max_upload_bytes
    content = await upload.read(limit + 1)
    file_name = upload.filename or "upload"
    if len(content) > limit:
        raise UnsupportedFileError(f"{file_name} exceeds the {limit // (1024 * 1024)}MB upload limit")
    if not content:
        raise UnsupportedFileError(f"{file_name} is empty")
    suffix = os.path.splitext(file_name)[1].lower()
    path = Path(settings.upload_dir) / f"workout-{uuid.uuid4().hex}{suffix}"
    await run_in_threadpool(_write_file, path, content)
    try:
        yield SpooledFile(path=path, content=content, file_name=file_name, content_type=upload.content_type)
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove spooled upload %s: %s", path, e)


async def persist_workout(session: AsyncSession, candidate: NormalizedWorkout, user_id: int) -> dict:
    """Store the workout with its splits and an import audit entry, then commit. Raises StorageError."""
    workout = await create_workout(session, workout_from_normalized(candidate))
    await log_workout_change(session, AuditAction.IMPORT, workout)
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.exception("Commit failed for %s workout of user_id=%s", candidate.source, user_id)
        raise StorageError(f"Could not save workout: {e.__class__.__name__}") from e
    logger.info("Imported %s workout id=%s for user_id=%s", candidate.source, workout.id, user_id)
    return workout_to_dict(workout)


def _stage(status: ImportStatus, source: str, file_name: str | None) -> None:
    logger.debug("%s %s: %s", source, file_name or "(unnamed)", status.value)


async def import_workout_file(
    session: AsyncSession,
    user_id: int,
    source: str,
    content: bytes,
    file_name: str | None = None,
) -> ImportResponse:
    """
    Parse, de-duplicate and store one GPX/FIT file. A duplicate is returned with duplicate=True and
    nothing stored. Raises ParseError, UnsupportedFileError or StorageError.
    """
    _stage(ImportStatus.RECEIVED, source, file_name)
    parser = PARSERS.get(source)
    if parser is None:
        raise UnsupportedFileError(f"No file parser for source {source}")
    try:
        _stage(ImportStatus.PARSING, source, file_name)
        candidate = await run_in_threadpool(parser, content, user_id, file_name)
        _stage(ImportStatus.DUPLICATE_CHECK, source, file_name)
        if await is_duplicate(session, candidate, user_id, source):
            _stage(ImportStatus.SKIPPED_DUPLICATE, source, file_name)
            record_import(source, ImportStatus.SKIPPED_DUPLICATE.value)
            return ImportResponse(
                success=False,
                duplicate=True,
                message="This workout has already been imported",
                stats=candidate.stats,
                warnings=candidate.warnings,
            )
        workout = await persist_workout(session, candidate, user_id)
    except Exception:
        record_import(source, ImportStatus.FAILED.value)
        raise
    _stage(ImportStatus.PERSISTED, source, file_name)
    record_import(source, ImportStatus.PERSISTED.value)
    return ImportResponse(
        success=True,
        message=f"{source.replace('_FILE', '')} file imported successfully",
        workout=workout,
        stats=candidate.stats,
        warnings=candidate.warnings,
    )


async def _import_one(session: AsyncSession, user_id: int, upload: UploadFile) -> ImportDetail:
    file_name = upload.filename or "upload"
    source = source_for_filename(file_name)
    async with spooled_upload(upload) as spooled:
        result = await import_workout_file(session, user_id, source, spooled.content, file_name)
    if result.duplicate:
        return ImportDetail(
            file_name=file_name,
            status=ImportStatus.SKIPPED_DUPLICATE,
            reason="Duplicate workout",
            warnings=result.warnings,
        )
    return ImportDetail(
        file_name=file_name,
        status=ImportStatus.PERSISTED,
        workout=result.workout,
        warnings=result.warnings,
    )


async def import_workout_files(
    session: AsyncSession,
    user_id: int,
    files: list[UploadFile],
) -> BatchImportResponse:
    """
    Import uploaded files in order. Every file is isolated: a failure of any kind is rolled back alone
    and recorded as an error detail while the rest continue.
    """
    result = BatchImportResponse()
    for upload in files:
        file_name = upload.filename or "upload"
        try:
            detail = await _import_one(session, user_id, upload)
        except IngestionError as e:
            await session.rollback()
            logger.warning("Batch import: %s failed for user_id=%s: %s", file_name, user_id, e.message)
            detail = ImportDetail(file_name=file_name, status=ImportStatus.FAILED, error=e.message)
        except Exception as e:
            await session.rollback()
            logger.exception("Batch import: %s failed unexpectedly for user_id=%s", file_name, user_id)
            detail = ImportDetail(file_name=file_name, status=ImportStatus.FAILED, error=str(e) or e.__class__.__name__)
        result.details.append(detail)
        if detail.status == ImportStatus.PERSISTED:
            result.imported += 1
        elif detail.status == ImportStatus.SKIPPED_DUPLICATE:
            result.skipped += 1
        else:
            result.errors += 1
    result.message = f"Imported {result.imported} files, skipped {result.skipped}, failed {result.errors}"
    return result


async def import_screenshot(
    session: AsyncSession,
    user_id: int,
    image: bytes,
    text_extractor: TextExtractor,
    workout_extractor: WorkoutExtractor,
    file_name: str | None = None,
    content_type: str | None = None,
) -> ImportResponse:
    """
    OCR the screenshot, extract structured workout data from text + image, store it. Screenshots are
    not checked for duplicates. Raises ParseError, ExtractionError or StorageError.
    """
    source = WorkoutSource.SCREENSHOT.value
    try:
        prepared = await prepare_screenshot(image)
        ocr = await text_extractor.extract_text(prepared)
        logger.info("Screenshot OCR for user_id=%s: %d chars, confidence=%s", user_id, len(ocr.text), ocr.confidence)
        data = await workout_extractor.extract_workout_json(ocr.text, prepared)
        candidate = normalize_screenshot_extraction(
            data,
            user_id,
            ocr_confidence=ocr.confidence,
            file_name=file_name,
            file_size=len(image),
            mime_type=content_type,
        )
        workout = await persist_workout(session, candidate, user_id)
    except IngestionError:
        record_import(source, ImportStatus.FAILED.value)
        raise
    record_import(source, ImportStatus.PERSISTED.value)
    return ImportResponse(
        success=True,
        message="Screenshot processed successfully",
        workout=workout,
        stats={"ocr_confidence": ocr.confidence},
        warnings=candidate.warnings,
    )
