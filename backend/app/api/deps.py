"""FastAPI dependencies: current user from the bearer JWT, ingestion error translation."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import decode_token
from app.db.session import get_db
from app.models.user import User
from app.services.errors import (
    ExternalServiceError,
    ExtractionError,
    IngestionError,
    ParseError,
    StorageError,
    UnsupportedFileError,
)

ERROR_STATUS: list[tuple[type[IngestionError], int]] = [
    (ParseError, 400),
    (UnsupportedFileError, 400),
    (ExtractionError, 422),
    (ExternalServiceError, 502),
    (StorageError, 500),
]


def http_error(exc: IngestionError) -> HTTPException:
    """HTTPException for an ingestion failure; unknown subclasses map to 500."""
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return HTTPException(status_code=status, detail=exc.message)
    return HTTPException(status_code=500, detail=exc.message)


async def get_current_user(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = auth_header[7:].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        user_id = int(payload.get("sub") or "")
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")
    r = await session.execute(select(User).where(User.id == user_id))
    user = r.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user
