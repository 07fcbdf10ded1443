"""Auth: email/password accounts and bearer access tokens."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.config import settings
from app.core.auth import create_access_token, hash_password, verify_password
from app.db.session import get_db
from app.models.user import User

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


class Credentials(BaseModel):
    email: str
    password: str


class RegisterBody(Credentials):
    name: str | None = None


class UserOut(BaseModel):
    id: int
    email: str
    name: str | None = None

    @classmethod
    def of(cls, user: User) -> "UserOut":
        return cls(id=user.id, email=user.email, name=user.name)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserOut


def _clean(body: Credentials) -> tuple[str, str]:
    """(lowercased email, password); either may be empty."""
    return (body.email or "").strip().lower(), body.password or ""


async def _user_by_email(session: AsyncSession, email: str) -> User | None:
    r = await session.execute(select(User).where(User.email == email))
    return r.scalar_one_or_none()


def _issue(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id, user.email),
        expires_in=settings.access_token_expire_minutes * 60,
        user=UserOut.of(user),
    )


@router.post(
    "/register",
    response_model=TokenResponse,
    summary="Create an account",
    responses={400: {"description": "Missing email/password or email already registered"}},
)
async def register(
    session: Annotated[AsyncSession, Depends(get_db)],
    body: RegisterBody,
) -> TokenResponse:
    email, password = _clean(body)
    if not email or not password:
        raise HTTPException(status_code=400, detail="Email and password required")
    if await _user_by_email(session, email) is not None:
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(email=email, name=(body.name or "").strip() or None, password_hash=hash_password(password))
    session.add(user)
    try:
        await session.flush()
    except IntegrityError as e:
        # Concurrent registration with the same email
        raise HTTPException(status_code=400, detail="Email already registered") from e
    logger.info("Registered user_id=%s", user.id)
    return _issue(user)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Exchange email and password for an access token",
    responses={401: {"description": "Invalid email or password"}},
)
async def login(
    session: Annotated[AsyncSession, Depends(get_db)],
    body: Credentials,
) -> TokenResponse:
    email, password = _clean(body)
    user = await _user_by_email(session, email) if email else None
    if user is None or not user.password_hash or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", email or "(empty)")
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return _issue(user)


@router.get(
    "/me",
    response_model=UserOut,
    summary="Current user",
    responses={401: {"description": "Not authenticated or invalid token"}},
)
async def me(user: Annotated[User, Depends(get_current_user)]) -> UserOut:
    return UserOut.of(user)
