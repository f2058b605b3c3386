from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..config import get_settings
from ..dependencies import get_current_session
from ..models import User
from ..schemas.auth import LoginRequest, RegisterRequest, Token
from ..schemas.user import UserPublic
from ..security import create_access_token, get_password_hash, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])


def _issue_token(user: User) -> Token:
    lifetime = timedelta(minutes=get_settings().access_token_expire_minutes)
    return Token(
        access_token=create_access_token(user.id, lifetime, role=user.role.value),
        expires_at=datetime.now(timezone.utc) + lifetime,
        user=UserPublic.model_validate(user),
    )


def _already_taken() -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="That email or username is already in use.")


@router.post("/register", response_model=Token)
async def register_user(payload: RegisterRequest, session: AsyncSession = Depends(get_current_session)):
    clash = select(User.id).where(or_(User.email == payload.email, User.username == payload.username))
    if (await session.execute(clash)).first() is not None:
        raise _already_taken()

    user = User(
        email=payload.email,
        username=payload.username,
        hashed_password=get_password_hash(payload.password),
        role=payload.role,
    )
    session.add(user)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise _already_taken() from None
    await session.refresh(user)
    return _issue_token(user)


@router.post("/login", response_model=Token)
async def login(payload: LoginRequest, session: AsyncSession = Depends(get_current_session)):
    user = (await session.execute(select(User).where(User.email == payload.email))).scalar_one_or_none()
    if user is None or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect email or password.")
    return _issue_token(user)
