from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .enums import UserRole
from .models import User
from .security import decode_token
from .services.context import LifecycleContext

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_context(request: Request) -> LifecycleContext:
    return request.app.state.context


async def get_current_session(
    context: LifecycleContext = Depends(get_context),
) -> AsyncGenerator[AsyncSession, None]:
    async with context.session_factory() as session:
        yield session


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_current_session),
) -> User:
    if not token:
        raise _unauthorized("Authentication required.")
    try:
        claims = decode_token(token)
    except ValueError:
        raise _unauthorized("Invalid token.") from None

    user_id = claims.get("sub")
    user = await session.get(User, user_id) if user_id else None
    if user is None:
        raise _unauthorized("User not found.")
    return user


def get_teacher_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_privileged:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Teacher permissions required.")
    return current_user


def get_student_user(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.STUDENT:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only students can do this.")
    return current_user
