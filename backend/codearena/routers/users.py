from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..dependencies import get_current_session, get_current_user
from ..models import Challenge, ChallengeParticipant, User
from ..schemas.challenge import ChallengePublic
from ..schemas.user import UserPublic

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserPublic)
async def read_current_user(current_user: User = Depends(get_current_user)) -> User:
    return current_user


@router.get("/me/challenges", response_model=list[ChallengePublic])
async def list_joined_challenges(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_current_session),
):
    statement = (
        select(Challenge)
        .join(ChallengeParticipant, ChallengeParticipant.challenge_id == Challenge.id)
        .where(ChallengeParticipant.student_id == current_user.id)
        .order_by(Challenge.start_datetime.desc())
    )
    return (await session.execute(statement)).scalars().all()
