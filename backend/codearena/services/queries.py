import logging
from typing import Iterable, Sequence

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..clock import utcnow
from ..enums import ChallengeStatus, ScoringStatus
from ..models import (
    Challenge,
    ChallengeMatchSetting,
    ChallengeParticipant,
    Match,
    MatchSetting,
    Submission,
    User,
)

logger = logging.getLogger(__name__)


async def get_challenge(session: AsyncSession, challenge_id: str, *, refresh: bool = False) -> Challenge | None:
    if refresh:
        return await session.get(Challenge, challenge_id, populate_existing=True)
    return await session.get(Challenge, challenge_id)


async def compare_and_set_status(
    session: AsyncSession,
    challenge_id: str,
    expected: ChallengeStatus | Iterable[ChallengeStatus],
    **values,
) -> bool:
    """
    Conditional ``UPDATE challenges ... WHERE id = ? AND status IN (...)``.

    Returns False when no row matched, which means another caller changed the
    challenge first. The caller owns the commit.
    """
    if isinstance(expected, ChallengeStatus):
        expected = [expected]
    values.setdefault("updated_at", utcnow())
    statement = (
        update(Challenge)
        .where(Challenge.id == challenge_id, Challenge.status.in_(list(expected)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(statement)
    changed = result.rowcount == 1
    if not changed:
        logger.debug("Conditional update on challenge %s matched no row", challenge_id)
    return changed


async def list_challenge_match_settings(
    session: AsyncSession, challenge_id: str
) -> Sequence[tuple[ChallengeMatchSetting, MatchSetting]]:
    statement = (
        select(ChallengeMatchSetting, MatchSetting)
        .join(MatchSetting, MatchSetting.id == ChallengeMatchSetting.match_setting_id)
        .where(ChallengeMatchSetting.challenge_id == challenge_id)
        .order_by(ChallengeMatchSetting.position, ChallengeMatchSetting.id)
    )
    result = await session.execute(statement)
    return result.all()


async def list_participants(session: AsyncSession, challenge_id: str) -> Sequence[ChallengeParticipant]:
    statement = (
        select(ChallengeParticipant)
        .where(ChallengeParticipant.challenge_id == challenge_id)
        .order_by(ChallengeParticipant.joined_at, ChallengeParticipant.id)
    )
    result = await session.execute(statement)
    return result.scalars().all()


async def list_participants_with_users(
    session: AsyncSession, challenge_id: str
) -> Sequence[tuple[ChallengeParticipant, User]]:
    statement = (
        select(ChallengeParticipant, User)
        .join(User, User.id == ChallengeParticipant.student_id)
        .where(ChallengeParticipant.challenge_id == challenge_id)
        .order_by(ChallengeParticipant.joined_at, ChallengeParticipant.id)
    )
    result = await session.execute(statement)
    return result.all()


async def get_participant(
    session: AsyncSession, challenge_id: str, student_id: str
) -> ChallengeParticipant | None:
    statement = select(ChallengeParticipant).where(
        ChallengeParticipant.challenge_id == challenge_id,
        ChallengeParticipant.student_id == student_id,
    )
    result = await session.execute(statement)
    return result.scalar_one_or_none()


async def count_participants(session: AsyncSession, challenge_id: str) -> int:
    statement = select(func.count(ChallengeParticipant.id)).where(ChallengeParticipant.challenge_id == challenge_id)
    return (await session.execute(statement)).scalar() or 0


async def list_matches(session: AsyncSession, challenge_id: str) -> Sequence[Match]:
    statement = select(Match).where(Match.challenge_id == challenge_id).order_by(Match.created_at, Match.id)
    result = await session.execute(statement)
    return result.scalars().all()


async def count_matches(session: AsyncSession, challenge_id: str) -> int:
    statement = select(func.count(Match.id)).where(Match.challenge_id == challenge_id)
    return (await session.execute(statement)).scalar() or 0


async def count_final_submissions(session: AsyncSession, challenge_id: str) -> int:
    statement = (
        select(func.count(Submission.id))
        .join(Match, Match.id == Submission.match_id)
        .where(Match.challenge_id == challenge_id, Submission.is_final.is_(True))
    )
    return (await session.execute(statement)).scalar() or 0


async def get_final_submission(session: AsyncSession, match_id: str) -> Submission | None:
    statement = select(Submission).where(Submission.match_id == match_id, Submission.is_final.is_(True))
    result = await session.execute(statement)
    return result.scalar_one_or_none()


async def list_final_submissions(session: AsyncSession, challenge_id: str) -> Sequence[tuple[Submission, Match]]:
    statement = (
        select(Submission, Match)
        .join(Match, Match.id == Submission.match_id)
        .where(Match.challenge_id == challenge_id, Submission.is_final.is_(True))
        .order_by(Submission.created_at, Submission.id)
    )
    result = await session.execute(statement)
    return result.all()


async def get_match_setting_for_match(session: AsyncSession, match: Match) -> MatchSetting | None:
    statement = (
        select(MatchSetting)
        .join(ChallengeMatchSetting, ChallengeMatchSetting.match_setting_id == MatchSetting.id)
        .where(ChallengeMatchSetting.id == match.challenge_match_setting_id)
    )
    result = await session.execute(statement)
    return result.scalar_one_or_none()


async def compare_and_set_scoring_status(
    session: AsyncSession,
    challenge_id: str,
    expected: ScoringStatus | Iterable[ScoringStatus],
    target: ScoringStatus,
    *,
    required_status: ChallengeStatus | None = None,
) -> bool:
    if isinstance(expected, ScoringStatus):
        expected = [expected]
    conditions = [Challenge.id == challenge_id, Challenge.scoring_status.in_(list(expected))]
    if required_status is not None:
        conditions.append(Challenge.status == required_status)
    statement = (
        update(Challenge)
        .where(*conditions)
        .values(scoring_status=target, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(statement)
    return result.rowcount == 1
