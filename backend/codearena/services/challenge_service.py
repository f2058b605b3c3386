import logging
from typing import Sequence

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..clock import as_naive_utc, utcnow
from ..engine.phases import can_transition
from ..enums import ChallengeStatus, MatchSettingStatus, Outcome
from ..events.manager import CHALLENGE_UPDATED, PARTICIPANT_JOINED
from ..models import Challenge, ChallengeMatchSetting, ChallengeParticipant, Match, MatchSetting, User
from ..schemas.challenge import ChallengeCreate, ChallengeUpdate
from . import queries
from .context import LifecycleContext
from .peer_review_assignment import MIN_EXPECTED_REVIEWS
from .results import OperationResult, failure

logger = logging.getLogger(__name__)

STUDENT_VISIBLE_STATUSES = [
    ChallengeStatus.PUBLIC,
    ChallengeStatus.ASSIGNED,
    ChallengeStatus.STARTED_CODING_PHASE,
    ChallengeStatus.ENDED_CODING_PHASE,
    ChallengeStatus.STARTED_PEER_REVIEW,
    ChallengeStatus.ENDED_PEER_REVIEW,
]


class ChallengeService:
    def __init__(self, session: AsyncSession, context: LifecycleContext) -> None:
        self.session = session
        self.context = context

    def _publish(self, challenge: Challenge) -> None:
        self.context.broadcaster.publish(
            CHALLENGE_UPDATED,
            {"challenge_id": challenge.id, "status": challenge.status.value},
        )

    async def _validate_match_settings(self, match_setting_ids: Sequence[str]) -> OperationResult | None:
        ids = list(dict.fromkeys(match_setting_ids))
        if not ids:
            return failure(Outcome.NO_MATCH_SETTINGS, "At least one match setting is required.")
        statement = select(MatchSetting).where(MatchSetting.id.in_(ids))
        found = {setting.id: setting for setting in (await self.session.execute(statement)).scalars().all()}
        missing = [setting_id for setting_id in ids if setting_id not in found]
        if missing:
            return failure(Outcome.INVALID_INPUT, "One or more match settings not found.", missing_ids=missing)
        drafts = [setting_id for setting_id, setting in found.items() if setting.status != MatchSettingStatus.READY]
        if drafts:
            return failure(Outcome.INVALID_INPUT, "Only ready match settings can be used.", draft_ids=drafts)
        return None

    async def _overlapping_public(self, challenge: Challenge) -> Challenge | None:
        statement = select(Challenge).where(
            Challenge.id != challenge.id,
            Challenge.status == ChallengeStatus.PUBLIC,
            Challenge.start_datetime < challenge.end_datetime,
            Challenge.end_datetime > challenge.start_datetime,
        )
        return (await self.session.execute(statement)).scalars().first()

    async def _replace_match_settings(self, challenge_id: str, match_setting_ids: Sequence[str]) -> None:
        await self.session.execute(delete(ChallengeMatchSetting).where(ChallengeMatchSetting.challenge_id == challenge_id))
        for position, setting_id in enumerate(dict.fromkeys(match_setting_ids)):
            self.session.add(
                ChallengeMatchSetting(challenge_id=challenge_id, match_setting_id=setting_id, position=position)
            )

    async def create(self, *, creator: User, payload: ChallengeCreate) -> OperationResult:
        problem = await self._validate_match_settings(payload.match_setting_ids)
        if problem is not None:
            return problem

        challenge = Challenge(
            title=payload.title,
            description=payload.description,
            creator_id=creator.id,
            start_datetime=as_naive_utc(payload.start_datetime),
            end_datetime=as_naive_utc(payload.end_datetime),
            duration=payload.duration,
            duration_peer_review=payload.duration_peer_review,
            allowed_number_of_review=payload.allowed_number_of_review,
            status=payload.status,
        )
        if challenge.status == ChallengeStatus.PUBLIC and await self._overlapping_public(challenge):
            return failure(Outcome.INVALID_INPUT, "Challenge time overlaps with an existing challenge.")

        self.session.add(challenge)
        await self.session.flush()
        await self._replace_match_settings(challenge.id, payload.match_setting_ids)
        await self.session.commit()
        await self.session.refresh(challenge)
        logger.info("Challenge %s created by %s", challenge.id, creator.id)
        return OperationResult(outcome=Outcome.OK, challenge=challenge)

    async def list_for(self, user: User) -> Sequence[Challenge]:
        statement = select(Challenge).order_by(Challenge.start_datetime.desc(), Challenge.created_at.desc())
        if not user.is_privileged:
            statement = statement.where(Challenge.status.in_(STUDENT_VISIBLE_STATUSES))
        return (await self.session.execute(statement)).scalars().all()

    async def update(self, challenge_id: str, payload: ChallengeUpdate) -> OperationResult:
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if challenge.status not in (ChallengeStatus.DRAFT, ChallengeStatus.PRIVATE):
            return failure(
                Outcome.INVALID_STATUS,
                "Only private challenges can be edited.",
                current_status=challenge.status.value,
            )

        changes = payload.model_dump(exclude_unset=True)
        match_setting_ids = changes.pop("match_setting_ids", None)
        for field_name, value in changes.items():
            if field_name in ("start_datetime", "end_datetime"):
                value = as_naive_utc(value)
            setattr(challenge, field_name, value)

        if challenge.end_datetime <= challenge.start_datetime:
            return failure(Outcome.INVALID_INPUT, "The end time must be after the start time.")
        window = (challenge.end_datetime - challenge.start_datetime).total_seconds()
        if window < challenge.duration * 60:
            return failure(Outcome.INVALID_INPUT, "The time window must be at least as long as the duration.")

        if match_setting_ids is not None:
            problem = await self._validate_match_settings(match_setting_ids)
            if problem is not None:
                return problem
            await self._replace_match_settings(challenge.id, match_setting_ids)

        challenge.updated_at = utcnow()
        self.session.add(challenge)
        await self.session.commit()
        await self.session.refresh(challenge)
        self._publish(challenge)
        return OperationResult(outcome=Outcome.OK, challenge=challenge)

    async def publish(self, challenge_id: str) -> OperationResult:
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if challenge.status == ChallengeStatus.PUBLIC:
            return OperationResult(outcome=Outcome.OK, challenge=challenge)
        if not can_transition(challenge.status, ChallengeStatus.PUBLIC):
            return failure(Outcome.INVALID_STATUS, "Challenge can only be published from private status.")
        if not await queries.list_challenge_match_settings(self.session, challenge_id):
            return failure(Outcome.NO_MATCH_SETTINGS, "At least one match setting is required.")
        if await self._overlapping_public(challenge):
            return failure(Outcome.INVALID_INPUT, "Challenge time overlaps with an existing challenge.")

        changed = await queries.compare_and_set_status(
            self.session,
            challenge_id,
            [ChallengeStatus.DRAFT, ChallengeStatus.PRIVATE],
            status=ChallengeStatus.PUBLIC,
        )
        await self.session.commit()
        challenge = await queries.get_challenge(self.session, challenge_id, refresh=True)
        if not changed and challenge.status != ChallengeStatus.PUBLIC:
            return failure(Outcome.INVALID_STATUS, "Challenge can only be published from private status.")
        self._publish(challenge)
        return OperationResult(outcome=Outcome.OK, challenge=challenge)

    async def unpublish(self, challenge_id: str) -> OperationResult:
        """Return a public challenge to private; participants and matches are dropped."""
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if challenge.status == ChallengeStatus.PRIVATE:
            return OperationResult(outcome=Outcome.OK, challenge=challenge)
        if challenge.status != ChallengeStatus.PUBLIC:
            return failure(Outcome.INVALID_STATUS, "Challenge can only be unpublished before it starts.")

        try:
            changed = await queries.compare_and_set_status(
                self.session,
                challenge_id,
                ChallengeStatus.PUBLIC,
                status=ChallengeStatus.PRIVATE,
            )
            if not changed:
                await self.session.rollback()
                return failure(Outcome.INVALID_STATUS, "Challenge can only be unpublished before it starts.")
            await self.session.execute(delete(Match).where(Match.challenge_id == challenge_id))
            await self.session.execute(
                delete(ChallengeParticipant).where(ChallengeParticipant.challenge_id == challenge_id)
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        challenge = await queries.get_challenge(self.session, challenge_id, refresh=True)
        self._publish(challenge)
        return OperationResult(outcome=Outcome.OK, challenge=challenge)

    async def join(self, challenge_id: str, student: User) -> OperationResult:
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if challenge.status in (ChallengeStatus.DRAFT, ChallengeStatus.PRIVATE):
            return failure(Outcome.CHALLENGE_PRIVATE, "This challenge is not open yet.")
        if challenge.status != ChallengeStatus.PUBLIC:
            return failure(Outcome.INVALID_STATUS, "Joining is closed for this challenge.")

        existing = await queries.get_participant(self.session, challenge_id, student.id)
        if existing is not None:
            return OperationResult(outcome=Outcome.ALREADY_JOINED, challenge=challenge, data={"participant": existing})

        participant = ChallengeParticipant(challenge_id=challenge_id, student_id=student.id)
        self.session.add(participant)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            existing = await queries.get_participant(self.session, challenge_id, student.id)
            return OperationResult(outcome=Outcome.ALREADY_JOINED, challenge=challenge, data={"participant": existing})

        await self.session.refresh(participant)
        count = await queries.count_participants(self.session, challenge_id)
        self.context.broadcaster.publish(
            PARTICIPANT_JOINED,
            {"challenge_id": challenge_id, "participant_id": participant.id, "participant_count": count},
        )
        return OperationResult(outcome=Outcome.OK, challenge=challenge, data={"participant": participant})

    async def participants(self, challenge_id: str) -> OperationResult:
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        rows = await queries.list_participants_with_users(self.session, challenge_id)
        return OperationResult(
            outcome=Outcome.OK,
            challenge=challenge,
            data={
                "participants": [
                    {
                        "id": participant.id,
                        "student_id": user.id,
                        "username": user.username,
                        "joined_at": participant.joined_at,
                    }
                    for participant, user in rows
                ]
            },
        )

    async def update_expected_reviews(self, challenge_id: str, expected_reviews: int) -> OperationResult:
        if expected_reviews < MIN_EXPECTED_REVIEWS:
            return failure(
                Outcome.INVALID_EXPECTED_REVIEWS,
                f"Expected reviews per submission must be at least {MIN_EXPECTED_REVIEWS}.",
            )
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if challenge.status in (ChallengeStatus.STARTED_PEER_REVIEW, ChallengeStatus.ENDED_PEER_REVIEW):
            return failure(Outcome.INVALID_STATUS, "The peer review has already started.")
        challenge.allowed_number_of_review = expected_reviews
        challenge.updated_at = utcnow()
        self.session.add(challenge)
        await self.session.commit()
        await self.session.refresh(challenge)
        return OperationResult(outcome=Outcome.OK, challenge=challenge)
