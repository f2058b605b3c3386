import logging
import random

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..clock import as_naive_utc, utcnow
from ..engine.matching import distribute_participants
from ..engine.phases import can_transition
from ..enums import ChallengeStatus, Outcome
from ..events.manager import CHALLENGE_UPDATED
from ..models import ChallengeMatchSetting, ChallengeParticipant, Match, MatchSetting, User
from . import queries
from .context import LifecycleContext
from .results import OperationResult, failure

logger = logging.getLogger(__name__)


class MatchAssignmentService:
    def __init__(self, session: AsyncSession, context: LifecycleContext, *, rng: random.Random | None = None) -> None:
        self.session = session
        self.context = context
        self.rng = rng

    async def assign(self, challenge_id: str, *, overwrite: bool = False) -> OperationResult:
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")

        if not can_transition(challenge.status, ChallengeStatus.ASSIGNED):
            return failure(
                Outcome.INVALID_STATUS,
                "Matches can only be assigned to a public challenge before it starts.",
                current_status=challenge.status.value,
            )

        reassigning = challenge.status == ChallengeStatus.ASSIGNED and overwrite
        if not reassigning and utcnow() < as_naive_utc(challenge.start_datetime):
            return failure(Outcome.TOO_EARLY, "The challenge start time has not been reached yet.")

        settings = await queries.list_challenge_match_settings(self.session, challenge_id)
        if not settings:
            return failure(Outcome.NO_MATCH_SETTINGS, "The challenge has no match settings.")

        participants = await queries.list_participants(self.session, challenge_id)
        if not participants:
            return failure(Outcome.NO_PARTICIPANTS, "No students joined the challenge.")

        existing = await queries.count_matches(self.session, challenge_id)
        if existing > 0 and not overwrite:
            return failure(Outcome.ALREADY_ASSIGNED, "Matches are already assigned.")

        expected_status = challenge.status
        try:
            if existing > 0:
                await self.session.execute(delete(Match).where(Match.challenge_id == challenge_id))

            pairings = distribute_participants(
                [participant.id for participant in participants],
                [cms.id for cms, _ in settings],
                rng=self.rng,
            )
            for pairing in pairings:
                self.session.add(
                    Match(
                        challenge_id=challenge_id,
                        challenge_match_setting_id=pairing.challenge_match_setting_id,
                        challenge_participant_id=pairing.participant_id,
                    )
                )

            changed = await queries.compare_and_set_status(
                self.session,
                challenge_id,
                expected_status,
                status=ChallengeStatus.ASSIGNED,
            )
            if not changed:
                await self.session.rollback()
                current = await queries.get_challenge(self.session, challenge_id, refresh=True)
                if current is not None and current.status == ChallengeStatus.ASSIGNED and not overwrite:
                    return failure(Outcome.ALREADY_ASSIGNED, "Matches are already assigned.")
                return failure(Outcome.INVALID_STATUS, "The challenge changed while assigning matches.")
            await self.session.commit()
        except IntegrityError:
            # another assignment of the same participants committed first
            await self.session.rollback()
            return failure(Outcome.ALREADY_ASSIGNED, "Matches are already assigned.")
        except Exception:
            await self.session.rollback()
            raise

        challenge = await queries.get_challenge(self.session, challenge_id, refresh=True)
        logger.info("Assigned %s matches for challenge %s (overwrite=%s)", len(pairings), challenge_id, overwrite)
        self.context.broadcaster.publish(
            CHALLENGE_UPDATED,
            {"challenge_id": challenge_id, "status": challenge.status.value},
        )
        return OperationResult(
            outcome=Outcome.OK,
            challenge=challenge,
            data={"assignments": await self.grouped_matches(challenge_id)},
        )

    async def grouped_matches(self, challenge_id: str) -> list[dict]:
        statement = (
            select(Match, ChallengeMatchSetting, MatchSetting, ChallengeParticipant, User)
            .join(ChallengeMatchSetting, ChallengeMatchSetting.id == Match.challenge_match_setting_id)
            .join(MatchSetting, MatchSetting.id == ChallengeMatchSetting.match_setting_id)
            .join(ChallengeParticipant, ChallengeParticipant.id == Match.challenge_participant_id)
            .join(User, User.id == ChallengeParticipant.student_id)
            .where(Match.challenge_id == challenge_id)
            .order_by(ChallengeMatchSetting.position, ChallengeMatchSetting.id, Match.id)
        )
        rows = (await self.session.execute(statement)).all()

        grouped: dict[str, dict] = {}
        for match, cms, setting, participant, user in rows:
            group = grouped.setdefault(
                cms.id,
                {
                    "challenge_match_setting_id": cms.id,
                    "match_setting": {"id": setting.id, "problem_title": setting.problem_title},
                    "matches": [],
                },
            )
            group["matches"].append(
                {
                    "id": match.id,
                    "challenge_participant_id": participant.id,
                    "student": {"id": user.id, "username": user.username},
                }
            )
        return list(grouped.values())
