import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..clock import as_naive_utc, minutes_after, utcnow
from ..engine.phases import can_transition, has_reached
from ..enums import ChallengeStatus, Outcome, ScoringStatus
from ..events.manager import CHALLENGE_UPDATED
from ..models import Challenge
from . import queries
from .context import LifecycleContext
from .finalization import FinalizationService
from .peer_review_assignment import count_assignments_by_group, load_review_groups
from .peer_review_service import PeerReviewService
from .results import OperationResult, failure
from .scoring_service import ScoringService

logger = logging.getLogger(__name__)


def coding_phase_deadline(challenge: Challenge, buffer_seconds: int):
    if challenge.start_coding_phase_at is None:
        return None
    return minutes_after(as_naive_utc(challenge.start_coding_phase_at), challenge.duration, buffer_seconds=buffer_seconds)


def peer_review_deadline(challenge: Challenge, buffer_seconds: int):
    if challenge.start_peer_review_at is None:
        return None
    return minutes_after(
        as_naive_utc(challenge.start_peer_review_at),
        challenge.duration_peer_review,
        buffer_seconds=buffer_seconds,
    )


class PhaseTransitionService:
    """Guards and conditional updates for every lifecycle phase change."""

    def __init__(self, session: AsyncSession, context: LifecycleContext) -> None:
        self.session = session
        self.context = context
        self.buffer_seconds = context.settings.phase_end_buffer_seconds

    def _publish(self, challenge: Challenge, **extra) -> None:
        payload = {
            "challenge_id": challenge.id,
            "status": challenge.status.value,
            "scoring_status": challenge.scoring_status.value,
        }
        payload.update(extra)
        self.context.broadcaster.publish(CHALLENGE_UPDATED, payload)

    async def _reload(self, challenge_id: str) -> Challenge | None:
        return await queries.get_challenge(self.session, challenge_id, refresh=True)

    async def start_coding_phase(self, challenge_id: str) -> OperationResult:
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if has_reached(challenge.status, ChallengeStatus.STARTED_CODING_PHASE):
            return failure(Outcome.ALREADY_STARTED, "The challenge has already started.")
        if not can_transition(challenge.status, ChallengeStatus.STARTED_CODING_PHASE):
            return failure(
                Outcome.INVALID_STATUS,
                "The challenge must have assigned matches before it can start.",
                current_status=challenge.status.value,
            )
        if utcnow() < as_naive_utc(challenge.start_datetime):
            return failure(Outcome.TOO_EARLY, "The challenge start time has not been reached yet.")
        if await queries.count_participants(self.session, challenge_id) == 0:
            return failure(Outcome.NO_PARTICIPANTS, "No students joined the challenge.")
        if await queries.count_matches(self.session, challenge_id) == 0:
            return failure(Outcome.NO_MATCHES, "The challenge has no matches.")

        started_at = utcnow()
        changed = await queries.compare_and_set_status(
            self.session,
            challenge_id,
            ChallengeStatus.ASSIGNED,
            status=ChallengeStatus.STARTED_CODING_PHASE,
            start_coding_phase_at=started_at,
        )
        await self.session.commit()
        challenge = await self._reload(challenge_id)
        if not changed:
            if has_reached(challenge.status, ChallengeStatus.STARTED_CODING_PHASE):
                return failure(Outcome.ALREADY_STARTED, "The challenge has already started.")
            return failure(Outcome.INVALID_STATUS, "The challenge changed while starting.")

        logger.info("Coding phase started for challenge %s", challenge_id)
        if self.context.scheduler is not None:
            self.context.scheduler.schedule_coding_phase_end(
                challenge_id, coding_phase_deadline(challenge, self.buffer_seconds)
            )
        self._publish(challenge, start_coding_phase_at=started_at.isoformat())
        return OperationResult(outcome=Outcome.OK, challenge=challenge)

    async def end_coding_phase(self, challenge_id: str) -> OperationResult:
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if has_reached(challenge.status, ChallengeStatus.ENDED_CODING_PHASE):
            return OperationResult(outcome=Outcome.ALREADY_ENDED, challenge=challenge)
        if not can_transition(challenge.status, ChallengeStatus.ENDED_CODING_PHASE):
            return failure(
                Outcome.INVALID_STATUS,
                "The coding phase has not started.",
                current_status=challenge.status.value,
            )

        ended_at = utcnow()
        changed = await queries.compare_and_set_status(
            self.session,
            challenge_id,
            ChallengeStatus.STARTED_CODING_PHASE,
            status=ChallengeStatus.ENDED_CODING_PHASE,
            end_coding_phase_at=ended_at,
            coding_phase_finalization_completed_at=None,
        )
        await self.session.commit()
        if not changed:
            challenge = await self._reload(challenge_id)
            if challenge is not None and has_reached(challenge.status, ChallengeStatus.ENDED_CODING_PHASE):
                return OperationResult(outcome=Outcome.ALREADY_ENDED, challenge=challenge)
            return failure(Outcome.INVALID_STATUS, "The challenge changed while ending the coding phase.")

        logger.info("Coding phase ended for challenge %s", challenge_id)
        if self.context.scheduler is not None:
            self.context.scheduler.cancel_coding_phase_end(challenge_id)
        challenge = await self._reload(challenge_id)
        self._publish(challenge, end_coding_phase_at=ended_at.isoformat())

        finalization = FinalizationService(self.context)
        backfill = await finalization.backfill_final_submissions(challenge_id)
        state = await finalization.maybe_complete_coding_phase_finalization(challenge_id)

        challenge = await self._reload(challenge_id)
        return OperationResult(
            outcome=Outcome.OK,
            challenge=challenge,
            data={
                "finalization": state.value,
                "backfilled_submissions": len(backfill.created),
            },
        )

    async def start_peer_review(self, challenge_id: str) -> OperationResult:
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if has_reached(challenge.status, ChallengeStatus.STARTED_PEER_REVIEW):
            return failure(Outcome.ALREADY_STARTED, "The peer review has already started.")
        if not can_transition(challenge.status, ChallengeStatus.STARTED_PEER_REVIEW):
            return failure(
                Outcome.INVALID_STATUS,
                "The peer review starts after the coding phase has ended.",
                current_status=challenge.status.value,
            )

        in_flight = self.context.tracker.count(challenge_id)
        if in_flight > 0:
            return failure(
                Outcome.FINALIZATION_PENDING,
                "Submissions are still being finalized.",
                in_flight_submissions_count=in_flight,
            )
        if not await FinalizationService(self.context).is_finalization_complete(challenge_id):
            return failure(
                Outcome.FINALIZATION_PENDING,
                "Submissions are still being finalized.",
                in_flight_submissions_count=0,
            )

        groups = await load_review_groups(self.session, challenge_id)
        if not groups:
            return failure(Outcome.NO_MATCHES, "The challenge has no matches.")
        eligible = [group.challenge_match_setting_id for group in groups.values() if group.is_eligible]
        if not eligible:
            return failure(
                Outcome.INSUFFICIENT_VALID_SUBMISSIONS,
                "There are not enough valid submissions for a peer review.",
            )
        assignment_counts = await count_assignments_by_group(self.session, challenge_id)
        if any(assignment_counts.get(cms_id, 0) == 0 for cms_id in eligible):
            return failure(Outcome.NO_ASSIGNMENTS, "Peer review assignments have not been generated.")

        started_at = utcnow()
        changed = await queries.compare_and_set_status(
            self.session,
            challenge_id,
            ChallengeStatus.ENDED_CODING_PHASE,
            status=ChallengeStatus.STARTED_PEER_REVIEW,
            start_peer_review_at=started_at,
        )
        await self.session.commit()
        challenge = await self._reload(challenge_id)
        if not changed:
            if has_reached(challenge.status, ChallengeStatus.STARTED_PEER_REVIEW):
                return failure(Outcome.ALREADY_STARTED, "The peer review has already started.")
            return failure(Outcome.INVALID_STATUS, "The challenge changed while starting the peer review.")

        logger.info("Peer review started for challenge %s", challenge_id)
        if self.context.scheduler is not None:
            self.context.scheduler.schedule_peer_review_end(
                challenge_id, peer_review_deadline(challenge, self.buffer_seconds)
            )
        self._publish(challenge, start_peer_review_at=started_at.isoformat())
        return OperationResult(outcome=Outcome.OK, challenge=challenge)

    async def end_peer_review(self, challenge_id: str, *, allow_early: bool = True) -> OperationResult:
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if challenge.status == ChallengeStatus.ENDED_PEER_REVIEW:
            return OperationResult(outcome=Outcome.ALREADY_FINALIZED, challenge=challenge)
        if not can_transition(challenge.status, ChallengeStatus.ENDED_PEER_REVIEW):
            return failure(
                Outcome.INVALID_STATUS,
                "The peer review has not started.",
                current_status=challenge.status.value,
            )

        deadline = peer_review_deadline(challenge, self.buffer_seconds)
        if not allow_early and deadline is not None and utcnow() < deadline:
            return failure(Outcome.PEER_REVIEW_NOT_ENDED, "The peer review is still running.")
        if await queries.count_participants(self.session, challenge_id) == 0:
            return failure(Outcome.NO_PARTICIPANTS, "No students joined the challenge.")

        ended_at = utcnow()
        changed = await queries.compare_and_set_status(
            self.session,
            challenge_id,
            ChallengeStatus.STARTED_PEER_REVIEW,
            status=ChallengeStatus.ENDED_PEER_REVIEW,
            end_peer_review_at=ended_at,
        )
        await self.session.commit()
        if not changed:
            challenge = await self._reload(challenge_id)
            if challenge is not None and challenge.status == ChallengeStatus.ENDED_PEER_REVIEW:
                return OperationResult(outcome=Outcome.ALREADY_FINALIZED, challenge=challenge)
            return failure(Outcome.UPDATE_FAILED, "The challenge could not be updated.")

        logger.info("Peer review ended for challenge %s", challenge_id)
        if self.context.scheduler is not None:
            self.context.scheduler.cancel_peer_review_end(challenge_id)

        abstentions = await PeerReviewService(self.session, self.context).finalize_votes(challenge_id)
        challenge = await self._reload(challenge_id)
        self._publish(challenge, end_peer_review_at=ended_at.isoformat())

        scoring = await ScoringService(self.session, self.context).compute(challenge_id)
        if not scoring.ok:
            logger.warning("Scoring for challenge %s ended with %s", challenge_id, scoring.outcome.value)

        challenge = await self._reload(challenge_id)
        return OperationResult(
            outcome=Outcome.OK,
            challenge=challenge,
            data={
                "abstain_votes_created": abstentions,
                "scoring_status": (challenge.scoring_status or ScoringStatus.PENDING).value,
            },
        )
