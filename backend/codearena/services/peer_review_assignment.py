import logging
import random
from dataclasses import dataclass, field

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..engine.evaluation import VALID_FOR_REVIEW
from ..engine.peer_review import PeerReviewPlanError, ReviewableSubmission, build_review_plan
from ..enums import ChallengeStatus, Outcome
from ..models import Match, PeerReviewAssignment, Submission
from . import queries
from .context import LifecycleContext
from .finalization import FinalizationService
from .results import OperationResult, failure

logger = logging.getLogger(__name__)

MIN_EXPECTED_REVIEWS = 2


@dataclass
class ReviewGroup:
    challenge_match_setting_id: str
    reviewer_ids: list[str] = field(default_factory=list)
    submissions: list[ReviewableSubmission] = field(default_factory=list)

    @property
    def is_eligible(self) -> bool:
        return len(self.submissions) > 1


async def load_review_groups(session: AsyncSession, challenge_id: str) -> dict[str, ReviewGroup]:
    """Problem groups of a challenge with their reviewers and reviewable final submissions."""
    matches = await queries.list_matches(session, challenge_id)
    groups: dict[str, ReviewGroup] = {}
    group_by_match: dict[str, str] = {}
    for match in sorted(matches, key=lambda item: item.id):
        group = groups.setdefault(
            match.challenge_match_setting_id,
            ReviewGroup(challenge_match_setting_id=match.challenge_match_setting_id),
        )
        group.reviewer_ids.append(match.challenge_participant_id)
        group_by_match[match.id] = match.challenge_match_setting_id

    if not groups:
        return groups

    statement = (
        select(Submission)
        .join(Match, Match.id == Submission.match_id)
        .where(
            Match.challenge_id == challenge_id,
            Submission.is_final.is_(True),
            Submission.status.in_(list(VALID_FOR_REVIEW)),
        )
        .order_by(Submission.id)
    )
    for submission in (await session.execute(statement)).scalars().all():
        cms_id = group_by_match.get(submission.match_id)
        if cms_id is None:
            continue
        groups[cms_id].submissions.append(
            ReviewableSubmission(id=submission.id, author_id=submission.challenge_participant_id)
        )
    return groups


async def count_assignments_by_group(session: AsyncSession, challenge_id: str) -> dict[str, int]:
    statement = (
        select(Match.challenge_match_setting_id, PeerReviewAssignment.id)
        .join(Submission, Submission.id == PeerReviewAssignment.submission_id)
        .join(Match, Match.id == Submission.match_id)
        .where(Match.challenge_id == challenge_id)
    )
    counts: dict[str, int] = {}
    for cms_id, _ in (await session.execute(statement)).all():
        counts[cms_id] = counts.get(cms_id, 0) + 1
    return counts


class PeerReviewAssignmentService:
    def __init__(self, session: AsyncSession, context: LifecycleContext, *, rng: random.Random | None = None) -> None:
        self.session = session
        self.context = context
        self.rng = rng

    async def assign(
        self,
        challenge_id: str,
        *,
        expected_reviews: int,
        reassign: bool = False,
    ) -> OperationResult:
        if not isinstance(expected_reviews, int) or expected_reviews < MIN_EXPECTED_REVIEWS:
            return failure(
                Outcome.INVALID_EXPECTED_REVIEWS,
                f"Expected reviews per submission must be an integer of at least {MIN_EXPECTED_REVIEWS}.",
            )

        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if challenge.status != ChallengeStatus.ENDED_CODING_PHASE:
            return failure(
                Outcome.INVALID_STATUS,
                "Peer reviews can only be assigned after the coding phase has ended.",
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

        challenge = await queries.get_challenge(self.session, challenge_id, refresh=True)
        if challenge.allowed_number_of_review != expected_reviews:
            challenge.allowed_number_of_review = expected_reviews
            self.session.add(challenge)
            await self.session.commit()

        existing = await count_assignments_by_group(self.session, challenge_id)
        results = []
        for group in groups.values():
            results.append(await self._assign_group(group, expected_reviews, existing.get(group.challenge_match_setting_id, 0), reassign))

        return OperationResult(
            outcome=Outcome.OK,
            challenge=challenge,
            data={"expected_reviews_per_submission": expected_reviews, "results": results},
        )

    async def _assign_group(self, group: ReviewGroup, expected_reviews: int, existing: int, reassign: bool) -> dict:
        summary = {
            "challenge_match_setting_id": group.challenge_match_setting_id,
            "valid_submissions_count": len(group.submissions),
            "reviewer_count": len(group.reviewer_ids),
        }
        if not group.is_eligible:
            summary.update(
                status=Outcome.INSUFFICIENT_VALID_SUBMISSIONS.value,
                message="Peer review is not available for this problem because there are not enough valid submissions.",
            )
            return summary

        if existing > 0 and not reassign:
            summary.update(status="existing", total_assignments=existing, message=None)
            return summary

        try:
            plan = build_review_plan(group.reviewer_ids, group.submissions, expected_reviews, rng=self.rng)
        except PeerReviewPlanError as exc:
            logger.warning("Peer review plan failed for group %s: %s", group.challenge_match_setting_id, exc)
            summary.update(status=exc.code, message=str(exc))
            return summary

        submission_ids = [submission.id for submission in group.submissions]
        try:
            await self.session.execute(
                delete(PeerReviewAssignment).where(PeerReviewAssignment.submission_id.in_(submission_ids))
            )
            for planned in plan.assignments:
                self.session.add(
                    PeerReviewAssignment(
                        submission_id=planned.submission_id,
                        reviewer_id=planned.reviewer_id,
                        is_extra=planned.is_extra,
                    )
                )
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.exception("Peer review assignments could not be saved for group %s", group.challenge_match_setting_id)
            summary.update(status="assignment_failed", message="Peer review assignments could not be saved.")
            return summary

        reduced = plan.base_reviews_per_submission < expected_reviews
        summary.update(
            status="assigned",
            reviews_per_student=plan.reviews_per_reviewer,
            base_reviews_per_submission=plan.base_reviews_per_submission,
            extra_reviews_count=plan.extra_reviews,
            total_assignments=plan.total_assignments,
            message=(
                f"Expected reviews per submission reduced to {plan.base_reviews_per_submission} "
                "due to insufficient valid submissions."
                if reduced
                else None
            ),
        )
        return summary

    async def list_assignments(self, challenge_id: str) -> list[dict]:
        statement = (
            select(PeerReviewAssignment, Submission, Match)
            .join(Submission, Submission.id == PeerReviewAssignment.submission_id)
            .join(Match, Match.id == Submission.match_id)
            .where(Match.challenge_id == challenge_id)
            .order_by(Match.challenge_match_setting_id, Submission.id, PeerReviewAssignment.reviewer_id)
        )
        rows = (await self.session.execute(statement)).all()
        return [
            {
                "id": assignment.id,
                "challenge_match_setting_id": match.challenge_match_setting_id,
                "submission_id": submission.id,
                "author_id": submission.challenge_participant_id,
                "reviewer_id": assignment.reviewer_id,
                "is_extra": assignment.is_extra,
            }
            for assignment, submission, match in rows
        ]
