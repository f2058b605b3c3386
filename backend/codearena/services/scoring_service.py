import logging
from collections import defaultdict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..clock import utcnow
from ..engine.scoring import ImplementationStats, ReviewedVote, build_score_card, tally_reviews
from ..enums import ChallengeStatus, Outcome, ScoringStatus, VoteType
from ..events.manager import CHALLENGE_UPDATED
from ..models import (
    ChallengeMatchSetting,
    Match,
    MatchSetting,
    PeerReviewAssignment,
    PeerReviewVote,
    Submission,
    SubmissionScoreBreakdown,
)
from . import queries
from .context import LifecycleContext
from .results import OperationResult, failure

logger = logging.getLogger(__name__)


class ScoringService:
    def __init__(self, session: AsyncSession, context: LifecycleContext) -> None:
        self.session = session
        self.context = context

    async def compute(self, challenge_id: str, *, force: bool = False) -> OperationResult:
        """
        Score every final submission of a challenge whose peer review ended.

        ``scoring_status`` moves pending -> computing -> completed through
        conditional updates, so concurrent callers never compute together.
        ``force`` also restarts from ``completed``.
        """
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if challenge.status != ChallengeStatus.ENDED_PEER_REVIEW:
            return failure(Outcome.PEER_REVIEW_NOT_ENDED, "Scores are computed after the peer review ends.")

        startable = [ScoringStatus.PENDING, ScoringStatus.COMPLETED] if force else [ScoringStatus.PENDING]
        claimed = await queries.compare_and_set_scoring_status(
            self.session,
            challenge_id,
            startable,
            ScoringStatus.COMPUTING,
            required_status=ChallengeStatus.ENDED_PEER_REVIEW,
        )
        await self.session.commit()
        if not claimed:
            current = await queries.get_challenge(self.session, challenge_id, refresh=True)
            if current.scoring_status == ScoringStatus.COMPUTING:
                return failure(Outcome.SCORING_IN_PROGRESS, "Scores are already being computed.")
            return OperationResult(outcome=Outcome.OK, challenge=current, data={"already_completed": True})

        self._announce(challenge_id, ScoringStatus.COMPUTING)
        try:
            breakdowns = await self._calculate(challenge_id)
        except Exception:
            logger.exception("Scoring failed for challenge %s", challenge_id)
            await self.session.rollback()
            await queries.compare_and_set_scoring_status(
                self.session, challenge_id, ScoringStatus.COMPUTING, ScoringStatus.PENDING
            )
            await self.session.commit()
            self._announce(challenge_id, ScoringStatus.PENDING)
            return failure(Outcome.UPDATE_FAILED, "Scores could not be computed.")

        await queries.compare_and_set_scoring_status(
            self.session, challenge_id, ScoringStatus.COMPUTING, ScoringStatus.COMPLETED
        )
        await self.session.commit()
        self._announce(challenge_id, ScoringStatus.COMPLETED)
        logger.info("Scored %s submissions for challenge %s", len(breakdowns), challenge_id)

        challenge = await queries.get_challenge(self.session, challenge_id, refresh=True)
        return OperationResult(outcome=Outcome.OK, challenge=challenge, data={"breakdowns": breakdowns})

    def _announce(self, challenge_id: str, scoring_status: ScoringStatus) -> None:
        self.context.broadcaster.publish(
            CHALLENGE_UPDATED,
            {
                "challenge_id": challenge_id,
                "status": ChallengeStatus.ENDED_PEER_REVIEW.value,
                "scoring_status": scoring_status.value,
            },
        )

    async def _calculate(self, challenge_id: str) -> list[SubmissionScoreBreakdown]:
        finals = await queries.list_final_submissions(self.session, challenge_id)
        settings_statement = (
            select(ChallengeMatchSetting.id, MatchSetting)
            .join(MatchSetting, MatchSetting.id == ChallengeMatchSetting.match_setting_id)
            .where(ChallengeMatchSetting.challenge_id == challenge_id)
        )
        settings = {cms_id: setting for cms_id, setting in (await self.session.execute(settings_statement)).all()}

        votes_statement = (
            select(PeerReviewAssignment, PeerReviewVote)
            .join(Submission, Submission.id == PeerReviewAssignment.submission_id)
            .join(Match, Match.id == Submission.match_id)
            .outerjoin(PeerReviewVote, PeerReviewVote.peer_review_assignment_id == PeerReviewAssignment.id)
            .where(Match.challenge_id == challenge_id)
        )
        reviews = (await self.session.execute(votes_statement)).all()

        votes_by_submission: dict[str, list[PeerReviewVote]] = defaultdict(list)
        for assignment, vote in reviews:
            if vote is not None:
                votes_by_submission[assignment.submission_id].append(vote)

        implementation: dict[str, ImplementationStats] = {}
        for submission, match in finals:
            setting = settings.get(match.challenge_match_setting_id)
            implementation[submission.id] = self._implementation_stats(
                submission,
                setting,
                votes_by_submission.get(submission.id, []),
            )

        reviewed_by: dict[str, list[ReviewedVote]] = defaultdict(list)
        for assignment, vote in reviews:
            stats = implementation.get(assignment.submission_id)
            reviewed_by[assignment.reviewer_id].append(
                ReviewedVote(
                    submission_correct=bool(stats and stats.is_ultimately_correct),
                    vote=vote.vote if vote else None,
                    is_expected_output_correct=vote.is_expected_output_correct if vote else None,
                    is_vote_correct=vote.is_vote_correct if vote else None,
                )
            )

        breakdowns = []
        for submission, _match in finals:
            participant_id = submission.challenge_participant_id
            card = build_score_card(implementation.get(submission.id), tally_reviews(reviewed_by.get(participant_id, [])))
            breakdowns.append(await self._upsert(submission, card))
        return breakdowns

    @staticmethod
    def _implementation_stats(
        submission: Submission,
        setting: MatchSetting | None,
        votes: list[PeerReviewVote],
    ) -> ImplementationStats:
        teacher_results = submission.private_test_results or []
        total_teacher = len(teacher_results)
        passed_teacher = sum(1 for result in teacher_results if isinstance(result, dict) and result.get("passed"))
        if total_teacher == 0 and setting is not None:
            total_teacher = len(setting.private_tests or [])

        killer_votes = [
            vote for vote in votes if vote.vote == VoteType.INCORRECT and vote.is_expected_output_correct
        ]
        return ImplementationStats(
            passed_teacher=passed_teacher,
            total_teacher=total_teacher,
            failed_peer=sum(1 for vote in killer_votes if vote.is_bug_proven),
            total_peer=len(killer_votes),
        )

    async def _upsert(self, submission: Submission, card) -> SubmissionScoreBreakdown:
        statement = select(SubmissionScoreBreakdown).where(SubmissionScoreBreakdown.submission_id == submission.id)
        breakdown = (await self.session.execute(statement)).scalar_one_or_none()
        if breakdown is None:
            breakdown = SubmissionScoreBreakdown(
                submission_id=submission.id,
                challenge_participant_id=submission.challenge_participant_id,
            )
        breakdown.implementation_score = card.implementation_score
        breakdown.code_review_score = card.code_review_score
        breakdown.total_score = card.total_score
        breakdown.stats = card.stats
        breakdown.updated_at = utcnow()
        self.session.add(breakdown)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            breakdown = (await self.session.execute(statement)).scalar_one()
            breakdown.implementation_score = card.implementation_score
            breakdown.code_review_score = card.code_review_score
            breakdown.total_score = card.total_score
            breakdown.stats = card.stats
            breakdown.updated_at = utcnow()
            self.session.add(breakdown)
            await self.session.commit()
        await self.session.refresh(breakdown)
        return breakdown

    async def results(self, challenge_id: str) -> list[SubmissionScoreBreakdown]:
        statement = (
            select(SubmissionScoreBreakdown)
            .join(Submission, Submission.id == SubmissionScoreBreakdown.submission_id)
            .join(Match, Match.id == Submission.match_id)
            .where(Match.challenge_id == challenge_id)
            .order_by(SubmissionScoreBreakdown.total_score.desc(), SubmissionScoreBreakdown.id)
        )
        return (await self.session.execute(statement)).scalars().all()
