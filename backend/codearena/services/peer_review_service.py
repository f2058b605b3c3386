import json
import logging
from typing import Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..clock import utcnow
from ..engine.evaluation import (
    evaluate_counter_example,
    evaluate_unavailable_run,
    evaluate_vote,
)
from ..enums import ChallengeStatus, Outcome, VoteType
from ..judge.client import TIMEOUT_EXIT_CODE
from ..models import (
    Challenge,
    ChallengeMatchSetting,
    ChallengeParticipant,
    Match,
    MatchSetting,
    PeerReviewAssignment,
    PeerReviewVote,
    Submission,
    User,
)
from ..schemas.peer_review import ExitVote
from . import queries
from .context import LifecycleContext
from .results import OperationResult, failure

logger = logging.getLogger(__name__)


def _parse_json_array(raw: str | None) -> list | None:
    try:
        value = json.loads(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, list) else None


def _same_input(test_input, candidate: list) -> bool:
    if isinstance(test_input, str):
        try:
            test_input = json.loads(test_input)
        except ValueError:
            return False
    return json.dumps(test_input) == json.dumps(candidate)


class PeerReviewService:
    def __init__(self, session: AsyncSession, context: LifecycleContext) -> None:
        self.session = session
        self.context = context

    async def _load_assignment(self, assignment_id: str):
        statement = (
            select(PeerReviewAssignment, Submission, Match, MatchSetting, ChallengeParticipant)
            .join(Submission, Submission.id == PeerReviewAssignment.submission_id)
            .join(Match, Match.id == Submission.match_id)
            .join(ChallengeMatchSetting, ChallengeMatchSetting.id == Match.challenge_match_setting_id)
            .join(MatchSetting, MatchSetting.id == ChallengeMatchSetting.match_setting_id)
            .join(ChallengeParticipant, ChallengeParticipant.id == PeerReviewAssignment.reviewer_id)
            .where(PeerReviewAssignment.id == assignment_id)
        )
        return (await self.session.execute(statement)).first()

    async def submit_vote(
        self,
        *,
        user: User,
        assignment_id: str,
        vote: VoteType,
        test_case_input: str | None = None,
        expected_output: str | None = None,
    ) -> OperationResult:
        row = await self._load_assignment(assignment_id)
        if row is None:
            return failure(Outcome.ASSIGNMENT_NOT_FOUND, "Assignment not found.")
        assignment, _submission, match, setting, reviewer = row

        challenge = await self.session.get(Challenge, match.challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if challenge.status != ChallengeStatus.STARTED_PEER_REVIEW:
            return failure(Outcome.PHASE_CLOSED, "The peer review phase is not running.")
        if reviewer.student_id != user.id:
            return failure(Outcome.NOT_ALLOWED, "You are not the assigned reviewer for this solution.")

        clean_input = None
        clean_output = None
        if vote == VoteType.INCORRECT:
            if not (test_case_input or "").strip() or not (expected_output or "").strip():
                return failure(
                    Outcome.INVALID_INPUT,
                    "An incorrect vote needs both a test input and its expected output.",
                )
            parsed_input = _parse_json_array(test_case_input)
            parsed_output = _parse_json_array(expected_output)
            if parsed_input is None or parsed_output is None:
                return failure(Outcome.INVALID_INPUT, "Input and output must be valid array values (e.g. [1,2]).")
            if not parsed_input:
                return failure(Outcome.INVALID_INPUT, "Input array cannot be empty.")
            if any(_same_input(test.get("input"), parsed_input) for test in setting.public_tests or []):
                return failure(Outcome.INVALID_INPUT, "Public test cases cannot be used as counter-examples.")
            clean_input = test_case_input
            clean_output = expected_output

        existing = (
            await self.session.execute(
                select(PeerReviewVote).where(PeerReviewVote.peer_review_assignment_id == assignment.id)
            )
        ).scalar_one_or_none()
        if existing is not None:
            existing.vote = vote
            existing.test_case_input = clean_input
            existing.expected_output = clean_output
            existing.updated_at = utcnow()
            record = existing
        else:
            record = PeerReviewVote(
                peer_review_assignment_id=assignment.id,
                vote=vote,
                test_case_input=clean_input,
                expected_output=clean_output,
            )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return OperationResult(outcome=Outcome.OK, data={"vote": record})

    async def my_assignments(self, *, challenge_id: str, user: User) -> OperationResult:
        participant = (
            await self.session.execute(
                select(ChallengeParticipant).where(
                    ChallengeParticipant.challenge_id == challenge_id,
                    ChallengeParticipant.student_id == user.id,
                )
            )
        ).scalar_one_or_none()
        if participant is None:
            return failure(Outcome.NOT_ALLOWED, "You did not join this challenge.")

        statement = (
            select(PeerReviewAssignment, Submission, PeerReviewVote)
            .join(Submission, Submission.id == PeerReviewAssignment.submission_id)
            .outerjoin(PeerReviewVote, PeerReviewVote.peer_review_assignment_id == PeerReviewAssignment.id)
            .where(PeerReviewAssignment.reviewer_id == participant.id)
            .order_by(PeerReviewAssignment.created_at, PeerReviewAssignment.id)
        )
        rows = (await self.session.execute(statement)).all()
        assignments = [
            {
                "id": assignment.id,
                "submission_id": submission.id,
                "code": submission.code,
                "language": submission.language,
                "is_extra": assignment.is_extra,
                "vote": vote.vote if vote else None,
                "test_case_input": vote.test_case_input if vote else None,
                "expected_output": vote.expected_output if vote else None,
            }
            for assignment, submission, vote in rows
        ]
        return OperationResult(outcome=Outcome.OK, data={"assignments": assignments})

    async def exit_review(self, *, challenge_id: str, user: User, votes: Sequence[ExitVote] = ()) -> OperationResult:
        """
        Save the reviewer's remaining votes, then abstain on every assignment
        still left without one. Votes on submissions the reviewer was not
        assigned are skipped.
        """
        challenge = await self.session.get(Challenge, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        if challenge.status != ChallengeStatus.STARTED_PEER_REVIEW:
            return failure(Outcome.PHASE_CLOSED, "The peer review phase must be running to exit it.")
        student_id = user.id
        participant = await queries.get_participant(self.session, challenge_id, student_id)
        if participant is None:
            return failure(Outcome.PARTICIPANT_NOT_FOUND, "Participant not found.")

        statement = select(PeerReviewAssignment).where(PeerReviewAssignment.reviewer_id == participant.id)
        assignments = (await self.session.execute(statement)).scalars().all()
        by_submission = {assignment.submission_id: assignment.id for assignment in assignments}
        assignment_ids = list(by_submission.values())

        votes_saved = 0
        for item in votes:
            assignment_id = by_submission.get(item.submission_id)
            if assignment_id is None:
                continue
            result = await self.submit_vote(
                user=user,
                assignment_id=assignment_id,
                vote=item.vote,
                test_case_input=item.test_case_input,
                expected_output=item.expected_output,
            )
            if not result.ok:
                return result
            votes_saved += 1

        voted_statement = select(PeerReviewVote.peer_review_assignment_id).where(
            PeerReviewVote.peer_review_assignment_id.in_(assignment_ids)
        )
        voted = set((await self.session.execute(voted_statement)).scalars().all())
        abstentions = 0
        for assignment_id in assignment_ids:
            if assignment_id not in voted and await self._record_abstention(assignment_id):
                abstentions += 1

        logger.info(
            "Student %s exited the peer review of challenge %s (%s votes saved, %s abstentions)",
            student_id,
            challenge_id,
            votes_saved,
            abstentions,
        )
        return OperationResult(
            outcome=Outcome.OK,
            data={"votes_saved": votes_saved, "abstain_votes_created": abstentions},
        )

    @staticmethod
    def _review_rows(challenge_id: str):
        return (
            select(PeerReviewAssignment, Submission, MatchSetting, PeerReviewVote)
            .join(Submission, Submission.id == PeerReviewAssignment.submission_id)
            .join(Match, Match.id == Submission.match_id)
            .join(ChallengeMatchSetting, ChallengeMatchSetting.id == Match.challenge_match_setting_id)
            .join(MatchSetting, MatchSetting.id == ChallengeMatchSetting.match_setting_id)
            .outerjoin(PeerReviewVote, PeerReviewVote.peer_review_assignment_id == PeerReviewAssignment.id)
            .where(Match.challenge_id == challenge_id)
            .order_by(PeerReviewAssignment.id)
            .execution_options(populate_existing=True)
        )

    async def finalize_votes(self, challenge_id: str) -> int:
        """
        Evaluate every cast vote and record an abstention for each assignment
        left without one. Returns the number of abstentions created.

        Evaluations are committed before any abstention is written. A vote
        that lands while this runs takes the place of its abstention and is
        evaluated in a second pass.
        """
        evaluated = await self._evaluate_votes(challenge_id, already={})

        abstentions = 0
        statement = self._review_rows(challenge_id).where(PeerReviewVote.id.is_(None))
        unvoted = [assignment.id for assignment, *_ in (await self.session.execute(statement)).all()]
        for assignment_id in unvoted:
            if await self._record_abstention(assignment_id):
                abstentions += 1

        await self._evaluate_votes(challenge_id, already=evaluated)
        return abstentions

    async def _record_abstention(self, assignment_id: str) -> bool:
        self.session.add(PeerReviewVote(peer_review_assignment_id=assignment_id, vote=VoteType.ABSTAIN))
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.info("Assignment %s got a late vote, no abstention recorded", assignment_id)
            return False
        return True

    async def _evaluate_votes(self, challenge_id: str, *, already: dict[str, tuple]) -> dict[str, tuple]:
        """Evaluate votes whose content differs from ``already``; returns what was seen."""
        statement = self._review_rows(challenge_id).where(PeerReviewVote.id.is_not(None))
        rows = (await self.session.execute(statement)).all()

        seen: dict[str, tuple] = {}
        for _assignment, submission, setting, vote in rows:
            content = (vote.vote, vote.test_case_input, vote.expected_output)
            seen[vote.id] = content
            if already.get(vote.id) == content:
                continue
            try:
                await self._evaluate(vote, submission, setting)
            except Exception:  # noqa: BLE001
                logger.exception("Evaluation of vote %s failed", vote.id)
        await self.session.commit()
        return seen

    async def _evaluate(self, vote: PeerReviewVote, submission: Submission, setting: MatchSetting) -> None:
        quick = evaluate_vote(vote.vote, submission.status)
        if quick is not None:
            if vote.vote == VoteType.CORRECT:
                vote.is_vote_correct = quick.is_vote_correct
                self.session.add(vote)
            return

        if not vote.test_case_input or not vote.expected_output:
            return
        if not setting.reference_solution:
            logger.warning("No reference solution for vote %s", vote.id)
            return

        language = self.context.settings.default_language
        test_input = json.loads(vote.test_case_input)
        case = [{"input": test_input, "output": vote.expected_output}]

        reference_run = await self.context.judge.execute(setting.reference_solution, language, case)
        reference_output = reference_run.test_results[0].actual_output if reference_run.test_results else None
        if not reference_run.is_compiled or reference_output is None:
            logger.warning("Reference solution produced no output for vote %s", vote.id)
            return

        submission_run = await self.context.judge.execute(submission.code, submission.language or language, case)
        if submission_run.judge_unavailable:
            evaluation = evaluate_unavailable_run(
                expected_output=vote.expected_output,
                reference_output=reference_output,
            )
        else:
            result = submission_run.test_results[0] if submission_run.test_results else None
            evaluation = evaluate_counter_example(
                expected_output=vote.expected_output,
                reference_output=reference_output,
                is_compiled=submission_run.is_compiled,
                actual_output=result.actual_output if result else None,
                exit_code=result.exit_code if result else 0,
                timeout_exit_code=TIMEOUT_EXIT_CODE,
            )

        vote.reference_output = evaluation.reference_output
        vote.actual_output = evaluation.actual_output
        vote.is_expected_output_correct = evaluation.is_expected_output_correct
        vote.is_bug_proven = evaluation.is_bug_proven
        vote.is_vote_correct = evaluation.is_vote_correct
        vote.evaluation_status = evaluation.evaluation_status
        vote.updated_at = utcnow()
        self.session.add(vote)
