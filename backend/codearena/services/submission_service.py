import logging
from typing import Sequence

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..clock import utcnow
from ..engine.evaluation import passed_test_count, replaces_final, submission_status
from ..enums import ChallengeStatus, Outcome
from ..judge import ExecutionResult, compile_failure
from ..models import Challenge, ChallengeParticipant, Match, MatchSetting, Submission, User
from . import queries
from .context import LifecycleContext
from .finalization import FinalizationService
from .results import OperationResult, failure

logger = logging.getLogger(__name__)


class SubmissionService:
    def __init__(self, session: AsyncSession, context: LifecycleContext) -> None:
        self.session = session
        self.context = context

    async def _load_owned_match(
        self, match_id: str, user: User
    ) -> tuple[Match, Challenge, MatchSetting] | OperationResult:
        match = await self.session.get(Match, match_id)
        if match is None:
            return failure(Outcome.MATCH_NOT_FOUND, "Match not found.")
        participant = await self.session.get(ChallengeParticipant, match.challenge_participant_id)
        if participant is None or participant.student_id != user.id:
            return failure(Outcome.NOT_ALLOWED, "This match belongs to another student.")
        challenge = await queries.get_challenge(self.session, match.challenge_id, refresh=True)
        setting = await queries.get_match_setting_for_match(self.session, match)
        if challenge is None or setting is None:
            return failure(Outcome.MATCH_NOT_FOUND, "Match not found.")
        return match, challenge, setting

    async def submit(
        self,
        *,
        user: User,
        match_id: str,
        code: str,
        language: str | None = None,
        is_automatic: bool = False,
    ) -> OperationResult:
        if not code or not code.strip():
            return failure(Outcome.INVALID_INPUT, "Code cannot be empty.")

        match = await self.session.get(Match, match_id)
        if match is None:
            return failure(Outcome.MATCH_NOT_FOUND, "Match not found.")

        finalization = FinalizationService(self.context)
        # counted before the phase check so finalization cannot complete underneath us
        async with self.context.tracker.track(match.challenge_id):
            result = await self._submit_tracked(
                user=user,
                match_id=match_id,
                code=code,
                language=language or self.context.settings.default_language,
                is_automatic=is_automatic,
                finalization=finalization,
            )

        current = await queries.get_challenge(self.session, match.challenge_id, refresh=True)
        if current is not None and current.status == ChallengeStatus.ENDED_CODING_PHASE:
            await finalization.maybe_complete_coding_phase_finalization(match.challenge_id)
        if result.ok:
            result.challenge = current
        return result

    async def _submit_tracked(
        self,
        *,
        user: User,
        match_id: str,
        code: str,
        language: str,
        is_automatic: bool,
        finalization: FinalizationService,
    ) -> OperationResult:
        loaded = await self._load_owned_match(match_id, user)
        if isinstance(loaded, OperationResult):
            return loaded
        match, challenge, setting = loaded

        if is_automatic:
            if not finalization.accepts_automatic_submissions(challenge):
                return failure(Outcome.PHASE_CLOSED, "The coding phase is closed.")
        elif challenge.status != ChallengeStatus.STARTED_CODING_PHASE:
            return failure(Outcome.PHASE_CLOSED, "The coding phase is closed.")

        public_result, private_result = await self._judge(code, language, setting)
        submission = await self._store(
            match,
            code=code,
            language=language,
            public_result=public_result,
            private_result=private_result,
            is_automatic=is_automatic,
        )
        return OperationResult(
            outcome=Outcome.OK,
            challenge=challenge,
            data={
                "submission": submission,
                "public": public_result,
                "private": private_result,
            },
        )

    async def _judge(self, code: str, language: str, setting: MatchSetting) -> tuple[ExecutionResult, ExecutionResult]:
        public_tests = setting.public_tests or []
        private_tests = setting.private_tests or []
        public_result = await self.context.judge.execute(code, language, public_tests)
        if not public_result.is_compiled:
            return public_result, compile_failure(public_result.error or "Compilation failed.", private_tests)
        private_result = await self.context.judge.execute(code, language, private_tests)
        return public_result, private_result

    async def _store(
        self,
        match: Match,
        *,
        code: str,
        language: str,
        public_result: ExecutionResult,
        private_result: ExecutionResult,
        is_automatic: bool,
    ) -> Submission:
        is_compiled = public_result.is_compiled and private_result.is_compiled
        status = submission_status(public_result.is_passed, private_result.is_passed)
        public_rows = [result.as_dict() for result in public_result.test_results]
        private_rows = [result.as_dict() for result in private_result.test_results]

        current_final = await queries.get_final_submission(self.session, match.id)
        if is_automatic:
            make_final = current_final is None or replaces_final(
                passed_test_count(public_rows, private_rows),
                current_final.public_test_results,
                current_final.private_test_results,
            )
        else:
            make_final = is_compiled

        submission = Submission(
            match_id=match.id,
            challenge_participant_id=match.challenge_participant_id,
            code=code,
            language=language,
            status=status,
            is_compiled=is_compiled,
            is_final=make_final,
            is_automatic_submission=is_automatic,
            public_test_results=public_rows,
            private_test_results=private_rows,
        )

        try:
            if make_final and current_final is not None:
                # demote first, the partial unique index allows one final row per match
                await self.session.execute(
                    update(Submission)
                    .where(Submission.id == current_final.id)
                    .values(is_final=False, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
            self.session.add(submission)
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.info("Final submission for match %s landed concurrently, storing attempt as non-final", match.id)
            submission.is_final = False
            self.session.add(submission)
            await self.session.commit()

        await self.session.refresh(submission)
        logger.info(
            "Stored submission %s for match %s (status=%s, final=%s, automatic=%s)",
            submission.id,
            match.id,
            submission.status.value,
            submission.is_final,
            is_automatic,
        )
        return submission

    async def run(
        self,
        *,
        user: User,
        match_id: str,
        code: str,
        language: str | None = None,
        custom_tests: Sequence[dict] | None = None,
    ) -> OperationResult:
        """Run code against the public and custom tests without storing anything."""
        loaded = await self._load_owned_match(match_id, user)
        if isinstance(loaded, OperationResult):
            return loaded
        _match, challenge, setting = loaded
        if challenge.status != ChallengeStatus.STARTED_CODING_PHASE:
            return failure(Outcome.PHASE_CLOSED, "The coding phase is closed.")

        tests = list(setting.public_tests or []) + list(custom_tests or [])
        result = await self.context.judge.execute(code, language or self.context.settings.default_language, tests)
        return OperationResult(outcome=Outcome.OK, challenge=challenge, data={"result": result})

    async def get_for_user(self, submission_id: str, user: User) -> OperationResult:
        submission = await self.session.get(Submission, submission_id)
        if submission is None:
            return failure(Outcome.SUBMISSION_NOT_FOUND, "Submission not found.")
        participant = await self.session.get(ChallengeParticipant, submission.challenge_participant_id)
        if not user.is_privileged and (participant is None or participant.student_id != user.id):
            return failure(Outcome.SUBMISSION_NOT_FOUND, "Submission not found.")
        return OperationResult(outcome=Outcome.OK, data={"submission": submission})

    async def my_match(self, *, challenge_id: str, user: User) -> OperationResult:
        challenge = await queries.get_challenge(self.session, challenge_id)
        if challenge is None:
            return failure(Outcome.CHALLENGE_NOT_FOUND, "Challenge not found.")
        participant = await queries.get_participant(self.session, challenge_id, user.id)
        if participant is None:
            return failure(Outcome.NOT_ALLOWED, "You did not join this challenge.")
        match = (
            await self.session.execute(select(Match).where(Match.challenge_participant_id == participant.id))
        ).scalar_one_or_none()
        if match is None:
            return failure(Outcome.MATCH_NOT_FOUND, "No match has been assigned to you yet.")
        setting = await queries.get_match_setting_for_match(self.session, match)
        final = await queries.get_final_submission(self.session, match.id)
        return OperationResult(
            outcome=Outcome.OK,
            challenge=challenge,
            data={"match": match, "match_setting": setting, "final_submission": final},
        )
