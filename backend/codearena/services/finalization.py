import logging
import threading
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..clock import as_naive_utc, utcnow
from ..enums import ChallengeStatus, SubmissionStatus
from ..events.manager import CHALLENGE_UPDATED, FINALIZATION_UPDATED
from ..models import Challenge, Match, MatchSetting, Submission
from . import queries

if TYPE_CHECKING:
    from .context import LifecycleContext

logger = logging.getLogger(__name__)


class InFlightSubmissionTracker:
    """Counts submissions per challenge that are still waiting on the judge."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def begin(self, challenge_id: str) -> None:
        with self._lock:
            self._counts[challenge_id] += 1

    def end(self, challenge_id: str) -> None:
        with self._lock:
            remaining = self._counts.get(challenge_id, 0) - 1
            if remaining > 0:
                self._counts[challenge_id] = remaining
            else:
                self._counts.pop(challenge_id, None)

    def count(self, challenge_id: str) -> int:
        with self._lock:
            return self._counts.get(challenge_id, 0)

    @asynccontextmanager
    async def track(self, challenge_id: str) -> AsyncIterator[None]:
        self.begin(challenge_id)
        try:
            yield
        finally:
            self.end(challenge_id)


class FinalizationState(str, Enum):
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    NOT_IN_CODING_PHASE_END = "not_in_coding_phase_end"
    ALREADY_COMPLETED = "already_completed"
    PENDING_IN_FLIGHT = "pending_in_flight"
    WITHIN_GRACE_PERIOD = "within_grace_period"
    MISSING_FINAL_SUBMISSIONS = "missing_final_submissions"
    COMPLETED = "completed"


@dataclass
class BackfillReport:
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


@dataclass
class FinalizationStats:
    total_matches: int
    final_submissions: int
    in_flight_submissions_count: int
    within_grace_period: bool
    pending_final_count: int
    finalization_completed_at: object = None

    @property
    def results_ready(self) -> bool:
        return self.pending_final_count == 0

    def as_dict(self) -> dict:
        return {
            "total_matches": self.total_matches,
            "final_submissions": self.final_submissions,
            "in_flight_submissions_count": self.in_flight_submissions_count,
            "within_grace_period": self.within_grace_period,
            "pending_final_count": self.pending_final_count,
            "results_ready": self.results_ready,
            "finalization_completed_at": self.finalization_completed_at,
        }


class FinalizationService:
    def __init__(self, context: "LifecycleContext") -> None:
        self.context = context
        self.tracker = context.tracker

    @property
    def grace(self) -> timedelta:
        return timedelta(milliseconds=self.context.settings.coding_phase_autosubmit_grace_ms)

    def grace_remaining(self, challenge: Challenge) -> float:
        """Seconds left in the auto-submit grace window, 0 once it has closed."""
        ended_at = as_naive_utc(challenge.end_coding_phase_at)
        if ended_at is None:
            return 0.0
        remaining = (ended_at + self.grace - utcnow()).total_seconds()
        return max(0.0, remaining)

    def accepts_automatic_submissions(self, challenge: Challenge) -> bool:
        if challenge.status == ChallengeStatus.STARTED_CODING_PHASE:
            return True
        return (
            challenge.status == ChallengeStatus.ENDED_CODING_PHASE
            and challenge.coding_phase_finalization_completed_at is None
            and self.grace_remaining(challenge) > 0
        )

    async def backfill_final_submissions(self, challenge_id: str) -> BackfillReport:
        report = BackfillReport()
        async with self.context.session_factory() as session:
            statement = (
                select(Match)
                .outerjoin(
                    Submission,
                    (Submission.match_id == Match.id) & (Submission.is_final.is_(True)),
                )
                .where(Match.challenge_id == challenge_id, Submission.id.is_(None))
                .order_by(Match.id)
            )
            missing = (await session.execute(statement)).scalars().all()

        for match in missing:
            try:
                async with self.context.session_factory() as session:
                    created = await self._backfill_match(session, match)
            except Exception:  # noqa: BLE001
                logger.exception("Backfill of final submission failed for match %s", match.id)
                report.failed.append(match.id)
                continue
            (report.created if created else report.skipped).append(match.id)

        if report.created or report.failed:
            logger.info(
                "Backfilled %s final submissions for challenge %s (%s skipped, %s failed)",
                len(report.created),
                challenge_id,
                len(report.skipped),
                len(report.failed),
            )
        return report

    async def _backfill_match(self, session: AsyncSession, match: Match) -> bool:
        if await queries.get_final_submission(session, match.id):
            return False

        latest_stmt = (
            select(Submission)
            .where(Submission.match_id == match.id, Submission.is_final.is_(False))
            .order_by(Submission.created_at.desc(), Submission.id.desc())
            .limit(1)
        )
        latest = (await session.execute(latest_stmt)).scalar_one_or_none()

        if latest is not None:
            submission = Submission(
                match_id=match.id,
                challenge_participant_id=match.challenge_participant_id,
                code=latest.code,
                language=latest.language,
                status=latest.status,
                is_compiled=latest.is_compiled,
                public_test_results=latest.public_test_results,
                private_test_results=latest.private_test_results,
                is_final=True,
                is_automatic_submission=True,
            )
        else:
            setting: MatchSetting | None = await queries.get_match_setting_for_match(session, match)
            submission = Submission(
                match_id=match.id,
                challenge_participant_id=match.challenge_participant_id,
                code=(setting.starter_code if setting else None) or "",
                language=self.context.settings.default_language,
                status=SubmissionStatus.WRONG,
                is_final=True,
                is_automatic_submission=True,
            )

        session.add(submission)
        try:
            await session.commit()
        except IntegrityError:
            # a final submission for this match landed concurrently
            await session.rollback()
            return False
        return True

    async def stats(self, session: AsyncSession, challenge: Challenge) -> FinalizationStats:
        total = await queries.count_matches(session, challenge.id)
        finals = await queries.count_final_submissions(session, challenge.id)
        in_flight = self.tracker.count(challenge.id)
        within_grace = False
        pending = max(0, total - finals)
        if challenge.status == ChallengeStatus.ENDED_CODING_PHASE:
            within_grace = challenge.coding_phase_finalization_completed_at is None and self.grace_remaining(challenge) > 0
            pending += in_flight + (1 if within_grace else 0)
        return FinalizationStats(
            total_matches=total,
            final_submissions=finals,
            in_flight_submissions_count=in_flight,
            within_grace_period=within_grace,
            pending_final_count=pending,
            finalization_completed_at=challenge.coding_phase_finalization_completed_at,
        )

    def _schedule_recheck(self, challenge_id: str, delay: float) -> None:
        scheduler = self.context.scheduler
        if scheduler is not None:
            scheduler.schedule_finalization_check(challenge_id, delay)

    async def maybe_complete_coding_phase_finalization(self, challenge_id: str) -> FinalizationState:
        async with self.context.session_factory() as session:
            challenge = await queries.get_challenge(session, challenge_id, refresh=True)
        if challenge is None:
            return FinalizationState.CHALLENGE_NOT_FOUND
        if challenge.status != ChallengeStatus.ENDED_CODING_PHASE:
            return FinalizationState.NOT_IN_CODING_PHASE_END
        if challenge.coding_phase_finalization_completed_at is not None:
            return FinalizationState.ALREADY_COMPLETED

        retry_seconds = self.context.settings.finalization_retry_seconds
        if self.tracker.count(challenge_id) > 0:
            self._schedule_recheck(challenge_id, retry_seconds)
            return FinalizationState.PENDING_IN_FLIGHT

        remaining = self.grace_remaining(challenge)
        if remaining > 0:
            self._schedule_recheck(challenge_id, remaining)
            return FinalizationState.WITHIN_GRACE_PERIOD

        await self.backfill_final_submissions(challenge_id)

        async with self.context.session_factory() as session:
            total = await queries.count_matches(session, challenge_id)
            finals = await queries.count_final_submissions(session, challenge_id)
            if finals < total:
                logger.warning(
                    "Challenge %s still misses %s final submissions, retrying in %.1fs",
                    challenge_id,
                    total - finals,
                    retry_seconds,
                )
                self._schedule_recheck(challenge_id, retry_seconds)
                return FinalizationState.MISSING_FINAL_SUBMISSIONS

            completed_at = utcnow()
            statement = (
                update(Challenge)
                .where(
                    Challenge.id == challenge_id,
                    Challenge.status == ChallengeStatus.ENDED_CODING_PHASE,
                    Challenge.coding_phase_finalization_completed_at.is_(None),
                )
                .values(coding_phase_finalization_completed_at=completed_at, updated_at=completed_at)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(statement)
            await session.commit()

        if result.rowcount != 1:
            async with self.context.session_factory() as session:
                current = await queries.get_challenge(session, challenge_id, refresh=True)
            if current is not None and current.coding_phase_finalization_completed_at is not None:
                return FinalizationState.ALREADY_COMPLETED
            return FinalizationState.NOT_IN_CODING_PHASE_END

        logger.info("Coding phase finalization completed for challenge %s", challenge_id)
        payload = {
            "challenge_id": challenge_id,
            "status": ChallengeStatus.ENDED_CODING_PHASE.value,
            "coding_phase_finalization_completed_at": completed_at.isoformat(),
        }
        self.context.broadcaster.publish(FINALIZATION_UPDATED, payload)
        self.context.broadcaster.publish(CHALLENGE_UPDATED, payload)
        return FinalizationState.COMPLETED

    async def is_finalization_complete(self, challenge_id: str) -> bool:
        state = await self.maybe_complete_coding_phase_finalization(challenge_id)
        return state in (FinalizationState.COMPLETED, FinalizationState.ALREADY_COMPLETED)
