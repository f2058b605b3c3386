import asyncio
import logging
from contextlib import suppress
from datetime import datetime
from typing import Awaitable, Callable

from sqlmodel import select

from ..clock import utcnow
from ..enums import ChallengeStatus
from ..models import Challenge
from .context import LifecycleContext
from .finalization import FinalizationService
from .phase_transitions import PhaseTransitionService, coding_phase_deadline, peer_review_deadline

logger = logging.getLogger(__name__)

CODING_END = "coding-end"
PEER_REVIEW_END = "peer-review-end"
FINALIZATION_CHECK = "finalization-check"


class PhaseScheduler:
    """
    In-process timers that close phases when their deadline passes.

    Timers are at-least-once triggers: each one runs the same transition as
    the manual route, which is a no-op once the phase already moved on.
    """

    def __init__(self, context: LifecycleContext) -> None:
        self.context = context
        self._timers: dict[tuple[str, str], asyncio.Task] = {}
        context.scheduler = self

    def _arm(self, kind: str, challenge_id: str, delay: float, action: Callable[[], Awaitable[object]]) -> None:
        key = (kind, challenge_id)
        self._cancel(key)

        async def runner() -> None:
            try:
                await asyncio.sleep(max(0.0, delay))
            except asyncio.CancelledError:
                return
            # drop the handle first so the transition cannot cancel its own timer
            if self._timers.get(key) is asyncio.current_task():
                self._timers.pop(key, None)
            try:
                await action()
            except Exception:  # noqa: BLE001
                logger.exception("Timer %s failed for challenge %s", kind, challenge_id)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running loop, timer %s for challenge %s not armed", kind, challenge_id)
            return
        self._timers[key] = loop.create_task(runner())
        logger.debug("Armed %s timer for challenge %s in %.1fs", kind, challenge_id, delay)

    def _cancel(self, key: tuple[str, str]) -> None:
        task = self._timers.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    @staticmethod
    def _delay_until(deadline: datetime | None) -> float:
        if deadline is None:
            return 0.0
        return max(0.0, (deadline - utcnow()).total_seconds())

    def is_armed(self, kind: str, challenge_id: str) -> bool:
        task = self._timers.get((kind, challenge_id))
        return task is not None and not task.done()

    def schedule_coding_phase_end(self, challenge_id: str, deadline: datetime | None) -> None:
        self._arm(CODING_END, challenge_id, self._delay_until(deadline), lambda: self._end_coding(challenge_id))

    def cancel_coding_phase_end(self, challenge_id: str) -> None:
        self._cancel((CODING_END, challenge_id))

    def schedule_peer_review_end(self, challenge_id: str, deadline: datetime | None) -> None:
        self._arm(PEER_REVIEW_END, challenge_id, self._delay_until(deadline), lambda: self._end_peer_review(challenge_id))

    def cancel_peer_review_end(self, challenge_id: str) -> None:
        self._cancel((PEER_REVIEW_END, challenge_id))

    def schedule_finalization_check(self, challenge_id: str, delay: float) -> None:
        if self.is_armed(FINALIZATION_CHECK, challenge_id):
            return
        self._arm(
            FINALIZATION_CHECK,
            challenge_id,
            delay,
            lambda: FinalizationService(self.context).maybe_complete_coding_phase_finalization(challenge_id),
        )

    async def _end_coding(self, challenge_id: str) -> None:
        async with self.context.session_factory() as session:
            result = await PhaseTransitionService(session, self.context).end_coding_phase(challenge_id)
        logger.info("Coding phase timer for challenge %s finished with %s", challenge_id, result.outcome.value)

    async def _end_peer_review(self, challenge_id: str) -> None:
        async with self.context.session_factory() as session:
            result = await PhaseTransitionService(session, self.context).end_peer_review(challenge_id, allow_early=True)
        logger.info("Peer review timer for challenge %s finished with %s", challenge_id, result.outcome.value)

    async def restore(self) -> int:
        """Re-arm timers for challenges that were mid-phase when the process stopped."""
        buffer_seconds = self.context.settings.phase_end_buffer_seconds
        statement = select(Challenge).where(
            Challenge.status.in_(
                [
                    ChallengeStatus.STARTED_CODING_PHASE,
                    ChallengeStatus.ENDED_CODING_PHASE,
                    ChallengeStatus.STARTED_PEER_REVIEW,
                ]
            )
        )
        async with self.context.session_factory() as session:
            challenges = (await session.execute(statement)).scalars().all()

        armed = 0
        for challenge in challenges:
            if challenge.status == ChallengeStatus.STARTED_CODING_PHASE:
                self.schedule_coding_phase_end(challenge.id, coding_phase_deadline(challenge, buffer_seconds))
            elif challenge.status == ChallengeStatus.STARTED_PEER_REVIEW:
                self.schedule_peer_review_end(challenge.id, peer_review_deadline(challenge, buffer_seconds))
            elif challenge.coding_phase_finalization_completed_at is None:
                self.schedule_finalization_check(challenge.id, 0)
            else:
                continue
            armed += 1

        if armed:
            logger.info("Restored %s phase timers", armed)
        return armed

    async def shutdown(self) -> None:
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
