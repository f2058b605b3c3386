from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.orm import sessionmaker

from ..config import Settings
from ..events.manager import EventBroadcaster
from ..judge import JudgeService
from .finalization import InFlightSubmissionTracker

if TYPE_CHECKING:
    from .scheduler import PhaseScheduler


@dataclass
class LifecycleContext:
    """Long-lived collaborators shared by every request and timer."""

    session_factory: sessionmaker
    settings: Settings
    judge: JudgeService
    broadcaster: EventBroadcaster
    tracker: InFlightSubmissionTracker
    scheduler: "PhaseScheduler | None" = None
