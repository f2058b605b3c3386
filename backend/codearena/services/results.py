from dataclasses import dataclass, field
from typing import Any

from ..enums import Outcome
from ..models import Challenge


@dataclass
class OperationResult:
    """Outcome of a lifecycle operation; routers translate it into a response."""

    outcome: Outcome
    challenge: Challenge | None = None
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.OK


def failure(outcome: Outcome, message: str | None = None, **data: Any) -> OperationResult:
    return OperationResult(outcome=outcome, message=message, data=data)
