from ..enums import ChallengeStatus

LEGAL_TRANSITIONS: dict[ChallengeStatus, frozenset[ChallengeStatus]] = {
    ChallengeStatus.DRAFT: frozenset({ChallengeStatus.PRIVATE, ChallengeStatus.PUBLIC}),
    ChallengeStatus.PRIVATE: frozenset({ChallengeStatus.PUBLIC}),
    ChallengeStatus.PUBLIC: frozenset({ChallengeStatus.PRIVATE, ChallengeStatus.ASSIGNED}),
    ChallengeStatus.ASSIGNED: frozenset({ChallengeStatus.ASSIGNED, ChallengeStatus.STARTED_CODING_PHASE}),
    ChallengeStatus.STARTED_CODING_PHASE: frozenset({ChallengeStatus.ENDED_CODING_PHASE}),
    ChallengeStatus.ENDED_CODING_PHASE: frozenset({ChallengeStatus.STARTED_PEER_REVIEW}),
    ChallengeStatus.STARTED_PEER_REVIEW: frozenset({ChallengeStatus.ENDED_PEER_REVIEW}),
    ChallengeStatus.ENDED_PEER_REVIEW: frozenset(),
}

PHASE_ORDER = [
    ChallengeStatus.DRAFT,
    ChallengeStatus.PRIVATE,
    ChallengeStatus.PUBLIC,
    ChallengeStatus.ASSIGNED,
    ChallengeStatus.STARTED_CODING_PHASE,
    ChallengeStatus.ENDED_CODING_PHASE,
    ChallengeStatus.STARTED_PEER_REVIEW,
    ChallengeStatus.ENDED_PEER_REVIEW,
]


def can_transition(current: ChallengeStatus, target: ChallengeStatus) -> bool:
    return target in LEGAL_TRANSITIONS.get(current, frozenset())


def has_reached(current: ChallengeStatus, phase: ChallengeStatus) -> bool:
    """True when ``current`` is ``phase`` or any later phase."""
    return PHASE_ORDER.index(current) >= PHASE_ORDER.index(phase)
