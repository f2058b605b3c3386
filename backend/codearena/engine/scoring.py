from dataclasses import dataclass, field
from typing import Iterable

from ..enums import VoteType

IMPLEMENTATION_MAX = 50.0
CODE_REVIEW_MAX = 50.0
MAX_PEER_PENALTY = IMPLEMENTATION_MAX / 3


@dataclass
class ImplementationStats:
    passed_teacher: int = 0
    total_teacher: int = 0
    failed_peer: int = 0
    total_peer: int = 0

    @property
    def teacher_passed_all(self) -> bool:
        return self.total_teacher > 0 and self.passed_teacher == self.total_teacher

    @property
    def is_ultimately_correct(self) -> bool:
        return self.teacher_passed_all and self.failed_peer == 0


@dataclass(frozen=True)
class ReviewedVote:
    """A reviewer's verdict together with the truth about the reviewed submission."""

    submission_correct: bool
    vote: VoteType | None
    is_expected_output_correct: bool | None = None
    is_vote_correct: bool | None = None


@dataclass
class ReviewStats:
    exposed_bugs: int = 0
    correct_confirmations: int = 0
    wrong_verdicts: int = 0
    incorrect_total: int = 0
    correct_total: int = 0
    total_reviewed: int = 0

    def as_dict(self) -> dict:
        return {
            "E": self.exposed_bugs,
            "C": self.correct_confirmations,
            "W": self.wrong_verdicts,
            "I_total": self.incorrect_total,
            "C_total": self.correct_total,
            "total_reviewed": self.total_reviewed,
        }


@dataclass
class ScoreCard:
    implementation_score: float
    code_review_score: float
    total_score: float
    stats: dict = field(default_factory=dict)


def implementation_score(stats: ImplementationStats) -> float:
    base = 0.0
    if stats.total_teacher > 0:
        base = (stats.passed_teacher / stats.total_teacher) * IMPLEMENTATION_MAX

    penalty = 0.0
    if stats.total_peer > 0:
        penalty = min(MAX_PEER_PENALTY, (stats.failed_peer / stats.total_peer) * IMPLEMENTATION_MAX)

    return round(max(0.0, base - penalty), 2)


def tally_reviews(votes: Iterable[ReviewedVote]) -> ReviewStats:
    stats = ReviewStats()
    for item in votes:
        stats.total_reviewed += 1
        if item.submission_correct:
            stats.correct_total += 1
        else:
            stats.incorrect_total += 1

        if item.vote is None or item.vote == VoteType.ABSTAIN:
            continue

        if item.vote == VoteType.CORRECT:
            if item.submission_correct:
                stats.correct_confirmations += 1
            else:
                stats.wrong_verdicts += 1
            continue

        # an incorrect verdict only counts when backed by a valid counter-example
        if item.is_expected_output_correct and not item.submission_correct:
            if item.is_vote_correct or item.is_vote_correct is None:
                stats.exposed_bugs += 1
            else:
                stats.wrong_verdicts += 1
        else:
            stats.wrong_verdicts += 1
    return stats


def code_review_score(stats: ReviewStats) -> float:
    numerator = 2 * stats.exposed_bugs + stats.correct_confirmations - 0.5 * stats.wrong_verdicts
    denominator = 2 * stats.incorrect_total + stats.correct_total
    if denominator <= 0:
        return 0.0
    raw = CODE_REVIEW_MAX * (numerator / denominator)
    return round(max(0.0, min(CODE_REVIEW_MAX, raw)), 2)


def build_score_card(implementation: ImplementationStats | None, reviews: ReviewStats) -> ScoreCard:
    impl_stats = implementation or ImplementationStats()
    impl = implementation_score(impl_stats) if implementation else 0.0
    review = code_review_score(reviews)
    return ScoreCard(
        implementation_score=impl,
        code_review_score=review,
        total_score=round(impl + review, 2),
        stats={
            "code_review": reviews.as_dict(),
            "implementation": {
                "teacher_passed": impl_stats.passed_teacher,
                "teacher_total": impl_stats.total_teacher,
                "peer_penalties": impl_stats.failed_peer,
                "peer_total": impl_stats.total_peer,
            },
        },
    )
