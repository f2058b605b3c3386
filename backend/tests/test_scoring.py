import pytest

from codearena.engine.scoring import (
    ImplementationStats,
    ReviewStats,
    ReviewedVote,
    build_score_card,
    code_review_score,
    implementation_score,
    tally_reviews,
)
from codearena.enums import VoteType


def test_full_marks_for_passing_every_teacher_test():
    assert implementation_score(ImplementationStats(passed_teacher=4, total_teacher=4)) == 50.0


def test_peer_penalty_is_capped_at_a_third():
    stats = ImplementationStats(passed_teacher=2, total_teacher=4, failed_peer=1, total_peer=2)
    assert implementation_score(stats) == pytest.approx(8.33)


def test_implementation_score_never_goes_negative():
    stats = ImplementationStats(passed_teacher=0, total_teacher=4, failed_peer=3, total_peer=3)
    assert implementation_score(stats) == 0.0


def test_review_tally_and_score():
    votes = [
        ReviewedVote(
            submission_correct=False,
            vote=VoteType.INCORRECT,
            is_expected_output_correct=True,
            is_vote_correct=True,
        ),
        ReviewedVote(submission_correct=True, vote=VoteType.CORRECT),
        ReviewedVote(submission_correct=False, vote=VoteType.CORRECT),
        ReviewedVote(submission_correct=True, vote=VoteType.ABSTAIN),
    ]
    stats = tally_reviews(votes)

    assert (stats.exposed_bugs, stats.correct_confirmations, stats.wrong_verdicts) == (1, 1, 1)
    assert (stats.incorrect_total, stats.correct_total, stats.total_reviewed) == (2, 2, 4)
    assert code_review_score(stats) == pytest.approx(20.83)


def test_incorrect_vote_with_a_wrong_expected_output_counts_against_the_reviewer():
    stats = tally_reviews(
        [
            ReviewedVote(
                submission_correct=False,
                vote=VoteType.INCORRECT,
                is_expected_output_correct=False,
                is_vote_correct=False,
            )
        ]
    )
    assert stats.exposed_bugs == 0
    assert stats.wrong_verdicts == 1
    assert code_review_score(stats) == 0.0


def test_empty_card_scores_zero():
    card = build_score_card(None, ReviewStats())
    assert (card.implementation_score, card.code_review_score, card.total_score) == (0.0, 0.0, 0.0)
    assert card.stats["code_review"]["total_reviewed"] == 0


def test_card_totals_both_parts():
    card = build_score_card(
        ImplementationStats(passed_teacher=2, total_teacher=2),
        tally_reviews([ReviewedVote(submission_correct=True, vote=VoteType.CORRECT)]),
    )
    assert card.implementation_score == 50.0
    assert card.code_review_score == 50.0
    assert card.total_score == 100.0
