import pytest

from rehearsal.scoring import (
    FEEDBACK_MESSAGES,
    FeedbackTier,
    compute_score,
    overall_score,
    reference_tokens,
    round_half_up,
    score_answer,
    tier_for,
)


def test_empty_answer_or_reference_scores_zero():
    assert compute_score("", "anything at all") == 0
    assert compute_score("a perfectly fine answer", "") == 0
    assert compute_score(None, "reference") == 0
    assert compute_score("answer", None) == 0
    assert score_answer("", "x").tier is FeedbackTier.NEEDS_IMPROVEMENT


def test_half_coverage_ten_words_is_partial():
    reference = "alpha, bravo; charlie - delta"
    answer = "alpha bravo one two three four five six seven eight"

    record = score_answer(answer, reference)

    assert record.score == 43
    assert record.tier is FeedbackTier.PARTIAL
    assert record.feedback == FEEDBACK_MESSAGES[FeedbackTier.PARTIAL]


def test_reference_tokens_split_on_non_alphanumerics_and_dedupe():
    assert reference_tokens("REST vs. GraphQL: REST-ful APIs!") == {"rest", "vs", "graphql", "ful", "apis"}


def test_tokens_match_as_substrings_case_insensitively():
    # "cache" is found inside "Cached".
    assert compute_score("Cached", "cache") == round_half_up(100 * (0.8 * 1 + 0.2 / 60))
    assert compute_score("nothing relevant", "cache") == round_half_up(100 * 0.2 * 2 / 60)


def test_reference_without_tokens_falls_back_to_answer_length():
    assert compute_score("this answer is longer than twenty characters", "?!") == 60
    assert compute_score("short answer", "--") == 30


def test_full_coverage_and_length_scores_100():
    reference = "state props"
    answer = " ".join(["state", "props"] + ["word"] * 58)
    assert compute_score(answer, reference) == 100
    assert tier_for(100) is FeedbackTier.STRONG


def test_length_boost_caps_at_sixty_words():
    reference = "zzz"
    assert compute_score(" ".join(["word"] * 60), reference) == compute_score(" ".join(["word"] * 200), reference)


def test_score_is_monotonic_in_coverage():
    reference = "one two three four"
    filler = ["x"] * 10
    scores = [
        compute_score(" ".join(["one", "two", "three", "four"][:hits] + filler[: 10 - hits]), reference)
        for hits in range(5)
    ]
    assert scores == sorted(scores)
    assert all(0 <= s <= 100 for s in scores)


def test_score_is_monotonic_in_length():
    reference = "kernel"
    scores = [compute_score(" ".join(["kernel"] + ["pad"] * n), reference) for n in range(0, 80, 7)]
    assert scores == sorted(scores)


@pytest.mark.parametrize(
    "score, tier",
    [
        (100, FeedbackTier.STRONG),
        (80, FeedbackTier.STRONG),
        (79, FeedbackTier.GOOD),
        (60, FeedbackTier.GOOD),
        (59, FeedbackTier.PARTIAL),
        (40, FeedbackTier.PARTIAL),
        (39, FeedbackTier.NEEDS_IMPROVEMENT),
        (0, FeedbackTier.NEEDS_IMPROVEMENT),
    ],
)
def test_tier_lower_bounds_are_inclusive(score, tier):
    assert tier_for(score) is tier


def test_overall_is_rounded_mean():
    assert overall_score([90, 70, 50, 30]) == 60
    assert overall_score([50, 51]) == 51  # 50.5 rounds up
    assert overall_score([]) == 0
