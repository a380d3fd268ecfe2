"""Tests for self-reported age extraction and current-age estimation."""

from age_verifier.age_mentions import (
    SECONDS_PER_YEAR,
    AgeMentions,
    AgePoint,
    build_age_search_query,
    collect_mentions,
    estimate_current_age,
    extract_ages_from_text,
)
from tests.fakes import NOW


YEAR = SECONDS_PER_YEAR
START = NOW - 10 * YEAR


def points(*pairs):
    return [AgePoint(timestamp=START + years * YEAR, age=age) for years, age in pairs]


class TestExtraction:
    def test_search_query(self):
        assert build_age_search_query(18, 19) == '18|18m|m18|19|19m|m19'

    def test_bracketed_and_standalone(self):
        found = extract_ages_from_text("Me [24m] and my friend (f22), both 99 years fun 15")
        assert found.posted == (22, 24)
        assert found.possible == (15,)

    def test_range_limits(self):
        found = extract_ages_from_text("(09) (18) (71)", min_age=10, max_age=70)
        assert found.posted == (18,)

    def test_empty(self):
        assert extract_ages_from_text('') == AgeMentions()
        assert extract_ages_from_text(None) == AgeMentions()

    def test_collect_mentions(self):
        posts = [
            {'title': 'Looking for friends [24m]', 'selftext': '', 'created_utc': START},
            {'title': 'hello', 'selftext': 'nothing here', 'created_utc': START + YEAR},
            {'title': 'I am 25 now', 'selftext': None, 'created_utc': START + 2 * YEAR},
            {'title': '(f23) no date'},
        ]

        mentions, found = collect_mentions(posts)

        assert mentions.posted == (23, 24)
        assert mentions.possible == (25,)
        assert found == [AgePoint(timestamp=START, age=24)]


class TestEstimateCurrentAge:
    def test_no_points(self):
        assert estimate_current_age([], now=NOW) is None

    def test_steady_ageing(self):
        estimate = estimate_current_age(
            points((0, 20), (1, 21), (2, 22), (3, 23)), now=START + 4 * YEAR
        )
        assert estimate.estimated_age == 24.0
        assert estimate.confidence == 'High'
        assert estimate.data_points == 4
        assert estimate.year_span == 3.0
        assert not estimate.anomalies_detected

    def test_single_old_point(self):
        estimate = estimate_current_age(points((0, 25)), now=START + 2 * YEAR)
        assert estimate.estimated_age == 27.0
        assert estimate.confidence == 'Medium'

    def test_single_recent_point(self):
        recent = points((0, 25))
        now = START + YEAR / 12

        estimate = estimate_current_age(recent, now=now)
        assert estimate.estimated_age == 25.0
        assert estimate.confidence == 'Very Low'

        assert estimate_current_age(recent, now=now, allow_very_low=False) is None

    def test_major_jump_skipped(self):
        estimate = estimate_current_age(
            points((0, 20), (0.5, 30), (1.5, 31), (2.5, 32)), now=START + 3 * YEAR
        )
        assert estimate.skipped
        assert estimate.skipped_reason == 'major_jump'
        assert estimate.estimated_age is None
        assert estimate.major_jump

    def test_too_many_anomalies_skipped(self):
        estimate = estimate_current_age(
            points((0, 20), (1, 24), (2, 22), (3, 26)), now=START + 4 * YEAR
        )
        assert estimate.skipped_reason == 'too_many_anomalies'
        assert estimate.anomalies_detected

    def test_couples_account_uses_latest_track(self):
        estimate = estimate_current_age(
            points((0, 25), (0.5, 35), (1, 25), (1.5, 35), (2, 26), (2.5, 36)),
            now=START + 3.5 * YEAR,
        )
        assert estimate.couples_account
        assert estimate.data_points == 3
        assert estimate.estimated_age == 36.5
        assert estimate.confidence == 'Low'

    def test_decreasing_ages_rejected(self):
        assert estimate_current_age(points((0, 30), (5, 28)), now=START + 6 * YEAR) is None

    def test_unsorted_input(self):
        estimate = estimate_current_age(
            points((3, 23), (0, 20), (2, 22), (1, 21)), now=START + 4 * YEAR
        )
        assert estimate.estimated_age == 24.0
