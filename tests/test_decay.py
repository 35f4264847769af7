from datetime import timedelta

import pytest

from feedseq_core.config import TimeConstants, Weights
from feedseq_core.types import ContentAge
from feedseq_ranking.decay import (
    categorize_content_age,
    decay_multiplier,
    freshness_boost,
    tag_relevance,
)

from conftest import NOW


def test_decay_documented_points():
    c = TimeConstants.default()
    assert decay_multiplier(NOW - timedelta(hours=1), c, now=NOW) == 0.1
    assert decay_multiplier(NOW - timedelta(days=3), c, now=NOW) == 0.5
    assert decay_multiplier(NOW - timedelta(days=10), c, now=NOW) == 0.8
    assert decay_multiplier(NOW - timedelta(days=45), c, now=NOW) == 1.0
    assert decay_multiplier(None, c, now=NOW) == 1.0


def test_decay_is_monotonic_and_bounded():
    c = TimeConstants.default()
    ages = [timedelta(minutes=m) for m in range(0, 60 * 24 * 40, 97)]
    values = [decay_multiplier(NOW - a, c, now=NOW) for a in ages]
    assert all(v <= 1.0 for v in values)
    assert values == sorted(values)


def test_decay_boundaries_are_half_open():
    c = TimeConstants.default()
    assert decay_multiplier(NOW - c.recently_seen, c, now=NOW) == 0.5
    assert decay_multiplier(NOW - c.short_term, c, now=NOW) == 0.8
    assert decay_multiplier(NOW - c.medium_term, c, now=NOW) == 1.0


def test_decay_uses_anonymous_windows():
    c = TimeConstants.anonymous()
    assert decay_multiplier(NOW - timedelta(hours=1), c, now=NOW) == 0.5
    assert decay_multiplier(NOW - timedelta(days=2), c, now=NOW) == 0.8
    assert decay_multiplier(NOW - timedelta(days=8), c, now=NOW) == 1.0


def test_decay_treats_naive_timestamps_as_utc():
    naive = (NOW - timedelta(hours=2)).replace(tzinfo=None)
    assert decay_multiplier(naive, now=NOW) == 0.1


def test_freshness_boost():
    assert freshness_boost(NOW - timedelta(days=2), now=NOW) == 1.5
    assert freshness_boost(NOW - timedelta(days=8), now=NOW) == 1.0
    assert freshness_boost(None, now=NOW) == 1.0


def test_tag_relevance_neutral_cases():
    assert tag_relevance([], ["anime"]) == 1.0
    assert tag_relevance(["anime"], []) == 1.0
    assert tag_relevance(None, None) == 1.0
    assert tag_relevance(["cat", "dog"], ["anime"]) == 1.0


def test_tag_relevance_dilutes_with_tag_count():
    dense = tag_relevance(["Anime"], ["anime"])
    diluted = tag_relevance(["Anime", "cat", "dog", "fox"], ["anime"])
    assert dense == pytest.approx(2.0)
    assert diluted == pytest.approx(1.25)
    assert 1.0 < diluted < dense


@pytest.mark.parametrize(
    "tags,preferred",
    [
        (["a", "b", "c"], ["a", "b", "c"]),
        (["a", "a", "b"], ["A"]),
        (["x"], ["y", "x", "z"]),
    ],
)
def test_tag_relevance_bounds(tags, preferred):
    v = tag_relevance(tags, preferred)
    assert 1.0 <= v <= Weights.default().tag_match


def test_content_age_buckets():
    assert categorize_content_age(NOW - timedelta(days=1), now=NOW) is ContentAge.RECENT
    assert categorize_content_age(NOW - timedelta(days=30), now=NOW) is ContentAge.MIDDLE
    assert categorize_content_age(NOW - timedelta(days=120), now=NOW) is ContentAge.OLD
    assert categorize_content_age(None, now=NOW) is ContentAge.OLD


def test_content_age_ignores_viewer_windows():
    # anonymous viewers shorten seen-windows, not content-age buckets
    age = NOW - timedelta(days=3)
    assert categorize_content_age(age, TimeConstants.anonymous(), now=NOW) is ContentAge.RECENT
