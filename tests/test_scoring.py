from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from foodshare.domain import scoring
from foodshare.domain.models import GeoPoint, Urgency

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_urgency_boundaries_are_inclusive() -> None:
    assert scoring.urgency(NOW + timedelta(hours=2), NOW) == Urgency.URGENT
    assert scoring.urgency(NOW + timedelta(hours=2, seconds=1), NOW) == Urgency.MEDIUM
    assert scoring.urgency(NOW + timedelta(hours=6), NOW) == Urgency.MEDIUM
    assert scoring.urgency(NOW + timedelta(hours=6, seconds=1), NOW) == Urgency.FLEXIBLE
    assert scoring.urgency(None, NOW) == Urgency.FLEXIBLE


def test_urgency_accepts_naive_datetimes_as_utc() -> None:
    naive_expiry = (NOW + timedelta(hours=1)).replace(tzinfo=None)
    assert scoring.urgency(naive_expiry, NOW) == Urgency.URGENT


def test_priority_score_combines_weighted_terms() -> None:
    # urgency 10-3=7, proximity 10-2=8, quantity min(10, 10/2)=5
    score = scoring.priority_score(NOW + timedelta(hours=3), 10, 2.0, NOW)
    assert score == pytest.approx(0.5 * 7 + 0.3 * 8 + 0.2 * 5)


def test_priority_score_without_expiry_or_distance() -> None:
    assert scoring.priority_score(None, 40, None, NOW) == 2.0


def test_priority_score_clamps_far_and_overdue_terms() -> None:
    score = scoring.priority_score(NOW - timedelta(hours=1), 2, 50.0, NOW)
    assert score == pytest.approx(0.5 * 10 + 0.2 * 1)


def test_estimate_earnings_bonus_bands() -> None:
    assert scoring.estimate_earnings(NOW + timedelta(hours=1), 4, 3.0, NOW) == 50 + 30 + 20 + 30
    assert scoring.estimate_earnings(NOW + timedelta(hours=3), 4, None, NOW) == 50 + 20 + 15
    assert scoring.estimate_earnings(None, 1, None, NOW) == 55


def test_haversine_distance_and_unknown() -> None:
    chennai = GeoPoint(latitude=13.0827, longitude=80.2707)
    madurai = GeoPoint(latitude=9.9252, longitude=78.1198)
    distance = scoring.HaversineDistance().distance_km(chennai, madurai)
    assert distance is not None
    assert 400 < distance < 450
    assert scoring.HaversineDistance().distance_km(chennai, None) is None
    assert scoring.UnknownDistance().distance_km(chennai, madurai) is None


def test_point_or_none_requires_both_coordinates() -> None:
    assert scoring.point_or_none(None, 80.0) is None
    assert scoring.point_or_none(13.0, 80.0) == GeoPoint(latitude=13.0, longitude=80.0)
