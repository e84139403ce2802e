"""Derived, never-persisted values computed for a food report at read time."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Protocol

from foodshare.domain.models import GeoPoint, Urgency

URGENT_WITHIN_HOURS = 2.0
MEDIUM_WITHIN_HOURS = 6.0
EARTH_RADIUS_KM = 6371.0

BASE_EARNING = 50
EARNING_PER_KM = 10
EARNING_PER_SERVING = 5


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def hours_until_expiry(expiry_time: datetime | None, now: datetime) -> float | None:
    if expiry_time is None:
        return None
    delta = ensure_utc(expiry_time) - ensure_utc(now)
    return delta.total_seconds() / 3600.0


def urgency(expiry_time: datetime | None, now: datetime) -> Urgency:
    """Bucket a report by time left before expiry.

    Boundaries are inclusive: exactly two hours left is urgent, exactly six is
    medium. Reports without an expiry are always flexible.
    """
    hours = hours_until_expiry(expiry_time, now)
    if hours is None:
        return Urgency.FLEXIBLE
    if hours <= URGENT_WITHIN_HOURS:
        return Urgency.URGENT
    if hours <= MEDIUM_WITHIN_HOURS:
        return Urgency.MEDIUM
    return Urgency.FLEXIBLE


def urgency_rank(level: Urgency) -> int:
    return {Urgency.FLEXIBLE: 1, Urgency.MEDIUM: 2, Urgency.URGENT: 3}[level]


def priority_score(
    expiry_time: datetime | None,
    quantity: int,
    distance_km: float | None,
    now: datetime,
) -> float:
    """Heuristic sort key combining urgency, proximity and quantity.

    Used for ordering only; it does not decide who gets a task.
    """
    hours = hours_until_expiry(expiry_time, now)
    urgency_points = 0.0 if hours is None else min(10.0, max(0.0, 10.0 - hours))
    proximity_points = 0.0 if distance_km is None else max(0.0, 10.0 - distance_km)
    quantity_points = min(10.0, quantity / 2)
    combined = urgency_points * 0.5 + proximity_points * 0.3 + quantity_points * 0.2
    return round(combined, 1)


def estimate_earnings(
    expiry_time: datetime | None,
    quantity: int,
    distance_km: float | None,
    now: datetime,
) -> int:
    hours = hours_until_expiry(expiry_time, now)
    urgency_bonus = 0
    if hours is not None:
        if hours < 2:
            urgency_bonus = 30
        elif hours < 4:
            urgency_bonus = 15
    distance_bonus = (distance_km or 0.0) * EARNING_PER_KM
    return round(BASE_EARNING + distance_bonus + quantity * EARNING_PER_SERVING + urgency_bonus)


class DistanceStrategy(Protocol):
    def distance_km(self, origin: GeoPoint | None, destination: GeoPoint | None) -> float | None: ...


class HaversineDistance:
    def distance_km(self, origin: GeoPoint | None, destination: GeoPoint | None) -> float | None:
        if origin is None or destination is None:
            return None
        lat1 = math.radians(origin.latitude)
        lat2 = math.radians(destination.latitude)
        d_lat = lat2 - lat1
        d_lon = math.radians(destination.longitude - origin.longitude)
        a = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
        return EARTH_RADIUS_KM * c


class UnknownDistance:
    def distance_km(self, origin: GeoPoint | None, destination: GeoPoint | None) -> float | None:
        return None


def point_or_none(latitude: float | None, longitude: float | None) -> GeoPoint | None:
    if latitude is None or longitude is None:
        return None
    return GeoPoint(latitude=latitude, longitude=longitude)
