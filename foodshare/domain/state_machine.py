from __future__ import annotations

from enum import StrEnum


class ReportStatus(StrEnum):
    NEW = "new"
    ASSIGNED = "assigned"
    PICKED = "picked"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS: dict[ReportStatus, set[ReportStatus]] = {
    ReportStatus.NEW: {ReportStatus.ASSIGNED, ReportStatus.CANCELLED},
    ReportStatus.ASSIGNED: {ReportStatus.PICKED, ReportStatus.CANCELLED},
    ReportStatus.PICKED: {ReportStatus.DELIVERED},
    ReportStatus.DELIVERED: set(),
    ReportStatus.CANCELLED: set(),
}

# assigned_agent_id is set exactly when the report is in one of these states.
ASSIGNED_STATUSES: frozenset[ReportStatus] = frozenset(
    {ReportStatus.ASSIGNED, ReportStatus.PICKED, ReportStatus.DELIVERED}
)

TERMINAL_STATUSES: frozenset[ReportStatus] = frozenset({ReportStatus.DELIVERED, ReportStatus.CANCELLED})

CANCELLABLE_STATUSES: frozenset[ReportStatus] = frozenset({ReportStatus.NEW, ReportStatus.ASSIGNED})


def can_transition(source: ReportStatus, target: ReportStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(source, set())


def requires_assignment(status: ReportStatus) -> bool:
    return status in ASSIGNED_STATUSES


def is_terminal(status: ReportStatus) -> bool:
    return status in TERMINAL_STATUSES
