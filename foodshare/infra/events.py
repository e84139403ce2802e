from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable

from sqlmodel import Session

from foodshare.domain.models import ChangeEvent, EventRecord
from foodshare.infra.db import engine

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], None]


class EventBus:
    """Persists change events and hands them to in-process subscribers.

    Subscribers register per table name, or "*" for every table.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[ChangeHandler]] = defaultdict(list)

    def subscribe(self, table: str, handler: ChangeHandler) -> None:
        self._subscribers[table].append(handler)

    def unsubscribe(self, table: str, handler: ChangeHandler) -> None:
        if table in self._subscribers and handler in self._subscribers[table]:
            self._subscribers[table].remove(handler)

    def record(self, event: ChangeEvent, session: Session) -> None:
        """Stage the event row in the caller's transaction."""
        session.add(
            EventRecord(
                event_id=event.event_id,
                table_name=event.table,
                op=event.op,
                entity_id=event.entity_id,
                ts=event.ts,
                actor_id=event.actor_id,
                payload=event.model_dump(mode="json", include={"old", "new"}),
            )
        )

    def publish(self, event: ChangeEvent, session: Session | None = None) -> None:
        should_commit = session is None
        if session is None:
            session = Session(engine)
        try:
            self.record(event, session)
            if should_commit:
                session.commit()
        finally:
            if should_commit:
                session.close()

        self.dispatch(event)

    def dispatch(self, event: ChangeEvent) -> None:
        """Deliver to local subscribers only, without persisting."""
        handlers = [*self._subscribers.get(event.table, []), *self._subscribers.get("*", [])]
        logger.debug("dispatching %s %s to %d handlers", event.op, event.entity_id, len(handlers))
        for handler in handlers:
            handler(event)


event_bus = EventBus()
