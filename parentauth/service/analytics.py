from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Callable, List, Optional

from parentauth.logging import get_logger
from parentauth.storage.common import Namespace, RecordStore
from parentauth.storage.errors import StorageError
from parentauth.storage.models import AnalyticsEvent, utcnow

logger = get_logger(__name__)


class AnalyticsRecorder:
    """Fire-and-forget event log in the ``events`` namespace.

    Recording never fails the calling flow: storage errors are logged and
    the event is dropped.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.enabled = enabled
        self._clock = clock or utcnow

    def track(self, event: str, **properties: Any) -> Optional[AnalyticsEvent]:
        if not self.enabled:
            return None
        record = AnalyticsEvent(
            id=str(uuid.uuid4()),
            event=event,
            timestamp=self._clock(),
            properties=properties,
        )
        try:
            self.store.set(Namespace.EVENTS, record.id, record.to_record())
        except StorageError as exc:
            logger.warning("analytics_event_dropped", analytics_event=event, error=str(exc))
            return None
        logger.debug("analytics_event", analytics_event=event)
        return record

    def list_events(self, name: Optional[str] = None) -> List[AnalyticsEvent]:
        events = [
            AnalyticsEvent.from_record(data)
            for data in self.store.get_all(Namespace.EVENTS).values()
        ]
        if name is not None:
            events = [e for e in events if e.event == name]
        return sorted(events, key=lambda e: e.timestamp)


__all__ = ["AnalyticsRecorder"]
