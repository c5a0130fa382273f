"""Error types and error tracking for the search engine.

Query syntax problems are never raised while searching; they come back as
validation verdicts. Saving a search with an invalid query raises
InvalidQueryError. Record store failures are raised by stores as
StoreAccessError (or anything else), caught at the planner boundary, recorded
here and turned into empty results. A rebuild that cannot read the store
fails with IndexingError and keeps the previous index.
"""

import traceback
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from loguru import logger


class SearchError(Exception):
    """Base class for search engine errors."""


class InvalidQueryError(SearchError):
    """Query syntax is invalid."""


class StoreAccessError(SearchError):
    """The record store could not be read."""


class IndexingError(SearchError):
    """The search index could not be built."""


class ErrorSeverity(Enum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


@dataclass
class ErrorEvent:
    """Represents an error event."""
    timestamp: datetime
    component: str
    error_type: str
    message: str
    severity: ErrorSeverity
    traceback: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'component': self.component,
            'error_type': self.error_type,
            'message': self.message,
            'severity': self.severity.value,
            'context': self.context
        }


class ErrorTracker:
    """Keeps the most recent errors for diagnostics."""

    def __init__(self, max_events: int = 100):
        self.events: Deque[ErrorEvent] = deque(maxlen=max_events)
        self.counts: Dict[str, int] = {}

    def record(
        self,
        component: str,
        error: BaseException,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        **context: Any
    ) -> ErrorEvent:
        event = ErrorEvent(
            timestamp=datetime.now(),
            component=component,
            error_type=type(error).__name__,
            message=str(error),
            severity=severity,
            traceback="".join(traceback.format_exception(type(error), error, error.__traceback__)),
            context=context
        )
        self.events.append(event)
        self.counts[component] = self.counts.get(component, 0) + 1

        if severity.value >= ErrorSeverity.HIGH.value:
            logger.error(f"{component} error ({event.error_type}): {event.message}")
        return event

    def recent(self, limit: int = 10) -> List[ErrorEvent]:
        return list(self.events)[-limit:]

    @property
    def last_error(self) -> Optional[ErrorEvent]:
        return self.events[-1] if self.events else None

    def clear(self) -> None:
        self.events.clear()
        self.counts.clear()
