"""
Failure bookkeeping for the deck feed engine.

Collaborators (document store, generator, nearby lookup, cache) raise
``DeckError`` subclasses or transport errors. Component boundaries catch
them and hand them to ``ErrorHandler.handle_error``, which grades the
failure, logs one JSON line and keeps a short history. Nothing here raises:
the engine always degrades to an empty or last-good result.
"""

import json
import logging
import traceback
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional


class ErrorSeverity(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class DeckError(Exception):
    """Base class for errors raised by deck feed collaborators"""
    pass


@dataclass
class ErrorContext:
    error_type: str
    error_message: str
    service: str
    operation: str
    severity: str
    timestamp: datetime = field(default_factory=datetime.now)
    stack_trace: str = ""
    recovery_action: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            'event': 'deck_error',
            'service': self.service,
            'operation': self.operation,
            'severity': self.severity,
            'error_type': self.error_type,
            'error_message': self.error_message,
            'timestamp': self.timestamp.isoformat(),
            'context': self.metadata,
        }


# Services whose failure leaves the feed without content
CORE_SERVICES = frozenset({'document_store'})

TRANSPORT_ERRORS = frozenset({
    'ClientConnectorError', 'ClientError', 'ConnectionError', 'TimeoutError',
    'ServerDisconnectedError', 'StoreQueryError', 'NearbyLookupError', 'RemoteGenerationError',
})

RECOVERY_HINTS: Dict[str, str] = {
    'transport': "Check network connectivity and the configured endpoint URLs; "
                 "the next polling tick retries automatically.",
    'timeout': "Request timed out; the feed keeps its last good pool.",
    'cache': "Cached entry was unreadable and has been cleared; it is rebuilt on the next boot.",
}

PATTERN_THRESHOLD = 3


class ErrorHandler:
    """Grades, logs and remembers collaborator failures without raising."""

    def __init__(self, history_size: int = 100) -> None:
        self.error_history: Deque[ErrorContext] = deque(maxlen=history_size)
        self.error_counts: Counter = Counter()
        self.logger = logging.getLogger(__name__)

    def handle_error(
        self,
        error: Exception,
        service: str,
        operation: str,
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        severity = self.classify_severity(error, service)
        error_context = ErrorContext(
            error_type=type(error).__name__,
            error_message=str(error),
            service=service,
            operation=operation,
            severity=severity.value,
            stack_trace=''.join(traceback.format_exception(type(error), error, error.__traceback__)),
            recovery_action=self.get_recovery_suggestion(error),
            metadata=dict(context or {}),
        )
        self.error_history.append(error_context)
        self.error_counts[error_context.error_type] += 1

        level = logging.ERROR if severity == ErrorSeverity.HIGH else logging.WARNING
        self.logger.log(level, json.dumps(error_context.to_log_dict(), default=str))
        return error_context

    def classify_severity(self, error: Exception, service: str) -> ErrorSeverity:
        name = type(error).__name__
        message = str(error).lower()
        core = service in CORE_SERVICES

        if any(word in message for word in ('unauthorized', 'forbidden', 'permission')):
            return ErrorSeverity.HIGH
        if name in ('CacheCorruptionError', 'JSONDecodeError'):
            return ErrorSeverity.LOW
        if name in TRANSPORT_ERRORS or 'rate limit' in message:
            return ErrorSeverity.MEDIUM if core else ErrorSeverity.LOW
        return ErrorSeverity.HIGH if core else ErrorSeverity.LOW

    def get_recovery_suggestion(self, error: Exception) -> Optional[str]:
        name = type(error).__name__
        if name == 'TimeoutError' or 'timeout' in str(error).lower():
            return RECOVERY_HINTS['timeout']
        if name == 'CacheCorruptionError':
            return RECOVERY_HINTS['cache']
        if name in TRANSPORT_ERRORS:
            return RECOVERY_HINTS['transport']
        return None

    def detect_error_patterns(self) -> List[str]:
        """Describe (error type, service) pairs seen repeatedly in the recent history."""
        pairs = Counter((ctx.error_type, ctx.service) for ctx in self.error_history)
        return [
            f"Repeated pattern: {etype} in {service} occurred {count} times recently"
            for (etype, service), count in pairs.items()
            if count >= PATTERN_THRESHOLD
        ]

    def get_error_statistics(self) -> Dict[str, Any]:
        by_service = Counter(ctx.service for ctx in self.error_history)
        return {
            'total_errors': sum(self.error_counts.values()),
            'error_types': dict(self.error_counts),
            'recent_by_service': dict(by_service),
        }
