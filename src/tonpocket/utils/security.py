"""Security event log.

Records sensitive-path events (transfers, dApp approvals) with secrets
redacted, keeps a short in-memory tail and mirrors entries to logging.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = (
    "password",
    "privatekey",
    "private_key",
    "seedphrase",
    "seed_phrase",
    "seed",
    "mnemonic",
    "secret",
    "token",
    "apikey",
    "api_key",
)

MAX_VALUE_LENGTH = 100
TRUNCATED_LENGTH = 50


@dataclass
class SecurityEvent:
    """A single recorded event."""

    event: str
    details: dict[str, Any]
    timestamp: float = field(default_factory=time.time)


def sanitize_details(details: dict[str, Any]) -> dict[str, Any]:
    """Redact sensitive keys and truncate long strings, recursively."""
    sanitized: dict[str, Any] = {}
    for key, value in details.items():
        lowered = key.lower()
        if any(sensitive in lowered for sensitive in SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, str) and len(value) > MAX_VALUE_LENGTH:
            sanitized[key] = value[:TRUNCATED_LENGTH] + "..."
        elif isinstance(value, dict):
            sanitized[key] = sanitize_details(value)
        else:
            sanitized[key] = value
    return sanitized


class SecurityEventLog:
    """Bounded log of security-relevant events."""

    def __init__(self, max_events: int = 100):
        self._events: deque[SecurityEvent] = deque(maxlen=max_events)

    def log(self, event: str, **details: Any) -> SecurityEvent:
        """Record an event; sensitive values never reach the log."""
        entry = SecurityEvent(event=event, details=sanitize_details(details))
        self._events.append(entry)
        logger.info(f"[security] {event} {entry.details}")
        return entry

    def recent(self, limit: int = 10) -> list[SecurityEvent]:
        """Most recent events, oldest first."""
        if limit <= 0:
            return []
        return list(self._events)[-limit:]

    def clear(self) -> None:
        self._events.clear()
