"""
Readiness Registry - Fan out preview URLs to listeners.

Responsibilities:
- Keep the set of readiness listeners
- Remember the last published URL and replay it to late subscribers
- Isolate listeners from each other (one failing listener does not stop delivery)
- Recognize "server is listening" lines in dev-server output
"""

import re
from typing import Callable, List, Optional

from webuild.logging import get_logger
from webuild.schemas import ReadinessEvent

logger = get_logger("webuild.sandbox.registry")

ReadinessListener = Callable[[ReadinessEvent], None]


# =============================================================================
# OUTPUT HEURISTICS
# =============================================================================

# Lines dev servers print once they accept connections
READY_MARKERS = (
    re.compile(r"\bLocal:", re.IGNORECASE),
    re.compile(r"\bready\b", re.IGNORECASE),
    re.compile(r"listening on", re.IGNORECASE),
    re.compile(r"localhost:\d+", re.IGNORECASE),
)

URL_PATTERN = re.compile(r"https?://[^\s'\"<>]+")

# Colors and cursor movement written by vite, next and friends
ANSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")


def strip_ansi(text: str) -> str:
    return ANSI_PATTERN.sub("", text)


def detect_ready_url(line: str, default_url: str) -> Optional[str]:
    """
    Check a line of dev-server output for a readiness marker.

    Args:
        line: One line of process output
        default_url: URL to report when the line has a marker but no URL

    Returns:
        The preview URL, or None if the line does not signal readiness
    """
    clean = strip_ansi(line)
    if not any(marker.search(clean) for marker in READY_MARKERS):
        return None

    match = URL_PATTERN.search(clean)
    if match:
        return match.group(0).rstrip(".,;)/") or default_url
    return default_url


# =============================================================================
# REGISTRY CLASS
# =============================================================================

class ReadinessRegistry:
    """
    Listener set with replay-last-value semantics.

    publish() delivers a ReadinessEvent to every listener and caches it;
    subscribe() calls the new listener immediately when a value is cached.
    """

    def __init__(self):
        self._listeners: List[ReadinessListener] = []
        self._last: Optional[ReadinessEvent] = None

    @property
    def last_url(self) -> Optional[str]:
        return self._last.url if self._last else None

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: ReadinessListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)
        if self._last is not None:
            self._deliver(listener, self._last)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, url: str) -> ReadinessEvent:
        """Cache the URL and deliver one event to every listener."""
        event = ReadinessEvent(url=url)
        self._last = event
        logger.info("sandbox.ready.published", url=url, listeners=len(self._listeners))
        for listener in list(self._listeners):
            self._deliver(listener, event)
        return event

    def invalidate(self) -> None:
        """Forget the cached URL but keep listeners (the server went away)."""
        self._last = None

    def clear(self) -> None:
        """Forget the cached URL and every listener."""
        self._last = None
        self._listeners.clear()

    def _deliver(self, listener: ReadinessListener, event: ReadinessEvent) -> None:
        try:
            listener(event)
        except Exception:
            logger.exception("sandbox.ready.listener_failed", url=event.url)
