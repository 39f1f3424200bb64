"""
LogBus — thread-safe, in-process pub/sub for log lines with bounded replay.

Every line produced by a child process or by the service controller is
published here.  Observers (CLI tail, SSE clients, tests) subscribe and
receive a live stream; a subscriber that reconnects with ``since``
replays what it missed from the ring buffer.

Thread safety model
───────────────────
- ``_lock`` protects ``_seq``, ``_history``, ``_subscribers`` and
  ``_last``.  ``publish()`` assigns the sequence number and fans out
  under the lock, so concurrent producers are serialized at one point
  and a line is never split or interleaved with another.
- Each subscriber owns a bounded deque guarded by its own condition.
  When a slow subscriber's deque is full the **oldest** pending line is
  dropped and counted; publishers never block.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Generator

from ttshub.core.models.log import LogLine, Stream

logger = logging.getLogger(__name__)


class Subscription:
    """One subscriber's pending queue (drop-oldest when full)."""

    def __init__(self, maxlen: int) -> None:
        self._pending: deque[LogLine] = deque(maxlen=maxlen)
        self._cond = threading.Condition()
        self.dropped = 0

    def push(self, line: LogLine) -> None:
        with self._cond:
            if len(self._pending) == self._pending.maxlen:
                self.dropped += 1
            self._pending.append(line)
            self._cond.notify()

    def pop(self, timeout: float | None) -> LogLine | None:
        with self._cond:
            if not self._pending:
                self._cond.wait(timeout)
            if self._pending:
                return self._pending.popleft()
            return None

    @property
    def backlog(self) -> int:
        with self._cond:
            return len(self._pending)


class LogBus:
    """Ordered, append-only stream of tagged log lines.

    Parameters
    ----------
    history_size : int
        Lines kept for replay and ``history()``.  Older lines are
        discarded.
    subscriber_queue_size : int
        Maximum backlog per subscriber before the oldest lines are
        dropped.
    """

    def __init__(
        self,
        *,
        history_size: int = 2000,
        subscriber_queue_size: int = 1000,
    ) -> None:
        self._lock = threading.Lock()
        self._seq: int = 0
        self._history: deque[LogLine] = deque(maxlen=history_size)
        self._subscribers: list[Subscription] = []
        self._subscriber_queue_size = subscriber_queue_size
        self._last: dict[str, LogLine] = {}

    # ── Properties ──────────────────────────────────────────────

    @property
    def seq(self) -> int:
        """Sequence number of the most recent line."""
        with self._lock:
            return self._seq

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    # ── Publishing ──────────────────────────────────────────────

    def publish(self, line: LogLine) -> LogLine:
        """Append a line and deliver it to every subscriber.

        Returns the stored line with its ``seq`` assigned.
        """
        with self._lock:
            self._seq += 1
            stored = line.model_copy(update={"seq": self._seq})
            self._history.append(stored)
            self._last[stored.source_tag] = stored
            for sub in self._subscribers:
                sub.push(stored)
        return stored

    def emit(self, source_tag: str, text: str, stream: Stream = "stdout") -> LogLine:
        """Convenience wrapper: build and publish a line."""
        return self.publish(LogLine(source_tag=source_tag, stream=stream, text=text))

    # ── Subscribing ─────────────────────────────────────────────

    def subscribe(
        self,
        *,
        since: int | None = 0,
        heartbeat: float | None = None,
    ) -> Generator[LogLine | None, None, None]:
        """Yield lines as they are published.  Blocks between lines.

        Parameters
        ----------
        since : int | None
            Replay retained lines with ``seq > since`` first.  ``None``
            skips replay and streams only new lines.
        heartbeat : float | None
            When set, yield ``None`` after this many idle seconds so a
            consumer (SSE) can send a keep-alive and notice a closed
            client.  When unset the generator blocks until a line arrives.

        The generator is infinite; closing it detaches the subscriber
        without affecting producers.
        """
        sub = Subscription(self._subscriber_queue_size)
        with self._lock:
            if since is not None:
                for line in self._history:
                    if line.seq > since:
                        sub.push(line)
            self._subscribers.append(sub)
            count = len(self._subscribers)

        logger.debug("Log subscriber attached (since=%s, subscribers=%d)", since, count)
        try:
            while True:
                line = sub.pop(timeout=heartbeat)
                if line is not None:
                    yield line
                elif heartbeat is not None:
                    yield None
        finally:
            with self._lock:
                if sub in self._subscribers:
                    self._subscribers.remove(sub)
            if sub.dropped:
                logger.info("Log subscriber detached after dropping %d lines", sub.dropped)

    def attach(self) -> Subscription:
        """Register a raw subscription (caller must ``detach`` it)."""
        sub = Subscription(self._subscriber_queue_size)
        with self._lock:
            self._subscribers.append(sub)
        return sub

    def detach(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)

    # ── History ─────────────────────────────────────────────────

    def history(self, source_tag: str | None = None, limit: int | None = None) -> list[LogLine]:
        """Retained lines, oldest first, optionally filtered by tag."""
        with self._lock:
            lines = [
                line for line in self._history
                if source_tag is None or line.source_tag == source_tag
            ]
        if limit is not None:
            lines = lines[-limit:] if limit > 0 else []
        return lines

    def last_line(self, source_tag: str) -> LogLine | None:
        """Most recent line published under a tag (survives ``clear``)."""
        with self._lock:
            return self._last.get(source_tag)

    def clear(self) -> int:
        """Drop retained history.  Returns the number of lines removed."""
        with self._lock:
            removed = len(self._history)
            self._history.clear()
        logger.info("Cleared %d log lines", removed)
        return removed
