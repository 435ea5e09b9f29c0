"""Notification dispatcher: in-memory FIFO in front of an intermittent chat channel.

Messages are sent immediately when the channel is ready and nothing is waiting
ahead of them; otherwise (or when the send fails) they are queued and a single
retry timer is armed. flush() drains the queue in order and, on the first
failure, puts the failed message and everything after it back at the front so
order survives retries.

The queue lives in process memory only; pending messages are lost on restart.
"""

import itertools
import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, List

from issuerelay.channels.base import ChannelError, MessageChannel

LOG = logging.getLogger("issuerelay.dispatcher")

DEFAULT_RETRY_DELAY = 5.0
DEFAULT_BACKLOG_WARNING = 100


class PendingMessage:
    """Formatted text waiting for delivery, with its arrival order."""

    def __init__(self, seq: int, target: str, text: str) -> None:
        self.seq = seq
        self.target = target
        self.text = text

    def __repr__(self) -> str:
        return f"PendingMessage(seq={self.seq}, target={self.target!r})"


class NotificationDispatcher:
    """Delivers messages to a channel without blocking or losing them."""

    def __init__(
        self,
        channel: MessageChannel,
        default_target: str = "",
        retry_delay: float = DEFAULT_RETRY_DELAY,
        backlog_warning: int = DEFAULT_BACKLOG_WARNING,
        timer_factory: Callable[[float, Callable[[], None]], Any] = threading.Timer,
    ) -> None:
        self._channel = channel
        self._default_target = default_target
        self._retry_delay = retry_delay
        self._backlog_warning = backlog_warning
        self._timer_factory = timer_factory
        self._queue: Deque[PendingMessage] = deque()
        self._lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._timer: Any = None
        self._seq = itertools.count(1)
        self._stopped = False

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._queue)

    def pending(self) -> List[PendingMessage]:
        """Snapshot of queued messages, oldest first."""
        with self._lock:
            return list(self._queue)

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def _deliver(self, message: PendingMessage) -> bool:
        try:
            self._channel.send(message.target, message.text)
        except ChannelError as e:
            LOG.warning("Delivery of message %s failed: %s", message.seq, e)
            return False
        except Exception as e:
            LOG.warning("Delivery of message %s failed unexpectedly: %s", message.seq, e)
            return False
        return True

    def enqueue_or_send(self, text: str, target: str | None = None) -> bool:
        """Send now if the channel is ready and the queue is idle, else queue and
        arm the retry timer.

        A message never overtakes one already queued or being flushed.
        Returns True when the message was delivered immediately.
        """
        message = PendingMessage(next(self._seq), target or self._default_target, text)
        with self._lock:
            idle = not self._queue and not self._flush_lock.locked()
        if idle and self._channel.is_ready() and self._deliver(message):
            return True
        with self._lock:
            self._queue.append(message)
            backlog = len(self._queue)
        LOG.info("Queued message %s (backlog %s)", message.seq, backlog)
        if self._backlog_warning and backlog % self._backlog_warning == 0:
            LOG.warning("Backlog reached %s undelivered messages", backlog)
        self._arm_timer()
        return False

    def flush(self) -> int:
        """Drain the queue once, in order. Returns the number delivered.

        No-op when the channel is not ready, the queue is empty or another
        flush is already running.
        """
        if not self._flush_lock.acquire(blocking=False):
            return 0
        try:
            with self._lock:
                if not self._queue or not self._channel.is_ready():
                    return 0
                batch = list(self._queue)
                self._queue.clear()
            delivered = 0
            for idx, message in enumerate(batch):
                if not self._deliver(message):
                    with self._lock:
                        self._queue.extendleft(reversed(batch[idx:]))
                    LOG.info("Flush stopped after %s of %s messages", delivered, len(batch))
                    self._arm_timer()
                    return delivered
                delivered += 1
            LOG.info("Flushed %s queued messages", delivered)
            return delivered
        finally:
            self._flush_lock.release()

    def _arm_timer(self) -> None:
        with self._lock:
            if self._timer is not None or self._stopped:
                return
            timer = self._timer_factory(self._retry_delay, self._on_timer)
            timer.daemon = True
            self._timer = timer
        timer.start()
        LOG.debug("Retry timer armed (%ss)", self._retry_delay)

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
        try:
            self.flush()
        except Exception as e:
            LOG.exception("Retry flush failed: %s", e)
            self._arm_timer()

    def on_readiness_changed(self, ready: bool) -> None:
        """Readiness signal from the channel side. Becoming ready flushes the backlog."""
        if ready:
            LOG.info("Channel ready, flushing %s queued messages", self.pending_count)
            self.flush()
        else:
            LOG.info("Channel not ready, queueing new messages")

    def stop(self) -> None:
        """Cancel the retry timer; queued messages are dropped with the process."""
        with self._lock:
            self._stopped = True
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        if self._queue:
            LOG.warning("Stopping with %s undelivered messages", len(self._queue))
