"""Policies deciding when a consumer stops."""

import threading
from abc import ABC, abstractmethod


class Limitation(ABC):
    """Termination policy consulted by the consumer after every message.

    The consumer calls record_completion() once per message, after the
    message has been acknowledged (deleted, rejected or left on the queue).
    """

    @abstractmethod
    def should_stop(self) -> bool:
        """Return True once the consumer must not receive more messages."""

    @abstractmethod
    def record_completion(self) -> bool:
        """Count one completed message and return the new should_stop()."""

    @abstractmethod
    def request_size(self, max_messages: int, in_flight: int) -> int:
        """Number of messages the consumer may receive in its next poll.

        Args:
            max_messages: Configured maximum per poll.
            in_flight: Messages received but not completed yet.
        """


class Unlimited(Limitation):
    """Never stops; the consumer runs until closed or cancelled."""

    def should_stop(self) -> bool:
        return False

    def record_completion(self) -> bool:
        return False

    def request_size(self, max_messages: int, in_flight: int) -> int:
        return max_messages

    def __repr__(self) -> str:
        return "Unlimited()"


class CountLimitation(Limitation):
    """Stops after a fixed number of messages have been completed.

    Receives are capped so that no more than `limit` messages are ever
    taken off the queue, whatever the consumer's parallelism.
    """

    def __init__(self, limit: int) -> None:
        if limit < 0:
            msg = "limit must be >= 0"
            raise ValueError(msg)
        self._limit = limit
        self._remaining = limit
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def remaining(self) -> int:
        with self._lock:
            return self._remaining

    @property
    def processed(self) -> int:
        with self._lock:
            return self._limit - self._remaining

    def should_stop(self) -> bool:
        with self._lock:
            return self._remaining <= 0

    def record_completion(self) -> bool:
        with self._lock:
            if self._remaining > 0:
                self._remaining -= 1
            return self._remaining <= 0

    def request_size(self, max_messages: int, in_flight: int) -> int:
        with self._lock:
            return max(0, min(max_messages, self._remaining - in_flight))

    def __repr__(self) -> str:
        return f"CountLimitation(limit={self._limit}, remaining={self.remaining})"
