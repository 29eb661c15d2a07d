import queue
from abc import ABC, abstractmethod
from typing import Iterable, Iterator, Optional

from .errors import StreamClosed
from .models import ObservedEvent

_CLOSED = object()


class EventSource(ABC):
    """
    Delivers observed events to a checker run loop.

    ``next_event`` returns None when nothing arrived within ``timeout`` and
    raises StreamClosed once the stream has ended. Any other exception is a
    transport failure.
    """

    @abstractmethod
    def next_event(self, timeout: float) -> Optional[ObservedEvent]:
        pass


class QueueEventSource(EventSource):
    """
    Thread-safe source fed by a producer running on another thread.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)

    def put(self, event: ObservedEvent) -> None:
        self._queue.put(event)

    def put_many(self, events: Iterable[ObservedEvent]) -> None:
        for event in events:
            self._queue.put(event)

    def close(self) -> None:
        """Signal end-of-stream after the already queued events."""
        self._queue.put(_CLOSED)

    def fail(self, error: BaseException) -> None:
        """Make the consumer fail with ``error`` after the already queued events."""
        self._queue.put(error)

    def next_event(self, timeout: float) -> Optional[ObservedEvent]:
        try:
            item = self._queue.get(timeout=max(timeout, 0.0))
        except queue.Empty:
            return None

        if item is _CLOSED:
            # Keep the stream closed for any further reads
            self._queue.put(_CLOSED)
            raise StreamClosed("event stream closed")
        if isinstance(item, BaseException):
            raise item
        return item  # type: ignore[return-value]


class IterableEventSource(EventSource):
    """
    Finite source over an iterable, e.g. events parsed from a JSONL export.

    Never blocks; exceptions raised by the underlying iterator surface as
    transport failures.
    """

    def __init__(self, events: Iterable[ObservedEvent]):
        self._iterator: Iterator[ObservedEvent] = iter(events)

    def next_event(self, timeout: float) -> Optional[ObservedEvent]:
        try:
            return next(self._iterator)
        except StopIteration:
            raise StreamClosed("event stream exhausted")
