"""
Progress Reporting  —  Observer Channel + Latest-Event Store
════════════════════════════════════════════════════════════

DocumentProcessor publishes one ProcessingProgress event per stage transition
to a single sink. Sinks are async observers; a sink that raises is logged and
ignored so a broken observer can never fail a document.

  ProgressSink      abstract observer (async publish)
  ProgressChannel   fan-out to any number of attached sinks
  CallbackSink      wraps a plain sync or async callable
  LoggingSink       emits one log line per event
  StoreSink         writes each event into a ProgressStore under a document id
  ProgressStore     bounded in-memory map  document_id → latest event

Delivery is best effort: no history, no replay, no exactly-once guarantee.
The status endpoint reads the ProgressStore; when nothing is there it falls
back to the elapsed-time estimator in services/status.py.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Iterable

from docpipeline.schemas.documents import ProcessingProgress, ProcessingStage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProcessingProgress], Any]


class ProgressSink(ABC):
    """Receives progress events in strict stage order."""

    @abstractmethod
    async def publish(self, event: ProcessingProgress) -> None:
        ...


class CallbackSink(ProgressSink):
    """Adapts `fn(event)`; coroutine results are awaited."""

    def __init__(self, fn: ProgressCallback) -> None:
        self._fn = fn

    async def publish(self, event: ProcessingProgress) -> None:
        result = self._fn(event)
        if inspect.isawaitable(result):
            await result


class LoggingSink(ProgressSink):
    def __init__(self, label: str = "-", level: int = logging.INFO) -> None:
        self._label = label
        self._level = level

    async def publish(self, event: ProcessingProgress) -> None:
        logger.log(
            self._level,
            "Progress | doc=%s stage=%s progress=%d eta=%s msg=%s",
            self._label, event.stage.value, event.progress,
            event.estimated_time_remaining, event.message,
        )


class ProgressStore:
    """
    Latest progress event per document id.

    Bounded: once `max_entries` documents are tracked, the least recently
    updated one is evicted. Single event loop only; no locking.
    """

    def __init__(self, max_entries: int = 500) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._max_entries = max_entries
        self._events: OrderedDict[str, ProcessingProgress] = OrderedDict()

    def put(self, document_id: str, event: ProcessingProgress) -> None:
        self._events[document_id] = event
        self._events.move_to_end(document_id)
        while len(self._events) > self._max_entries:
            evicted, _ = self._events.popitem(last=False)
            logger.debug("ProgressStore evicted | doc=%s", evicted)

    def get(self, document_id: str) -> ProcessingProgress | None:
        return self._events.get(document_id)

    def discard(self, document_id: str) -> None:
        self._events.pop(document_id, None)

    def is_active(self, document_id: str) -> bool:
        """True while the latest event is not terminal."""
        event = self._events.get(document_id)
        return event is not None and event.stage not in (
            ProcessingStage.COMPLETED, ProcessingStage.FAILED,
        )

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._events


class StoreSink(ProgressSink):
    def __init__(self, store: ProgressStore, document_id: str) -> None:
        self._store = store
        self._document_id = document_id

    async def publish(self, event: ProcessingProgress) -> None:
        self._store.put(self._document_id, event)


class ProgressChannel(ProgressSink):
    """
    Fan-out sink. Observers are called in attach order; an observer that
    raises is logged and skipped.

    Usage:
        channel = ProgressChannel([LoggingSink(doc_id), StoreSink(store, doc_id)])
        channel.attach(print)
        await processor.process_document(data, name, progress=channel)
    """

    def __init__(self, sinks: Iterable[ProgressSink | ProgressCallback] = ()) -> None:
        self._sinks: list[ProgressSink] = []
        for sink in sinks:
            self.attach(sink)

    def attach(self, sink: ProgressSink | ProgressCallback) -> ProgressSink:
        adapted = as_sink(sink)
        self._sinks.append(adapted)
        return adapted

    def detach(self, sink: ProgressSink) -> None:
        self._sinks.remove(sink)

    @property
    def sinks(self) -> tuple[ProgressSink, ...]:
        return tuple(self._sinks)

    async def publish(self, event: ProcessingProgress) -> None:
        for sink in list(self._sinks):
            try:
                await sink.publish(event)
            except Exception as exc:
                logger.warning(
                    "Progress sink failed | sink=%s stage=%s error=%s",
                    type(sink).__name__, event.stage.value, exc,
                )


def as_sink(target: ProgressSink | ProgressCallback | None) -> ProgressSink | None:
    """Normalize a sink or bare callable; None passes through."""
    if target is None or isinstance(target, ProgressSink):
        return target
    if callable(target):
        return CallbackSink(target)
    raise TypeError(f"Expected a ProgressSink or callable, got {type(target).__name__}")
