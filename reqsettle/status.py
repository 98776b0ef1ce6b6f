"""Status sinks for settlement progress.

A sink is any callable taking `(state, detail)`. It is called synchronously
at every transition and must return immediately; the emissions are advisory,
the SettlementOutcome is the authoritative result.

Example:
    sink = QueueStatusSink()
    outcome = await orchestrator.settle(request, status_sink=sink)
    for event in sink.drain():
        print(event.state.value, event.detail)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from .states import SettlementState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusEvent:
    state: SettlementState
    detail: Mapping[str, Any]
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class LoggingStatusSink:
    """Logs every transition."""

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.logger = logger or logging.getLogger("reqsettle.status")
        self.level = level

    def __call__(self, state: SettlementState, detail: Mapping[str, Any]) -> None:
        if detail:
            extra = " ".join(f"{key}={value}" for key, value in detail.items())
            self.logger.log(self.level, "[%s] %s", state.value, extra)
        else:
            self.logger.log(self.level, "[%s]", state.value)


class QueueStatusSink:
    """Buffers events in an asyncio.Queue without ever blocking.

    With a bounded queue the oldest event is dropped to make room.
    """

    def __init__(self, maxsize: int = 0):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def __call__(self, state: SettlementState, detail: Mapping[str, Any]) -> None:
        event = StatusEvent(state, dict(detail))
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(event)

    async def get(self) -> StatusEvent:
        return await self.queue.get()

    def drain(self) -> list[StatusEvent]:
        """Remove and return every buffered event."""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events


class CallbackStatusSink:
    """Adapts a one-argument callback that takes a StatusEvent."""

    def __init__(self, callback: Callable[[StatusEvent], None]):
        self.callback = callback

    def __call__(self, state: SettlementState, detail: Mapping[str, Any]) -> None:
        self.callback(StatusEvent(state, dict(detail)))


class CompositeStatusSink:
    """Fans each transition out to several sinks.

    A sink that raises is logged and skipped; the others still get the event.
    """

    def __init__(self, *sinks: Callable[[SettlementState, Mapping[str, Any]], None]):
        self.sinks = list(sinks)

    def __call__(self, state: SettlementState, detail: Mapping[str, Any]) -> None:
        for sink in self.sinks:
            try:
                sink(state, detail)
            except Exception:
                logger.exception("Status sink %r failed on %s", sink, state.value)
