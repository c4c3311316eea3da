"""Ordered, write-once progress event emitter with replay and live streaming."""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections import deque
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass
from typing import Final

from circuitforge_repair.domain.events import (
    TERMINAL_EVENT_TYPES,
    ProgressEvent,
    ProgressEventType,
)

Subscriber = Callable[[ProgressEvent], object]

_DEFAULT_ERROR_BUFFER: Final[int] = 1024


class EmitterClosedError(RuntimeError):
    """Raised when emitting after the session's terminal event."""


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting the loop."""

    sequence: int
    event_type: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: ProgressEventType | None
    callback: Subscriber


class ProgressEmitter:
    """Event stream for one convergence session.

    Sequence numbers start at 1 and increase by one per event. Exactly one terminal
    event (``converged``, ``exhausted``, ``cancelled`` or ``error``) may be emitted;
    afterwards ``emit`` raises ``EmitterClosedError``.
    """

    def __init__(self, session_id: str) -> None:
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValueError("session_id must be a non-empty string")
        self._session_id = session_id
        self._events: list[ProgressEvent] = []
        self._subscriptions: dict[int, _Subscription] = {}
        self._streams: set[asyncio.Queue[ProgressEvent]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._closed = False
        self._lock = threading.RLock()

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def terminal_event(self) -> ProgressEvent | None:
        with self._lock:
            if self._closed and self._events:
                return self._events[-1]
            return None

    def subscribe(
        self, callback: Subscriber, *, event_type: ProgressEventType | str | None = None
    ) -> int:
        """Subscribe ``callback`` to one event type, or to all events."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = None if event_type is None else ProgressEventType(event_type)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(token, normalized, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    async def emit(
        self,
        event_type: ProgressEventType | str,
        payload: Mapping[str, object] | None = None,
    ) -> ProgressEvent:
        """Append one event and deliver it to subscribers and live streams in order."""

        with self._lock:
            if self._closed:
                raise EmitterClosedError(
                    f"session {self._session_id} already emitted its terminal event"
                )
            event = ProgressEvent.create(
                sequence=len(self._events) + 1,
                event_type=event_type,
                session_id=self._session_id,
                payload=dict(payload or {}),
            )
            self._events.append(event)
            if event.event_type in TERMINAL_EVENT_TYPES:
                self._closed = True
            subscriptions = tuple(self._subscriptions.values())
            streams = tuple(self._streams)

        for stream in streams:
            stream.put_nowait(event)
        for subscription in subscriptions:
            wanted = subscription.event_type
            if wanted is not None and wanted is not event.event_type:
                continue
            await self._deliver(subscription.callback, event)
        return event

    def replay(
        self,
        *,
        event_type: ProgressEventType | str | None = None,
        after_sequence: int = 0,
        limit: int | None = None,
    ) -> tuple[ProgressEvent, ...]:
        """Return emitted events in sequence order."""

        type_filter = None if event_type is None else ProgressEventType(event_type)
        with self._lock:
            events = tuple(self._events)
        filtered = [
            event
            for event in events
            if event.sequence > after_sequence
            and (type_filter is None or event.event_type is type_filter)
        ]
        if limit is not None:
            if limit <= 0:
                return ()
            filtered = filtered[-limit:]
        return tuple(filtered)

    def dispatch_errors(self, *, limit: int | None = None) -> tuple[DispatchError, ...]:
        with self._lock:
            errors = tuple(self._dispatch_errors)
        if limit is None:
            return errors
        if limit <= 0:
            return ()
        return errors[-limit:]

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        """Yield every event of the session, history first, ending after the terminal one."""

        queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        with self._lock:
            backlog = tuple(self._events)
            closed = self._closed
            if not closed:
                self._streams.add(queue)
        try:
            for event in backlog:
                yield event
            if closed:
                return
            while True:
                event = await queue.get()
                yield event
                if event.is_terminal:
                    return
        finally:
            with self._lock:
                self._streams.discard(queue)

    async def sse(self) -> AsyncIterator[str]:
        """Server-sent-event frames for ``stream()``."""

        async for event in self.stream():
            yield event.to_sse()

    async def _deliver(self, callback: Subscriber, event: ProgressEvent) -> None:
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # noqa: BLE001
            error = DispatchError(
                sequence=event.sequence,
                event_type=event.event_type.value,
                target=_callback_name(callback),
                error_type=type(exc).__name__,
                message=str(exc),
            )
            with self._lock:
                self._dispatch_errors.append(error)


def _callback_name(callback: Callable[..., object]) -> str:
    module = getattr(callback, "__module__", None)
    qualname = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None)
    if isinstance(module, str) and isinstance(qualname, str):
        return f"{module}.{qualname}"
    if isinstance(qualname, str):
        return qualname
    return type(callback).__name__


__all__ = [
    "DispatchError",
    "EmitterClosedError",
    "ProgressEmitter",
    "Subscriber",
]
