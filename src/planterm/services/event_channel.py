"""Named-event observer channel with explicit unsubscribe handles."""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class Subscription:
    """Handle returned by :meth:`EventChannel.on`; ``close()`` detaches it."""

    def __init__(self, channel: EventChannel, name: str, handler: Handler) -> None:
        self._channel = channel
        self.name = name
        self.handler = handler
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel._detach(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class EventChannel:
    """Fixed set of event names, each with an ordered list of handlers.

    Handlers run synchronously in subscription order. A handler that raises
    propagates to the emitter.
    """

    def __init__(self, *names: str) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {name: [] for name in names}

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._subscriptions)

    def _bucket(self, name: str) -> list[Subscription]:
        try:
            return self._subscriptions[name]
        except KeyError:
            raise ValueError(f"Unknown event {name!r}; expected one of {', '.join(self._subscriptions)}") from None

    def on(self, name: str, handler: Handler) -> Subscription:
        sub = Subscription(self, name, handler)
        self._bucket(name).append(sub)
        return sub

    def emit(self, name: str, *args: Any) -> None:
        # Snapshot: handlers may unsubscribe while being called.
        for sub in list(self._bucket(name)):
            if not sub.closed:
                sub.handler(*args)

    def listener_count(self, name: str | None = None) -> int:
        if name is None:
            return sum(len(subs) for subs in self._subscriptions.values())
        return len(self._bucket(name))

    def _detach(self, sub: Subscription) -> None:
        bucket = self._subscriptions.get(sub.name, [])
        if sub in bucket:
            bucket.remove(sub)
