"""Request/response correlation over the push channel.

Each outstanding exchange owns one listener keyed by request id (or any
other unique key, e.g. ``trade:<id>`` for settlement watches). A listener
accepts a set of message names and an optional predicate; the first inbound
frame that matches resolves it and removes it, so exactly one listener fires
per reply. Deadlines are enforced by the waiter, and a timed-out listener is
removed before the caller sees ``RequestTimeout``.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Optional

from autotrader.broker.protocol import Frame
from autotrader.errors import RequestTimeout

Predicate = Callable[[Frame], bool]

@dataclass
class Listener:
    key: str
    names: frozenset
    future: asyncio.Future
    predicate: Optional[Predicate] = None
    correlated: bool = True         # frames carrying a request id must carry ours
    created_at: float = field(default_factory=time.monotonic)

    def accepts(self, frame: Frame) -> bool:
        if frame.name not in self.names:
            return False
        if self.correlated and frame.request_id is not None and frame.request_id != self.key:
            return False
        if self.predicate is not None:
            try:
                return bool(self.predicate(frame))
            except Exception:
                return False
        return True

class PendingRequests:
    def __init__(self):
        self._listeners: dict[str, Listener] = {}

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, key: str) -> bool:
        return key in self._listeners

    def register(self, key: str, names: Collection[str], predicate: Optional[Predicate] = None,
                 correlated: bool = True) -> asyncio.Future:
        if key in self._listeners:
            raise ValueError(f"listener {key!r} already pending")
        future = asyncio.get_running_loop().create_future()
        self._listeners[key] = Listener(key, frozenset(names), future, predicate, correlated)
        return future

    def resolve(self, frame: Frame) -> bool:
        """Hand `frame` to the first matching listener. Returns True if one fired."""
        for key, listener in list(self._listeners.items()):
            if listener.future.done():
                self._listeners.pop(key, None)
                continue
            if listener.accepts(frame):
                self._listeners.pop(key, None)
                listener.future.set_result(frame)
                return True
        return False

    def discard(self, key: str) -> None:
        self._listeners.pop(key, None)

    def invalidate(self) -> int:
        """Drop every listener without resolving it; waiters run into their deadline."""
        count = len(self._listeners)
        self._listeners.clear()
        return count

    async def wait(self, key: str, future: asyncio.Future, timeout: float, what: str = "") -> Any:
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            raise RequestTimeout(what or key, timeout) from None
        finally:
            listener = self._listeners.get(key)
            if listener is not None and listener.future is future:
                self._listeners.pop(key, None)
            if not future.done():
                future.cancel()
