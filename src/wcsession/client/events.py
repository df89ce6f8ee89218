"""In-process event bus for session traffic.

Two kinds of listener share one registry:

* ``NAMED`` listeners are registered for an event name and fire on every
  trigger of that name until removed.
* ``RESPONSE`` listeners are registered for a JSON-RPC request id and fire
  at most once, for the response carrying that id.

A listener may declare a pydantic model; raw JSON (or mapping) payloads are
validated into it before the callback sees them.
"""
from __future__ import annotations
import asyncio
import inspect
import threading
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Type

import structlog
from pydantic import BaseModel, ValidationError as ModelValidationError

from wcsession.protocol.codec import response_event

Callback = Callable[[Any], Any]


class ListenerKind(Enum):
    NAMED = auto()
    RESPONSE = auto()


@dataclass(frozen=True)
class Event:
    name: str
    payload: Any = None


@dataclass(eq=False)
class Listener:
    kind: ListenerKind
    name: str
    callback: Callback
    model: Optional[Type[BaseModel]] = None
    request_id: Any = None

    def coerce(self, payload: Any) -> Any:
        if self.model is None or isinstance(payload, self.model):
            return payload
        if isinstance(payload, (str, bytes)):
            return self.model.model_validate_json(payload)
        if isinstance(payload, dict):
            return self.model.model_validate(payload)
        return payload


class EventDelegator:
    def __init__(self, logger=None):
        self.logger = logger or structlog.get_logger()
        self._lock = threading.Lock()
        self._named: Dict[str, List[Listener]] = defaultdict(list)
        self._responses: Dict[str, Listener] = {}

    def listen_for(self, name: str, callback: Callback, model: Optional[Type[BaseModel]] = None) -> Listener:
        listener = Listener(ListenerKind.NAMED, name, callback, model)
        with self._lock:
            self._named[name].append(listener)
        return listener

    def listen_for_response(self, request_id: Any, callback: Callback,
                            model: Optional[Type[BaseModel]] = None) -> Listener:
        name = response_event(request_id)
        listener = Listener(ListenerKind.RESPONSE, name, callback, model,
                            request_id=request_id)
        with self._lock:
            # first registration for an id wins
            self._responses.setdefault(name, listener)
            return self._responses[name]

    def remove(self, listener: Listener) -> bool:
        with self._lock:
            if listener.kind is ListenerKind.RESPONSE:
                if self._responses.get(listener.name) is listener:
                    del self._responses[listener.name]
                    return True
                return False
            bucket = self._named.get(listener.name, [])
            if listener in bucket:
                bucket.remove(listener)
                if not bucket:
                    self._named.pop(listener.name, None)
                return True
            return False

    def listener_count(self, name: str) -> int:
        with self._lock:
            return len(self._named.get(name, ())) + (1 if name in self._responses else 0)

    def _take(self, name: str) -> List[Listener]:
        with self._lock:
            selected = list(self._named.get(name, ()))
            one_shot = self._responses.pop(name, None)
        if one_shot is not None:
            selected.append(one_shot)
        return selected

    async def trigger(self, name: str, payload: Any = None) -> int:
        return await self.publish(Event(name, payload))

    async def publish(self, event: Event) -> int:
        """Dispatch to every listener for the event name, returning how many ran."""
        fired = 0
        for listener in self._take(event.name):
            try:
                value = listener.coerce(event.payload)
            except (ModelValidationError, ValueError) as e:
                self.logger.warning("event_payload_invalid", event_name=event.name, model=listener.model.__name__, error=str(e))
                continue
            try:
                result = listener.callback(value)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("event_listener_error", event_name=event.name, error=repr(e))
            fired += 1
        return fired


class Completion:
    """Single-assignment result cell.

    Exactly one of value, cancellation or exception is applied; every later
    attempt is a no-op and reports ``False``.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future = self._loop.create_future()
        self._lock = threading.Lock()
        self._resolved = False
        self.cancel_reason: Optional[str] = None

    def _claim(self) -> bool:
        with self._lock:
            if self._resolved or self._future.done():
                return False
            self._resolved = True
            return True

    def set_result(self, value: Any) -> bool:
        if not self._claim():
            return False
        self._future.set_result(value)
        return True

    def cancel(self, reason: Optional[str] = None) -> bool:
        if not self._claim():
            return False
        self.cancel_reason = reason or "cancelled"
        self._future.cancel(reason)
        return True

    def set_exception(self, exc: BaseException) -> bool:
        if not self._claim():
            return False
        self._future.set_exception(exc)
        return True

    def done(self) -> bool:
        return self._future.done()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def __await__(self):
        return self._future.__await__()
