"""Typed in-process events.

Events are declared with a Pydantic model describing their properties and
delivered to the subscribers of whichever :class:`Bus` is bound to the
current context. rootmux publishes ``connection.updated`` on every
connection lifecycle transition and ``config.updated`` when the host
changes configuration.

Example:
    class RootAddedProps(BaseModel):
        root: str

    RootAdded = BusEvent.define("root.added", RootAddedProps)

    unsubscribe = Bus.subscribe(RootAdded, lambda payload: print(payload.properties))
    await Bus.publish(RootAdded, RootAddedProps(root="file:///repo/"))
    unsubscribe()
"""

import inspect
import traceback
from contextvars import ContextVar, Token
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel

T = TypeVar('T', bound=BaseModel)

# Subscription key receiving every event
WILDCARD = "*"

# Lazy logger to avoid circular imports
_log: Optional[Any] = None


def _get_log():
    global _log
    if _log is None:
        from ..util.log import Log
        _log = Log.create({"service": "bus"})
    return _log


class BusEvent(Generic[T]):
    """Event definition: a type name plus the model of its properties."""

    def __init__(self, event_type: str, properties_type: type[T]):
        self.type = event_type
        self.properties_type = properties_type

    @staticmethod
    def define(event_type: str, properties_type: type[T]) -> 'BusEvent[T]':
        return BusEvent(event_type, properties_type)

    def payload(self, properties: Union[T, Dict[str, Any]]) -> 'EventPayload':
        """Validate ``properties`` against this event's model."""
        if isinstance(properties, dict):
            properties = self.properties_type(**properties)
        elif not isinstance(properties, self.properties_type):
            raise TypeError(f"Properties must be instance of {self.properties_type.__name__}")
        return EventPayload(type=self.type, properties=properties.model_dump())


class EventPayload(BaseModel):
    """Payload delivered to event subscribers."""
    type: str
    properties: Dict[str, Any]


SubscriptionCallback = Callable[[EventPayload], Union[None, Awaitable[None]]]


_bus_var: ContextVar['Bus'] = ContextVar('_bus_var')


class Bus:
    """Event bus.

    ContextVar-backed: each AppContext owns a Bus instance and class
    methods resolve the active instance transparently.
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[SubscriptionCallback]] = {}

    @classmethod
    def _current(cls) -> 'Bus':
        try:
            return _bus_var.get()
        except LookupError:
            raise RuntimeError("No Bus is bound to the current context")

    @classmethod
    def provide(cls, bus: 'Bus') -> Token['Bus']:
        return _bus_var.set(bus)

    @classmethod
    def restore(cls, token: Token['Bus']) -> None:
        _bus_var.reset(token)

    @classmethod
    async def publish(cls, event: BusEvent[T], properties: T) -> None:
        """Deliver to the event's subscribers, then to wildcard subscribers.

        A failing subscriber is logged and does not stop delivery.
        """
        await cls._current()._dispatch(event.payload(properties))

    async def _dispatch(self, payload: EventPayload) -> None:
        callbacks = [
            *self._subscriptions.get(payload.type, []),
            *self._subscriptions.get(WILDCARD, []),
        ]
        for callback in callbacks:
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                _get_log().error("subscription callback failed", {
                    "error": str(e),
                    "type": payload.type,
                    "traceback": traceback.format_exc(),
                })

    @classmethod
    def subscribe(cls, event: BusEvent[T], callback: SubscriptionCallback) -> Callable[[], None]:
        return cls._current()._add(event.type, callback)

    @classmethod
    def subscribe_all(cls, callback: SubscriptionCallback) -> Callable[[], None]:
        return cls._current()._add(WILDCARD, callback)

    def _add(self, key: str, callback: SubscriptionCallback) -> Callable[[], None]:
        callbacks = self._subscriptions.setdefault(key, [])
        callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def clear(self) -> None:
        self._subscriptions.clear()
