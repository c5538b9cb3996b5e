"""Connection registry.

Keeps at most one language server session per workspace root. Sessions are
created on demand by :meth:`ConnectionRegistry.get_or_create`, initialized
exactly once by a caller-supplied initializer, and torn down by
:meth:`ConnectionRegistry.reconcile` when their root disappears.

Lifecycle of a :class:`ConnectionHandle`::

    opening -> initializing -> ready -> closed
       |            |
       +------------+--> failed

Everything runs on one event loop. The map is only mutated synchronously,
so concurrent lookups for the same root always share one in-flight creation.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel

from ..core.bus import Bus, BusEvent
from ..util.log import Log
from .transport import ConnectionClosedError, MessageConnection, Transport

log = Log.create({"service": "lsp.registry"})

# (original root, actual root candidate, connection) -> actual root or None to keep the candidate
Initializer = Callable[[str, str, MessageConnection], Awaitable[Optional[str]]]
ReadyListener = Callable[["ConnectionHandle"], None]


class ConnectionState(str, Enum):
    """Lifecycle state of a connection handle."""
    OPENING = "opening"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"


class ConnectionUpdatedProps(BaseModel):
    """Properties for the connection.updated event."""
    root: str
    state: Literal["opening", "initializing", "ready", "closed", "failed"]
    error: Optional[str] = None


# Fired on every lifecycle transition
ConnectionUpdated = BusEvent.define("connection.updated", ConnectionUpdatedProps)


class ConnectionStatus(BaseModel):
    """Snapshot of one registry entry."""
    root: str
    actual_root: Optional[str] = None
    state: Literal["opening", "initializing", "ready", "closed", "failed"]


class RootNotReadyError(Exception):
    """No registered workspace root contains the document."""

    def __init__(self, uri: str):
        self.uri = uri
        super().__init__(f"root uri is not ready yet: {uri}")


class ConnectionCancelledError(Exception):
    """The root was removed before its connection became ready."""

    def __init__(self, root: str):
        self.root = root
        super().__init__(f"connection for {root} was cancelled")


class ConnectionHandle:
    """One language server session.

    Owned by the registry; consumers only ever see handles in the
    ``ready`` state and must not close them.
    """

    def __init__(self, original_root: str):
        self.original_root = original_root
        self.actual_root: Optional[str] = None
        self.connection: Optional[MessageConnection] = None
        self.state = ConnectionState.OPENING
        self.error: Optional[BaseException] = None

    def __repr__(self) -> str:
        return f"ConnectionHandle({self.original_root!r}, state={self.state.value})"


class _Entry:
    """Registry slot: the handle, the future handed to callers, and the
    task driving the handle to ``ready``."""

    def __init__(self, handle: ConnectionHandle, future: "asyncio.Future[ConnectionHandle]"):
        self.handle = handle
        self.future = future
        self.task: Optional[asyncio.Task] = None


def _consume_exception(future: "asyncio.Future[ConnectionHandle]") -> None:
    # Rejections are delivered to whoever awaits; this only keeps asyncio
    # from reporting futures that nobody awaited.
    if not future.cancelled():
        future.exception()


class ConnectionRegistry:
    """Maps workspace roots to their language server connections."""

    def __init__(self, transport: Transport, initializer: Initializer):
        self._transport = transport
        self._initializer = initializer
        self._entries: Dict[str, _Entry] = {}
        self._roots: Tuple[str, ...] = ()
        self._ready_listeners: List[ReadyListener] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def roots(self) -> Tuple[str, ...]:
        """The latest reconciled root snapshot."""
        return self._roots

    def get_or_create(self, root: str) -> "asyncio.Future[ConnectionHandle]":
        """Return the future for ``root``'s connection, starting one if needed.

        Every caller asking for the same root before the entry is removed
        receives the very same future.
        """
        entry = self._entries.get(root)
        if entry is not None:
            return entry.future

        loop = asyncio.get_running_loop()
        future: asyncio.Future[ConnectionHandle] = loop.create_future()
        future.add_done_callback(_consume_exception)
        entry = _Entry(ConnectionHandle(root), future)
        self._entries[root] = entry

        entry.task = self._track(asyncio.create_task(self._establish(entry)))
        return future

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def get(self, root: str) -> ConnectionHandle:
        """Wait for ``root``'s ready connection.

        Cancelling the caller does not cancel the shared creation.
        """
        return await asyncio.shield(self.get_or_create(root))

    async def _establish(self, entry: _Entry) -> None:
        handle = entry.handle
        root = handle.original_root
        try:
            await self._publish(handle)
            session = await self._transport.open(root)
            handle.connection = session.connection

            handle.state = ConnectionState.INITIALIZING
            await self._publish(handle)
            actual_root = await self._initializer(root, session.actual_root, session.connection)
            handle.actual_root = actual_root or session.actual_root

            if self._entries.get(root) is not entry:
                raise ConnectionCancelledError(root)
            if session.connection.closed:
                raise ConnectionClosedError(f"connection for {root} closed during initialization")
        except asyncio.CancelledError:
            # Removed by reconcile/shutdown, which already rejected the future
            await self._close_connection(handle)
            raise
        except Exception as e:
            await self._fail(entry, e)
            return

        handle.state = ConnectionState.READY
        session.connection.on_close(lambda: self._on_connection_lost(entry))
        log.info("connection ready", {"root": root, "actual_root": handle.actual_root})
        for listener in list(self._ready_listeners):
            try:
                listener(handle)
            except Exception as e:
                log.error("ready listener failed", {"root": root, "error": str(e)})
        if not entry.future.done():
            entry.future.set_result(handle)
        await self._publish(handle)

    async def _fail(self, entry: _Entry, error: Exception) -> None:
        handle = entry.handle
        root = handle.original_root
        if self._entries.get(root) is entry:
            del self._entries[root]

        handle.state = ConnectionState.FAILED
        handle.error = error
        log.error("connection failed", {"root": root, "error": error})
        if not entry.future.done():
            entry.future.set_exception(error)
        await self._close_connection(handle)
        await self._publish(handle)

    def _on_connection_lost(self, entry: _Entry) -> None:
        handle = entry.handle
        if handle.state != ConnectionState.READY:
            return
        root = handle.original_root
        if self._entries.get(root) is entry:
            del self._entries[root]
        handle.state = ConnectionState.CLOSED
        log.warn("connection closed by remote", {"root": root})
        self._track(asyncio.create_task(self._publish(handle)))

    async def reconcile(self, roots: Sequence[str]) -> None:
        """Close and forget every connection whose root is not in ``roots``.

        New roots are not opened here; creation stays demand-driven.
        """
        self._roots = tuple(roots)
        keep = set(self._roots)
        removed = [self._entries.pop(root) for root in list(self._entries) if root not in keep]
        if not removed:
            return

        # Entries are gone from the map before the first await, so a lookup
        # racing this call starts a fresh connection.
        for entry in removed:
            self._discard(entry)
        await asyncio.gather(*(self._teardown(entry) for entry in removed))

    def _discard(self, entry: _Entry) -> None:
        handle = entry.handle
        log.info("removing connection", {"root": handle.original_root, "state": handle.state.value})
        if not entry.future.done():
            entry.future.set_exception(ConnectionCancelledError(handle.original_root))
        if entry.task and not entry.task.done():
            entry.task.cancel()
        if handle.state != ConnectionState.FAILED:
            handle.state = ConnectionState.CLOSED

    async def _teardown(self, entry: _Entry) -> None:
        if entry.task and not entry.task.done():
            try:
                await entry.task
            except asyncio.CancelledError:
                pass
        await self._close_connection(entry.handle)
        await self._publish(entry.handle)

    async def _close_connection(self, handle: ConnectionHandle) -> None:
        connection = handle.connection
        if connection is None:
            return
        try:
            await connection.close()
        except Exception as e:
            log.error("failed to close connection", {"root": handle.original_root, "error": str(e)})

    def resolve_root_for_document(self, uri: str) -> str:
        """Find the root containing ``uri``.

        The longest matching root wins; equal lengths go to the root listed
        first in the snapshot.

        Raises:
            RootNotReadyError: no known root contains the document
        """
        best: Optional[str] = None
        for root in self._roots:
            if uri.startswith(root) and (best is None or len(root) > len(best)):
                best = root
        if best is None:
            raise RootNotReadyError(uri)
        return best

    def on_ready(self, listener: ReadyListener) -> Callable[[], None]:
        """Call ``listener`` with each handle as it becomes ready."""
        self._ready_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._ready_listeners:
                self._ready_listeners.remove(listener)

        return unsubscribe

    def ready_handles(self) -> List[ConnectionHandle]:
        return [
            entry.handle
            for entry in self._entries.values()
            if entry.handle.state == ConnectionState.READY
        ]

    def status(self) -> List[ConnectionStatus]:
        return [
            ConnectionStatus(
                root=root,
                actual_root=entry.handle.actual_root,
                state=entry.handle.state.value,
            )
            for root, entry in self._entries.items()
        ]

    async def shutdown(self) -> None:
        """Close every connection and forget all roots."""
        await self.reconcile(())
        self._ready_listeners.clear()

    async def _publish(self, handle: ConnectionHandle) -> None:
        await Bus.publish(ConnectionUpdated, ConnectionUpdatedProps(
            root=handle.original_root,
            state=handle.state.value,
            error=str(handle.error) if handle.error else None,
        ))
