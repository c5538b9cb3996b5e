"""JSON-RPC transport to a remote language server.

One :class:`MessageConnection` wraps one WebSocket; every text frame carries
exactly one JSON-RPC 2.0 message. Responses are matched to requests by id,
so any number of consumers can share a connection.
"""

import asyncio
import inspect
import json
import sys
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from pylsp_jsonrpc.exceptions import JsonRpcException, JsonRpcInternalError, JsonRpcMethodNotFound
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from ..util.log import Log

log = Log.create({"service": "lsp.transport"})

# JSON-RPC "Internal error", used when an error response carries no code
INTERNAL_ERROR_CODE = -32603

NotificationHandler = Callable[[Any], Union[None, Awaitable[None]]]
RequestHandler = Callable[[Any], Union[Any, Awaitable[Any]]]

# Client-side requests that only need an acknowledgement
_ACKNOWLEDGED_REQUESTS = frozenset({
    "window/workDoneProgress/create",
    "client/registerCapability",
    "client/unregisterCapability",
})


class ConnectionClosedError(ConnectionError):
    """Raised when using a connection whose socket is gone."""


class WebSocketLike(Protocol):
    """The part of a websocket the connection relies on."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> Any: ...


class MessageConnection:
    """JSON-RPC message exchange over a single websocket."""

    def __init__(
        self,
        websocket: WebSocketLike,
        *,
        name: str = "",
        request_timeout: Optional[float] = None,
    ):
        self.name = name
        self._log = log.child({"connection": name})
        self.request_timeout = request_timeout
        self._websocket = websocket
        self._request_id = 0
        self._pending_requests: Dict[int, asyncio.Future] = {}
        self._notification_handlers: Dict[str, List[NotificationHandler]] = {}
        self._request_handlers: Dict[str, RequestHandler] = {}
        self._close_callbacks: List[Callable[[], None]] = []
        self._send_lock = asyncio.Lock()
        self._reader_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def listen(self) -> None:
        """Start dispatching incoming messages."""
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_messages())

    # -- incoming --

    async def _read_messages(self) -> None:
        try:
            async for raw in self._websocket:
                try:
                    message = json.loads(raw)
                except ValueError as e:
                    self._log.warn("dropping malformed message", {"error": str(e)})
                    continue
                if not isinstance(message, dict):
                    continue
                try:
                    self._handle_message(message)
                except (TypeError, KeyError, AttributeError) as e:
                    self._log.warn("dropping malformed message", {"error": str(e)})
        except ConnectionClosed as e:
            self._log.warn("connection lost", {"error": str(e)})
        finally:
            self._mark_closed()

    def _handle_message(self, message: Dict[str, Any]) -> None:
        if "method" not in message:
            self._handle_response(message)
            return

        method = message["method"]
        params = message.get("params")
        if "id" in message:
            task = asyncio.create_task(self._answer_request(message["id"], method, params))
            task.add_done_callback(self._on_handler_done)
            return

        for handler in list(self._notification_handlers.get(method, [])):
            try:
                result = handler(params)
            except Exception as e:
                self._log.error("notification handler failed", {"method": method, "error": str(e)})
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                task.add_done_callback(self._on_handler_done)

    def _handle_response(self, message: Dict[str, Any]) -> None:
        future = self._pending_requests.get(message.get("id"))
        if future is None or future.done():
            return

        if "error" in message:
            error = message["error"] or {}
            future.set_exception(JsonRpcException.from_dict({
                "message": error.get("message") or "Unknown error",
                "code": error.get("code", INTERNAL_ERROR_CODE),
                "data": error.get("data"),
            }))
        else:
            future.set_result(message.get("result"))

    async def _answer_request(self, request_id: Any, method: str, params: Any) -> None:
        handler = self._request_handlers.get(method)
        if handler is None:
            if method in _ACKNOWLEDGED_REQUESTS:
                await self._send_message({"jsonrpc": "2.0", "id": request_id, "result": None})
                return
            error = JsonRpcMethodNotFound.of(method)
            await self._send_message({"jsonrpc": "2.0", "id": request_id, "error": error.to_dict()})
            return

        try:
            result = handler(params)
            if inspect.isawaitable(result):
                result = await result
        except JsonRpcException as e:
            await self._send_message({"jsonrpc": "2.0", "id": request_id, "error": e.to_dict()})
            return
        except Exception as e:
            self._log.error("request handler failed", {"method": method, "error": str(e)})
            error = JsonRpcInternalError.of(sys.exc_info())
            await self._send_message({"jsonrpc": "2.0", "id": request_id, "error": error.to_dict()})
            return
        await self._send_message({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _on_handler_done(self, task: "asyncio.Future[Any]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and not isinstance(error, ConnectionClosedError):
            self._log.error("error handling message", {"error": str(error)})

    # -- outgoing --

    async def send_request(
        self,
        method: str,
        params: Any = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send a request and wait for its result.

        Raises:
            JsonRpcException: the server answered with an error
            ConnectionClosedError: the connection closed first
            asyncio.TimeoutError: no answer within ``timeout``
        """
        self._request_id += 1
        request_id = self._request_id

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future

        try:
            await self._send_message({
                "jsonrpc": "2.0",
                "id": request_id,
                "method": method,
                "params": params,
            })
            limit = timeout if timeout is not None else self.request_timeout
            return await asyncio.wait_for(future, timeout=limit)
        finally:
            self._pending_requests.pop(request_id, None)

    async def send_notification(self, method: str, params: Any = None) -> None:
        await self._send_message({"jsonrpc": "2.0", "method": method, "params": params})

    async def _send_message(self, message: Dict[str, Any]) -> None:
        if self._closed:
            raise ConnectionClosedError(f"connection {self.name} is closed")

        text = json.dumps(message, ensure_ascii=False)
        async with self._send_lock:
            try:
                await self._websocket.send(text)
            except ConnectionClosed as e:
                self._mark_closed()
                raise ConnectionClosedError(f"connection {self.name} is closed") from e

    # -- registration --

    def on_notification(self, method: str, handler: NotificationHandler) -> Callable[[], None]:
        self._notification_handlers.setdefault(method, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._notification_handlers.get(method, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def on_request(self, method: str, handler: RequestHandler) -> Callable[[], None]:
        self._request_handlers[method] = handler

        def unsubscribe() -> None:
            if self._request_handlers.get(method) is handler:
                del self._request_handlers[method]

        return unsubscribe

    def on_close(self, callback: Callable[[], None]) -> Callable[[], None]:
        if self._closed:
            callback()
            return lambda: None
        self._close_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._close_callbacks:
                self._close_callbacks.remove(callback)

        return unsubscribe

    # -- teardown --

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True

        for future in self._pending_requests.values():
            if not future.done():
                future.set_exception(ConnectionClosedError(f"connection {self.name} closed"))
        self._pending_requests.clear()

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                self._log.error("close callback failed", {"error": str(e)})

    async def close(self) -> None:
        """Close the websocket and reject anything still pending."""
        already_closed = self._closed
        self._mark_closed()
        if not already_closed:
            try:
                await self._websocket.close()
            except ConnectionClosed:
                pass

        if self._reader_task and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None


@dataclass
class TransportSession:
    """A freshly opened connection plus the root the server should use."""
    connection: MessageConnection
    actual_root: str


class Transport(Protocol):
    """Opens one session per workspace root."""

    async def open(self, root: str) -> TransportSession: ...


class WebSocketTransport:
    """Opens websocket sessions to a single language server address."""

    def __init__(
        self,
        address: str,
        *,
        connect_timeout: float = 30.0,
        request_timeout: Optional[float] = None,
    ):
        self.address = address
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout

    async def open(self, root: str) -> TransportSession:
        log.info("opening connection", {"address": self.address, "root": root})
        websocket = await connect(
            self.address,
            open_timeout=self.connect_timeout,
            max_size=None,
        )
        connection = MessageConnection(
            websocket,
            name=root,
            request_timeout=self.request_timeout,
        )
        connection.listen()
        return TransportSession(connection=connection, actual_root=root)
