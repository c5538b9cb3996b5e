"""Shared test fakes: an in-memory websocket, a transport and an initializer."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from rootmux.lsp.transport import MessageConnection, TransportSession


@dataclass
class RemoteError:
    """Scripted JSON-RPC error response."""
    code: int
    message: str


class FakeWebSocket:
    """Websocket double that answers requests from a method -> result table."""

    def __init__(self, responses: dict[str, Any] | None = None, *, fail_sends: bool = False) -> None:
        self.responses = responses if responses is not None else {}
        self.fail_sends = fail_sends
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.fail_sends:
            raise OSError("broken pipe")
        payload = json.loads(message)
        self.sent.append(payload)
        method = payload.get("method")
        if method is None or "id" not in payload or method not in self.responses:
            return

        response = self.responses[method]
        if callable(response):
            response = response(payload.get("params"))
        if isinstance(response, RemoteError):
            self.push({
                "jsonrpc": "2.0",
                "id": payload["id"],
                "error": {"code": response.code, "message": response.message},
            })
        else:
            self.push({"jsonrpc": "2.0", "id": payload["id"], "result": response})

    def push(self, message: dict[str, Any]) -> None:
        self._incoming.put_nowait(json.dumps(message))

    def disconnect(self) -> None:
        """Simulate the server going away."""
        self._incoming.put_nowait(None)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def notifications(self, method: str) -> list[Any]:
        return [m.get("params") for m in self.sent if m.get("method") == method and "id" not in m]

    def requests(self, method: str) -> list[Any]:
        return [m.get("params") for m in self.sent if m.get("method") == method and "id" in m]


class FakeTransport:
    """Transport double; every open creates a fresh FakeWebSocket."""

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = responses if responses is not None else {}
        self.opened: list[str] = []
        self.sockets: dict[str, list[FakeWebSocket]] = {}
        self.failures: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.fail_sends: set[str] = set()

    async def open(self, root: str) -> TransportSession:
        self.opened.append(root)
        if self.gate is not None:
            await self.gate.wait()
        if root in self.failures:
            raise self.failures[root]

        websocket = FakeWebSocket(self.responses, fail_sends=root in self.fail_sends)
        self.sockets.setdefault(root, []).append(websocket)
        connection = MessageConnection(websocket, name=root)
        connection.listen()
        return TransportSession(connection=connection, actual_root=root)

    def socket(self, root: str, index: int = -1) -> FakeWebSocket:
        return self.sockets[root][index]


class RecordingInitializer:
    """Initializer double recording every invocation."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, MessageConnection]] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None
        self.actual_root: str | None = None

    async def __call__(self, original_root: str, actual_root: str, connection: MessageConnection) -> str | None:
        self.calls.append((original_root, actual_root, connection))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.actual_root


async def until(predicate: Callable[[], Any], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout=timeout)
