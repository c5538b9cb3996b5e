"""Configuration fan-out to every ready connection."""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from ..util.log import Log
from .registry import ConnectionHandle, ConnectionRegistry

log = Log.create({"service": "lsp.settings"})


class SettingsSync:
    """Pushes ``workspace/didChangeConfiguration`` to the connections.

    The latest settings are replayed to each connection as it becomes
    ready, so a connection still initializing during a push is not left
    with stale settings.
    """

    def __init__(self, registry: ConnectionRegistry, settings: Dict[str, Any]):
        self.registry = registry
        self.settings = settings
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = registry.on_ready(self._on_ready)

    def _on_ready(self, handle: ConnectionHandle) -> None:
        task = asyncio.create_task(self._replay(handle))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _replay(self, handle: ConnectionHandle) -> None:
        # Read at send time so a push racing the replay never gets overwritten
        await self._send(handle, self.settings)

    async def push(self, settings: Dict[str, Any]) -> None:
        """Send ``settings`` to every ready connection."""
        self.settings = settings
        handles: List[ConnectionHandle] = self.registry.ready_handles()
        await asyncio.gather(*(self._send(handle, settings) for handle in handles))

    async def _send(self, handle: ConnectionHandle, settings: Dict[str, Any]) -> None:
        if handle.connection is None:
            return
        try:
            await handle.connection.send_notification(
                "workspace/didChangeConfiguration",
                {"settings": settings},
            )
        except Exception as e:
            log.error("failed to push settings", {"root": handle.original_root, "error": e})

    async def close(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
