"""Application runtime context and lifecycle container."""

from __future__ import annotations

from collections.abc import Callable
from contextvars import Token

from ..core.bus import Bus, EventPayload
from ..core.config import ConfigManager, ConfigUpdated
from ..lsp.bootstrap import SessionBootstrap
from ..lsp.documents import FileSource, LocalFileSource
from ..lsp.features import LanguageFeatures
from ..lsp.registry import ConnectionRegistry
from ..lsp.roots import RootSource, RootSubscription
from ..lsp.settings import SettingsSync
from ..lsp.transport import Transport, WebSocketTransport
from ..util.log import Log

log = Log.create({"service": "runtime"})


class AppContext:
    """Owns every per-activation service.

    Created once per activation (a CLI command or an embedding host) and
    torn down with :meth:`shutdown`, which closes all connections.
    """

    def __init__(
        self,
        roots: RootSource,
        *,
        transport: Transport | None = None,
        files: FileSource | None = None,
    ) -> None:
        self.roots = roots
        self.bus = Bus()
        self._transport = transport
        self._files = files or LocalFileSource()
        self._bus_token: Token[Bus] | None = None
        self._config_unsubscribe: Callable[[], None] | None = None
        self._events_unsubscribe: Callable[[], None] | None = None
        self.registry: ConnectionRegistry | None = None
        self.settings: SettingsSync | None = None
        self.features: LanguageFeatures | None = None
        self.subscription: RootSubscription | None = None
        self.started = False

    async def startup(self) -> None:
        if self.started:
            return

        self._bus_token = Bus.provide(self.bus)
        try:
            config = await ConfigManager.get()
        except Exception:
            Bus.restore(self._bus_token)
            self._bus_token = None
            raise

        transport = self._transport or WebSocketTransport(
            config.address,
            connect_timeout=config.connect_timeout,
            request_timeout=config.request_timeout,
        )
        self.registry = ConnectionRegistry(transport, SessionBootstrap(config.bootstrap))
        self.settings = SettingsSync(self.registry, config.language_settings())
        self.features = LanguageFeatures(
            self.registry,
            self._files,
            preload_extension=config.preload.extension,
            preload_exclude=config.preload.exclude,
        )

        async def _on_config_updated(payload: EventPayload) -> None:
            assert self.settings is not None
            await self.settings.push(payload.properties["settings"])

        self._config_unsubscribe = Bus.subscribe(ConfigUpdated, _on_config_updated)
        self._events_unsubscribe = Bus.subscribe_all(_trace_event)

        bootstrap = self._preload_root if config.preload.enabled else None
        self.subscription = RootSubscription(self.roots, self.registry.reconcile, bootstrap)
        self.subscription.start()
        self.started = True
        log.info("runtime started", {"address": config.address, "roots": list(self.roots.roots)})

    async def _preload_root(self, root: str) -> None:
        assert self.features is not None
        await self.features.preload(root)

    async def shutdown(self) -> None:
        if not self.started:
            return

        if self.subscription:
            await self.subscription.close()
        if self._config_unsubscribe:
            self._config_unsubscribe()
            self._config_unsubscribe = None
        if self.registry:
            await self.registry.shutdown()
        if self.settings:
            await self.settings.close()
        if self._events_unsubscribe:
            self._events_unsubscribe()
            self._events_unsubscribe = None

        self.bus.clear()
        if self._bus_token is not None:
            Bus.restore(self._bus_token)
            self._bus_token = None
        self.started = False
        log.info("runtime stopped")


def _trace_event(payload: EventPayload) -> None:
    log.debug("event", {"type": payload.type, **payload.properties})
