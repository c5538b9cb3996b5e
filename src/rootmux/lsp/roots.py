"""Workspace root sources and the subscription that feeds the registry."""

import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..util.log import Log

log = Log.create({"service": "lsp.roots"})

RootsListener = Callable[[Tuple[str, ...]], None]


class RootSource(Protocol):
    """Push-based source of workspace root snapshots."""

    @property
    def roots(self) -> Tuple[str, ...]: ...

    def subscribe(self, listener: RootsListener) -> Callable[[], None]: ...


class WorkspaceRoots:
    """In-process root source.

    Emits the full ordered snapshot to every listener whenever the set of
    roots actually changes.
    """

    def __init__(self, roots: Iterable[str] = ()):
        self._roots: Tuple[str, ...] = tuple(dict.fromkeys(roots))
        self._listeners: List[RootsListener] = []

    @property
    def roots(self) -> Tuple[str, ...]:
        return self._roots

    def subscribe(self, listener: RootsListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set(self, roots: Iterable[str]) -> None:
        snapshot = tuple(dict.fromkeys(roots))
        if snapshot == self._roots:
            return
        self._roots = snapshot
        for listener in list(self._listeners):
            listener(snapshot)

    def add(self, root: str) -> None:
        self.set((*self._roots, root))

    def remove(self, root: str) -> None:
        self.set(r for r in self._roots if r != root)


class RootSubscription:
    """Feeds root snapshots into ``reconcile`` one at a time.

    Snapshots arriving while a reconciliation runs are coalesced: only the
    newest is applied next, and snapshots are never applied out of order.
    An initial reconciliation runs on start even when there are no roots.
    ``bootstrap`` is scheduled for every root that appears.
    """

    def __init__(
        self,
        source: RootSource,
        reconcile: Callable[[Sequence[str]], Awaitable[None]],
        bootstrap: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        self._source = source
        self._reconcile = reconcile
        self._bootstrap = bootstrap
        self._pending: Optional[Tuple[str, ...]] = None
        self._applied: Tuple[str, ...] = ()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._worker: Optional[asyncio.Task] = None
        self._bootstraps: set[asyncio.Task] = set()

    @property
    def applied(self) -> Tuple[str, ...]:
        """The last snapshot handed to ``reconcile``."""
        return self._applied

    def start(self) -> None:
        if self._worker is not None:
            return
        self._unsubscribe = self._source.subscribe(self._on_roots)
        self._on_roots(tuple(self._source.roots))
        self._worker = asyncio.create_task(self._run())

    def _on_roots(self, roots: Tuple[str, ...]) -> None:
        self._pending = tuple(roots)
        self._idle.clear()
        self._wakeup.set()

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            snapshot, self._pending = self._pending, None
            if snapshot is not None:
                await self._apply(snapshot)
            if self._pending is None:
                self._idle.set()

    async def _apply(self, snapshot: Tuple[str, ...]) -> None:
        previous = self._applied
        try:
            await self._reconcile(snapshot)
        except Exception as e:
            log.error("reconcile failed", {"roots": list(snapshot), "error": e})
            return
        self._applied = snapshot

        if self._bootstrap is None:
            return
        for root in snapshot:
            if root in previous:
                continue
            task = asyncio.create_task(self._run_bootstrap(root))
            self._bootstraps.add(task)
            task.add_done_callback(self._bootstraps.discard)

    async def _run_bootstrap(self, root: str) -> None:
        assert self._bootstrap is not None
        try:
            await self._bootstrap(root)
        except Exception as e:
            log.warn("root bootstrap failed", {"root": root, "error": e})

    async def idle(self) -> None:
        """Wait until every received snapshot has been reconciled."""
        await self._idle.wait()

    async def close(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

        tasks = [t for t in (self._worker, *self._bootstraps) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._worker = None
        self._bootstraps.clear()
