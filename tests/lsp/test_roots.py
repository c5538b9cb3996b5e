from __future__ import annotations

import asyncio
from typing import Sequence

import pytest

from rootmux.lsp.registry import ConnectionRegistry, ConnectionState, RootNotReadyError
from rootmux.lsp.roots import RootSubscription, WorkspaceRoots
from tests.helpers import FakeTransport, RecordingInitializer, until

ROOT_A = "file:///work/a/"
ROOT_B = "file:///work/b/"
ROOT_C = "file:///work/c/"


class RecordingReconcile:
    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def __call__(self, roots: Sequence[str]) -> None:
        self.calls.append(tuple(roots))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            error, self.error = self.error, None
            raise error


def test_workspace_roots_emit_only_on_change() -> None:
    roots = WorkspaceRoots([ROOT_A])
    seen: list[tuple[str, ...]] = []
    roots.subscribe(seen.append)

    roots.set([ROOT_A])
    roots.add(ROOT_B)
    roots.add(ROOT_B)
    roots.remove(ROOT_A)
    roots.remove(ROOT_C)

    assert seen == [(ROOT_A, ROOT_B), (ROOT_B,)]


def test_workspace_roots_unsubscribe() -> None:
    roots = WorkspaceRoots()
    seen: list[tuple[str, ...]] = []
    unsubscribe = roots.subscribe(seen.append)

    unsubscribe()
    roots.add(ROOT_A)

    assert seen == []
    assert roots.roots == (ROOT_A,)


@pytest.mark.anyio
async def test_initial_reconcile_runs_with_empty_snapshot() -> None:
    reconcile = RecordingReconcile()
    subscription = RootSubscription(WorkspaceRoots(), reconcile)

    subscription.start()
    await subscription.idle()

    assert reconcile.calls == [()]
    await subscription.close()


@pytest.mark.anyio
async def test_snapshots_during_reconcile_are_coalesced() -> None:
    source = WorkspaceRoots()
    reconcile = RecordingReconcile()
    reconcile.gate = asyncio.Event()
    subscription = RootSubscription(source, reconcile)

    subscription.start()
    await until(lambda: reconcile.calls)
    source.set([ROOT_A])
    source.set([ROOT_A, ROOT_B])
    source.set([ROOT_C])
    reconcile.gate.set()
    await subscription.idle()

    assert reconcile.calls == [(), (ROOT_C,)]
    assert subscription.applied == (ROOT_C,)
    await subscription.close()


@pytest.mark.anyio
async def test_bootstrap_runs_only_for_new_roots() -> None:
    source = WorkspaceRoots([ROOT_A])
    bootstrapped: list[str] = []

    async def bootstrap(root: str) -> None:
        bootstrapped.append(root)

    subscription = RootSubscription(source, RecordingReconcile(), bootstrap)
    subscription.start()
    await subscription.idle()
    await until(lambda: bootstrapped == [ROOT_A])

    source.add(ROOT_B)
    await subscription.idle()
    await until(lambda: len(bootstrapped) == 2)

    assert bootstrapped == [ROOT_A, ROOT_B]
    await subscription.close()


@pytest.mark.anyio
async def test_failed_reconcile_does_not_stop_later_snapshots() -> None:
    source = WorkspaceRoots()
    reconcile = RecordingReconcile()
    reconcile.error = RuntimeError("boom")
    subscription = RootSubscription(source, reconcile)

    subscription.start()
    await subscription.idle()
    source.set([ROOT_A])
    await subscription.idle()

    assert reconcile.calls == [(), (ROOT_A,)]
    assert subscription.applied == (ROOT_A,)
    await subscription.close()


@pytest.mark.anyio
async def test_cold_start_then_root_appears() -> None:
    source = WorkspaceRoots()
    registry = ConnectionRegistry(FakeTransport(), RecordingInitializer())
    subscription = RootSubscription(source, registry.reconcile)
    subscription.start()
    await subscription.idle()

    with pytest.raises(RootNotReadyError):
        registry.resolve_root_for_document(ROOT_A + "main.py")

    source.add(ROOT_A)
    await subscription.idle()
    root = registry.resolve_root_for_document(ROOT_A + "main.py")
    handle = await registry.get(root)

    assert root == ROOT_A
    assert handle.state == ConnectionState.READY
    await subscription.close()
    await registry.shutdown()


@pytest.mark.anyio
async def test_root_swap_closes_old_connection() -> None:
    transport = FakeTransport()
    source = WorkspaceRoots([ROOT_A])
    registry = ConnectionRegistry(transport, RecordingInitializer())
    subscription = RootSubscription(source, registry.reconcile)
    subscription.start()
    await subscription.idle()
    old = await registry.get(ROOT_A)

    source.set([ROOT_B])
    await subscription.idle()
    new = await registry.get(registry.resolve_root_for_document(ROOT_B + "x.py"))

    assert old.state == ConnectionState.CLOSED
    assert transport.socket(ROOT_A).closed is True
    with pytest.raises(RootNotReadyError):
        registry.resolve_root_for_document(ROOT_A + "x.py")
    assert new.original_root == ROOT_B
    assert [h.original_root for h in registry.ready_handles()] == [ROOT_B]
    await subscription.close()
    await registry.shutdown()
