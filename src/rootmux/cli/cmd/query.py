"""One-shot language feature queries against a workspace root."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel

from ...lsp.documents import LocalFileSource, TextDocument, language_for
from ...lsp.features import LanguageFeatures
from ...lsp.roots import WorkspaceRoots
from ...lsp.uri import path_to_uri
from ...runtime.app_context import AppContext
from ...util.log import Log

log = Log.create({"service": "query"})

R = TypeVar("R")


def normalize_uri(value: str) -> str:
    """Accept either a URI or a local path."""
    if "://" in value:
        return value
    return path_to_uri(Path(value))


def normalize_root(value: str) -> str:
    uri = normalize_uri(value)
    if uri.startswith("file://") and not uri.endswith("/"):
        uri += "/"
    return uri


def _json_default(value: object) -> object:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, default=_json_default)


async def run_query(
    root: str,
    query: Callable[[LanguageFeatures], Awaitable[R]],
) -> R:
    """Activate a context for ``root``, run ``query`` and shut down."""
    context = AppContext(WorkspaceRoots([root]))
    await context.startup()
    try:
        assert context.subscription is not None and context.features is not None
        await context.subscription.idle()
        return await query(context.features)
    finally:
        await context.shutdown()


async def _open(features: LanguageFeatures, document: str) -> None:
    """Send the local contents of ``document`` before querying it.

    Documents that are not on the local disk are left for the server to
    resolve from its own workspace.
    """
    try:
        text = await LocalFileSource().read_text(document)
    except (OSError, UnicodeDecodeError) as e:
        log.warn("document not opened", {"uri": document, "error": str(e)})
        return
    except ValueError:
        return
    await features.did_open(TextDocument(uri=document, language_id=language_for(document), text=text))


def _on_document(
    document: str,
    request: Callable[[LanguageFeatures], Awaitable[R]],
) -> Callable[[LanguageFeatures], Awaitable[R]]:
    async def query(features: LanguageFeatures) -> R:
        await _open(features, document)
        return await request(features)

    return query


async def hover(root: str, document: str, line: int, character: int) -> Any:
    return await run_query(root, _on_document(document, lambda f: f.hover(document, line, character)))


async def definition(root: str, document: str, line: int, character: int) -> Any:
    return await run_query(root, _on_document(document, lambda f: f.definition(document, line, character)))


async def references(
    root: str,
    document: str,
    line: int,
    character: int,
    include_declaration: bool,
) -> Any:
    return await run_query(
        root,
        _on_document(document, lambda f: f.references(document, line, character, include_declaration)),
    )


async def preload(root: str) -> int:
    return await run_query(root, lambda f: f.preload(root))
