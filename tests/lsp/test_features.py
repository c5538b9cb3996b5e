from __future__ import annotations

from pathlib import Path

import pytest

from rootmux.lsp.documents import LocalFileSource, TextDocument
from rootmux.lsp.features import DOCUMENT_VERSION, Hover, LanguageFeatures
from rootmux.lsp.registry import ConnectionRegistry, RootNotReadyError
from rootmux.lsp.uri import path_to_uri
from tests.helpers import FakeTransport, RecordingInitializer

CLIENT_ROOT = "git://github.com/org/repo?rev#"
SERVER_ROOT = "file:///srv/workspaces/repo/"


def _location(uri: str, line: int) -> dict:
    return {
        "uri": uri,
        "range": {
            "start": {"line": line, "character": 4},
            "end": {"line": line, "character": 9},
        },
    }


async def _features(responses: dict) -> tuple[LanguageFeatures, FakeTransport]:
    transport = FakeTransport(responses)
    initializer = RecordingInitializer()
    initializer.actual_root = SERVER_ROOT
    registry = ConnectionRegistry(transport, initializer)
    await registry.reconcile([CLIENT_ROOT])
    return LanguageFeatures(registry), transport


@pytest.mark.anyio
async def test_hover_translates_document_uri() -> None:
    features, transport = await _features({
        "textDocument/hover": {"contents": {"kind": "markdown", "value": "def main() -> None"}},
    })

    result = await features.hover(CLIENT_ROOT + "src/app.py", 3, 7)

    assert result == Hover(contents={"kind": "markdown", "value": "def main() -> None"})
    params = transport.socket(CLIENT_ROOT).requests("textDocument/hover")[0]
    assert params == {
        "textDocument": {"uri": SERVER_ROOT + "src/app.py"},
        "position": {"line": 3, "character": 7},
    }


@pytest.mark.anyio
async def test_hover_without_result() -> None:
    features, _ = await _features({"textDocument/hover": None})

    assert await features.hover(CLIENT_ROOT + "src/app.py", 0, 0) is None


@pytest.mark.anyio
async def test_definition_wraps_single_location_and_maps_back() -> None:
    features, _ = await _features({
        "textDocument/definition": _location(SERVER_ROOT + "src/util.py", 10),
    })

    result = await features.definition(CLIENT_ROOT + "src/app.py", 3, 7)

    assert result is not None
    assert [loc.uri for loc in result] == [CLIENT_ROOT + "src/util.py"]
    assert result[0].range.start.line == 10


@pytest.mark.anyio
async def test_references_keep_foreign_uris_and_send_context() -> None:
    features, transport = await _features({
        "textDocument/references": [
            _location(SERVER_ROOT + "src/app.py", 3),
            _location("file:///usr/lib/python3/typing.py", 100),
        ],
    })

    result = await features.references(CLIENT_ROOT + "src/app.py", 3, 7, include_declaration=False)

    assert result is not None
    assert [loc.uri for loc in result] == [
        CLIENT_ROOT + "src/app.py",
        "file:///usr/lib/python3/typing.py",
    ]
    params = transport.socket(CLIENT_ROOT).requests("textDocument/references")[0]
    assert params["context"] == {"includeDeclaration": False}


@pytest.mark.anyio
async def test_did_open_sends_server_uri() -> None:
    features, transport = await _features({})

    await features.did_open(TextDocument(uri=CLIENT_ROOT + "src/app.py", text="x = 1\n"))

    sent = transport.socket(CLIENT_ROOT).notifications("textDocument/didOpen")
    assert sent == [{
        "textDocument": {
            "uri": SERVER_ROOT + "src/app.py",
            "languageId": "python",
            "text": "x = 1\n",
            "version": DOCUMENT_VERSION,
        },
    }]


@pytest.mark.anyio
async def test_did_open_without_roots_is_ignored() -> None:
    transport = FakeTransport()
    features = LanguageFeatures(ConnectionRegistry(transport, RecordingInitializer()))

    await features.did_open(TextDocument(uri="file:///tmp/x.py", text=""))

    assert transport.opened == []


@pytest.mark.anyio
async def test_query_outside_every_root_raises() -> None:
    features, transport = await _features({})

    with pytest.raises(RootNotReadyError):
        await features.hover("file:///elsewhere/app.py", 0, 0)
    assert transport.opened == []


@pytest.mark.anyio
async def test_preload_opens_python_sources(tmp_path: Path) -> None:
    workspace = (tmp_path / "ws").resolve()
    (workspace / "pkg").mkdir(parents=True)
    (workspace / ".venv").mkdir()
    (workspace / "main.py").write_text("import pkg\n", encoding="utf-8")
    (workspace / "pkg" / "__init__.py").write_text("", encoding="utf-8")
    (workspace / "pkg" / "mod.py").write_text("VALUE = 1\n", encoding="utf-8")
    (workspace / "notes.txt").write_text("notes\n", encoding="utf-8")
    (workspace / ".venv" / "site.py").write_text("", encoding="utf-8")

    root = path_to_uri(workspace) + "/"
    transport = FakeTransport()
    registry = ConnectionRegistry(transport, RecordingInitializer())
    await registry.reconcile([root])
    features = LanguageFeatures(registry, LocalFileSource())

    count = await features.preload(root)

    opened = transport.socket(root).notifications("textDocument/didOpen")
    assert count == 2
    assert [p["textDocument"]["uri"] for p in opened] == [root + "main.py", root + "pkg/mod.py"]
    assert opened[1]["textDocument"]["text"] == "VALUE = 1\n"
