"""Language features served through the per-root connections.

Each call resolves the document's root, borrows that root's ready
connection from the registry and issues one LSP request, translating URIs
at the boundary.
"""

from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from ..util.log import Log
from .documents import FileSource, TextDocument, language_for
from .registry import ConnectionHandle, ConnectionRegistry
from .uri import UriConverter

log = Log.create({"service": "lsp.features"})

# Version sent with every didOpen; documents are never edited in place
DOCUMENT_VERSION = 2


class Position(BaseModel):
    """Zero-based line/character position."""
    line: int
    character: int


class Range(BaseModel):
    start: Position
    end: Position


class Location(BaseModel):
    uri: str
    range: Range


class Hover(BaseModel):
    contents: Any


class LanguageFeatures:
    """Hover, definition, references and document sync for every root."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        files: Optional[FileSource] = None,
        *,
        preload_extension: str = ".py",
        preload_exclude: str = "__init__.py",
    ):
        self.registry = registry
        self.files = files
        self.preload_extension = preload_extension
        self.preload_exclude = preload_exclude

    async def connection_for(self, uri: str) -> Tuple[UriConverter, ConnectionHandle]:
        """Ready connection serving ``uri`` plus its URI converter.

        Raises:
            RootNotReadyError: no known root contains ``uri``
        """
        root = self.registry.resolve_root_for_document(uri)
        handle = await self.registry.get(root)
        converter = UriConverter(root, handle.actual_root or root)
        return converter, handle

    async def did_open(self, document: TextDocument) -> None:
        if not self.registry.roots:
            return
        converter, handle = await self.connection_for(document.uri)
        await self._send_did_open(handle, converter.to_server(document.uri), document)

    async def _send_did_open(self, handle: ConnectionHandle, server_uri: str, document: TextDocument) -> None:
        assert handle.connection is not None
        await handle.connection.send_notification("textDocument/didOpen", {
            "textDocument": {
                "uri": server_uri,
                "languageId": document.language_id,
                "text": document.text,
                "version": DOCUMENT_VERSION,
            },
        })

    async def hover(self, uri: str, line: int, character: int) -> Optional[Hover]:
        converter, handle = await self.connection_for(uri)
        response = await self._request(handle, "textDocument/hover", {
            "textDocument": {"uri": converter.to_server(uri)},
            "position": {"line": line, "character": character},
        })
        if not response:
            return None
        return Hover(contents=response.get("contents"))

    async def definition(self, uri: str, line: int, character: int) -> Optional[List[Location]]:
        converter, handle = await self.connection_for(uri)
        response = await self._request(handle, "textDocument/definition", {
            "textDocument": {"uri": converter.to_server(uri)},
            "position": {"line": line, "character": character},
        })
        if not response:
            return None
        if isinstance(response, dict):
            response = [response]
        return [self._location(converter, item) for item in response]

    async def references(
        self,
        uri: str,
        line: int,
        character: int,
        include_declaration: bool = True,
    ) -> Optional[List[Location]]:
        converter, handle = await self.connection_for(uri)
        response = await self._request(handle, "textDocument/references", {
            "textDocument": {"uri": converter.to_server(uri)},
            "position": {"line": line, "character": character},
            "context": {"includeDeclaration": include_declaration},
        })
        if not response:
            return None
        return [self._location(converter, item) for item in response]

    async def preload(self, root: str) -> int:
        """Open every matching document under ``root`` on its server.

        Returns the number of documents sent.
        """
        if self.files is None:
            return 0
        handle = await self.registry.get(root)
        converter = UriConverter(root, handle.actual_root or root)

        count = 0
        for uri in await self.files.list_files(root):
            name = PurePosixPath(uri).name
            if not name.endswith(self.preload_extension) or name == self.preload_exclude:
                continue
            try:
                text = await self.files.read_text(uri)
            except (OSError, UnicodeDecodeError) as e:
                log.warn("skipping unreadable file", {"uri": uri, "error": str(e)})
                continue
            document = TextDocument(uri=uri, language_id=language_for(uri), text=text)
            await self._send_did_open(handle, converter.to_server(uri), document)
            count += 1

        log.info("preloaded documents", {"root": root, "count": count})
        return count

    async def _request(self, handle: ConnectionHandle, method: str, params: Dict[str, Any]) -> Any:
        assert handle.connection is not None
        return await handle.connection.send_request(method, params)

    @staticmethod
    def _location(converter: UriConverter, item: Dict[str, Any]) -> Location:
        location = Location.model_validate(item)
        location.uri = converter.to_client(location.uri)
        return location
