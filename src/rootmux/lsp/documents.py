"""Text documents and the file tree behind a workspace root."""

import asyncio
from pathlib import Path
from typing import List, Protocol

from pydantic import BaseModel, ConfigDict, Field

from ..util.log import Log
from .uri import path_to_uri, uri_to_path

log = Log.create({"service": "lsp.documents"})

LANGUAGE_EXTENSIONS = {
    ".py": "python",
    ".pyi": "python",
}

# Directories never worth sending to the language server
_SKIPPED_DIRS = frozenset({".git", ".hg", ".svn", "__pycache__", "node_modules", ".venv", "venv"})


class TextDocument(BaseModel):
    """A document as the host knows it."""
    uri: str
    language_id: str = Field("python", alias="languageId")
    text: str

    model_config = ConfigDict(populate_by_name=True)


class FileSource(Protocol):
    """Read access to the files under a workspace root."""

    async def list_files(self, root: str) -> List[str]: ...

    async def read_text(self, uri: str) -> str: ...


def language_for(uri: str) -> str:
    return LANGUAGE_EXTENSIONS.get(Path(uri).suffix, "plaintext")


class LocalFileSource:
    """File source for ``file://`` roots on the local disk."""

    async def list_files(self, root: str) -> List[str]:
        try:
            base = uri_to_path(root)
        except ValueError:
            log.warn("root is not on the local disk", {"root": root})
            return []
        return await asyncio.to_thread(self._walk, base)

    def _walk(self, base: Path) -> List[str]:
        if not base.is_dir():
            return []
        files: List[str] = []
        for path in sorted(base.rglob("*")):
            if any(part in _SKIPPED_DIRS for part in path.relative_to(base).parts):
                continue
            if path.is_file():
                files.append(path_to_uri(path))
        return files

    async def read_text(self, uri: str) -> str:
        path = uri_to_path(uri)
        return await asyncio.to_thread(path.read_text, encoding="utf-8")
