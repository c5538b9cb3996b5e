"""URI translation between the host and the language server.

The host names documents relative to its own root URI (for example
``git://github.com/org/repo?rev#dir/file.py``) while the server only knows
the root it materialized the workspace at. Conversion swaps one root prefix
for the other; URIs outside the root pass through unchanged.
"""

from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote, unquote, urlparse


@dataclass(frozen=True)
class UriConverter:
    """Bidirectional root-prefix mapping."""
    client_root: str
    server_root: str

    def to_server(self, uri: str) -> str:
        return _swap_prefix(uri, self.client_root, self.server_root)

    def to_client(self, uri: str) -> str:
        return _swap_prefix(uri, self.server_root, self.client_root)


def _swap_prefix(uri: str, old: str, new: str) -> str:
    if old == new or not uri.startswith(old):
        return uri
    return new + uri[len(old):]


def path_to_uri(path: str | Path) -> str:
    """Convert a file path to a ``file://`` URI."""
    resolved = Path(path).resolve().as_posix()
    if not resolved.startswith("/"):
        # Windows: file:///C:/path
        resolved = "/" + resolved
    return "file://" + quote(resolved, safe="/:")


def uri_to_path(uri: str) -> Path:
    """Convert a ``file://`` URI to a path.

    Raises:
        ValueError: the URI does not use the file scheme
    """
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise ValueError(f"not a file uri: {uri}")
    path = unquote(parsed.path)
    if len(path) > 2 and path[0] == "/" and path[2] == ":":
        path = path[1:]
    return Path(path)
