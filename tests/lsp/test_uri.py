from __future__ import annotations

from pathlib import Path

import pytest

from rootmux.lsp.uri import UriConverter, path_to_uri, uri_to_path


def test_converter_swaps_root_prefix() -> None:
    converter = UriConverter("git://github.com/org/repo?rev#", "file:///srv/repo/")

    assert converter.to_server("git://github.com/org/repo?rev#pkg/mod.py") == "file:///srv/repo/pkg/mod.py"
    assert converter.to_client("file:///srv/repo/pkg/mod.py") == "git://github.com/org/repo?rev#pkg/mod.py"


def test_converter_leaves_foreign_uris_alone() -> None:
    converter = UriConverter("file:///work/", "file:///srv/work/")

    assert converter.to_client("file:///usr/lib/python3/os.py") == "file:///usr/lib/python3/os.py"
    assert converter.to_server("untitled:Untitled-1") == "untitled:Untitled-1"


def test_path_uri_conversion(tmp_path: Path) -> None:
    target = (tmp_path / "with space" / "mod.py").resolve()

    uri = path_to_uri(target)

    assert uri.startswith("file:///")
    assert "with%20space" in uri
    assert uri_to_path(uri) == target


def test_uri_to_path_rejects_other_schemes() -> None:
    with pytest.raises(ValueError):
        uri_to_path("git://github.com/org/repo?rev#main.py")
