"""rootmux - one language server session per workspace root.

Keeps a JSON-RPC connection to a remote language server for every active
workspace root and serves hover, definition and references through it.
"""

__version__ = "0.1.0"

# Lazy imports to keep `import rootmux` cheap
def __getattr__(name: str):
    """Lazy import module components."""
    if name in ("Bus", "BusEvent", "GlobalPath"):
        from . import core
        return getattr(core, name)
    if name == "Log":
        from .util.log import Log
        return Log
    if name in ("ConnectionRegistry", "LanguageFeatures", "WorkspaceRoots"):
        from . import lsp
        return getattr(lsp, name)
    if name == "AppContext":
        from .runtime import AppContext
        return AppContext
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "__version__",
    "AppContext",
    "Bus",
    "BusEvent",
    "ConnectionRegistry",
    "GlobalPath",
    "LanguageFeatures",
    "Log",
    "WorkspaceRoots",
]
