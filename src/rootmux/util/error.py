"""Error formatting utilities.

Turns the errors raised while talking to language servers into short,
user-facing messages for the CLI.
"""

import json
import traceback
from typing import Any

from pylsp_jsonrpc.exceptions import JsonRpcException


def format_error(error: Any) -> str | None:
    """Format known application errors into user-friendly messages.

    Returns None if the error type is not recognized, allowing
    fallback to format_unknown_error.
    """
    from ..core.config import ConfigError
    from ..lsp.registry import ConnectionCancelledError, RootNotReadyError
    from ..lsp.transport import ConnectionClosedError

    if isinstance(error, RootNotReadyError):
        return f"No workspace root is ready for {error.uri}"
    if isinstance(error, ConnectionCancelledError):
        return f"Connection for {error.root} was cancelled because the root was removed"
    if isinstance(error, ConnectionClosedError):
        return f"Language server connection closed: {error}"
    if isinstance(error, JsonRpcException):
        return f"Language server error ({error.code}): {error.message}"
    if isinstance(error, ConfigError):
        return str(error)
    if isinstance(error, (ConnectionRefusedError, TimeoutError)):
        return f"Could not reach the language server: {error}"
    return None


def format_unknown_error(error: Any) -> str:
    """Format any error into a string representation."""
    if isinstance(error, BaseException):
        if error.__traceback__:
            return "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return f"{error.__class__.__name__}: {error}"

    if isinstance(error, (dict, list)):
        try:
            return json.dumps(error, indent=2)
        except (TypeError, ValueError):
            return "Unexpected error (unserializable)"

    return str(error)
