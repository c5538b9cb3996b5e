"""One-time setup run on every new language server connection."""

from typing import Any, Optional

from ..core.config_schema import BootstrapConfig
from ..util.log import Log
from .transport import MessageConnection

log = Log.create({"service": "lsp.bootstrap"})
remote_log = Log.create({"service": "remote"})

EXTRACT_ARCHIVE_COMMAND = "workspace/extractArchive"


class SessionBootstrap:
    """Initializer for :class:`~rootmux.lsp.registry.ConnectionRegistry`.

    Forwards the server's ``window/logMessage`` and ``$/logTrace``
    notifications to the local log, prefixed with the root, and asks the
    server to materialize the workspace from an archive when one is
    configured. A string returned by that command becomes the actual root.
    """

    def __init__(self, config: BootstrapConfig):
        self.config = config

    async def __call__(
        self,
        original_root: str,
        actual_root: str,
        connection: MessageConnection,
    ) -> Optional[str]:
        prefix = f"{original_root}: "

        def on_log_message(params: Any) -> None:
            remote_log.info(prefix + str((params or {}).get("message", "")))

        def on_log_trace(params: Any) -> None:
            params = params or {}
            message = prefix + str(params.get("message", ""))
            if params.get("verbose"):
                message += f"\n\n{params['verbose']}"
            remote_log.debug(message)

        connection.on_notification("window/logMessage", on_log_message)
        connection.on_notification("$/logTrace", on_log_trace)

        if not self.config.archive_url:
            return None

        archive_url = self.config.archive_url.replace("{root}", original_root)
        with log.time("extracting archive", {"root": original_root, "archive": archive_url}):
            result = await connection.send_request("workspace/executeCommand", {
                "command": EXTRACT_ARCHIVE_COMMAND,
                "arguments": [archive_url, self.config.replace],
            })

        if isinstance(result, str) and result:
            return result
        return actual_root
