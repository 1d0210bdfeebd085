"""
IPC server for the dusty notification daemon.

Newline-delimited JSON-RPC 2.0 over a Unix socket, used by dustyctl and by
widgets to dismiss notifications, invoke actions and toggle do-not-disturb.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import ConfigPaths
from .errors import (
    ErrorCode,
    NotFound,
    NotificationError,
    error_response,
    validate_params,
)

logger = logging.getLogger(__name__)


def _require_id(params: Dict[str, Any]) -> int:
    notification_id = params["id"]
    if not isinstance(notification_id, int) or isinstance(notification_id, bool) or notification_id <= 0:
        raise NotificationError(
            code=ErrorCode.INVALID_PARAMS,
            message=f"'id' must be a positive integer, got {notification_id!r}",
            suggestion="List live notifications with: dustyctl list",
        )
    return notification_id


class IPCServer:
    """JSON-RPC IPC server for notification control."""

    def __init__(self, daemon, socket_path: Optional[Path] = None):
        """
        Initialize IPC server.

        Args:
            daemon: DustyDaemon instance
            socket_path: Unix socket path (defaults to ~/.cache/dusty/ipc.sock)
        """
        self.daemon = daemon
        self.socket_path = socket_path or ConfigPaths.IPC_SOCKET_PATH
        self.server: Optional[asyncio.AbstractServer] = None
        self.clients = set()
        self.methods = {
            "ping": self._handle_ping,
            "status": self._handle_status,
            "list": self._handle_list,
            "visible": self._handle_visible,
            "dismiss": self._handle_dismiss,
            "dismiss_all": self._handle_dismiss_all,
            "invoke_action": self._handle_invoke_action,
            "dnd_get": self._handle_dnd_get,
            "dnd_set": self._handle_dnd_set,
            "dnd_toggle": self._handle_dnd_toggle,
            "history": self._handle_history,
            "reload": self._handle_reload,
        }

    @property
    def engine(self):
        return self.daemon.engine

    async def start(self):
        """Start IPC server."""
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)

        # Remove stale socket
        if self.socket_path.exists():
            self.socket_path.unlink()

        self.server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self.socket_path)
        )

        logger.info(f"IPC server listening on {self.socket_path}")

    async def stop(self):
        """Stop IPC server."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()

        if self.socket_path.exists():
            self.socket_path.unlink()

        logger.info("IPC server stopped")

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Serve one client connection until it disconnects."""
        logger.debug("Client connected")
        self.clients.add(writer)

        try:
            while True:
                data = await reader.readline()
                if not data:
                    break

                try:
                    request = json.loads(data.decode())
                except (UnicodeDecodeError, json.JSONDecodeError) as e:
                    response = error_response(NotificationError(
                        code=ErrorCode.PARSE_ERROR,
                        message=f"Invalid JSON: {e}",
                        suggestion="Send one JSON-RPC request per line",
                    ))
                else:
                    response = await self.handle_request(request)

                writer.write((json.dumps(response) + "\n").encode())
                await writer.drain()

        except (ConnectionResetError, BrokenPipeError) as e:
            logger.debug(f"Client connection lost: {e}")
        finally:
            self.clients.discard(writer)
            writer.close()
            await writer.wait_closed()
            logger.debug("Client disconnected")

    async def handle_request(self, request: Any) -> Dict[str, Any]:
        """
        Handle one JSON-RPC request.

        Args:
            request: Decoded JSON-RPC request

        Returns:
            JSON-RPC response dict
        """
        if not isinstance(request, dict):
            return error_response(NotificationError(
                code=ErrorCode.INVALID_REQUEST,
                message="Request must be a JSON object",
            ))

        method = request.get("method")
        params = request.get("params", {})
        request_id = request.get("id")

        logger.debug(f"Received request: {method}")

        try:
            if not method:
                raise NotificationError(
                    code=ErrorCode.INVALID_REQUEST,
                    message="Missing 'method' field in request",
                    suggestion="Provide 'method' field in JSON-RPC request"
                )

            handler = self.methods.get(method)
            if handler is None:
                raise NotificationError(
                    code=ErrorCode.METHOD_NOT_FOUND,
                    message=f"Method not found: {method}",
                    suggestion="Run 'dustyctl --help' for available commands",
                    context={"available_methods": sorted(self.methods)}
                )

            if self.engine is None:
                raise NotificationError(
                    code=ErrorCode.DAEMON_NOT_INITIALIZED,
                    message="Daemon not initialized",
                    suggestion="Wait for the daemon to finish starting"
                )

            result = await handler(params if params is not None else {})
            return {
                "jsonrpc": "2.0",
                "result": result,
                "id": request_id
            }

        except NotificationError as e:
            logger.warning(f"Request {method} failed: {e.message}")
            return error_response(e, request_id)

        except Exception as e:
            logger.error(f"Unexpected error handling {method}: {e}", exc_info=True)
            return error_response(e, request_id)

    def _describe(self, notification) -> Dict[str, Any]:
        data = notification.to_dict()
        data["expires_in_ms"] = self.engine.remaining_ms(notification.id)
        return data

    async def _handle_ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"status": "ok", "daemon": "dusty"}

    async def _handle_status(self, params: Dict[str, Any]) -> Dict[str, Any]:
        validate_params(params, required=[], optional=[])
        status = self.engine.stats()
        status["uptime_seconds"] = round(time.monotonic() - self.daemon.start_time, 1)
        status["config_path"] = str(self.daemon.config_path)
        return status

    async def _handle_list(self, params: Dict[str, Any]) -> Dict[str, Any]:
        validate_params(params, required=[], optional=[])
        notifications = [self._describe(n) for n in self.engine.snapshot()]
        return {"notifications": notifications, "count": len(notifications)}

    async def _handle_visible(self, params: Dict[str, Any]) -> Dict[str, Any]:
        validate_params(params, required=[], optional=[])
        notifications = [self._describe(n) for n in self.engine.visible_queue()]
        return {"notifications": notifications, "count": len(notifications)}

    async def _handle_dismiss(self, params: Dict[str, Any]) -> Dict[str, Any]:
        validate_params(params, required=["id"], optional=[])
        notification_id = _require_id(params)

        if not await self.engine.dismiss(notification_id):
            raise NotFound(notification_id)
        return {"dismissed": notification_id}

    async def _handle_dismiss_all(self, params: Dict[str, Any]) -> Dict[str, Any]:
        validate_params(params, required=[], optional=[])
        return {"dismissed": await self.engine.dismiss_all()}

    async def _handle_invoke_action(self, params: Dict[str, Any]) -> Dict[str, Any]:
        validate_params(params, required=["id"], optional=["action"])
        notification_id = _require_id(params)
        action_key = params.get("action", "default")

        if notification_id not in self.engine:
            raise NotFound(notification_id)
        if not await self.engine.invoke_action(notification_id, action_key):
            raise NotFound(
                notification_id,
                code=ErrorCode.ACTION_NOT_FOUND,
                detail=f"no action '{action_key}'",
            )
        return {"id": notification_id, "action": action_key}

    async def _handle_dnd_get(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"do_not_disturb": self.engine.do_not_disturb}

    async def _handle_dnd_set(self, params: Dict[str, Any]) -> Dict[str, Any]:
        validate_params(params, required=["enabled"], optional=[])
        enabled = params["enabled"]
        if not isinstance(enabled, bool):
            raise NotificationError(
                code=ErrorCode.INVALID_PARAMS,
                message="'enabled' must be a boolean",
                suggestion="Use: dustyctl dnd on|off"
            )

        changed = await self.engine.set_do_not_disturb(enabled)
        return {"do_not_disturb": enabled, "changed": changed}

    async def _handle_dnd_toggle(self, params: Dict[str, Any]) -> Dict[str, Any]:
        enabled = await self.engine.toggle_do_not_disturb()
        return {"do_not_disturb": enabled, "changed": True}

    async def _handle_history(self, params: Dict[str, Any]) -> Dict[str, Any]:
        validate_params(params, required=[], optional=["limit", "clear"])
        history = self.daemon.history

        if params.get("clear"):
            return {"cleared": history.clear()}

        limit = params.get("limit")
        if limit is not None and (not isinstance(limit, int) or isinstance(limit, bool) or limit < 1):
            raise NotificationError(
                code=ErrorCode.INVALID_PARAMS,
                message="'limit' must be a positive integer",
            )

        entries = [entry.model_dump(mode="json") for entry in history.recent(limit)]
        return {"entries": entries, "count": len(entries)}

    async def _handle_reload(self, params: Dict[str, Any]) -> Dict[str, Any]:
        validate_params(params, required=[], optional=[])
        return await self.daemon.reload_config()
