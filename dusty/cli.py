#!/usr/bin/env python3
"""
dustyctl

Command-line interface for controlling the dusty notification daemon.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .constants import ConfigPaths


class RPCError(RuntimeError):
    """Error response returned by the daemon."""

    def __init__(self, error: Dict[str, Any]):
        self.error = error
        super().__init__(error.get("message", "unknown error"))

    @property
    def suggestion(self) -> Optional[str]:
        return self.error.get("suggestion")


class DustyCLI:
    """CLI client for the dusty control socket."""

    def __init__(self, socket_path: Optional[Path] = None):
        """Initialize CLI client."""
        self.socket_path = socket_path or ConfigPaths.IPC_SOCKET_PATH

    async def send_request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Send JSON-RPC request to daemon.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            Result dict

        Raises:
            ConnectionError: If cannot connect to daemon
            RPCError: If the daemon returned an error
        """
        if not self.socket_path.exists():
            raise ConnectionError(f"Daemon not running (socket not found: {self.socket_path})")

        request = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or {},
            "id": 1
        }

        reader, writer = await asyncio.open_unix_connection(str(self.socket_path))
        try:
            writer.write((json.dumps(request) + "\n").encode())
            await writer.drain()

            data = await reader.readline()
        finally:
            writer.close()
            await writer.wait_closed()

        if not data:
            raise ConnectionError("Daemon closed the connection without a response")

        response = json.loads(data.decode())
        if "error" in response:
            raise RPCError(response["error"])

        return response.get("result", {})

    @staticmethod
    def _print_notifications(notifications: List[Dict[str, Any]]):
        if not notifications:
            print("No notifications")
            return

        for n in notifications:
            count = f" (x{n['duplicate_count'] + 1})" if n.get("duplicate_count") else ""
            expires = f" [{n['expires_in_ms'] / 1000:.0f}s]" if n.get("expires_in_ms") is not None else ""
            print(f"#{n['id']:<5} {n['urgency']:<8} {n['state']:<9} {n['app_name']}: {n['summary']}{count}{expires}")
            if n.get("body"):
                print(f"{'':7}{n['body']}")

    async def cmd_ping(self, args):
        """Ping daemon to check if running."""
        result = await self.send_request("ping")
        if result.get("status") == "ok":
            print("Daemon is running")
            return 0
        print("Daemon responded but status is not OK")
        return 1

    async def cmd_status(self, args):
        """Show daemon status."""
        result = await self.send_request("status")
        if args.json:
            print(json.dumps(result, indent=2))
            return 0

        print(f"Live notifications: {result['live']} ({result['displayed']} displayed, {result['pending']} pending)")
        print(f"Visible:            {result['visible']}")
        print(f"Do-not-disturb:     {'on' if result['do_not_disturb'] else 'off'}")
        print(f"Next id:            {result['next_id']}")
        print(f"Rules:              {result['rules']}")
        print(f"Uptime:             {result.get('uptime_seconds', 0)}s")
        for reason, count in sorted(result.get("closed", {}).items()):
            print(f"  closed/{reason}: {count}")
        return 0

    async def cmd_list(self, args):
        """List live (or visible) notifications."""
        result = await self.send_request("visible" if args.visible else "list")
        if args.json:
            print(json.dumps(result["notifications"], indent=2))
        else:
            self._print_notifications(result["notifications"])
        return 0

    async def cmd_dismiss(self, args):
        """Dismiss one or all notifications."""
        if args.all:
            result = await self.send_request("dismiss_all")
            print(f"Dismissed {result['dismissed']} notifications")
            return 0

        if args.id is None:
            print("Specify a notification id or --all")
            return 1

        await self.send_request("dismiss", {"id": args.id})
        print(f"Dismissed #{args.id}")
        return 0

    async def cmd_action(self, args):
        """Invoke a notification action."""
        result = await self.send_request("invoke_action", {"id": args.id, "action": args.key})
        print(f"Invoked '{result['action']}' on #{result['id']}")
        return 0

    async def cmd_dnd(self, args):
        """Query or change do-not-disturb."""
        match args.state:
            case "on":
                result = await self.send_request("dnd_set", {"enabled": True})
            case "off":
                result = await self.send_request("dnd_set", {"enabled": False})
            case "toggle":
                result = await self.send_request("dnd_toggle")
            case _:
                result = await self.send_request("dnd_get")

        print(f"Do-not-disturb: {'on' if result['do_not_disturb'] else 'off'}")
        return 0

    async def cmd_history(self, args):
        """Show or clear notification history."""
        if args.clear:
            result = await self.send_request("history", {"clear": True})
            print(f"Cleared {result['cleared']} history entries")
            return 0

        result = await self.send_request("history", {"limit": args.limit})
        if args.json:
            print(json.dumps(result["entries"], indent=2))
            return 0

        if not result["entries"]:
            print("History is empty")
        for entry in result["entries"]:
            print(f"{entry['closed_at'][:19]}  #{entry['id']:<5} {entry['reason']:<10} {entry['app_name']}: {entry['summary']}")
        return 0

    async def cmd_reload(self, args):
        """Reload configuration."""
        result = await self.send_request("reload")
        if result.get("success"):
            print(f"Configuration reloaded ({result.get('rules', 0)} rules)")
            return 0

        print("Configuration reload failed, previous policy kept")
        for error in result.get("errors", []):
            print(f"  {error.get('location', '')}: {error.get('message', error)}")
        if result.get("error"):
            print(f"  {result['error']}")
        return 1

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Control the dusty notification daemon",
            prog="dustyctl"
        )
        parser.add_argument("--socket", type=Path, help="Control socket path")

        subparsers = parser.add_subparsers(dest="command", help="Command to execute")

        subparsers.add_parser("ping", help="Check if daemon is running")

        status_parser = subparsers.add_parser("status", help="Show daemon status")
        status_parser.add_argument("--json", action="store_true", help="Output as JSON")

        list_parser = subparsers.add_parser("list", help="List live notifications")
        list_parser.add_argument("--visible", action="store_true", help="Only the visible queue")
        list_parser.add_argument("--json", action="store_true", help="Output as JSON")

        dismiss_parser = subparsers.add_parser("dismiss", help="Dismiss notifications")
        dismiss_parser.add_argument("id", type=int, nargs="?", help="Notification id")
        dismiss_parser.add_argument("--all", action="store_true", help="Dismiss every notification")

        action_parser = subparsers.add_parser("action", help="Invoke a notification action")
        action_parser.add_argument("id", type=int, help="Notification id")
        action_parser.add_argument("key", nargs="?", default="default", help="Action key (default: 'default')")

        dnd_parser = subparsers.add_parser("dnd", help="Do-not-disturb")
        dnd_parser.add_argument("state", nargs="?", choices=["on", "off", "toggle", "status"], default="status")

        history_parser = subparsers.add_parser("history", help="Show closed notifications")
        history_parser.add_argument("--limit", type=int, default=20, help="Maximum entries to show")
        history_parser.add_argument("--clear", action="store_true", help="Clear history")
        history_parser.add_argument("--json", action="store_true", help="Output as JSON")

        subparsers.add_parser("reload", help="Reload configuration")

        return parser

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run CLI."""
        parser = self.build_parser()
        args = parser.parse_args(argv)

        if not args.command:
            parser.print_help()
            return 1

        if args.socket:
            self.socket_path = args.socket

        cmd_map = {
            "ping": self.cmd_ping,
            "status": self.cmd_status,
            "list": self.cmd_list,
            "dismiss": self.cmd_dismiss,
            "action": self.cmd_action,
            "dnd": self.cmd_dnd,
            "history": self.cmd_history,
            "reload": self.cmd_reload,
        }

        try:
            return asyncio.run(cmd_map[args.command](args))
        except KeyboardInterrupt:
            print("\nInterrupted")
            return 130
        except ConnectionError as e:
            print(f"Daemon not reachable: {e}")
            return 1
        except RPCError as e:
            print(f"Error: {e}")
            if e.suggestion:
                print(f"  -> {e.suggestion}")
            return 1
        except (OSError, json.JSONDecodeError) as e:
            print(f"Error: {e}")
            return 1


def main():
    """Main entry point."""
    cli = DustyCLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
