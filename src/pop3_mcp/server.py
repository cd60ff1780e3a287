"""
POP3 MCP Server
===============

MCP server exposing a single POP3 session as tools.

CONTRACT INVARIANTS ENFORCED:
- INV-SESSION-01: Single session per process
- INV-SESSION-04: No logging of passwords or message bodies
- INV-BATCH-02: fetch_all with filtering requires a filter chain
"""

from __future__ import annotations

import asyncio
import base64
import inspect
import json
import logging
import os
import sys
from dataclasses import asdict
from enum import Enum
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from contracts import (
    Message,
    NotConnectedError,
    POP3MCPError,
    SessionState,
    SessionStatus,
    ValidationError,
)
from pop3_mcp.batch import BatchRetriever
from pop3_mcp.config import SessionConfig, retrieve_session_config
from pop3_mcp.filters import FilterChain
from pop3_mcp.pop3_client import POP3Session, TransportFactory
from pop3_mcp.transport import SocketTransport

# Configure logging to NEVER include message content (INV-SESSION-04)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("pop3-mcp")

_RULES_SCHEMA = {
    "type": "array",
    "description": "Filter rules for this call; overrides the configured filter",
    "items": {
        "type": "object",
        "properties": {
            "header": {"type": "string"},
            "include": {"type": "string"},
            "exclude": {"type": "string"},
        },
        "required": ["header"],
    },
}


def _check_arguments(name: str, tool: Any, arguments: dict[str, Any]) -> None:
    """Raise ValidationError unless arguments fit the tool signature."""
    try:
        inspect.signature(tool).bind(**arguments)
    except TypeError as e:
        raise ValidationError(f"Invalid arguments for {name}: {e}") from e


class POP3MCPServer:
    """POP3 MCP Server - mailbox retrieval for AI agents."""

    def __init__(self, transport_factory: TransportFactory = SocketTransport.open) -> None:
        self._session: POP3Session | None = None
        self._transport_factory = transport_factory
        self._server = Server("pop3-mcp")
        self._setup_tools()

    def _setup_tools(self) -> None:
        """Register MCP tools."""

        @self._server.list_tools()
        async def list_tools() -> list[Tool]:
            return [
                Tool(
                    name="pop3_list",
                    description="List message ids in the mailbox",
                    inputSchema={"type": "object", "properties": {}},
                ),
                Tool(
                    name="pop3_retrieve",
                    description="Retrieve and decode a single message",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "message_id": {
                                "type": "integer",
                                "description": "Server-assigned message id",
                                "minimum": 1,
                            },
                            "apply_filter": {
                                "type": "boolean",
                                "description": "Reject messages not passing the filter",
                                "default": True,
                            },
                            "rules": _RULES_SCHEMA,
                        },
                        "required": ["message_id"],
                    },
                ),
                Tool(
                    name="pop3_fetch_all",
                    description="Retrieve all messages, bucketed by outcome",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "apply_filter": {
                                "type": "boolean",
                                "description": "Reject messages not passing the filter",
                                "default": True,
                            },
                            "rules": _RULES_SCHEMA,
                        },
                    },
                ),
                Tool(
                    name="pop3_delete",
                    description="Mark a message for deletion",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "message_id": {
                                "type": "integer",
                                "description": "Server-assigned message id",
                                "minimum": 1,
                            },
                        },
                        "required": ["message_id"],
                    },
                ),
                Tool(
                    name="pop3_status",
                    description="Get current session status",
                    inputSchema={"type": "object", "properties": {}},
                ),
            ]

        @self._server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            return [TextContent(type="text", text=self.dispatch(name, arguments or {}))]

    def dispatch(self, name: str, arguments: dict[str, Any]) -> str:
        """Run a tool and serialize its result or contract error."""
        tools = {
            "pop3_list": self.pop3_list,
            "pop3_retrieve": self.pop3_retrieve,
            "pop3_fetch_all": self.pop3_fetch_all,
            "pop3_delete": self.pop3_delete,
            "pop3_status": self.pop3_status,
        }
        tool = tools.get(name)
        if tool is None:
            return f"Unknown tool: {name}"

        try:
            _check_arguments(name, tool, arguments)
            result = tool(**arguments)
        except POP3MCPError as e:
            return f"Error: {e.__class__.__name__}: {e}"

        return self._serialize_result(result)

    def connect(self, config: SessionConfig) -> None:
        """
        Open and authenticate the session.

        INV-SESSION-01: Single session per process
        """
        if self._session is not None:
            raise RuntimeError("Session already established")

        session = POP3Session(config, transport_factory=self._transport_factory)
        session.open()
        self._session = session
        logger.info("Connected to POP3 server")  # No credentials logged

    def disconnect(self) -> None:
        """Disconnect and clear session."""
        if self._session:
            try:
                self._session.disconnect()
            except POP3MCPError:
                logger.warning("Error while disconnecting", exc_info=True)
            finally:
                self._session = None
            logger.info("Disconnected from POP3 server")

    def _require_session(self) -> POP3Session:
        """Ensure a session is connected."""
        if self._session is None or not self._session.connected:
            raise NotConnectedError("Not connected to mail server")
        return self._session

    def pop3_list(self) -> dict:
        session = self._require_session()
        logger.info("Listing messages")
        return {"ids": session.list_ids()}

    def pop3_retrieve(
        self,
        *,
        message_id: int,
        apply_filter: bool = True,
        rules: list[dict] | None = None,
    ) -> Message:
        """Retrieve one message, filtered by rules or the configured chain."""
        session = self._require_session()
        # Log operation but NEVER log message content (INV-SESSION-04)
        logger.info(f"Retrieving message {message_id}")
        message = session.retrieve(message_id, apply_filter=False)
        if apply_filter:
            session.apply_filter(message, self._chain(rules))
        return message

    def pop3_fetch_all(
        self,
        *,
        apply_filter: bool = True,
        rules: list[dict] | None = None,
    ) -> dict[str, list]:
        session = self._require_session()
        logger.info(f"Fetching all messages with apply_filter={apply_filter}")
        return BatchRetriever(session, filter_chain=self._chain(rules)).fetch_all(
            apply_filter=apply_filter
        )

    def pop3_delete(self, *, message_id: int) -> dict:
        session = self._require_session()
        session.delete(message_id)
        return {"deleted": message_id}

    def pop3_status(self) -> SessionStatus:
        """Always succeeds; connected is False without a session."""
        if self._session is None:
            return SessionStatus(
                connected=False,
                state=SessionState.DISCONNECTED,
                server="",
                port=0,
                uptime_seconds=0,
            )
        return self._session.get_status()

    @staticmethod
    def _chain(rules: list[dict] | None) -> FilterChain | None:
        return FilterChain.from_rules(rules) if rules else None

    def _serialize_result(self, result: Any) -> str:
        """Serialize result to JSON string."""

        def default_serializer(obj: Any) -> Any:
            if isinstance(obj, Message):
                return {
                    "id": obj.id,
                    "headers": dict(obj.headers),
                    "body": obj.body.decode("utf-8", errors="replace"),
                    "size": len(obj.raw_data),
                }
            if hasattr(obj, "__dataclass_fields__"):
                return asdict(obj)
            if isinstance(obj, Enum):
                return obj.name
            if isinstance(obj, bytes):
                return base64.b64encode(obj).decode("ascii")
            raise TypeError(f"Cannot serialize {type(obj)}")

        return json.dumps(result, default=default_serializer, indent=2)

    async def run(self) -> None:
        """Run the MCP server."""
        async with stdio_server() as (read_stream, write_stream):
            await self._server.run(
                read_stream, write_stream, self._server.create_initialization_options()
            )


# Singleton for process lifetime
_server_instance: POP3MCPServer | None = None


def get_server() -> POP3MCPServer:
    """Get or create the server singleton."""
    global _server_instance
    if _server_instance is None:
        _server_instance = POP3MCPServer()
    return _server_instance


def create_server(transport_factory: TransportFactory = SocketTransport.open) -> POP3MCPServer:
    """Create a new server instance (for testing)."""
    return POP3MCPServer(transport_factory=transport_factory)


def main() -> None:
    """Retrieve credentials for an account, connect and serve over stdio."""
    account_id = sys.argv[1] if len(sys.argv) > 1 else os.environ.get("POP3_MCP_ACCOUNT", "default")
    server = get_server()
    try:
        server.connect(retrieve_session_config(account_id))
    except POP3MCPError as e:
        logger.error(f"Startup failed: {e.__class__.__name__}: {e}")
        sys.exit(1)
    try:
        asyncio.run(server.run())
    finally:
        server.disconnect()
