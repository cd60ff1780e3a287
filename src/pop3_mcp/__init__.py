"""
POP3 MCP Server
===============

POP3 mailbox retrieval client with header filtering, exposed as MCP tools.
"""

__version__ = "0.1.0"

from pop3_mcp.batch import BatchRetriever
from pop3_mcp.config import SessionConfig, retrieve_session_config
from pop3_mcp.filters import FilterChain, FilterRule
from pop3_mcp.message import decode_message
from pop3_mcp.pop3_client import POP3Session
from pop3_mcp.server import POP3MCPServer, create_server, get_server

__all__ = [
    "POP3MCPServer",
    "get_server",
    "create_server",
    "POP3Session",
    "BatchRetriever",
    "FilterRule",
    "FilterChain",
    "SessionConfig",
    "retrieve_session_config",
    "decode_message",
]
