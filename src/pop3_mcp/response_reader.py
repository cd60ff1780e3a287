"""
Response Reader
===============

Reads POP3 responses line by line and detects where a response ends.

Three shapes are recognized:
- a bare status line (USER, PASS, DELE, QUIT, greeting)
- a status line followed by a dot-terminated block (LIST, RETR)
- an error line, which always ends the response regardless of mode
"""

from __future__ import annotations

from contracts import ConnectionClosedError, ProtocolError
from pop3_mcp.transport import Transport

ERROR_PREFIX = b"-ERR"
TERMINATOR = b"."


def is_terminator(line: bytes) -> bool:
    """True iff the whole line, terminator excluded, is a single dot."""
    return line.endswith(b"\n") and line.rstrip(b"\r\n") == TERMINATOR


def is_error(line: bytes) -> bool:
    return line.startswith(ERROR_PREFIX + b" ") or line.rstrip(b"\r\n") == ERROR_PREFIX


class ResponseReader:
    """Accumulates response lines from a transport."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    def read(self, single_line: bool = True) -> bytes:
        """
        Read one complete response.

        INV-RETR-01: multi-line responses end at a line that is exactly "."
        INV-RETR-02: a "-ERR " line ends the response in either mode

        ERRORS:
        - CONNECTION_CLOSED: stream ended before the response was complete
        - PROTOCOL_ERROR: transport read failed
        """
        response = b""
        while True:
            try:
                line = self._transport.readline()
            except OSError as e:
                raise ProtocolError(f"Could not read server response: {e}") from e

            if not line:
                if not response:
                    raise ConnectionClosedError("Invalid or empty response")
                raise ConnectionClosedError(
                    "Connection closed before end of response", response=response
                )

            response += line

            if is_error(line) or is_terminator(line) or single_line:
                return response
