"""
Socket Transport
================

Plain TCP transport for POP3 sessions. Byte-level I/O only: framing and
status interpretation belong to the response reader and the session.
"""

from __future__ import annotations

import logging
import socket
from typing import Protocol

from contracts import ConnectionFailedError, ProtocolError

logger = logging.getLogger(__name__)

# Longest accepted response line, terminator included
MAX_LINE = 65536


class Transport(Protocol):
    """Byte stream a session reads lines from and writes commands to."""

    def readline(self) -> bytes:
        ...

    def write(self, data: bytes) -> None:
        ...

    def close(self) -> None:
        ...


class SocketTransport:
    """Transport over a connected TCP socket."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock: socket.socket | None = sock
        self._file = sock.makefile("rb")

    @classmethod
    def open(cls, host: str, port: int, timeout: float) -> SocketTransport:
        """
        Connect to host:port within timeout seconds.

        ERRORS:
        - CONNECTION_FAILED: socket could not be connected
        """
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise ConnectionFailedError(
                f"Server connection error; error code - `{e.errno}`; error message - `{e.strerror or e}`",
                host=host,
                port=port,
                errno=e.errno,
                reason=str(e.strerror or e),
            ) from e
        logger.debug("Connected to %s:%s", host, port)
        return cls(sock)

    def readline(self) -> bytes:
        """Read one line including its terminator. Returns b"" at end of stream."""
        line = self._file.readline(MAX_LINE + 1)
        if len(line) > MAX_LINE:
            raise ProtocolError("Response line too long")
        return line

    def write(self, data: bytes) -> None:
        if self._sock is None:
            raise OSError("Transport closed")
        self._sock.sendall(data)

    def close(self) -> None:
        """Close the socket. Closing twice is a no-op."""
        if self._sock is None:
            return
        try:
            self._file.close()
        finally:
            self._sock.close()
            self._sock = None
