"""
Test helpers: a scripted in-memory POP3 server standing in for the
transport, and a raw message builder.

The fake derives its behavior from the wire table of the session contract:
every command gets a status line, LIST and RETR get dot-terminated blocks,
unknown ids and bad credentials get "-ERR " lines.
"""

from __future__ import annotations

import base64


def make_raw(headers: list[str], body: bytes | str) -> bytes:
    """Build header block + blank line + Base64 body, CRLF terminated."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    encoded = base64.b64encode(body).decode("ascii")
    return ("\r\n".join(headers) + "\r\n\r\n" + encoded + "\r\n").encode("utf-8")


class FakePOP3Server:
    """In-memory POP3 server implementing the Transport interface."""

    def __init__(
        self,
        messages: dict[int, bytes] | None = None,
        *,
        greeting: bytes = b"+OK POP3 server ready\r\n",
        user: str = "user@example.com",
        password: str = "secret123",
    ) -> None:
        self.messages = dict(messages or {})
        self.greeting = greeting
        self.user = user
        self.password = password
        self.overrides: dict[str, bytes] = {}
        self.commands: list[str] = []
        self.opened: tuple | None = None
        self.closed = False
        self.close_count = 0
        self._pending: list[bytes] = []

    # Transport factory
    def open(self, host: str, port: int, timeout: float) -> "FakePOP3Server":
        self.opened = (host, port, timeout)
        self.closed = False
        self._queue(self.greeting)
        return self

    # Transport interface
    def readline(self) -> bytes:
        if self._pending:
            return self._pending.pop(0)
        return b""

    def write(self, data: bytes) -> None:
        command = data.decode("utf-8").rstrip("\r\n")
        self.commands.append(command)
        self._queue(self.respond(command))

    def close(self) -> None:
        self.closed = True
        self.close_count += 1

    def respond(self, command: str) -> bytes:
        if command in self.overrides:
            return self.overrides[command]

        verb, _, arg = command.partition(" ")
        if verb == "USER":
            return b"+OK\r\n" if arg == self.user else b"-ERR unknown user\r\n"
        if verb == "PASS":
            return b"+OK maildrop locked\r\n" if arg == self.password else b"-ERR invalid password\r\n"
        if verb == "LIST":
            listing = b"".join(
                f"{message_id} {len(raw)}\r\n".encode() for message_id, raw in self.messages.items()
            )
            return f"+OK {len(self.messages)} messages\r\n".encode() + listing + b".\r\n"
        if verb == "RETR":
            raw = self.messages.get(int(arg))
            if raw is None:
                return b"-ERR no such message\r\n"
            return f"+OK {len(raw)} octets\r\n".encode() + raw + b".\r\n"
        if verb == "DELE":
            if self.messages.pop(int(arg), None) is None:
                return b"-ERR no such message\r\n"
            return f"+OK message {arg} deleted\r\n".encode()
        if verb == "QUIT":
            return b"+OK bye\r\n"
        return b"-ERR unknown command\r\n"

    def _queue(self, data: bytes) -> None:
        self._pending.extend(data.splitlines(keepends=True))


class StallingPOP3Server(FakePOP3Server):
    """
    Fake server whose read fails partway through the response to one
    command, leaving the rest of that response buffered.
    """

    def __init__(
        self,
        messages: dict[int, bytes] | None = None,
        *,
        stall_command: str,
        lines_before_stall: int = 2,
        error: Exception | None = None,
    ) -> None:
        super().__init__(messages)
        self.stall_command = stall_command
        self.lines_before_stall = lines_before_stall
        self.error = error if error is not None else TimeoutError("timed out")
        self._lines_left: int | None = None

    def write(self, data: bytes) -> None:
        super().write(data)
        if self.commands[-1] == self.stall_command:
            self._lines_left = self.lines_before_stall

    def readline(self) -> bytes:
        if self._lines_left is not None:
            if self._lines_left == 0:
                self._lines_left = None
                raise self.error
            self._lines_left -= 1
        return super().readline()
