"""
POP3 Session
============

Command/response session over a single transport.

SEQUENCE:
    connect -> login (USER) -> password (PASS) -> LIST/RETR/DELE -> disconnect (QUIT)

CONTRACT INVARIANTS:
- INV-SESSION-01: One transport per session, owned exclusively
- INV-SESSION-02: disconnect is idempotent
- INV-SESSION-03: A request succeeded iff the response starts with +OK
- INV-SESSION-04: The password never appears in logs or error messages
- INV-SESSION-05: Scoped teardown never masks the caller's error
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Callable

from contracts import (
    AuthFailedError,
    ConnectionClosedError,
    FilteredOutError,
    FilterMissingError,
    Message,
    NotConnectedError,
    ProtocolError,
    RetrievalError,
    SessionState,
    SessionStatus,
    ValidationError,
)
from pop3_mcp.batch import BatchRetriever
from pop3_mcp.config import SessionConfig
from pop3_mcp.filters import FilterChain
from pop3_mcp.message import decode_message
from pop3_mcp.response_reader import ResponseReader, is_terminator
from pop3_mcp.transport import SocketTransport, Transport

logger = logging.getLogger(__name__)

STATUS_OK = b"+OK"
LINE_END = "\r\n"

TransportFactory = Callable[[str, int, float], Transport]


def validate_message_id(message_id: int | str) -> int:
    """
    Return message_id as a positive int.

    PRE-RETR-02: ids are positive, non-zero integers (or digit strings).
    """
    if isinstance(message_id, bool):
        raise ValidationError(f"Invalid message id: {message_id!r}")
    if isinstance(message_id, str):
        if not message_id.isdigit():
            raise ValidationError(f"Invalid message id: {message_id!r}")
        message_id = int(message_id)
    if not isinstance(message_id, int) or message_id <= 0:
        raise ValidationError(f"Invalid message id: {message_id!r}")
    return message_id


def parse_message_ids(response: bytes) -> list[int]:
    """
    Extract message ids from a LIST response.

    Each scan listing is "<id> <size>"; the status and terminator lines are
    skipped. Ids keep server order.
    """
    ids = []
    for line in response.splitlines(keepends=True)[1:]:
        if is_terminator(line):
            break
        tokens = line.split()
        if len(tokens) >= 2 and tokens[0].isdigit() and tokens[1].isdigit():
            ids.append(int(tokens[0]))
    return ids


def _mask(command: str) -> str:
    """Hide the password of a PASS command."""
    if command.upper().startswith("PASS "):
        return "PASS ****"
    return command


class POP3Session:
    """
    POP3 client session.

    Usable as a context manager: entering connects and authenticates with the
    configured credentials, leaving disconnects.
    """

    def __init__(
        self,
        config: SessionConfig,
        transport_factory: TransportFactory = SocketTransport.open,
    ) -> None:
        self._config = config
        self._transport_factory = transport_factory
        self._transport: Transport | None = None
        self._reader: ResponseReader | None = None
        self._last_response: bytes | None = None
        self._state = SessionState.DISCONNECTED
        self._server = ""
        self._port = config.port
        self._start_time: datetime | None = None

    def __enter__(self) -> POP3Session:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._close_quietly()

    def open(self) -> None:
        """Connect and authenticate with the configured credentials."""
        self.connect()
        try:
            self.login()
            self.password()
        except BaseException:
            self._close_quietly()
            raise

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def filter(self) -> FilterChain | None:
        return self._config.filter

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        """Check if connected to server."""
        return self._transport is not None

    @property
    def last_response(self) -> bytes:
        """Last raw server response."""
        if not self._last_response:
            raise ProtocolError("Invalid or empty server response")
        return self._last_response

    def get_status(self) -> SessionStatus:
        """Return current session status."""
        uptime = 0
        if self._start_time and self.connected:
            uptime = int((datetime.now() - self._start_time).total_seconds())

        return SessionStatus(
            connected=self.connected,
            state=self._state,
            server=self._server,
            port=self._port,
            uptime_seconds=uptime,
        )

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    def connect(
        self,
        host: str | None = None,
        port: int | None = None,
        timeout: float | None = None,
    ) -> None:
        """
        Open the transport and read the server greeting.

        POST-SESSION-01: state == CONNECTED, greeting was +OK

        ERRORS:
        - VALIDATION_FAILED: empty host
        - CONNECTION_FAILED: transport could not be established
        - PROTOCOL_ERROR: already connected, or greeting not +OK
        """
        host = self._config.host if host is None else host
        port = self._config.port if port is None else port
        timeout = self._config.connection_timeout if timeout is None else timeout

        if not host:
            raise ValidationError("Invalid host name")
        if self._transport is not None:
            raise ProtocolError(f"Already connected to {self._server}:{self._port}")

        self._transport = self._transport_factory(host, port, timeout)
        self._reader = ResponseReader(self._transport)
        self._server = host
        self._port = port

        try:
            self._read_response(single_line=True)
            if not self.request_succeeded():
                raise ProtocolError(
                    f"Server could not process request `connect`. Server response: `{self._decoded_response()}`",
                    command="connect",
                    response=self._last_response,
                )
        except ProtocolError:
            self._release()
            raise

        self._state = SessionState.CONNECTED
        self._start_time = datetime.now()
        logger.info("Connected to %s:%s", host, port)

    def login(self, user: str | None = None) -> None:
        """
        Send USER.

        POST-SESSION-02: state == USER_ACCEPTED
        """
        user = self._config.user if user is None else user
        if not user:
            raise ValidationError("Invalid user name")
        self._send_auth(f"USER {user}")
        self._state = SessionState.USER_ACCEPTED

    def password(self, password: str | None = None) -> None:
        """
        Send PASS.

        POST-SESSION-03: state == AUTHENTICATED
        INV-SESSION-04: password is masked in logs and errors
        """
        password = self._config.password if password is None else password
        if not password:
            raise ValidationError("Invalid password")
        self._send_auth(f"PASS {password}")
        self._state = SessionState.AUTHENTICATED
        logger.info("Authenticated on %s", self._server)

    def disconnect(self) -> None:
        """
        Send QUIT and release the transport whatever the outcome.

        INV-SESSION-02: no-op when already disconnected
        """
        if self._transport is None:
            return
        try:
            self._send("QUIT")
        finally:
            self._release()
            logger.info("Disconnected from %s", self._server)

    def _close_quietly(self) -> None:
        """Disconnect, logging instead of raising (INV-SESSION-05)."""
        try:
            self.disconnect()
        except Exception:
            logger.warning("Error while disconnecting from %s", self._server, exc_info=True)

    def _release(self) -> None:
        transport, self._transport = self._transport, None
        self._reader = None
        self._state = SessionState.DISCONNECTED
        self._start_time = None
        if transport is not None:
            try:
                transport.close()
            except OSError:
                logger.debug("Transport close failed", exc_info=True)

    # -------------------------------------------------------------------------
    # Retrieval commands
    # -------------------------------------------------------------------------

    def list(self) -> bytes:
        """Send LIST and return the raw multi-line response."""
        return self._send("LIST", single_line=False)

    def list_ids(self) -> list[int]:
        """
        Return message ids from LIST.

        POST-RETR-01: ids in server order
        """
        return parse_message_ids(self.list())

    def retrieve_raw(self, message_id: int | str) -> bytes:
        """
        Send RETR and return the raw multi-line response.

        ERRORS:
        - VALIDATION_FAILED: invalid id
        - NOT_CONNECTED: session disconnected
        - RETRIEVE_FAILED: RETR status or transport failure
        """
        message_id = validate_message_id(message_id)
        self._require_connection()
        try:
            return self._send(f"RETR {message_id}", single_line=False)
        except ProtocolError as e:
            raise RetrievalError(
                f"Could not retrieve message {message_id}: {e}", message_id=message_id
            ) from e

    def retrieve(self, message_id: int | str, apply_filter: bool = True) -> Message:
        """
        Retrieve, decode and optionally filter one message.

        POST-RETR-02: returned Message has its id set
        POST-RETR-03: with apply_filter, only accepted messages are returned

        ERRORS:
        - VALIDATION_FAILED, RETRIEVE_FAILED, PARSE_FAILED
        - FILTER_MISSING: apply_filter without a filter chain
        - FILTERED_OUT: rejected by the filter chain
        """
        message_id = validate_message_id(message_id)
        message = self.decode(message_id, self.retrieve_raw(message_id))

        if apply_filter:
            self.apply_filter(message)
        return message

    @staticmethod
    def decode(message_id: int, raw: bytes) -> Message:
        """Decode a raw RETR response and assign its id."""
        return dataclasses.replace(decode_message(raw), id=message_id)

    def apply_filter(self, message: Message, chain: FilterChain | None = None) -> None:
        """Raise unless the filter chain accepts message."""
        chain = self.filter if chain is None else chain
        if chain is None:
            raise FilterMissingError("Invalid messages filter: no filter chain configured")
        if not chain.evaluate(message):
            raise FilteredOutError(
                f"Message {message.id} did not pass the filter", message_id=message.id
            )

    def delete(self, message_id: int | str) -> None:
        """Mark a message for deletion with DELE."""
        message_id = validate_message_id(message_id)
        self._send(f"DELE {message_id}")
        logger.info("Marked message %s for deletion", message_id)

    def fetch_all(self, apply_filter: bool = True) -> dict[str, list]:
        """Retrieve every listed message, bucketed by outcome."""
        return BatchRetriever(self).fetch_all(apply_filter=apply_filter)

    # -------------------------------------------------------------------------
    # Request/response plumbing
    # -------------------------------------------------------------------------

    def request_succeeded(self) -> bool:
        """INV-SESSION-03: True iff the last response starts with +OK."""
        return self.last_response[:3] == STATUS_OK

    def _require_connection(self) -> Transport:
        """Ensure connected, raise NotConnectedError if not."""
        if self._transport is None:
            raise NotConnectedError("Not connected to mail server")
        return self._transport

    def _send_auth(self, command: str) -> None:
        try:
            self._send(command)
        except NotConnectedError:
            raise
        except ProtocolError as e:
            raise AuthFailedError(
                f"Authentication failed: {e}", command=e.command, response=e.response
            ) from e

    def _send(self, command: str, single_line: bool = True) -> bytes:
        """
        Send one command and read its response.

        ERRORS:
        - NOT_CONNECTED: session disconnected
        - VALIDATION_FAILED: empty command
        - PROTOCOL_ERROR: write failed or status not +OK
        """
        transport = self._require_connection()
        if not command:
            raise ValidationError("Empty request to the server")

        shown = _mask(command)
        logger.debug("Sending %s", shown)
        try:
            transport.write((command + LINE_END).encode("utf-8"))
        except OSError as e:
            self._release()
            raise ProtocolError(f"Could not send request `{shown}`: {e}", command=shown) from e

        self._read_response(single_line)
        if not self.request_succeeded():
            raise ProtocolError(
                f"Server could not process request `{shown}`. Server response: `{self._decoded_response()}`",
                command=shown,
                response=self._last_response,
            )
        return self._last_response

    def _read_response(self, single_line: bool) -> bytes:
        assert self._reader is not None
        self._last_response = None
        try:
            self._last_response = self._reader.read(single_line)
        except ConnectionClosedError:
            logger.warning("Connection to %s closed by server", self._server)
            self._release()
            raise
        except ProtocolError:
            # Part of the response may still be buffered; the stream is misaligned
            logger.warning("Unreadable response from %s, dropping connection", self._server)
            self._release()
            raise
        return self._last_response

    def _decoded_response(self) -> str:
        return (self._last_response or b"").decode("utf-8", errors="replace").rstrip("\r\n")
