"""
POP3 Retrieval Client Contract
==============================

Behavioral contracts for the POP3 session engine, message decoder,
filter chain and batch retriever.

Implementation SHALL perform ONLY declared behaviors.

CONTRACT REFERENCE:
- PRE/POST/INV/ERRORS clauses are mandatory for every public interface
- Mocks and fakes in tests derive their behavior from these clauses
- Every test cites the clause IDs it enforces (see TEST_CASES)

AUTHORITY: This file is the SINGLE authoritative source for client behavior.
"""

from dataclasses import dataclass
from enum import Enum, auto
from types import MappingProxyType
from typing import Mapping, Protocol, runtime_checkable


# =============================================================================
# DOMAIN TYPES
# =============================================================================

class SessionState(Enum):
    """Logical state of a POP3 session."""
    DISCONNECTED = auto()
    CONNECTED = auto()
    USER_ACCEPTED = auto()
    AUTHENTICATED = auto()


class Outcome(Enum):
    """Per-message outcome buckets of a batch retrieval."""
    SUCCESS = "success"
    INVALID_ID = "invalid_id"
    RETRIEVE_ERROR = "retrieve_error"
    PARSE_ERROR = "parse_error"
    FILTERED_OUT = "filtered_out"
    UNKNOWN_ERROR = "unknown_error"


@dataclass(frozen=True)
class Message:
    """
    Decoded message retrieved with RETR.

    headers maps header names (case as received) to decoded values. It is
    a read-only copy of the mapping passed in.
    body holds the Base64-decoded payload.
    """
    raw_data: bytes
    headers: Mapping[str, str]
    body: bytes
    id: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


@dataclass(frozen=True)
class SessionStatus:
    """Current session state."""
    connected: bool
    state: SessionState
    server: str
    port: int
    uptime_seconds: int


# =============================================================================
# ERROR TYPES
# =============================================================================

class POP3MCPError(Exception):
    """Base error for all POP3 client operations."""
    code: str = "POP3_ERROR"


class BiosecretDeniedError(POP3MCPError):
    """
    ERRORS-CONFIG-01: User cancelled biometric prompt.

    RECOVERY: Fatal. Process must exit.
    """
    code = "BIOSECRET_DENIED"


class BiosecretNotFoundError(POP3MCPError):
    """
    ERRORS-CONFIG-02: No credentials stored under expected keychain key.

    RECOVERY: Fatal. User must store credentials via biosecret before retry.
    """
    code = "BIOSECRET_NOT_FOUND"


class ValidationError(POP3MCPError):
    """
    ERRORS-INPUT-01: Malformed input (empty host/user/password, non-positive
    message id, invalid filter rule, invalid configuration).

    RECOVERY: Caller must correct the input.
    """
    code = "VALIDATION_FAILED"


class ConnectionFailedError(POP3MCPError):
    """
    ERRORS-SESSION-01: Transport could not be established.

    Carries host, port and the underlying error number/message.
    RECOVERY: Check network connectivity and retry.
    """
    code = "CONNECTION_FAILED"

    def __init__(
        self,
        message: str,
        *,
        host: str = "",
        port: int = 0,
        errno: int | None = None,
        reason: str = "",
    ) -> None:
        super().__init__(message)
        self.host = host
        self.port = port
        self.errno = errno
        self.reason = reason


class ProtocolError(POP3MCPError):
    """
    ERRORS-SESSION-02: Server returned a non-+OK status, or a response was
    empty, malformed or missing.

    Carries the command (password masked) and the raw response.
    """
    code = "PROTOCOL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        command: str | None = None,
        response: bytes | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.response = response


class NotConnectedError(ProtocolError):
    """
    ERRORS-SESSION-03: Command issued while the session is disconnected.

    RECOVERY: Caller must connect first.
    """
    code = "NOT_CONNECTED"


class ConnectionClosedError(ProtocolError):
    """
    ERRORS-SESSION-04: Stream closed before a complete response was read.

    RECOVERY: Session is disconnected; caller must reconnect.
    """
    code = "CONNECTION_CLOSED"


class AuthFailedError(ProtocolError):
    """
    ERRORS-SESSION-05: USER or PASS rejected by the server.

    RECOVERY: Fatal for the session. Credentials must be updated.
    """
    code = "AUTH_FAILED"


class RetrievalError(POP3MCPError):
    """
    ERRORS-RETR-01: RETR command failed (status or transport).

    RECOVERY: Per message. Batch retrieval buckets it as retrieve_error.
    """
    code = "RETRIEVE_FAILED"

    def __init__(self, message: str, *, message_id: int | None = None) -> None:
        super().__init__(message)
        self.message_id = message_id


class ParseError(POP3MCPError):
    """
    ERRORS-RETR-02: Retrieved data could not be decoded into a Message.

    RECOVERY: Per message. Batch retrieval buckets it as parse_error.
    """
    code = "PARSE_FAILED"


class FilteredOutError(POP3MCPError):
    """
    ERRORS-RETR-03: Message rejected by the configured filter chain.

    RECOVERY: Per message. Batch retrieval buckets it as filtered_out.
    """
    code = "FILTERED_OUT"

    def __init__(self, message: str, *, message_id: int | None = None) -> None:
        super().__init__(message)
        self.message_id = message_id


class FilterMissingError(POP3MCPError):
    """
    ERRORS-BATCH-01: Filtering requested but no filter chain configured.

    RECOVERY: Fatal for the batch. Configuration error, never bucketed.
    """
    code = "FILTER_MISSING"


# =============================================================================
# SESSION CONTRACT
# =============================================================================

@runtime_checkable
class SessionContract(Protocol):
    """
    POP3 session lifecycle.

    SEQUENCE:
    1. connect: transport opened, greeting read
    2. login: USER accepted
    3. password: PASS accepted
    4. retrieval commands
    5. disconnect: QUIT sent, transport released

    PRE-SESSION-01: host is a non-empty string
    PRE-SESSION-02: user and password are non-empty strings

    POST-SESSION-01: After connect, state == CONNECTED and greeting is +OK
    POST-SESSION-02: After login, state == USER_ACCEPTED
    POST-SESSION-03: After password, state == AUTHENTICATED
    POST-SESSION-04: After disconnect, state == DISCONNECTED and no transport

    INV-SESSION-01 (Single Transport): A session owns at most one transport
    INV-SESSION-02 (Idempotent Release): disconnect on a disconnected
                    session is a no-op
    INV-SESSION-03 (Status Check): a request succeeded iff the response's
                    first three bytes are +OK
    INV-SESSION-04 (Credential Isolation): password never logged nor
                    included in error messages
    INV-SESSION-05 (Teardown Safety): errors during scoped teardown never
                    mask the caller's error

    ERRORS:
    - VALIDATION_FAILED: empty host, user or password
    - CONNECTION_FAILED: transport could not be established
    - PROTOCOL_ERROR: greeting or status not +OK
    - NOT_CONNECTED: command issued while disconnected
    - AUTH_FAILED: USER or PASS rejected
    """

    def connect(
        self,
        host: str | None = None,
        port: int | None = None,
        timeout: float | None = None,
    ) -> None:
        ...

    def login(self, user: str | None = None) -> None:
        ...

    def password(self, password: str | None = None) -> None:
        ...

    def disconnect(self) -> None:
        ...


# =============================================================================
# RETRIEVAL CONTRACT
# =============================================================================

@runtime_checkable
class RetrievalContract(Protocol):
    """
    Listing, retrieval and deletion of single messages.

    PRE-RETR-01: Session connected
    PRE-RETR-02: message id is a positive, non-zero integer

    POST-RETR-01: list_ids returns ids in server order
    POST-RETR-02: retrieve returns a Message with id set
    POST-RETR-03: retrieve with apply_filter returns only messages accepted
                  by the filter chain

    INV-RETR-01 (Response Framing): multi-line responses end exactly at a
                line consisting solely of "."
    INV-RETR-02 (Early Error): a line starting with "-ERR " always ends
                response reading
    INV-RETR-03 (Header Folding): a folded header decodes to the same value
                as its unfolded equivalent
    INV-RETR-04 (Encoded Words): only UTF-8/Base64 encoded words are
                decoded; other values pass through unchanged
    INV-RETR-05 (Body Encoding): the body is always Base64-decoded
    INV-RETR-06 (Stream Alignment): a response that cannot be read in full
                disconnects the session, so no later command reads its
                leftover lines

    ERRORS:
    - VALIDATION_FAILED: invalid message id
    - RETRIEVE_FAILED: RETR status or transport failure
    - PARSE_FAILED: message could not be decoded
    - FILTERED_OUT: message rejected by the filter chain
    - FILTER_MISSING: apply_filter requested without a filter chain
    """

    def list_ids(self) -> list[int]:
        ...

    def retrieve(self, message_id: int, apply_filter: bool = True) -> Message:
        ...

    def delete(self, message_id: int) -> None:
        ...


# =============================================================================
# FILTER CONTRACT
# =============================================================================

@runtime_checkable
class FilterContract(Protocol):
    """
    Header-substring filter rules combined by logical AND.

    PRE-FILTER-01: header is non-empty and include or exclude is non-empty

    POST-FILTER-01: include-only rule is true iff the header value contains
                    include
    POST-FILTER-02: exclude-only rule is true iff the header value does not
                    contain exclude
    POST-FILTER-03: an empty chain accepts every message

    INV-FILTER-01 (Absent Header): an absent header is an empty string
    INV-FILTER-02 (Short Circuit): chain evaluation stops at the first
                  rejecting rule
    INV-FILTER-03 (Stateless): rules and chains are immutable

    ERRORS:
    - VALIDATION_FAILED: rule misconfigured
    """

    def evaluate(self, message: Message) -> bool:
        ...


# =============================================================================
# BATCH CONTRACT
# =============================================================================

@runtime_checkable
class BatchContract(Protocol):
    """
    LIST followed by RETR of every listed id.

    PRE-BATCH-01: Session connected and authenticated
    PRE-BATCH-02: If apply_filter, a filter chain is configured

    POST-BATCH-01: Result has exactly the six Outcome bucket names as keys
    POST-BATCH-02: Every listed id lands in exactly one bucket
    POST-BATCH-03: success holds Messages, other buckets hold ids, in
                   server order

    INV-BATCH-01 (Isolation): a failure for one id never aborts the batch
    INV-BATCH-02 (Fatal Config): a missing filter chain aborts before any
                 id is processed

    ERRORS:
    - FILTER_MISSING: apply_filter requested without a filter chain
    """

    def fetch_all(self, apply_filter: bool = True) -> dict[str, list]:
        ...


# =============================================================================
# TEST CASE INDEX (Traceability)
# =============================================================================

TEST_CASES = {
    # Session tests
    "test_connect_reads_greeting": {
        "contract": "SessionContract",
        "enforces": ["POST-SESSION-01"],
    },
    "test_connect_rejects_empty_host": {
        "contract": "SessionContract",
        "enforces": ["PRE-SESSION-01", "ERRORS: VALIDATION_FAILED"],
    },
    "test_connect_transport_failure": {
        "contract": "SessionContract",
        "enforces": ["ERRORS: CONNECTION_FAILED"],
    },
    "test_connect_bad_greeting": {
        "contract": "SessionContract",
        "enforces": ["ERRORS: PROTOCOL_ERROR"],
    },
    "test_login_and_password": {
        "contract": "SessionContract",
        "enforces": ["POST-SESSION-02", "POST-SESSION-03"],
    },
    "test_login_rejects_empty_user": {
        "contract": "SessionContract",
        "enforces": ["PRE-SESSION-02", "ERRORS: VALIDATION_FAILED"],
    },
    "test_password_rejected": {
        "contract": "SessionContract",
        "enforces": ["ERRORS: AUTH_FAILED"],
    },
    "test_password_not_logged": {
        "contract": "SessionContract",
        "enforces": ["INV-SESSION-04"],
        "adversarial": True,
        "description": "Verify the password is absent from logs and errors",
    },
    "test_command_while_disconnected": {
        "contract": "SessionContract",
        "enforces": ["PRE-RETR-01", "ERRORS: NOT_CONNECTED"],
    },
    "test_connect_twice_fails": {
        "contract": "SessionContract",
        "enforces": ["INV-SESSION-01"],
    },
    "test_disconnect_idempotent": {
        "contract": "SessionContract",
        "enforces": ["POST-SESSION-04", "INV-SESSION-02"],
    },
    "test_request_succeeded": {
        "contract": "SessionContract",
        "enforces": ["INV-SESSION-03"],
    },
    "test_context_manager_suppresses_teardown_error": {
        "contract": "SessionContract",
        "enforces": ["INV-SESSION-05"],
        "adversarial": True,
        "description": "Verify a failing QUIT never masks the caller's error",
    },

    # Retrieval tests
    "test_multiline_stops_at_bare_dot": {
        "contract": "RetrievalContract",
        "enforces": ["INV-RETR-01"],
    },
    "test_error_line_terminates": {
        "contract": "RetrievalContract",
        "enforces": ["INV-RETR-02"],
    },
    "test_list_ids_in_server_order": {
        "contract": "RetrievalContract",
        "enforces": ["POST-RETR-01"],
    },
    "test_retrieve_sets_id": {
        "contract": "RetrievalContract",
        "enforces": ["POST-RETR-02"],
    },
    "test_retrieve_invalid_id": {
        "contract": "RetrievalContract",
        "enforces": ["PRE-RETR-02", "ERRORS: VALIDATION_FAILED"],
    },
    "test_retrieve_server_error": {
        "contract": "RetrievalContract",
        "enforces": ["ERRORS: RETRIEVE_FAILED"],
    },
    "test_retrieve_filtered_out": {
        "contract": "RetrievalContract",
        "enforces": ["POST-RETR-03", "ERRORS: FILTERED_OUT"],
    },
    "test_folded_header_matches_unfolded": {
        "contract": "RetrievalContract",
        "enforces": ["INV-RETR-03"],
    },
    "test_encoded_word_decoding": {
        "contract": "RetrievalContract",
        "enforces": ["INV-RETR-04"],
    },
    "test_end_to_end_decode": {
        "contract": "RetrievalContract",
        "enforces": ["INV-RETR-05"],
    },
    "test_malformed_body": {
        "contract": "RetrievalContract",
        "enforces": ["ERRORS: PARSE_FAILED"],
    },
    "test_read_failure_drops_connection": {
        "contract": "RetrievalContract",
        "enforces": ["INV-RETR-06", "ERRORS: RETRIEVE_FAILED"],
        "adversarial": True,
        "description": "Verify no message is returned under another id after a failed read",
    },

    # Filter tests
    "test_include_only": {
        "contract": "FilterContract",
        "enforces": ["POST-FILTER-01"],
    },
    "test_exclude_only": {
        "contract": "FilterContract",
        "enforces": ["POST-FILTER-02"],
    },
    "test_rule_without_include_or_exclude": {
        "contract": "FilterContract",
        "enforces": ["PRE-FILTER-01", "ERRORS: VALIDATION_FAILED"],
    },
    "test_empty_chain_accepts": {
        "contract": "FilterContract",
        "enforces": ["POST-FILTER-03"],
    },
    "test_absent_header_is_empty": {
        "contract": "FilterContract",
        "enforces": ["INV-FILTER-01"],
    },
    "test_chain_short_circuits": {
        "contract": "FilterContract",
        "enforces": ["INV-FILTER-02"],
        "adversarial": True,
        "description": "Verify later rules are never evaluated after a rejection",
    },
    "test_rule_is_immutable": {
        "contract": "FilterContract",
        "enforces": ["INV-FILTER-03"],
    },

    # Batch tests
    "test_fetch_all_buckets": {
        "contract": "BatchContract",
        "enforces": ["PRE-BATCH-01", "POST-BATCH-01", "POST-BATCH-02", "POST-BATCH-03", "INV-BATCH-01"],
    },
    "test_fetch_all_without_filter_chain": {
        "contract": "BatchContract",
        "enforces": ["PRE-BATCH-02", "INV-BATCH-02", "ERRORS: FILTER_MISSING"],
        "adversarial": True,
        "description": "Verify no RETR is sent when the filter chain is missing",
    },
}


# =============================================================================
# COMPLETION PROMISE
# =============================================================================

"""
The client is complete when:

1. SessionContract: connect/login/password/disconnect work for success and
   every error path
2. RetrievalContract: framing, folding, encoded words and Base64 bodies
   decode per clause
3. FilterContract: include/exclude semantics and short-circuiting hold
4. BatchContract: every listed id lands in exactly one bucket, and a missing
   filter chain aborts the batch
5. INV-SESSION-04: no password appears in any log output or error message
"""
