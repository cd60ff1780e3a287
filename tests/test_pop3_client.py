"""
POP3 Session Tests
==================

These tests drive POP3Session against the scripted fake server.
TRACEABILITY: Every test cites the contract clause IDs it enforces.
"""

import logging
from unittest.mock import Mock, patch

import pytest

from contracts import (
    AuthFailedError,
    ConnectionClosedError,
    ConnectionFailedError,
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
from pop3_mcp.config import SessionConfig
from pop3_mcp.pop3_client import POP3Session, parse_message_ids, validate_message_id
from tests.helpers import FakePOP3Server, StallingPOP3Server, make_raw


# =============================================================================
# SESSION CONTRACT TESTS
# =============================================================================

class TestSessionContract:
    """Tests for connection lifecycle and authentication."""

    def test_connect_reads_greeting(self, fake_server, session_config):
        """
        Contract: SessionContract
        Enforces: POST-SESSION-01
        """
        pop3 = POP3Session(session_config, transport_factory=fake_server.open)

        pop3.connect()

        assert pop3.connected is True
        assert pop3.state == SessionState.CONNECTED
        assert fake_server.opened == ("pop.example.com", 110, 10.0)
        assert pop3.last_response == b"+OK POP3 server ready\r\n"
        assert fake_server.commands == []

    def test_connect_arguments_override_config(self, fake_server, session_config):
        pop3 = POP3Session(session_config, transport_factory=fake_server.open)

        pop3.connect("other.example.com", 1110, 3)

        assert fake_server.opened == ("other.example.com", 1110, 3)
        assert pop3.get_status().server == "other.example.com"
        assert pop3.get_status().port == 1110

    def test_connect_rejects_empty_host(self, fake_server, session_config):
        """
        Contract: SessionContract
        Enforces: PRE-SESSION-01, ERRORS: VALIDATION_FAILED
        """
        pop3 = POP3Session(session_config, transport_factory=fake_server.open)

        with pytest.raises(ValidationError, match="Invalid host name"):
            pop3.connect(host="")
        assert fake_server.opened is None

        with pytest.raises(ValidationError):
            SessionConfig(host="", user="u", password="p")

    def test_connect_transport_failure(self, session_config):
        """
        Contract: SessionContract
        Enforces: ERRORS: CONNECTION_FAILED
        """
        pop3 = POP3Session(session_config)

        with patch("pop3_mcp.transport.socket.create_connection") as mock_connect:
            mock_connect.side_effect = ConnectionRefusedError(111, "Connection refused")
            with pytest.raises(ConnectionFailedError) as exc_info:
                pop3.connect()

        mock_connect.assert_called_once_with(("pop.example.com", 110), timeout=10.0)
        error = exc_info.value
        assert error.host == "pop.example.com"
        assert error.port == 110
        assert error.errno == 111
        assert "Connection refused" in str(error)
        assert pop3.connected is False

    def test_connect_bad_greeting(self, session_config):
        """
        Contract: SessionContract
        Enforces: ERRORS: PROTOCOL_ERROR
        """
        fake = FakePOP3Server(greeting=b"-ERR server busy\r\n")
        pop3 = POP3Session(session_config, transport_factory=fake.open)

        with pytest.raises(ProtocolError) as exc_info:
            pop3.connect()

        assert exc_info.value.response == b"-ERR server busy\r\n"
        assert "connect" in str(exc_info.value)
        assert pop3.connected is False
        assert pop3.state == SessionState.DISCONNECTED
        assert fake.closed is True

    def test_connect_twice_fails(self, session):
        """
        Contract: SessionContract
        Enforces: INV-SESSION-01
        """
        with pytest.raises(ProtocolError, match="Already connected"):
            session.connect()

    def test_login_and_password(self, fake_server, session_config):
        """
        Contract: SessionContract
        Enforces: POST-SESSION-02, POST-SESSION-03
        """
        pop3 = POP3Session(session_config, transport_factory=fake_server.open)
        pop3.connect()

        pop3.login()
        assert pop3.state == SessionState.USER_ACCEPTED

        pop3.password()
        assert pop3.state == SessionState.AUTHENTICATED
        assert fake_server.commands == ["USER user@example.com", "PASS secret123"]

    def test_login_rejects_empty_user(self, fake_server, session_config):
        """
        Contract: SessionContract
        Enforces: PRE-SESSION-02, ERRORS: VALIDATION_FAILED
        """
        pop3 = POP3Session(session_config, transport_factory=fake_server.open)
        pop3.connect()

        with pytest.raises(ValidationError, match="Invalid user name"):
            pop3.login(user="")
        with pytest.raises(ValidationError, match="Invalid password"):
            pop3.password(password="")
        assert fake_server.commands == []

    def test_login_unknown_user(self, session):
        with pytest.raises(AuthFailedError):
            session.login(user="nobody@example.com")

    def test_password_rejected(self, fake_server, session_config):
        """
        Contract: SessionContract
        Enforces: ERRORS: AUTH_FAILED
        """
        pop3 = POP3Session(session_config, transport_factory=fake_server.open)
        pop3.connect()
        pop3.login()

        with pytest.raises(AuthFailedError) as exc_info:
            pop3.password("wrong-password")

        assert isinstance(exc_info.value, ProtocolError)
        assert exc_info.value.command == "PASS ****"
        assert exc_info.value.response == b"-ERR invalid password\r\n"
        assert "wrong-password" not in str(exc_info.value)
        assert pop3.state == SessionState.USER_ACCEPTED

    def test_password_not_logged(self, fake_server, session_config, caplog):
        """
        Contract: SessionContract
        Enforces: INV-SESSION-04
        Adversarial: True
        """
        caplog.set_level(logging.DEBUG)
        pop3 = POP3Session(session_config, transport_factory=fake_server.open)

        pop3.open()
        pop3.disconnect()

        assert "PASS ****" in caplog.text
        assert "secret123" not in caplog.text
        assert "secret123" not in repr(session_config)

    def test_command_while_disconnected(self, fake_server, session_config):
        """
        Contract: SessionContract
        Enforces: PRE-RETR-01, ERRORS: NOT_CONNECTED
        """
        pop3 = POP3Session(session_config, transport_factory=fake_server.open)

        for call in (pop3.list, pop3.list_ids, pop3.login, pop3.password):
            with pytest.raises(NotConnectedError):
                call()
        with pytest.raises(NotConnectedError):
            pop3.retrieve_raw(1)
        with pytest.raises(NotConnectedError):
            pop3.delete(1)

        assert issubclass(NotConnectedError, ProtocolError)
        assert fake_server.commands == []

    def test_disconnect_idempotent(self, session, fake_server):
        """
        Contract: SessionContract
        Enforces: POST-SESSION-04, INV-SESSION-02
        """
        session.disconnect()

        assert fake_server.commands[-1] == "QUIT"
        assert session.connected is False
        assert session.state == SessionState.DISCONNECTED
        assert fake_server.close_count == 1

        session.disconnect()

        assert fake_server.commands.count("QUIT") == 1
        assert fake_server.close_count == 1

    def test_disconnect_releases_when_quit_fails(self, session, fake_server):
        fake_server.overrides["QUIT"] = b"-ERR cannot quit\r\n"

        with pytest.raises(ProtocolError):
            session.disconnect()

        assert session.connected is False
        assert fake_server.closed is True

    def test_request_succeeded(self, session):
        """
        Contract: SessionContract
        Enforces: INV-SESSION-03
        """
        assert session.request_succeeded() is True

        with pytest.raises(ProtocolError):
            session.delete(99)

        assert session.last_response.startswith(b"-ERR")
        assert session.request_succeeded() is False

    def test_request_succeeded_without_response(self, fake_server, session_config):
        pop3 = POP3Session(session_config, transport_factory=fake_server.open)

        with pytest.raises(ProtocolError, match="empty server response"):
            pop3.request_succeeded()

    def test_context_manager_authenticates(self, fake_server, session_config):
        with POP3Session(session_config, transport_factory=fake_server.open) as pop3:
            assert pop3.state == SessionState.AUTHENTICATED

        assert pop3.state == SessionState.DISCONNECTED
        assert fake_server.commands == ["USER user@example.com", "PASS secret123", "QUIT"]
        assert fake_server.closed is True

    def test_context_manager_failed_auth_releases(self, fake_server, session_config):
        fake_server.password = "changed"

        with pytest.raises(AuthFailedError):
            with POP3Session(session_config, transport_factory=fake_server.open):
                pass

        assert fake_server.commands[-1] == "QUIT"
        assert fake_server.closed is True

    def test_context_manager_suppresses_teardown_error(self, fake_server, session_config):
        """
        Contract: SessionContract
        Enforces: INV-SESSION-05
        Adversarial: True
        """
        with pytest.raises(ValueError, match="caller error"):
            with POP3Session(session_config, transport_factory=fake_server.open):
                fake_server.write = Mock(side_effect=OSError("broken pipe"))
                raise ValueError("caller error")

        assert fake_server.closed is True

    def test_connection_closed_mid_response(self, session, fake_server):
        fake_server.overrides["LIST"] = b"+OK 1 messages\r\n1 120\r\n"

        with pytest.raises(ConnectionClosedError):
            session.list()

        assert session.connected is False
        assert session.state == SessionState.DISCONNECTED
        assert fake_server.closed is True

    def test_status(self, session):
        status = session.get_status()

        assert isinstance(status, SessionStatus)
        assert status.connected is True
        assert status.state == SessionState.AUTHENTICATED
        assert status.server == "pop.example.com"
        assert status.port == 110


# =============================================================================
# RETRIEVAL CONTRACT TESTS
# =============================================================================

class TestRetrievalContract:
    """Tests for LIST, RETR and DELE."""

    def test_list_returns_raw_block(self, session):
        response = session.list()

        assert response.startswith(b"+OK 2 messages\r\n")
        assert response.endswith(b"\r\n.\r\n")

    def test_list_ids_in_server_order(self, session_config):
        """
        Contract: RetrievalContract
        Enforces: POST-RETR-01
        """
        body = make_raw(["From: a"], "x")
        fake = FakePOP3Server({3: body, 1: body, 2: body})

        with POP3Session(session_config, transport_factory=fake.open) as pop3:
            assert pop3.list_ids() == [3, 1, 2]

    def test_parse_message_ids(self):
        response = (
            b"+OK 3 messages (320 octets)\r\n"
            b"1 120\r\n"
            b"garbage line\r\n"
            b"2 200\r\n"
            b"0 10\r\n"
            b".\r\n"
        )

        assert parse_message_ids(response) == [1, 2, 0]
        assert parse_message_ids(b"+OK 0 messages\r\n.\r\n") == []

    def test_retrieve_sets_id(self, session, fake_server):
        """
        Contract: RetrievalContract
        Enforces: POST-RETR-02
        """
        message = session.retrieve(1)

        assert isinstance(message, Message)
        assert message.id == 1
        assert message.headers == {"From": "billing@example.com", "Subject": "invoice 42"}
        assert message.body == b"Invoice body"
        assert "RETR 1" in fake_server.commands

    def test_retrieve_accepts_digit_string(self, session):
        assert session.retrieve("1").id == 1

    def test_retrieve_raw(self, session, sample_messages):
        raw = session.retrieve_raw(1)

        assert raw.startswith(b"+OK")
        assert raw.endswith(sample_messages[1] + b".\r\n")

    @pytest.mark.parametrize("message_id", [0, -1, "0", "abc", "", True, 1.5, None])
    def test_retrieve_invalid_id(self, session, fake_server, message_id):
        """
        Contract: RetrievalContract
        Enforces: PRE-RETR-02, ERRORS: VALIDATION_FAILED
        """
        with pytest.raises(ValidationError, match="Invalid message id"):
            session.retrieve(message_id)

        assert not any(command.startswith("RETR") for command in fake_server.commands)

    def test_validate_message_id(self):
        assert validate_message_id(5) == 5
        assert validate_message_id("12") == 12

    def test_retrieve_server_error(self, session):
        """
        Contract: RetrievalContract
        Enforces: ERRORS: RETRIEVE_FAILED
        """
        with pytest.raises(RetrievalError) as exc_info:
            session.retrieve(99)

        assert exc_info.value.message_id == 99
        assert isinstance(exc_info.value.__cause__, ProtocolError)
        assert "RETR 99" in str(exc_info.value)

    def test_retrieve_filtered_out(self, session):
        """
        Contract: RetrievalContract
        Enforces: POST-RETR-03, ERRORS: FILTERED_OUT
        """
        with pytest.raises(FilteredOutError) as exc_info:
            session.retrieve(2)
        assert exc_info.value.message_id == 2

        message = session.retrieve(2, apply_filter=False)
        assert message.headers["Subject"] == "weekly news"

    def test_retrieve_without_filter_chain(self, fake_server):
        config = SessionConfig(host="pop.example.com", user="user@example.com", password="secret123")

        with POP3Session(config, transport_factory=fake_server.open) as pop3:
            with pytest.raises(FilterMissingError):
                pop3.retrieve(1)
            assert pop3.retrieve(1, apply_filter=False).id == 1

    def test_delete(self, session, fake_server):
        session.delete(2)

        assert fake_server.commands[-1] == "DELE 2"
        assert session.list_ids() == [1]

    def test_delete_invalid_id(self, session, fake_server):
        with pytest.raises(ValidationError):
            session.delete(0)
        assert not any(command.startswith("DELE") for command in fake_server.commands)

    def test_delete_unknown_message(self, session):
        with pytest.raises(ProtocolError) as exc_info:
            session.delete(99)

        assert exc_info.value.command == "DELE 99"
        assert "no such message" in str(exc_info.value)

    @pytest.mark.parametrize(
        "error",
        [TimeoutError("timed out"), ProtocolError("Response line too long")],
        ids=["timeout", "overlong-line"],
    )
    def test_read_failure_drops_connection(self, session_config, sample_messages, error):
        """
        Contract: RetrievalContract
        Enforces: INV-RETR-06, ERRORS: RETRIEVE_FAILED
        Adversarial: True
        """
        stalling = StallingPOP3Server(sample_messages, stall_command="RETR 1", error=error)
        pop3 = POP3Session(session_config, transport_factory=stalling.open)
        pop3.open()

        with pytest.raises(RetrievalError) as exc_info:
            pop3.retrieve(1, apply_filter=False)

        assert exc_info.value.message_id == 1
        assert pop3.connected is False
        assert pop3.state == SessionState.DISCONNECTED
        assert stalling.closed is True

        with pytest.raises(NotConnectedError):
            pop3.retrieve(2, apply_filter=False)
        assert stalling.commands[-1] == "RETR 1"

    def test_write_failure_drops_connection(self, session, fake_server):
        fake_server.write = Mock(side_effect=BrokenPipeError("broken pipe"))

        with pytest.raises(ProtocolError, match="Could not send request `LIST`"):
            session.list()

        assert session.connected is False
        assert fake_server.closed is True
