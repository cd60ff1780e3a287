"""Shared fixtures: fake POP3 server, filter chain and session configuration."""

import pytest

from pop3_mcp.config import SessionConfig
from pop3_mcp.filters import FilterChain, FilterRule
from pop3_mcp.pop3_client import POP3Session
from tests.helpers import FakePOP3Server, make_raw


@pytest.fixture
def subject_filter() -> FilterChain:
    """Accept messages whose Subject contains "invoice" but not "spam"."""
    return FilterChain((FilterRule(header="Subject", include="invoice", exclude="spam"),))


@pytest.fixture
def sample_messages() -> dict[int, bytes]:
    return {
        1: make_raw(["From: billing@example.com", "Subject: invoice 42"], "Invoice body"),
        2: make_raw(["From: news@example.com", "Subject: weekly news"], "News body"),
    }


@pytest.fixture
def fake_server(sample_messages) -> FakePOP3Server:
    return FakePOP3Server(sample_messages)


@pytest.fixture
def session_config(subject_filter) -> SessionConfig:
    return SessionConfig(
        host="pop.example.com",
        user="user@example.com",
        password="secret123",
        filter=subject_filter,
    )


@pytest.fixture
def session(fake_server, session_config) -> POP3Session:
    """Connected and authenticated session over the fake server."""
    pop3 = POP3Session(session_config, transport_factory=fake_server.open)
    pop3.open()
    yield pop3
    pop3.disconnect()
