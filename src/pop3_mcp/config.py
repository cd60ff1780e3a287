"""
Session Configuration
=====================

Typed session configuration and credential retrieval. In production the
credentials come from biosecret; tests build SessionConfig directly.

INV-SESSION-04: Credentials held in memory only, never written to disk or logs.
"""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass, field

from contracts import (
    BiosecretDeniedError,
    BiosecretNotFoundError,
    ValidationError,
)
from pop3_mcp.filters import FilterChain

DEFAULT_PORT = 110
DEFAULT_CONNECTION_TIMEOUT = 10.0


@dataclass(frozen=True)
class SessionConfig:
    """POP3 session settings, validated on construction."""

    host: str
    user: str
    password: str = field(repr=False)
    port: int = DEFAULT_PORT
    connection_timeout: float = DEFAULT_CONNECTION_TIMEOUT
    filter: FilterChain | None = None

    def __post_init__(self) -> None:
        if not self.host:
            raise ValidationError("Invalid host name")
        if not 0 < self.port < 65536:
            raise ValidationError(f"Invalid port: {self.port}")
        if self.connection_timeout <= 0:
            raise ValidationError(f"Invalid connection timeout: {self.connection_timeout}")


def retrieve_session_config(account_id: str, filter: FilterChain | None = None) -> SessionConfig:
    """
    Retrieve session settings via biosecret CLI.

    PRE: biosecret CLI is available in PATH
    PRE: User has stored credentials under key "pop3-mcp/{account_id}"

    POST: Returns SessionConfig on success

    ERRORS:
    - BiosecretDeniedError: User cancelled biometric prompt
    - BiosecretNotFoundError: No credentials under expected key
    - ValidationError: Stored settings are invalid
    """
    try:
        result = subprocess.run(
            ["biosecret", "get", f"pop3-mcp/{account_id}"],
            capture_output=True,
            text=True,
            timeout=30,
        )

        if result.returncode != 0:
            stderr = result.stderr.lower() if result.stderr else ""
            if "cancel" in stderr or "denied" in stderr:
                raise BiosecretDeniedError("User cancelled biometric authentication")
            raise BiosecretNotFoundError(f"No credentials found for {account_id}")

        data = json.loads(result.stdout)
        return SessionConfig(
            host=data["server"],
            user=data["username"],
            password=data["password"],
            port=int(data.get("port", DEFAULT_PORT)),
            connection_timeout=float(
                data.get("connection_timeout", DEFAULT_CONNECTION_TIMEOUT)
            ),
            filter=filter,
        )
    except subprocess.TimeoutExpired as e:
        raise BiosecretDeniedError("Biometric authentication timed out") from e
    except (json.JSONDecodeError, KeyError) as e:
        raise BiosecretNotFoundError("Invalid credential format") from e
    except FileNotFoundError as e:
        raise BiosecretNotFoundError("biosecret CLI not found in PATH") from e
