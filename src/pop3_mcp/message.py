"""
Message Decoder
===============

Turns the raw text of a RETR response into a Message.

Layout of the input:
    +OK <status>\\r\\n          (optional, stripped)
    <header block>\\r\\n
    \\r\\n
    <base64 body>\\r\\n
    .\\r\\n                     (optional, stripped)

INV-RETR-03: folded headers decode to their unfolded value
INV-RETR-04: only =?utf-8?B?...?= encoded words are decoded
INV-RETR-05: the body is always Base64-decoded
"""

from __future__ import annotations

import base64
import binascii
import re

from contracts import Message, ParseError
from pop3_mcp.response_reader import is_terminator

STATUS_OK = b"+OK"
FOLDING_WHITESPACE = (b" ", b"\t")
BLANK_LINES = (b"\r\n", b"\n", b"\r")

ENCODED_WORD_OPEN = re.compile(r"=\?utf-8\?B\?", re.IGNORECASE)
ENCODED_WORD_CLOSE = "?="


def decode_message(raw: bytes, message_id: int | None = None) -> Message:
    """
    Decode a raw RETR response.

    ERRORS:
    - PARSE_FAILED: empty data, no header/body boundary, malformed header,
      bad encoded word or body that is not valid Base64
    """
    if not raw:
        raise ParseError("Invalid message data: empty")

    lines = raw.splitlines(keepends=True)
    if lines and lines[0].startswith(STATUS_OK):
        lines = lines[1:]
    if lines and is_terminator(lines[-1]):
        lines = lines[:-1]

    boundary = _find_boundary(lines)
    headers = parse_headers(lines[:boundary])
    body = decode_body(lines[boundary + 1 :])

    return Message(raw_data=raw, headers=headers, body=body, id=message_id)


def _find_boundary(lines: list[bytes]) -> int:
    """Index of the blank line separating headers from body."""
    for index, line in enumerate(lines):
        if line in BLANK_LINES:
            return index
    raise ParseError("No header/body boundary found")


def unfold_headers(lines: list[bytes]) -> list[bytes]:
    """
    Join continuation lines onto the header they continue.

    A line starting with a space or tab continues the previous header. The
    line break is dropped and the leading whitespace kept.
    """
    fields: list[bytes] = []
    for line in lines:
        content = line.rstrip(b"\r\n")
        if line.startswith(FOLDING_WHITESPACE):
            if not fields:
                raise ParseError("Continuation line without a preceding header")
            fields[-1] += content
        else:
            fields.append(content)
    return fields


def parse_headers(lines: list[bytes]) -> dict[str, str]:
    """Parse a header block. Later occurrences of a name win."""
    fields = unfold_headers(lines)
    if not fields:
        raise ParseError("Empty header block")

    headers: dict[str, str] = {}
    for field in fields:
        name, value = parse_header(field.decode("utf-8", errors="replace"))
        headers[name] = value
    return headers


def parse_header(field: str) -> tuple[str, str]:
    """Split one unfolded header into name and trimmed, decoded value."""
    name, sep, value = field.partition(":")
    if not sep or not name:
        raise ParseError(f"Malformed header line: {field!r}")
    return name, decode_encoded_words(value.strip())


def decode_encoded_words(value: str) -> str:
    """
    Decode UTF-8/Base64 encoded words in a header value.

    Values without a complete =?utf-8?B? ... ?= pair are returned unchanged.
    Whitespace between two adjacent encoded words is dropped.
    """
    parts: list[str] = []
    pos = 0
    decoded_any = False

    while True:
        opening = ENCODED_WORD_OPEN.search(value, pos)
        if opening is None:
            break
        closing = value.find(ENCODED_WORD_CLOSE, opening.end())
        if closing == -1:
            break

        between = value[pos : opening.start()]
        if not (decoded_any and between.isspace()):
            parts.append(between)
        parts.append(_decode_word(value[opening.end() : closing]))
        decoded_any = True
        pos = closing + len(ENCODED_WORD_CLOSE)

    if not decoded_any:
        return value

    parts.append(value[pos:])
    return "".join(parts)


def _decode_word(payload: str) -> str:
    padded = payload + "=" * (-len(payload) % 4)
    try:
        return base64.b64decode(padded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ParseError(f"Invalid encoded word payload: {payload!r}") from e


def decode_body(lines: list[bytes]) -> bytes:
    """
    Base64-decode the body lines.

    Dot-stuffed lines are unstuffed first. Whitespace and line breaks are
    ignored; any other non-alphabet character fails.
    """
    payload = b"".join(line[1:] if line.startswith(b"..") else line for line in lines)
    payload = b"".join(payload.split())
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ParseError("Could not decode message body as Base64") from e
