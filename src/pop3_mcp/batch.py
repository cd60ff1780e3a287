"""
Batch Retrieval
===============

LIST followed by RETR of every listed id. Each id yields exactly one tagged
result; a failing id never aborts the batch.

INV-BATCH-01: per-id failures are bucketed, not raised
INV-BATCH-02: a missing filter chain aborts before any command is sent
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Iterator, Union

from contracts import (
    FilterMissingError,
    Message,
    Outcome,
    ParseError,
    RetrievalError,
    ValidationError,
)

if TYPE_CHECKING:
    from pop3_mcp.filters import FilterChain
    from pop3_mcp.pop3_client import POP3Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Retrieved:
    outcome: ClassVar[Outcome] = Outcome.SUCCESS
    message: Message

    @property
    def entry(self) -> Message:
        return self.message


@dataclass(frozen=True)
class _Failed:
    message_id: int

    @property
    def entry(self) -> int:
        return self.message_id


@dataclass(frozen=True)
class InvalidId(_Failed):
    outcome: ClassVar[Outcome] = Outcome.INVALID_ID


@dataclass(frozen=True)
class RetrieveFailed(_Failed):
    outcome: ClassVar[Outcome] = Outcome.RETRIEVE_ERROR


@dataclass(frozen=True)
class ParseFailed(_Failed):
    outcome: ClassVar[Outcome] = Outcome.PARSE_ERROR


@dataclass(frozen=True)
class FilteredOut(_Failed):
    outcome: ClassVar[Outcome] = Outcome.FILTERED_OUT


@dataclass(frozen=True)
class UnknownFailure(_Failed):
    outcome: ClassVar[Outcome] = Outcome.UNKNOWN_ERROR


ItemResult = Union[Retrieved, InvalidId, RetrieveFailed, ParseFailed, FilteredOut, UnknownFailure]


def empty_buckets() -> dict[str, list]:
    """POST-BATCH-01: all six buckets, always present."""
    return {outcome.value: [] for outcome in Outcome}


class BatchRetriever:
    """Retrieves every message a session lists."""

    def __init__(self, session: POP3Session, filter_chain: FilterChain | None = None) -> None:
        self._session = session
        self._filter = filter_chain if filter_chain is not None else session.filter

    def fetch_all(self, apply_filter: bool = True) -> dict[str, list]:
        """
        Retrieve all listed messages.

        POST-BATCH-02: every listed id lands in exactly one bucket
        POST-BATCH-03: success holds Messages, other buckets hold ids

        ERRORS:
        - FILTER_MISSING: apply_filter requested without a filter chain
        """
        result = empty_buckets()
        for item in self.iter_results(apply_filter=apply_filter):
            result[item.outcome.value].append(item.entry)

        logger.info(
            "Batch finished: %s",
            ", ".join(f"{name}={len(entries)}" for name, entries in result.items()),
        )
        return result

    def iter_results(self, apply_filter: bool = True) -> Iterator[ItemResult]:
        """Yield one tagged result per listed id, in server order."""
        if apply_filter and self._filter is None:
            raise FilterMissingError("Invalid messages filter: no filter chain configured")

        for message_id in self._session.list_ids():
            try:
                item = self._retrieve_one(message_id, apply_filter)
            except Exception:
                logger.exception("Unexpected error retrieving message %s", message_id)
                item = UnknownFailure(message_id)
            if not isinstance(item, Retrieved):
                logger.warning("Message %s: %s", message_id, item.outcome.value)
            yield item

    def _retrieve_one(self, message_id: int, apply_filter: bool) -> ItemResult:
        try:
            raw = self._session.retrieve_raw(message_id)
        except ValidationError:
            return InvalidId(message_id)
        except RetrievalError:
            return RetrieveFailed(message_id)

        try:
            message = self._session.decode(message_id, raw)
        except ParseError:
            return ParseFailed(message_id)

        if apply_filter and not self._filter.evaluate(message):
            return FilteredOut(message_id)

        return Retrieved(message)
