"""
Message Filters
===============

Header-substring rules combined by logical AND.

INV-FILTER-01: an absent header is an empty string
INV-FILTER-02: chain evaluation stops at the first rejecting rule
INV-FILTER-03: rules and chains are immutable and hold no per-call state
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from contracts import Message, ValidationError


@dataclass(frozen=True)
class FilterRule:
    """
    Accepts messages whose header contains include and does not contain
    exclude. An unset include or exclude is not checked.
    """

    header: str
    include: str | None = None
    exclude: str | None = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """PRE-FILTER-01: header is set and include or exclude is set."""
        if not self.header or not (self.include or self.exclude):
            raise ValidationError("Filter not configured")

    def evaluate(self, message: Message) -> bool:
        self.validate()
        value = message.headers.get(self.header, "")

        include_ok = not self.include or self.include in value
        exclude_ok = not self.exclude or self.exclude not in value

        return include_ok and exclude_ok


@dataclass(frozen=True)
class FilterChain:
    """Ordered rules. An empty chain accepts every message."""

    rules: tuple[FilterRule, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(self.rules))

    @classmethod
    def from_rules(cls, rules: Iterable[dict]) -> FilterChain:
        """Build a chain from {header, include, exclude} mappings."""
        return cls(
            tuple(
                FilterRule(
                    header=rule.get("header", ""),
                    include=rule.get("include"),
                    exclude=rule.get("exclude"),
                )
                for rule in rules
            )
        )

    def evaluate(self, message: Message) -> bool:
        return all(rule.evaluate(message) for rule in self.rules)
