"""Ordered predicate/result rules with first-match and all-match evaluation."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Rule(Generic[T]):
    """A named predicate paired with the value it yields when it matches."""

    name: str
    predicate: Callable[[Any], bool]
    result: T

    def matches(self, subject: Any) -> bool:
        return bool(self.predicate(subject))


def first_match(rules: Iterable[Rule[T]], subject: Any, default: T | None = None):
    """Return ``(rule, result)`` for the first rule matching ``subject``.

    When nothing matches, ``(None, default)`` is returned so callers can always
    unpack the pair.
    """

    for rule in rules:
        if rule.matches(subject):
            return rule, rule.result
    return None, default


def all_matches(rules: Iterable[Rule[T]], subject: Any) -> list[T]:
    """Collect results of every matching rule, in rule order, without duplicates."""

    results: list[T] = []
    for rule in rules:
        if rule.matches(subject) and rule.result not in results:
            results.append(rule.result)
    return results


def pattern(regex: str, flags: int = re.IGNORECASE) -> Callable[[Any], bool]:
    """Predicate that searches ``regex`` in a string subject."""

    compiled = re.compile(regex, flags)

    def _predicate(subject: Any) -> bool:
        return isinstance(subject, str) and compiled.search(subject) is not None

    _predicate.__name__ = f"pattern({regex})"
    return _predicate


def keyword_rules(table: Iterable[tuple[str, T]]) -> tuple[Rule[T], ...]:
    """Build word-boundary pattern rules from ``(regex, label)`` pairs."""

    return tuple(
        Rule(name=str(label), predicate=pattern(rf"\b(?:{regex})\b"), result=label)
        for regex, label in table
    )


__all__ = ["Rule", "first_match", "all_matches", "pattern", "keyword_rules"]
