"""Kubernetes label selector parsing and matching.

Supports the equality and set-based grammar accepted by the API server:
``k=v``, ``k==v``, ``k!=v``, ``k``, ``!k``, ``k in (a,b)``, ``k notin (a,b)``,
comma separated and AND'd together.  Value comparison goes through
``label_matches`` so a selector term and an exact label predicate agree.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from kubesnap.filters.engine import FilterSyntaxError, label_matches

_RE_SET = re.compile(r"^(?P<key>[^\s!=(),]+)\s+(?P<op>in|notin)\s*\((?P<values>[^()]*)\)$")
_RE_EQUALITY = re.compile(r"^(?P<key>[^\s!=(),]+)\s*(?P<op>==|!=|=)\s*(?P<value>[^\s!=(),]*)$")
_RE_EXISTS = re.compile(r"^(?P<neg>!?)\s*(?P<key>[^\s!=(),]+)$")


class Operator(StrEnum):
    EQUALS = "="
    NOT_EQUALS = "!="
    IN = "in"
    NOT_IN = "notin"
    EXISTS = "exists"
    DOES_NOT_EXIST = "!"


@dataclass(frozen=True)
class Requirement:
    key: str
    operator: Operator
    values: tuple[str, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == Operator.EXISTS:
            return label_matches(labels, self.key, None)
        if self.operator == Operator.DOES_NOT_EXIST:
            return not label_matches(labels, self.key, None)
        if self.operator == Operator.EQUALS:
            return label_matches(labels, self.key, self.values[0])
        if self.operator == Operator.NOT_EQUALS:
            return not label_matches(labels, self.key, self.values[0])
        found = any(label_matches(labels, self.key, v) for v in self.values)
        return found if self.operator == Operator.IN else not found


@dataclass(frozen=True)
class LabelSelector:
    requirements: tuple[Requirement, ...] = ()

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        return all(r.matches(labels or {}) for r in self.requirements)


def _split_terms(selector: str) -> list[str]:
    """Split on commas that are not inside a parenthesised value set."""
    terms: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in selector:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise FilterSyntaxError(f"Unbalanced parenthesis in selector: {selector!r}")
        if ch == "," and depth == 0:
            terms.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    if depth != 0:
        raise FilterSyntaxError(f"Unbalanced parenthesis in selector: {selector!r}")
    terms.append("".join(current).strip())
    return terms


def _parse_term(term: str) -> Requirement:
    if not term:
        raise FilterSyntaxError("Empty term in label selector")

    match = _RE_SET.match(term)
    if match:
        values = tuple(v.strip() for v in match.group("values").split(",") if v.strip())
        op = Operator.IN if match.group("op") == "in" else Operator.NOT_IN
        return Requirement(match.group("key"), op, values)

    match = _RE_EQUALITY.match(term)
    if match:
        op = Operator.NOT_EQUALS if match.group("op") == "!=" else Operator.EQUALS
        return Requirement(match.group("key"), op, (match.group("value"),))

    match = _RE_EXISTS.match(term)
    if match:
        op = Operator.DOES_NOT_EXIST if match.group("neg") else Operator.EXISTS
        return Requirement(match.group("key"), op)

    raise FilterSyntaxError(f"Invalid label selector term: {term!r}")


def parse_selector(selector: str | None) -> LabelSelector:
    """Parse a ``labelSelector`` query value; empty or None selects everything."""
    if selector is None or not selector.strip():
        return LabelSelector()
    return LabelSelector(tuple(_parse_term(t) for t in _split_terms(selector)))


# Field paths the emulator can answer from stored metadata.
FIELD_PATHS = frozenset({"metadata.name", "metadata.namespace"})


@dataclass(frozen=True)
class FieldRequirement:
    path: str
    value: str
    negate: bool = False

    def matches(self, document: Mapping[str, Any]) -> bool:
        metadata = document.get("metadata") or {}
        actual = str(metadata.get(self.path.partition(".")[2]) or "")
        return (actual != self.value) if self.negate else (actual == self.value)


@dataclass(frozen=True)
class FieldSelector:
    requirements: tuple[FieldRequirement, ...] = ()

    def matches(self, document: Mapping[str, Any]) -> bool:
        return all(r.matches(document) for r in self.requirements)


def parse_field_selector(selector: str | None) -> FieldSelector:
    """Parse a ``fieldSelector`` restricted to ``metadata.name`` and ``metadata.namespace``."""
    if selector is None or not selector.strip():
        return FieldSelector()
    requirements = []
    for term in selector.split(","):
        match = _RE_EQUALITY.match(term.strip())
        if match is None:
            raise FilterSyntaxError(f"Invalid field selector term: {term!r}")
        path = match.group("key")
        if path not in FIELD_PATHS:
            raise FilterSyntaxError(f"Unsupported field selector: {path!r}")
        requirements.append(FieldRequirement(path, match.group("value"), negate=match.group("op") == "!="))
    return FieldSelector(tuple(requirements))
