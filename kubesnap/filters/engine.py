"""Filter engine: pure include/exclude predicate evaluation.

A Filter is an ordered tuple of Predicates.  Evaluation rules:

* predicates are evaluated left to right and any matching *exclude*
  predicate rejects immediately, so exclusion always wins over inclusion;
* *include* predicates on the same field are OR'd, include predicates on
  different fields are AND'd;
* a field with no include predicates does not constrain the result;
* a descriptor that does not carry a field (``None``) is neither matched by
  exclude predicates nor rejected by include predicates on that field.  A
  cluster-scoped object has no namespace, a resource type has no name.

The engine does no I/O and depends on nothing but the descriptor, so it is
shared by the collection engine, the emulator's label selector and anyone
re-filtering an existing snapshot.
"""

from __future__ import annotations

import dataclasses
import fnmatch
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from kubesnap.models.resources import CollectedObject, ResourceType


class FilterSyntaxError(ValueError):
    """Raised when a predicate or selector string cannot be parsed."""


class Field(StrEnum):
    NAMESPACE = "namespace"
    GROUP = "group"
    KIND = "kind"
    NAME = "name"
    LABEL = "label"


class MatchMode(StrEnum):
    EXACT = "exact"
    REGEX = "regex"
    GLOB = "glob"


class Polarity(StrEnum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


_TYPE_FIELDS = frozenset({Field.GROUP, Field.KIND})
_NAMESPACE_FIELDS = frozenset({Field.NAMESPACE})

_OPERATORS = {"=": MatchMode.EXACT, "~": MatchMode.REGEX, "*=": MatchMode.GLOB}

_RE_PREDICATE = re.compile(
    r"^(?:(?P<polarity>include|exclude):)?"
    r"(?P<field>namespace|group|kind|name|label)"
    r"(?P<op>\*=|~|=)"
    r"(?P<pattern>.*)$"
)


def match_value(value: str, pattern: str, mode: MatchMode, compiled: re.Pattern[str] | None = None) -> bool:
    """Match one string against a pattern in the given mode.

    Regex patterns are searched, not anchored; use ``^...$`` for a full match.
    """
    if mode == MatchMode.EXACT:
        return value == pattern
    if mode == MatchMode.GLOB:
        return fnmatch.fnmatchcase(value, pattern)
    regex = compiled or re.compile(pattern)
    return regex.search(value) is not None


def label_matches(
    labels: Mapping[str, str],
    key: str,
    value_pattern: str | None,
    mode: MatchMode = MatchMode.EXACT,
    compiled: re.Pattern[str] | None = None,
) -> bool:
    """Label predicate semantics, shared with the emulator's label selector.

    With ``value_pattern=None`` the label only has to be present.
    """
    if key not in labels:
        return False
    if value_pattern is None:
        return True
    return match_value(str(labels[key]), value_pattern, mode, compiled)


@dataclass(frozen=True)
class ObjectDescriptor:
    """What the filter engine sees of a resource.  ``None`` means "not applicable"."""

    group: str | None = None
    kind: str | None = None
    namespace: str | None = None
    name: str | None = None
    labels: Mapping[str, str] | None = None

    @classmethod
    def for_type(cls, resource_type: ResourceType) -> ObjectDescriptor:
        return cls(group=resource_type.group, kind=resource_type.kind)

    @classmethod
    def for_document(cls, resource_type: ResourceType, document: Mapping[str, Any]) -> ObjectDescriptor:
        metadata = document.get("metadata") or {}
        return cls(
            group=resource_type.group,
            kind=resource_type.kind,
            namespace=metadata.get("namespace") or None,
            name=metadata.get("name") or None,
            labels=dict(metadata.get("labels") or {}),
        )

    @classmethod
    def for_object(cls, obj: CollectedObject) -> ObjectDescriptor:
        return cls(
            group=obj.resource_type.group,
            kind=obj.resource_type.kind,
            namespace=obj.namespace,
            name=obj.name,
            labels=obj.labels,
        )


@dataclass(frozen=True)
class Predicate:
    """A single include/exclude rule over one descriptor field.

    Label predicates use ``key=value`` as their pattern, where the value part
    is matched with the predicate's mode, or a bare ``key`` meaning "label
    present".
    """

    field: Field
    pattern: str
    mode: MatchMode = MatchMode.EXACT
    polarity: Polarity = Polarity.INCLUDE
    _regex: re.Pattern[str] | None = dataclasses.field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.mode != MatchMode.REGEX:
            return
        _, value = self._label_parts() if self.field == Field.LABEL else (None, self.pattern)
        if value is None:
            return
        try:
            object.__setattr__(self, "_regex", re.compile(value))
        except re.error as exc:
            raise FilterSyntaxError(f"Invalid regex in predicate {self}: {exc}") from exc

    @classmethod
    def parse(cls, text: str) -> Predicate:
        """Parse ``[include:|exclude:]<field><op><pattern>``.

        Operators: ``=`` exact, ``~`` regex, ``*=`` glob.  Examples:
        ``exclude:namespace=kube-system``, ``kind~^(Pod|Node)$``,
        ``include:name*=web-*``, ``label=app=web``.
        """
        match = _RE_PREDICATE.match(text.strip())
        if match is None:
            raise FilterSyntaxError(f"Invalid filter predicate: {text!r}")
        pattern = match.group("pattern")
        field_ = Field(match.group("field"))
        if field_ == Field.LABEL and not pattern.partition("=")[0]:
            raise FilterSyntaxError(f"Label predicate needs a key: {text!r}")
        return cls(
            field=field_,
            pattern=pattern,
            mode=_OPERATORS[match.group("op")],
            polarity=Polarity(match.group("polarity") or Polarity.INCLUDE),
        )

    def _label_parts(self) -> tuple[str, str | None]:
        key, sep, value = self.pattern.partition("=")
        return key, (value if sep else None)

    def matches(self, descriptor: ObjectDescriptor) -> bool | None:
        """True/False when the descriptor carries the field, None when it does not."""
        if self.field == Field.LABEL:
            if descriptor.labels is None:
                return None
            key, value = self._label_parts()
            return label_matches(descriptor.labels, key, value, self.mode, self._regex)

        value = getattr(descriptor, self.field.value)
        if value is None:
            return None
        return match_value(value, self.pattern, self.mode, self._regex)

    def __str__(self) -> str:
        op = {v: k for k, v in _OPERATORS.items()}[self.mode]
        return f"{self.polarity}:{self.field}{op}{self.pattern}"


@dataclass(frozen=True)
class Filter:
    """Ordered predicate set.  The empty filter admits everything."""

    predicates: tuple[Predicate, ...] = ()

    @classmethod
    def parse(cls, specs: Iterable[str]) -> Filter:
        return cls(tuple(Predicate.parse(s) for s in specs if s.strip()))

    def admit(self, descriptor: ObjectDescriptor) -> bool:
        return _evaluate(self.predicates, descriptor, None)

    def admit_type(self, resource_type: ResourceType) -> bool:
        """Type-level check: only group and kind predicates take part."""
        return _evaluate(self.predicates, ObjectDescriptor.for_type(resource_type), _TYPE_FIELDS)

    def admit_namespace(self, namespace: str) -> bool:
        """Namespace-level check used when enumerating namespaces to collect."""
        return _evaluate(self.predicates, ObjectDescriptor(namespace=namespace), _NAMESPACE_FIELDS)

    def __bool__(self) -> bool:
        return bool(self.predicates)


def admit(descriptor: ObjectDescriptor, filter_: Filter) -> bool:
    """Return True if *descriptor* passes *filter_*."""
    return filter_.admit(descriptor)


def _evaluate(
    predicates: tuple[Predicate, ...],
    descriptor: ObjectDescriptor,
    fields: frozenset[Field] | None,
) -> bool:
    # field -> whether any include predicate on it matched so far
    includes: dict[Field, bool] = {}
    for predicate in predicates:
        if fields is not None and predicate.field not in fields:
            continue
        result = predicate.matches(descriptor)
        if result is None:
            continue
        if predicate.polarity == Polarity.EXCLUDE:
            if result:
                return False
            continue
        includes[predicate.field] = includes.get(predicate.field, False) or result
    return all(includes.values())
