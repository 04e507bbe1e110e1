"""Secret redaction applied to every object and log before it is stored.

Two rules, both driven by an explicit ``SecretSet``:

* the value under any mapping key whose name matches a secret key
  (case-insensitive) is replaced by the placeholder;
* every occurrence of a secret value inside any string is replaced by the
  placeholder.

Redaction never changes structure: keys, nesting and list lengths survive,
the input is left untouched, and running it twice gives the same result as
running it once.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

_log = structlog.get_logger(component="snapshot.redaction")

REDACTED = "***"


@dataclass(frozen=True)
class SecretSet:
    """Secret key names and literal secret values.

    Values that could match inside the placeholder itself are dropped so
    redaction stays idempotent.  Longer values are replaced first.
    """

    keys: frozenset[str] = field(default_factory=frozenset)
    values: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "keys", frozenset(k.lower() for k in self.keys if k))
        usable = {v for v in self.values if v and v not in REDACTED}
        object.__setattr__(self, "values", tuple(sorted(usable, key=lambda v: (-len(v), v))))

    @classmethod
    def from_env(
        cls,
        keys: Iterable[str] = (),
        env_names: Iterable[str] = (),
        environ: Mapping[str, str] | None = None,
    ) -> SecretSet:
        """Build a set whose values are read from the named environment variables.

        Unset or empty variables are skipped.
        """
        env = os.environ if environ is None else environ
        values = []
        for name in env_names:
            value = env.get(name, "")
            if value:
                values.append(value)
            else:
                _log.warning("secret_env_unset", variable=name)
        return cls(keys=frozenset(keys), values=tuple(values))

    def is_secret_key(self, key: str) -> bool:
        return key.lower() in self.keys

    def __bool__(self) -> bool:
        return bool(self.keys or self.values)


def redact_text(text: str, secrets: SecretSet) -> str:
    # Repeat until stable: a replacement can splice a new occurrence together.
    changed = True
    while changed:
        changed = False
        for value in secrets.values:
            if value in text:
                text = text.replace(value, REDACTED)
                changed = True
    return text


def _mask(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _mask(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_mask(v) for v in value]
    if value is None:
        return None
    return REDACTED


def redact(document: Any, secrets: SecretSet) -> Any:
    """Return a redacted copy of *document*."""
    if not secrets:
        return document
    if isinstance(document, Mapping):
        return {
            key: _mask(value) if isinstance(key, str) and secrets.is_secret_key(key) else redact(value, secrets)
            for key, value in document.items()
        }
    if isinstance(document, list):
        return [redact(item, secrets) for item in document]
    if isinstance(document, str):
        return redact_text(document, secrets)
    return document
