"""Watch replay over a static snapshot.

A snapshot has no history, so a watch is a finite-then-idle event source:
one ``ADDED`` event per stored object that matches the subscription, then
silence.  The stream stays open until the client disconnects (Starlette
cancels the generator), ``timeoutSeconds`` elapses, or the emulator's idle
timeout is reached.  No other event type is ever produced.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Iterable
from dataclasses import dataclass
from typing import Any

import structlog

from kubesnap.emulator.schemas import bad_request, resource_version, watch_event
from kubesnap.models.resources import ResourceType
from kubesnap.observability.metrics import watch_streams_active

_log = structlog.get_logger(component="emulator.watch")


def parse_cursor(value: str | None) -> int | None:
    """Watch cursor from a ``resourceVersion`` query value.

    Empty means "from the beginning".  Non-numeric values are rejected since
    they cannot be compared with stored versions.
    """
    if value is None or value == "":
        return None
    try:
        cursor = int(value)
    except ValueError:
        raise bad_request(f"invalid resourceVersion {value!r}") from None
    if cursor < 0:
        raise bad_request(f"invalid resourceVersion {value!r}")
    return cursor


@dataclass(frozen=True)
class WatchSubscription:
    context: str
    resource_type: ResourceType
    namespace: str | None = None
    cursor: int | None = None

    def admits(self, document: dict[str, Any]) -> bool:
        """Objects not newer than a numeric cursor were already seen by the client."""
        if self.cursor is None:
            return True
        version = resource_version(document)
        return version is None or version > self.cursor

    async def replay(
        self,
        documents: Iterable[dict[str, Any]],
        idle_timeout: float,
        as_table: bool = False,
    ) -> AsyncGenerator[bytes, None]:
        """Yield the ADDED events, then idle for *idle_timeout* seconds."""
        watch_streams_active.inc()
        sent = 0
        try:
            for document in documents:
                if self.admits(document):
                    sent += 1
                    yield watch_event(document, as_table)
            _log.debug(
                "watch_replayed",
                context=self.context,
                resource_type=str(self.resource_type),
                namespace=self.namespace,
                events=sent,
            )
            await asyncio.sleep(idle_timeout)
        finally:
            watch_streams_active.dec()
