"""Audit event fields filled on create and update.

An entity opts into an event by declaring ``<event>_time`` or ``<event>_date``.
When it does, ``<event>_ip``, ``<event>_agent`` and ``<event>_referer`` are filled
too if declared, from the active request context.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Collection, Iterator, MutableMapping

LOCAL_IP: Final[str] = "127.0.0.1"


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Client information of the request being served."""

    client_ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None


_REQUEST: ContextVar[RequestContext] = ContextVar("permanent_request", default=RequestContext())


def current_request() -> RequestContext:
    return _REQUEST.get()


@contextmanager
def request_context(
    client_ip: str | None = None,
    user_agent: str | None = None,
    referer: str | None = None,
) -> Iterator[RequestContext]:
    """Expose request details to audit filling for the duration of the block."""

    context = RequestContext(client_ip=client_ip, user_agent=user_agent, referer=referer)
    token = _REQUEST.set(context)
    try:
        yield context
    finally:
        _REQUEST.reset(token)


def client_ip() -> str:
    return current_request().client_ip or LOCAL_IP


def now(timestamp: float | None = None) -> datetime:
    if timestamp is None:
        return datetime.now(tz=UTC)
    return datetime.fromtimestamp(timestamp, tz=UTC)


def get_log_event(
    event: str,
    timestamp: int | None = None,
    ip_address: str | None = None,
) -> dict[str, object]:
    """Build the time, date and ip values describing ``event``."""

    event_time = timestamp if timestamp is not None else int(time.time())
    return {
        f"{event}_time": event_time,
        f"{event}_date": now(event_time),
        f"{event}_ip": ip_address or client_ip(),
    }


def fill_log_event(
    data: MutableMapping[str, object],
    event: str,
    fields: Collection[str],
) -> None:
    """Add the audit values of ``event`` to ``data`` for every declared event field."""

    if f"{event}_time" in fields:
        data[f"{event}_time"] = int(time.time())
    elif f"{event}_date" in fields:
        data.setdefault(f"{event}_date", now())
    else:
        # Date or time is mandatory
        return
    request = current_request()
    if f"{event}_ip" in fields:
        data[f"{event}_ip"] = client_ip()
    if f"{event}_agent" in fields:
        data[f"{event}_agent"] = request.user_agent
    if f"{event}_referer" in fields:
        data[f"{event}_referer"] = request.referer
