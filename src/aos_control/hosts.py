from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

from aos_control.errors import NoTargetHost

log = logging.getLogger(__name__)


class ActiveHostSource(Protocol):
    def get_active_host(self) -> str | None: ...


def normalize_host(host: str) -> str:
    return host.strip()


def dedupe_hosts(hosts: Iterable[str]) -> list[str]:
    """Drop blanks and case-insensitive duplicates, keeping first occurrences in order."""
    resolved: list[str] = []
    seen: set[str] = set()
    for raw in hosts:
        host = normalize_host(raw)
        if not host or host.casefold() in seen:
            continue
        seen.add(host.casefold())
        resolved.append(host)
    return resolved


def resolve_hosts(explicit: Iterable[str] | None, store: ActiveHostSource) -> list[str]:
    """Target hosts for one invocation.

    Explicit hosts win outright; the stored default is only read when none
    are given.
    """
    hosts = dedupe_hosts(explicit or [])
    if hosts:
        return hosts

    default = normalize_host(store.get_active_host() or "")
    if not default:
        raise NoTargetHost()
    log.info("No hosts given, using active computer name %s", default)
    return [default]
