from __future__ import annotations

import fnmatch
import logging
from collections.abc import Iterable
from typing import Protocol

from aos_control.errors import AmbiguousSelector, NotFound
from aos_control.models import ByNames, ByPattern, ServiceDescriptor, ServiceSelector, ServiceStatus

log = logging.getLogger(__name__)


class ServiceManager(Protocol):
    async def list_services(self, host: str) -> list[ServiceDescriptor]: ...

    async def query_service(self, host: str, service: str) -> ServiceDescriptor: ...


def build_selector(pattern: str | None, names: Iterable[str] | None) -> ServiceSelector:
    """Validate the pattern/names pair once, before any remote work."""
    cleaned: list[str] = []
    for name in names or []:
        name = name.strip()
        if name and name not in cleaned:
            cleaned.append(name)

    if pattern and cleaned:
        raise AmbiguousSelector("Give either a display-name pattern or service names, not both")
    if pattern:
        return ByPattern(pattern)
    if cleaned:
        return ByNames(tuple(cleaned))
    raise AmbiguousSelector("Give a display-name pattern or at least one service name")


def match_display_names(
    descriptors: list[ServiceDescriptor],
    pattern: str,
) -> list[ServiceDescriptor]:
    """Case-insensitive glob match against display names, in listing order."""
    folded = pattern.casefold()
    return [d for d in descriptors if fnmatch.fnmatchcase(d.display_name.casefold(), folded)]


async def locate(manager: ServiceManager, host: str, selector: ServiceSelector) -> list[ServiceDescriptor]:
    if isinstance(selector, ByPattern):
        available = await manager.list_services(host)
        matches = match_display_names(available, selector.pattern)
        log.info(
            "Pattern %r matched %d of %d service(s) on %s: %s",
            selector.pattern, len(matches), len(available), host,
            [d.service_name for d in matches],
        )
        return matches

    descriptors = []
    for name in selector.names:
        try:
            descriptors.append(await manager.query_service(host, name))
        except NotFound:
            log.info("Service %s not found on %s", name, host)
            descriptors.append(ServiceDescriptor(
                host=host, service_name=name, display_name="",
                status=ServiceStatus.UNKNOWN, found=False,
            ))
    return descriptors
