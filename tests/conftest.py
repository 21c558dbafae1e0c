import asyncio

import pytest

from aos_control.errors import ActionRejected, NotFound, ServiceManagerUnreachable
from aos_control.models import Action, ServiceDescriptor, ServiceStatus, Settings


class FakeBackend:
    """In-memory service manager for a handful of hosts.

    ``services`` maps host -> [(name, display name, status[, failed])]. An
    accepted action moves the service to its pending state; it reaches the
    target after ``steps`` status reads unless the pair is listed in
    ``stuck``. Pairs in ``crash`` land in a failed Stopped state instead of
    Running. Hosts in ``hang`` stop answering once an action was sent to
    them; hosts in ``hang_actions`` never answer an action request.
    """

    def __init__(self, services=None, unreachable=(), reject=(), stuck=(), steps=1, delays=None,
                 crash=(), hang=(), hang_actions=()):
        self.services = {
            host: {entry[0]: [entry[1], entry[2], entry[3] if len(entry) > 3 else False] for entry in entries}
            for host, entries in (services or {}).items()
        }
        self.unreachable = set(unreachable)
        self.reject = set(reject)
        self.stuck = set(stuck)
        self.steps = steps
        self.delays = delays or {}
        self.crash = set(crash)
        self.hang = set(hang)
        self.hang_actions = set(hang_actions)
        self.calls = []
        self.closed = False
        self._pending = {}
        self._acted = set()

    def actions(self):
        return [c for c in self.calls if c[0] == "action"]

    def remote_calls(self):
        return [c for c in self.calls if c[0] != "close"]

    def _descriptor(self, host, name):
        display, status, failed = self.services[host][name]
        return ServiceDescriptor(host=host, service_name=name, display_name=display, status=status, failed=failed)

    async def connect(self, hosts):
        self.calls.append(("connect", tuple(hosts)))
        return {h: "Connection refused" if h in self.unreachable else None for h in hosts}

    async def list_services(self, host):
        self.calls.append(("list", host))
        if host in self.unreachable:
            raise ServiceManagerUnreachable(host, "not connected")
        return [self._descriptor(host, name) for name in self.services.get(host, {})]

    async def query_service(self, host, name):
        self.calls.append(("query", host, name))
        if host in self.unreachable:
            raise ServiceManagerUnreachable(host, "not connected")
        if host in self.hang and host in self._acted:
            await asyncio.sleep(3600)
        if name not in self.services.get(host, {}):
            raise NotFound(host, name)
        key = (host, name)
        if key in self._pending and key not in self.stuck:
            target, remaining = self._pending[key]
            remaining -= 1
            if remaining <= 0:
                entry = self.services[host][name]
                if key in self.crash and target is ServiceStatus.RUNNING:
                    entry[1], entry[2] = ServiceStatus.STOPPED, True
                else:
                    entry[1], entry[2] = target, False
                del self._pending[key]
            else:
                self._pending[key] = (target, remaining)
        return self._descriptor(host, name)

    async def send_action(self, host, name, action):
        self.calls.append(("action", host, name, action))
        self._acted.add(host)
        if host in self.hang_actions:
            await asyncio.sleep(3600)
        if host in self.delays:
            await asyncio.sleep(self.delays[host])
        if (host, name) in self.reject:
            raise ActionRejected(f"{action.value} {name} on {host} rejected: access denied")
        self.services[host][name][1] = action.pending
        self._pending[(host, name)] = (action.target, self.steps)

    async def close(self):
        self.calls.append(("close",))
        self.closed = True


@pytest.fixture
def fake_backend():
    return FakeBackend


@pytest.fixture
def fast_settings():
    return Settings(poll_interval=0, timeout=1.0, max_workers=4)


@pytest.fixture
def profile_paths(tmp_path, monkeypatch):
    user = tmp_path / "user" / "aosctl" / "profile.yaml"
    system = tmp_path / "etc" / "profile.yaml"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "user"))
    monkeypatch.setenv("AOSCTL_SYSTEM_CONFIG", str(system))
    return user, system
