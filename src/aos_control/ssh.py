from __future__ import annotations

import asyncio
import base64
import json
import logging
import shlex
from dataclasses import dataclass, field

import asyncssh

from aos_control.errors import ActionRejected, ConfigError, NotFound, ServiceManagerUnreachable
from aos_control.models import Action, ServiceDescriptor, ServiceStatus, Settings

log = logging.getLogger(__name__)


MAX_CONCURRENT_SESSIONS = 8

# Exit status the status scripts use for "no such service" (same as systemctl)
EXIT_NOT_FOUND = 4


class SystemdDialect:
    name = "systemd"

    ACTIVE_STATES = {
        "active": ServiceStatus.RUNNING,
        "reloading": ServiceStatus.RUNNING,
        "inactive": ServiceStatus.STOPPED,
        "failed": ServiceStatus.STOPPED,
        "activating": ServiceStatus.START_PENDING,
        "deactivating": ServiceStatus.STOP_PENDING,
    }

    @staticmethod
    def _unit(service: str) -> str:
        return service if "." in service else f"{service}.service"

    @staticmethod
    def _strip_suffix(unit: str) -> str:
        return unit[: -len(".service")] if unit.endswith(".service") else unit

    def list_command(self) -> str:
        return "systemctl list-units --type=service --all --no-legend --no-pager --plain"

    def parse_list(self, host: str, output: str) -> list[ServiceDescriptor]:
        services = []
        for line in output.splitlines():
            parts = line.split(None, 4)
            if len(parts) < 4:
                continue
            unit, load, active = parts[0], parts[1], parts[2]
            if load == "not-found":
                continue
            name = self._strip_suffix(unit)
            services.append(ServiceDescriptor(
                host=host,
                service_name=name,
                display_name=parts[4].strip() if len(parts) > 4 else name,
                status=self.ACTIVE_STATES.get(active, ServiceStatus.UNKNOWN),
                failed=active == "failed",
            ))
        return services

    def status_command(self, service: str) -> str:
        return (
            "systemctl show --no-pager --property=Id,Description,LoadState,ActiveState -- "
            + shlex.quote(self._unit(service))
        )

    def parse_status(self, host: str, service: str, output: str) -> ServiceDescriptor:
        props = {}
        for line in output.splitlines():
            key, sep, value = line.partition("=")
            if sep:
                props[key.strip()] = value.strip()
        if props.get("LoadState", "not-found") == "not-found":
            raise NotFound(host, service)
        active = props.get("ActiveState", "")
        return ServiceDescriptor(
            host=host,
            service_name=service,
            display_name=props.get("Description") or service,
            status=self.ACTIVE_STATES.get(active, ServiceStatus.UNKNOWN),
            failed=active == "failed",
        )

    def action_command(self, action: Action, service: str) -> str:
        verb = "start" if action is Action.START else "stop"
        return f"sudo -n systemctl {verb} --no-block -- {shlex.quote(self._unit(service))}"


class WindowsDialect:
    """Windows service control manager, driven through PowerShell over OpenSSH."""

    name = "windows"

    # [int][System.ServiceProcess.ServiceControllerStatus]
    STATUS_CODES = {
        1: ServiceStatus.STOPPED,
        2: ServiceStatus.START_PENDING,
        3: ServiceStatus.STOP_PENDING,
        4: ServiceStatus.RUNNING,
        5: ServiceStatus.START_PENDING,
        6: ServiceStatus.PAUSED,
        7: ServiceStatus.PAUSED,
    }

    SELECT = "Select-Object Name,DisplayName,@{n='Status';e={[int]$_.Status}} | ConvertTo-Json -Compress"

    @staticmethod
    def _literal(value: str) -> str:
        return "'" + value.replace("'", "''") + "'"

    @staticmethod
    def powershell(script: str) -> str:
        # EncodedCommand sidesteps quoting differences between cmd.exe and PowerShell login shells
        encoded = base64.b64encode(script.encode("utf-16-le")).decode("ascii")
        return f"powershell -NoProfile -NonInteractive -EncodedCommand {encoded}"

    def _descriptor(self, host: str, item: dict) -> ServiceDescriptor:
        status = item.get("Status")
        if isinstance(status, str):
            status = next(
                (s for s in ServiceStatus if s.value.casefold() == status.casefold()),
                ServiceStatus.UNKNOWN,
            )
        else:
            status = self.STATUS_CODES.get(status, ServiceStatus.UNKNOWN)
        name = item.get("Name") or ""
        return ServiceDescriptor(
            host=host,
            service_name=name,
            display_name=item.get("DisplayName") or name,
            status=status,
        )

    @staticmethod
    def _load(output: str) -> list[dict]:
        output = output.strip()
        if not output:
            return []
        data = json.loads(output)
        if data is None:
            return []
        items = [data] if isinstance(data, dict) else data
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise ValueError(f"expected service objects, got {type(data).__name__}")
        return items

    def list_command(self) -> str:
        return self.powershell(f"Get-Service -ErrorAction SilentlyContinue | {self.SELECT}")

    def parse_list(self, host: str, output: str) -> list[ServiceDescriptor]:
        return [self._descriptor(host, item) for item in self._load(output)]

    def status_command(self, service: str) -> str:
        return self.powershell(
            "$s = Get-Service -ErrorAction SilentlyContinue | "
            f"Where-Object {{ $_.Name -eq {self._literal(service)} }}; "
            f"if (-not $s) {{ exit {EXIT_NOT_FOUND} }}; "
            f"$s | {self.SELECT}"
        )

    def parse_status(self, host: str, service: str, output: str) -> ServiceDescriptor:
        items = self._load(output)
        if not items:
            raise NotFound(host, service)
        descriptor = self._descriptor(host, items[0])
        # Keep the caller's spelling so outcomes line up with the requested names
        return ServiceDescriptor(
            host=host,
            service_name=service,
            display_name=descriptor.display_name,
            status=descriptor.status,
        )

    def action_command(self, action: Action, service: str) -> str:
        verb = "start" if action is Action.START else "stop"
        return self.powershell(f"sc.exe {verb} {self._literal(service)}; exit $LASTEXITCODE")


DIALECTS = {d.name: d for d in (SystemdDialect(), WindowsDialect())}


@dataclass
class HostSession:
    """One SSH connection plus the slots limiting concurrent commands on it."""

    conn: asyncssh.SSHClientConnection
    slots: asyncio.Semaphore = field(default_factory=lambda: asyncio.Semaphore(MAX_CONCURRENT_SESSIONS))


class SSHBackend:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or Settings()
        self._sessions: dict[str, HostSession] = {}

    def dialect(self, host: str):
        manager = self.settings.for_host(host).service_manager
        try:
            return DIALECTS[manager]
        except KeyError:
            raise ConfigError(f"Unknown service manager {manager!r} for {host}") from None

    def connect_options(self, host: str) -> dict:
        """asyncssh.connect keyword arguments for *host*; ~/.ssh/config is read by asyncssh itself."""
        host_settings = self.settings.for_host(host)
        options = {}
        if not self.settings.strict_host_keys:
            options["known_hosts"] = None
        if host_settings.username:
            options["username"] = host_settings.username
        if host_settings.port:
            options["port"] = host_settings.port
        return options

    async def _open(self, host: str) -> str | None:
        log.info("Connecting to %s", host)
        try:
            conn = await asyncio.wait_for(
                asyncssh.connect(host, **self.connect_options(host)),
                timeout=self.settings.connect_timeout,
            )
        except asyncio.TimeoutError:
            log.error("SSH connection timed out for %s", host)
            return f"Connection timed out after {self.settings.connect_timeout:g}s"
        except (OSError, asyncssh.Error) as exc:
            log.error("SSH connection failed for %s: %s", host, exc)
            return str(exc) or type(exc).__name__
        self._sessions[host] = HostSession(conn)
        log.info("Connected to %s", host)
        return None

    async def connect(self, hosts: list[str]) -> dict[str, str | None]:
        """Open sessions to hosts that have none yet. Returns {host: error_or_None}."""
        pending = [h for h in hosts if h not in self._sessions]
        errors = dict(zip(pending, await asyncio.gather(*[self._open(h) for h in pending])))
        return {h: errors.get(h) for h in hosts}

    async def run_command(self, host: str, command: str) -> asyncssh.SSHCompletedProcess:
        session = self._sessions.get(host)
        if session is None:
            raise ServiceManagerUnreachable(host, "not connected")
        log.debug("Running command on %s: %s", host, command)
        timeout = self.settings.command_timeout
        try:
            async with session.slots:
                result = await asyncio.wait_for(session.conn.run(command, check=False), timeout=timeout)
        except asyncio.TimeoutError:
            log.error("Command on %s gave no answer within %gs: %s", host, timeout, command)
            raise ServiceManagerUnreachable(host, f"no answer within {timeout:g}s") from None
        except (OSError, asyncssh.Error) as exc:
            log.error("Command failed on %s (%s): %s", host, command, exc)
            raise ServiceManagerUnreachable(host, str(exc)) from exc
        stderr = result.stderr or ""
        if stderr:
            log.warning("Command stderr on %s: %s", host, stderr.strip())
        log.debug("Command on %s finished (exit %s)", host, result.exit_status)
        return result

    async def list_services(self, host: str) -> list[ServiceDescriptor]:
        dialect = self.dialect(host)
        result = await self.run_command(host, dialect.list_command())
        if result.exit_status != 0:
            raise ServiceManagerUnreachable(host, f"listing services failed: {_message(result)}")
        try:
            services = dialect.parse_list(host, result.stdout or "")
        except ValueError as exc:
            raise ServiceManagerUnreachable(host, f"unreadable service list: {exc}") from exc
        log.info("Discovered %d services on %s", len(services), host)
        return services

    async def query_service(self, host: str, service: str) -> ServiceDescriptor:
        dialect = self.dialect(host)
        result = await self.run_command(host, dialect.status_command(service))
        if result.exit_status == EXIT_NOT_FOUND and dialect.name == "windows":
            raise NotFound(host, service)
        if result.exit_status != 0:
            raise ServiceManagerUnreachable(host, f"status query for {service} failed: {_message(result)}")
        try:
            return dialect.parse_status(host, service, result.stdout or "")
        except ValueError as exc:
            raise ServiceManagerUnreachable(host, f"unreadable status for {service}: {exc}") from exc

    async def send_action(self, host: str, service: str, action: Action) -> None:
        """Ask the host's service manager to start or stop; does not wait for the result."""
        dialect = self.dialect(host)
        log.info("%s %s on %s", action.value, service, host)
        result = await self.run_command(host, dialect.action_command(action, service))
        if result.exit_status != 0:
            raise ActionRejected(
                f"{action.value} {service} on {host} rejected (exit {result.exit_status}): {_message(result)}"
            )

    async def close(self):
        log.info("Closing %d SSH connection(s)", len(self._sessions))
        for session in self._sessions.values():
            session.conn.close()
        self._sessions.clear()


def _message(result) -> str:
    text = (result.stderr or "").strip() or (result.stdout or "").strip()
    return " ".join(text.split()) or "no output"
