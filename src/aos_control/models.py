from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field, fields


class ServiceStatus(enum.Enum):
    STOPPED = "Stopped"
    START_PENDING = "StartPending"
    RUNNING = "Running"
    STOP_PENDING = "StopPending"
    PAUSED = "Paused"
    UNKNOWN = "Unknown"


class Action(enum.Enum):
    START = "Start"
    STOP = "Stop"

    @property
    def target(self) -> ServiceStatus:
        return ServiceStatus.RUNNING if self is Action.START else ServiceStatus.STOPPED

    @property
    def pending(self) -> ServiceStatus:
        return ServiceStatus.START_PENDING if self is Action.START else ServiceStatus.STOP_PENDING


class LifecycleState(enum.Enum):
    IDLE = "Idle"
    REQUESTED = "Requested"
    TRANSITIONING = "Transitioning"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"

    @property
    def terminal(self) -> bool:
        return self in (LifecycleState.SUCCEEDED, LifecycleState.FAILED, LifecycleState.TIMED_OUT)


@dataclass(frozen=True)
class ByPattern:
    pattern: str


@dataclass(frozen=True)
class ByNames:
    names: tuple[str, ...]


ServiceSelector = ByPattern | ByNames


@dataclass(frozen=True)
class ServiceDescriptor:
    host: str
    service_name: str
    display_name: str
    status: ServiceStatus
    found: bool = True
    # systemd "failed": the unit is down because its last start or run crashed
    failed: bool = False

    def as_dict(self) -> dict:
        return {
            "host": self.host,
            "service_name": self.service_name,
            "display_name": self.display_name,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class OperationOutcome:
    host: str
    service_name: str
    action: Action
    final_status: ServiceStatus
    succeeded: bool
    state: LifecycleState
    error_kind: str | None = None
    error: str | None = None

    def as_dict(self) -> dict:
        return {
            "host": self.host,
            "service_name": self.service_name,
            "action": self.action.value,
            "final_status": self.final_status.value,
            "succeeded": self.succeeded,
            "state": self.state.value,
            "error_kind": self.error_kind,
            "error": self.error,
        }


@dataclass(frozen=True)
class TransitionEvent:
    host: str
    service_name: str
    action: Action
    state: LifecycleState
    status: ServiceStatus
    error: str | None = None


@dataclass
class ActiveProfile:
    computer_name: str = ""
    bin_directory: str = ""
    instance_number: str = ""
    instance_name: str = ""
    database_server: str = ""
    database_name: str = ""
    modelstore_database: str = ""
    aos_port: str = ""
    wsdl_port: str = ""
    net_tcp_port: str = ""

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass
class HostSettings:
    service_manager: str | None = None
    username: str | None = None
    port: int | None = None


@dataclass
class Settings:
    poll_interval: float = 0.5
    timeout: float = 60.0
    max_workers: int = 8
    connect_timeout: float = 3.0
    command_timeout: float = 30.0
    strict_host_keys: bool = False
    service_manager: str = "windows"
    username: str | None = None
    hosts: dict[str, HostSettings] = field(default_factory=dict)

    def for_host(self, host: str) -> HostSettings:
        """Per-host overrides merged over the global defaults."""
        key = host.casefold()
        override = next(
            (opts for name, opts in self.hosts.items() if name.casefold() == key),
            HostSettings(),
        )
        return HostSettings(
            service_manager=override.service_manager or self.service_manager,
            username=override.username or self.username,
            port=override.port,
        )
