import yaml

from aos_control.errors import ConfigError
from aos_control.models import HostSettings, Settings

SERVICE_MANAGERS = ("windows", "systemd")


def _check_manager(value: str | None, where: str) -> str | None:
    if value is not None and value not in SERVICE_MANAGERS:
        raise ConfigError(
            f"Unknown service manager {value!r} for {where} (expected one of {', '.join(SERVICE_MANAGERS)})"
        )
    return value


def load_settings(path: str | None) -> Settings:
    if path is None:
        return Settings()

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read settings file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid settings file {path}: {exc}") from exc

    defaults = Settings()
    hosts = {}
    for name, opts in (data.get("hosts") or {}).items():
        opts = opts or {}
        hosts[str(name)] = HostSettings(
            service_manager=_check_manager(opts.get("service_manager"), f"host {name}"),
            username=opts.get("username"),
            port=opts.get("port"),
        )

    try:
        settings = Settings(
            poll_interval=float(data.get("poll_interval", defaults.poll_interval)),
            timeout=float(data.get("timeout", defaults.timeout)),
            max_workers=int(data.get("max_workers", defaults.max_workers)),
            connect_timeout=float(data.get("connect_timeout", defaults.connect_timeout)),
            command_timeout=float(data.get("command_timeout", defaults.command_timeout)),
            strict_host_keys=bool(data.get("strict_host_keys", defaults.strict_host_keys)),
            service_manager=_check_manager(
                data.get("service_manager", defaults.service_manager), "settings"
            ),
            username=data.get("username"),
            hosts=hosts,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in settings file {path}: {exc}") from exc

    if settings.max_workers < 1:
        raise ConfigError("max_workers must be at least 1")
    if settings.poll_interval < 0 or settings.timeout <= 0 or settings.command_timeout <= 0:
        raise ConfigError("poll_interval must be >= 0, timeout and command_timeout must be > 0")
    return settings
