from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path

import yaml

from aos_control.errors import ConfigError
from aos_control.models import ActiveProfile

log = logging.getLogger(__name__)

NAMESPACE = "aosctl.active"
SCOPES = ("user", "system")


def default_user_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(base) / "aosctl" / "profile.yaml"


def default_system_path() -> Path:
    return Path(os.environ.get("AOSCTL_SYSTEM_CONFIG", "/etc/aosctl/profile.yaml"))


def _squash(name: str) -> str:
    return name.replace("_", "").replace("-", "").casefold()


_FIELDS_BY_PROPERTY = {_squash(name): name for name in ActiveProfile.field_names()}


def field_for(name: str) -> str:
    """Map a property name (``computer_name``, ``ComputerName``, ...) to a profile field."""
    try:
        return _FIELDS_BY_PROPERTY[_squash(name)]
    except KeyError:
        raise ConfigError(f"Unknown profile field {name!r}") from None


def _key(field: str) -> str:
    return f"{NAMESPACE}.{field}"


class ConfigStore:
    """Active profile settings, layered as temporary > user > system.

    Each scope is persisted as a flat YAML mapping of ``aosctl.active.<field>``
    keys plus an ``aosctl.active.scope`` marker. An empty string is a value:
    a cleared scope shadows whatever the scopes below it hold.
    """

    def __init__(self, user_path: Path | str | None = None, system_path: Path | str | None = None):
        self._paths = {
            "user": Path(user_path) if user_path else default_user_path(),
            "system": Path(system_path) if system_path else default_system_path(),
        }
        self._lock = threading.Lock()
        self._temporary: dict[str, str] = {}
        self._persisted: dict[str, dict[str, str]] = {scope: {} for scope in SCOPES}
        self.refresh()

    def path(self, scope: str) -> Path:
        return self._paths[self._check_scope(scope)]

    @staticmethod
    def _check_scope(scope: str) -> str:
        if scope not in SCOPES:
            raise ConfigError(f"Unknown scope {scope!r} (expected user or system)")
        return scope

    def _read_scope(self, scope: str) -> dict[str, str]:
        path = self._paths[scope]
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            return {}
        except OSError as exc:
            # e.g. a machine-wide file only administrators may read
            log.warning("Ignoring unreadable %s profile %s: %s", scope, path, exc)
            return {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid {scope} profile {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid {scope} profile {path}: expected a mapping, got {type(data).__name__}")

        prefix = NAMESPACE + "."
        values = {}
        for key, value in data.items():
            if not isinstance(key, str) or not key.startswith(prefix):
                continue
            name = key[len(prefix):]
            if name in _FIELDS_BY_PROPERTY.values():
                values[name] = "" if value is None else str(value)
        return values

    def _write_scope(self, scope: str, values: dict[str, str]) -> None:
        path = self._paths[scope]
        data = {_key(name): value for name, value in values.items()}
        data[_key("scope")] = scope
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".profile-", suffix=".yaml")
            try:
                with os.fdopen(fd, "w") as f:
                    yaml.safe_dump(data, f, default_flow_style=False, sort_keys=True)
                os.replace(tmp_path, path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as exc:
            raise ConfigError(f"Cannot write {scope} profile {path}: {exc}") from exc
        log.info("Wrote %d profile value(s) to %s", len(values), path)

    def refresh(self) -> ActiveProfile:
        """Reload both persisted scopes and return the resulting active profile."""
        with self._lock:
            for scope in SCOPES:
                self._persisted[scope] = self._read_scope(scope)
        return self.active_profile()

    def get(self, name: str) -> str | None:
        field = field_for(name)
        with self._lock:
            for layer in (self._temporary, self._persisted["user"], self._persisted["system"]):
                if field in layer:
                    return layer[field]
        return None

    def get_active_host(self) -> str | None:
        return self.get("computer_name") or None

    def active_profile(self) -> ActiveProfile:
        return ActiveProfile(**{name: self.get(name) or "" for name in ActiveProfile.field_names()})

    def set(self, values: dict[str, str], scope: str = "user", temporary: bool = False) -> None:
        """Set profile fields; only fields named in *values* change."""
        updates = {field_for(name): "" if value is None else str(value) for name, value in values.items()}
        if not updates:
            return
        self._check_scope(scope)

        with self._lock:
            if temporary:
                self._temporary.update(updates)
                log.info("Set %s for this session only", ", ".join(sorted(updates)))
                return
            current = self._read_scope(scope)
            current.update(updates)
            self._write_scope(scope, current)
            self._persisted[scope] = current

    def clear(self, scope: str = "user", temporary: bool = False) -> None:
        """Reset every profile field to an empty string in one scope."""
        self.set({name: "" for name in ActiveProfile.field_names()}, scope=scope, temporary=temporary)
