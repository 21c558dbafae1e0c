import re

from aos_control.errors import ConfigError


def load_inventory(path: str, group: str | None = None) -> list[str]:
    """Host names from an Ansible INI inventory, optionally limited to one group."""
    hosts = []
    current_group = "ungrouped"

    try:
        f = open(path)
    except OSError as exc:
        raise ConfigError(f"Cannot read inventory {path}: {exc}") from exc

    with f:
        for raw_line in f:
            line = raw_line.strip()
            if not line or line.startswith("#") or line.startswith(";"):
                continue

            group_match = re.match(r"^\[([^\]]+)\]", line)
            if group_match:
                current_group = group_match.group(1)
                continue

            # ":vars" and ":children" sections hold variables and group names, not hosts
            if ":" in current_group:
                continue
            if group is not None and current_group != group:
                continue

            # First token is the host; ansible vars may follow it
            hosts.append(line.split()[0])

    return hosts
