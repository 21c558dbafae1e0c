from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys

import yaml
from rich.console import Console
from rich.text import Text

from aos_control.config import load_settings
from aos_control.database import connection_string
from aos_control.errors import ControlError, InvalidInput, NoTargetHost
from aos_control.hosts import resolve_hosts
from aos_control.inventory import load_inventory
from aos_control.models import Action, ActiveProfile
from aos_control.orchestrator import LifecycleOrchestrator
from aos_control.reporter import Reporter, services_table
from aos_control.services import build_selector
from aos_control.ssh import SSHBackend
from aos_control.store import SCOPES, ConfigStore, field_for

log = logging.getLogger(__name__)

NAME_PROPERTIES = ("service_name", "ServiceName", "name", "Name")


def read_piped_names(stream) -> list[str]:
    """Service names from a discovery step: JSON lines, a JSON array, or bare names."""
    text = stream.read().strip()
    if not text:
        return []
    try:
        if text.startswith("["):
            records = json.loads(text)
        else:
            records = [
                json.loads(line) if line.lstrip().startswith(("{", "\"")) else line.strip()
                for line in text.splitlines() if line.strip()
            ]
    except ValueError as exc:
        raise InvalidInput(f"Cannot parse piped service list: {exc}") from exc

    names = []
    for record in records:
        if isinstance(record, dict):
            name = next((record[p] for p in NAME_PROPERTIES if record.get(p)), None)
            if name is None:
                raise InvalidInput(f"Piped record has no service name property: {record}")
            names.append(str(name))
        else:
            names.append(str(record))
    return names


def read_piped_profile(stream) -> dict[str, str]:
    """Profile fields by property name from a JSON or YAML object; other properties are ignored."""
    try:
        data = yaml.safe_load(stream.read()) or {}
    except yaml.YAMLError as exc:
        raise InvalidInput(f"Cannot parse piped profile: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidInput("Piped profile must be a single object")

    values = {}
    for key, value in data.items():
        try:
            name = field_for(str(key))
        except ControlError:
            continue
        values[name] = "" if value is None else str(value)
    return values


def _explicit_hosts(args) -> list[str]:
    hosts = []
    for value in args.host or []:
        hosts.extend(value.split(","))
    if args.inventory:
        listed = load_inventory(args.inventory, args.group)
        if not listed:
            where = f"group {args.group!r} of " if args.group else ""
            raise NoTargetHost(f"No hosts in {where}inventory {args.inventory}")
        hosts.extend(listed)
    return hosts


def _selector(args, default_pattern: str | None = None):
    names = list(args.name or [])
    if getattr(args, "stdin", False):
        names.extend(read_piped_names(sys.stdin))
    pattern = args.pattern
    if pattern is None and not names:
        pattern = default_pattern
    return build_selector(pattern, names)


async def _run_batch(orchestrator: LifecycleOrchestrator, action: Action, hosts, selector):
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    interrupts = 0

    def _on_interrupt():
        nonlocal interrupts
        interrupts += 1
        if interrupts == 1:
            orchestrator.cancel()
        else:
            task.cancel()

    try:
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        log.debug("SIGINT handler unavailable, interrupts abort the batch immediately")
        handler_installed = False

    try:
        return await orchestrator.run(action, hosts, selector)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        await orchestrator.backend.close()


def cmd_control(args) -> int:
    action = Action.START if args.command == "start" else Action.STOP
    selector = _selector(args)
    store = ConfigStore()
    hosts = resolve_hosts(_explicit_hosts(args), store)
    settings = load_settings(args.settings)

    reporter = Reporter(show_progress=args.progress)
    orchestrator = LifecycleOrchestrator(SSHBackend(settings), settings, observer=reporter)
    outcomes = asyncio.run(_run_batch(orchestrator, action, hosts, selector))
    reporter.report(outcomes)

    json.dump([o.as_dict() for o in outcomes], sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0 if all(o.succeeded for o in outcomes) else 1


async def _discover(backend: SSHBackend, hosts, selector):
    orchestrator = LifecycleOrchestrator(backend)
    try:
        return await orchestrator.locate_all(hosts, selector)
    finally:
        await backend.close()


def cmd_list(args) -> int:
    selector = _selector(args, default_pattern="*")
    store = ConfigStore()
    hosts = resolve_hosts(_explicit_hosts(args), store)
    settings = load_settings(args.settings)

    located = asyncio.run(_discover(SSHBackend(settings), hosts, selector))

    err = Console(stderr=True)
    descriptors = []
    failed = False
    for result in located:
        if isinstance(result, ControlError):
            err.print(Text.assemble((result.kind, "bold red"), f": {result}"))
            failed = True
        else:
            descriptors.extend(result)

    if args.json:
        for d in descriptors:
            sys.stdout.write(json.dumps(d.as_dict()) + "\n")
    else:
        Console().print(services_table(descriptors))
    return 1 if failed else 0


def cmd_config(args) -> int:
    store = ConfigStore()

    if args.config_command == "get":
        profile = store.refresh()
        if args.connection_string:
            print(connection_string(profile, modelstore=args.modelstore))
        else:
            sys.stdout.write(yaml.safe_dump(profile.as_dict(), default_flow_style=False, sort_keys=False))
        return 0

    if args.config_command == "clear":
        store.clear(scope=args.scope, temporary=args.temporary)
        return 0

    values = read_piped_profile(sys.stdin) if args.stdin else {}
    for name in ActiveProfile.field_names():
        value = getattr(args, name)
        if value is not None:
            values[name] = value
    if not values:
        raise InvalidInput("Nothing to set; give at least one profile field")
    store.set(values, scope=args.scope, temporary=args.temporary)
    return 0


def cmd_dashboard(args) -> int:
    selector = _selector(args, default_pattern="*")
    store = ConfigStore()
    hosts = resolve_hosts(_explicit_hosts(args), store)
    settings = load_settings(args.settings)

    from aos_control.app import ServiceDashboardApp

    app = ServiceDashboardApp(hosts=hosts, selector=selector, settings=settings)
    app.run()
    return 0


def _add_target_options(parser, stdin: bool = False):
    parser.add_argument(
        "--host", "-H",
        action="append",
        help="Target host (repeatable, or comma separated); defaults to the active computer name",
    )
    parser.add_argument("--inventory", "-i", help="Add the hosts of an Ansible inventory file (INI format)")
    parser.add_argument("--group", "-g", help="Only use hosts from this inventory group")
    parser.add_argument("--pattern", "-p", help="Wildcard matched against service display names")
    parser.add_argument("--name", "-n", action="append", help="Exact service name (repeatable)")
    if stdin:
        parser.add_argument(
            "--stdin",
            action="store_true",
            help="Read service names from stdin, e.g. the output of 'aosctl list --json'",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aosctl",
        description="Start, stop and inspect application server services across remote hosts",
    )
    parser.add_argument("--settings", "-s", default=None, help="Path to tool settings YAML file")
    parser.add_argument(
        "--log", "-l",
        default=None,
        help="Path to log file (if omitted, logging is disabled)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log progress to stderr")
    commands = parser.add_subparsers(dest="command", required=True)

    list_parser = commands.add_parser("list", help="Discover services on the target hosts")
    _add_target_options(list_parser)
    list_parser.add_argument("--json", action="store_true", help="One JSON object per service")
    list_parser.set_defaults(func=cmd_list)

    for name in ("start", "stop"):
        control = commands.add_parser(name, help=f"{name.title()} services on the target hosts")
        _add_target_options(control, stdin=True)
        control.add_argument("--progress", action="store_true", help="Show status changes and a summary table")
        control.set_defaults(func=cmd_control)

    dashboard = commands.add_parser("dashboard", help="Interactive service dashboard")
    _add_target_options(dashboard)
    dashboard.set_defaults(func=cmd_dashboard)

    config = commands.add_parser("config", help="Show or change the active profile")
    config.set_defaults(func=cmd_config)
    config_commands = config.add_subparsers(dest="config_command", required=True)

    get = config_commands.add_parser("get", help="Print the active profile")
    get.add_argument("--connection-string", action="store_true", help="Print a database connection string instead")
    get.add_argument("--modelstore", action="store_true", help="Use the model store database")

    set_ = config_commands.add_parser("set", help="Set active profile fields")
    for field in ActiveProfile.field_names():
        set_.add_argument(f"--{field.replace('_', '-')}", dest=field, default=None)
    set_.add_argument("--stdin", action="store_true", help="Read a profile object (JSON or YAML) from stdin")

    clear = config_commands.add_parser("clear", help="Reset every profile field to empty")
    for sub in (set_, clear):
        sub.add_argument("--scope", choices=SCOPES, default="user", help="Persistence scope (default: user)")
        sub.add_argument("--temporary", action="store_true", help="Only change this session, do not persist")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.log:
        logging.basicConfig(
            filename=args.log,
            level=logging.DEBUG,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )
    elif args.verbose:
        logging.basicConfig(
            stream=sys.stderr,
            level=logging.INFO,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )

    try:
        return args.func(args)
    except ControlError as exc:
        log.debug("%s: %s", exc.kind, exc)
        print(f"aosctl: error: {exc}", file=sys.stderr)
        return 2
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("aosctl: interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
