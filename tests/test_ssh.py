import asyncio
import base64
import json
from types import SimpleNamespace

import pytest

from aos_control.errors import ActionRejected, NotFound, ServiceManagerUnreachable
from aos_control.models import Action, HostSettings, ServiceStatus, Settings
from aos_control.ssh import HostSession, SSHBackend, SystemdDialect, WindowsDialect


def decode(command):
    assert command.startswith("powershell -NoProfile -NonInteractive -EncodedCommand ")
    return base64.b64decode(command.rsplit(" ", 1)[1]).decode("utf-16-le")


class TestSystemd:
    dialect = SystemdDialect()

    def test_parse_list(self):
        output = (
            "aos.service          loaded    active   running Application Object Server\n"
            "batch-worker.service loaded    inactive dead    Batch worker\n"
            "ghost.service        not-found inactive dead    ghost.service\n"
            "starting.service     loaded    activating start-pre Starting up\n"
        )
        services = self.dialect.parse_list("h1", output)
        assert [(s.service_name, s.display_name, s.status) for s in services] == [
            ("aos", "Application Object Server", ServiceStatus.RUNNING),
            ("batch-worker", "Batch worker", ServiceStatus.STOPPED),
            ("starting", "Starting up", ServiceStatus.START_PENDING),
        ]
        assert all(s.host == "h1" for s in services)

    def test_parse_status(self):
        output = "Id=aos.service\nDescription=Application Object Server\nLoadState=loaded\nActiveState=deactivating\n"
        descriptor = self.dialect.parse_status("h1", "aos", output)
        assert descriptor.status is ServiceStatus.STOP_PENDING
        assert descriptor.display_name == "Application Object Server"

    def test_failed_unit_is_stopped_and_flagged(self):
        output = "Id=web.service\nDescription=Web\nLoadState=loaded\nActiveState=failed\n"
        descriptor = self.dialect.parse_status("h1", "web", output)
        assert descriptor.status is ServiceStatus.STOPPED
        assert descriptor.failed

    def test_reloading_unit_is_running(self):
        output = "Id=web.service\nLoadState=loaded\nActiveState=reloading\n"
        descriptor = self.dialect.parse_status("h1", "web", output)
        assert descriptor.status is ServiceStatus.RUNNING
        assert not descriptor.failed
        assert descriptor.display_name == "web"

    def test_parse_list_flags_failed_units(self):
        output = (
            "web.service loaded failed failed Web frontend\n"
            "db.service  loaded inactive dead Database\n"
        )
        services = self.dialect.parse_list("h1", output)
        assert [(s.service_name, s.status, s.failed) for s in services] == [
            ("web", ServiceStatus.STOPPED, True),
            ("db", ServiceStatus.STOPPED, False),
        ]

    def test_parse_status_not_found(self):
        with pytest.raises(NotFound):
            self.dialect.parse_status("h1", "ghost", "Id=ghost.service\nLoadState=not-found\nActiveState=inactive\n")

    def test_commands_quote_names(self):
        assert self.dialect.action_command(Action.STOP, "my app") == "sudo -n systemctl stop --no-block -- 'my app.service'"
        assert self.dialect.status_command("aos").endswith("-- aos.service")


class TestWindows:
    dialect = WindowsDialect()

    def test_parse_list_numeric_and_named_status(self):
        output = json.dumps([
            {"Name": "AOS60$01", "DisplayName": "Microsoft Dynamics AX Object Server 6.0$01", "Status": 4},
            {"Name": "Spooler", "DisplayName": "Print Spooler", "Status": "Stopped"},
            {"Name": "Odd", "DisplayName": "Odd", "Status": 99},
        ])
        services = self.dialect.parse_list("ax-01", output)
        assert [(s.service_name, s.status) for s in services] == [
            ("AOS60$01", ServiceStatus.RUNNING),
            ("Spooler", ServiceStatus.STOPPED),
            ("Odd", ServiceStatus.UNKNOWN),
        ]

    def test_parse_single_object(self):
        output = json.dumps({"Name": "AOS60$01", "DisplayName": "AOS", "Status": 2})
        descriptor = self.dialect.parse_status("ax-01", "aos60$01", output)
        assert descriptor.service_name == "aos60$01"
        assert descriptor.status is ServiceStatus.START_PENDING

    def test_empty_status_is_not_found(self):
        with pytest.raises(NotFound):
            self.dialect.parse_status("ax-01", "AOS60$01", "")

    def test_null_output_is_an_empty_list(self):
        assert self.dialect.parse_list("ax-01", "null") == []

    @pytest.mark.parametrize("output", ['"Spooler"', "[1, 2]", "42"])
    def test_unexpected_json_shape_is_rejected(self, output):
        with pytest.raises(ValueError):
            self.dialect.parse_list("ax-01", output)

    def test_scripts_quote_names_for_powershell(self):
        script = decode(self.dialect.action_command(Action.START, "O'Brien$1"))
        assert script == "sc.exe start 'O''Brien$1'; exit $LASTEXITCODE"
        assert "-eq 'AOS60$01'" in decode(self.dialect.status_command("AOS60$01"))


class FakeConnection:
    def __init__(self, results):
        self.results = results
        self.commands = []

    async def run(self, command, check=False):
        self.commands.append(command)
        result = self.results.pop(0)
        if result == "hang":
            await asyncio.sleep(3600)
        if isinstance(result, Exception):
            raise result
        return result


def completed(exit_status=0, stdout="", stderr=""):
    return SimpleNamespace(exit_status=exit_status, stdout=stdout, stderr=stderr)


def backend_with(results, manager="windows", **settings):
    backend = SSHBackend(Settings(hosts={"ax-01": HostSettings(service_manager=manager)}, **settings))
    conn = FakeConnection(results)
    backend._sessions["ax-01"] = HostSession(conn)
    return backend, conn


def test_query_exit_4_is_not_found():
    backend, _ = backend_with([completed(exit_status=4)])
    with pytest.raises(NotFound):
        asyncio.run(backend.query_service("ax-01", "AOS60$01"))


def test_rejected_action_carries_manager_output():
    backend, _ = backend_with([completed(exit_status=5, stdout="[SC] StartService FAILED 5:\n\nAccess is denied.")])
    with pytest.raises(ActionRejected, match="Access is denied"):
        asyncio.run(backend.send_action("ax-01", "AOS60$01", Action.START))


def test_dropped_connection_is_unreachable():
    backend, _ = backend_with([OSError("Connection reset")], manager="systemd")
    with pytest.raises(ServiceManagerUnreachable):
        asyncio.run(backend.list_services("ax-01"))


def test_host_without_session_is_unreachable():
    backend = SSHBackend()
    with pytest.raises(ServiceManagerUnreachable):
        asyncio.run(backend.query_service("nowhere", "AOS60$01"))


def test_dialect_follows_host_settings():
    settings = Settings(service_manager="windows", hosts={"LINUX-01": HostSettings(service_manager="systemd")})
    backend = SSHBackend(settings)
    assert backend.dialect("linux-01").name == "systemd"
    assert backend.dialect("ax-01").name == "windows"


def test_unexpected_service_list_is_unreachable():
    backend, _ = backend_with([completed(stdout='"Spooler"')])
    with pytest.raises(ServiceManagerUnreachable, match="unreadable service list"):
        asyncio.run(backend.list_services("ax-01"))


def test_command_without_answer_is_cut_off():
    backend, conn = backend_with(["hang"], command_timeout=0.05)

    async def scenario():
        return await asyncio.wait_for(backend.query_service("ax-01", "AOS60$01"), 3)

    with pytest.raises(ServiceManagerUnreachable, match="no answer within 0.05s"):
        asyncio.run(scenario())
    assert len(conn.commands) == 1


def test_connect_options_follow_host_settings():
    settings = Settings(
        username="axadmin",
        hosts={"ax-02": HostSettings(port=2222), "linux-01": HostSettings(username="root")},
    )
    backend = SSHBackend(settings)
    assert backend.connect_options("AX-02") == {"known_hosts": None, "username": "axadmin", "port": 2222}
    assert backend.connect_options("linux-01") == {"known_hosts": None, "username": "root"}

    strict = SSHBackend(Settings(strict_host_keys=True))
    assert strict.connect_options("ax-01") == {}


def test_connect_reports_each_host(monkeypatch):
    conn = FakeConnection([])

    async def fake_connect(host, **options):
        if host == "down":
            raise OSError("Connection refused")
        return conn

    monkeypatch.setattr("aos_control.ssh.asyncssh.connect", fake_connect)
    backend = SSHBackend()
    errors = asyncio.run(backend.connect(["up", "down"]))

    assert errors == {"up": None, "down": "Connection refused"}
    assert backend._sessions["up"].conn is conn
    assert "down" not in backend._sessions
