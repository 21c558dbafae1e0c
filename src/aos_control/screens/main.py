from rich.text import Text
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.screen import Screen
from textual.widgets import DataTable, Footer, Header, LoadingIndicator

from aos_control.errors import ControlError
from aos_control.models import Action, ServiceDescriptor, ServiceSelector
from aos_control.reporter import status_text

AUTO_REFRESH_SECONDS = 30


class MainScreen(Screen):
    BINDINGS = [
        Binding("r", "refresh", "Refresh"),
        Binding("s", "start_service", "Start"),
        Binding("x", "stop_service", "Stop"),
        Binding("q", "app.quit", "Quit"),
    ]

    CSS = """
    #loading {
        align: center middle;
    }
    #table-container {
        height: 1fr;
    }
    DataTable {
        height: 1fr;
    }
    """

    def __init__(self, hosts: list[str], selector: ServiceSelector):
        super().__init__()
        self.hosts = hosts
        self.selector = selector
        self._located: list[list[ServiceDescriptor] | ControlError] = []
        self._rows: dict[str, ServiceDescriptor] = {}

    def compose(self) -> ComposeResult:
        yield Header()
        yield Container(LoadingIndicator(), id="loading")
        yield Container(DataTable(id="service-table"), id="table-container")
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#service-table", DataTable)
        table.add_columns("Service", "Display name", "Host", "Status")
        table.cursor_type = "row"
        self.query_one("#table-container").display = False
        self.run_worker(self._refresh_statuses(), exclusive=True)
        self._auto_refresh_timer = self.set_interval(
            AUTO_REFRESH_SECONDS, self._auto_refresh, pause=False,
        )

    async def _refresh_statuses(self) -> None:
        # Hosts that failed earlier are retried: connect() only dials hosts without a session
        self._located = await self.app.orchestrator().locate_all(self.hosts, self.selector)
        self._populate_table()

    def _populate_table(self) -> None:
        table = self.query_one("#service-table", DataTable)
        table.clear()
        self._rows.clear()

        # 1) Unreachable hosts, single row each
        for host, result in zip(self.hosts, self._located):
            if isinstance(result, ControlError):
                table.add_row("-", "", host, Text(f"⚠ {result.kind}", style="bold red"), key=f"unreachable:{host}")

        # 2) Reachable hosts, grouped by host in resolution order
        for host, result in zip(self.hosts, self._located):
            if isinstance(result, ControlError):
                continue
            found = [d for d in result if d.found]
            if not found:
                table.add_row("-", "", host, Text("no services", style="dim"), key=f"noservices:{host}")
                continue
            for descriptor in found:
                key = f"svc:{len(self._rows)}"
                self._rows[key] = descriptor
                table.add_row(descriptor.service_name, descriptor.display_name, host,
                              status_text(descriptor.status), key=key)

        self.query_one("#loading").display = False
        self.query_one("#table-container").display = True

    def _auto_refresh(self) -> None:
        self.run_worker(self._refresh_statuses(), exclusive=True)

    def action_refresh(self) -> None:
        self.run_worker(self._refresh_statuses(), exclusive=True)

    def _selected(self) -> ServiceDescriptor | None:
        table = self.query_one("#service-table", DataTable)
        if table.row_count == 0:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return self._rows.get(row_key.value)

    def _do_service_action(self, action: Action) -> None:
        descriptor = self._selected()
        if descriptor is None:
            return

        from aos_control.screens.confirm import ConfirmScreen

        def on_confirm(confirmed: bool) -> None:
            if confirmed:
                # Own group: a refresh must not cancel a transition that is under way
                self.run_worker(self.execute_service_action(action, descriptor), group="action")

        self.app.push_screen(
            ConfirmScreen(action, descriptor, self.app.tool_settings.timeout),
            callback=on_confirm,
        )

    async def execute_service_action(self, action: Action, descriptor: ServiceDescriptor) -> None:
        self._auto_refresh_timer.pause()
        try:
            outcome = await self.app.orchestrator().apply(descriptor, action)
        finally:
            self._auto_refresh_timer.resume()
        if outcome.succeeded:
            self.notify(f"{descriptor.service_name} on {descriptor.host}: {outcome.final_status.value}", timeout=3)
        else:
            self.notify(f"{action.value} {descriptor.service_name}: {outcome.error}", severity="error", timeout=5)
        await self._refresh_statuses()

    def action_start_service(self) -> None:
        self._do_service_action(Action.START)

    def action_stop_service(self) -> None:
        self._do_service_action(Action.STOP)
