from __future__ import annotations

from rich.console import Console
from rich.table import Table
from rich.text import Text

from aos_control.models import LifecycleState, OperationOutcome, ServiceDescriptor, ServiceStatus, TransitionEvent

STATUS_STYLES = {
    ServiceStatus.RUNNING: "bold green",
    ServiceStatus.STOPPED: "bold yellow",
    ServiceStatus.START_PENDING: "cyan",
    ServiceStatus.STOP_PENDING: "cyan",
    ServiceStatus.PAUSED: "magenta",
    ServiceStatus.UNKNOWN: "dim",
}


def status_text(status: ServiceStatus) -> Text:
    return Text(status.value, style=STATUS_STYLES[status])


def result_text(outcome: OperationOutcome) -> Text:
    if outcome.succeeded:
        return Text("✔ ok", style="bold green")
    if outcome.state is LifecycleState.TIMED_OUT:
        return Text("⏱ timed out", style="bold magenta")
    return Text(f"✘ {outcome.error_kind or 'failed'}", style="bold red")


class Reporter:
    """Observer for orchestrator transitions and renderer of the final outcomes.

    Nothing is printed unless ``show_progress`` is set; outcomes are handed
    back untouched either way.
    """

    def __init__(self, show_progress: bool = False, console: Console | None = None):
        self.show_progress = show_progress
        self.console = console or Console(stderr=True)

    def __call__(self, event: TransitionEvent) -> None:
        if not self.show_progress:
            return
        # Text, not markup: service names and errors may contain brackets
        if event.state is LifecycleState.REQUESTED:
            detail = (f"{event.action.value.lower()} requested (was {event.status.value})", "")
        elif event.state is LifecycleState.TRANSITIONING:
            detail = (event.status.value, "")
        elif event.state is LifecycleState.SUCCEEDED:
            detail = (event.status.value, "green")
        else:
            detail = (f"{event.state.value}: {event.error}", "bold red")
        self.console.print(Text.assemble((f"{event.host}/{event.service_name}", "bold"), ": ", detail))

    def report(self, outcomes: list[OperationOutcome]) -> list[OperationOutcome]:
        if self.show_progress:
            self.console.print(self.summary_table(outcomes))
        return outcomes

    @staticmethod
    def summary_table(outcomes: list[OperationOutcome]) -> Table:
        table = Table(title="Service control summary")
        for column in ("Host", "Service", "Action", "Status", "Result"):
            table.add_column(column)
        for outcome in outcomes:
            table.add_row(
                outcome.host,
                outcome.service_name,
                outcome.action.value,
                status_text(outcome.final_status),
                result_text(outcome),
                style=None if outcome.succeeded else "on grey11",
            )
        return table


def services_table(descriptors: list[ServiceDescriptor]) -> Table:
    table = Table()
    for column in ("Host", "Service", "Display name", "Status"):
        table.add_column(column)
    for d in descriptors:
        table.add_row(d.host, d.service_name, d.display_name, status_text(d.status))
    return table
