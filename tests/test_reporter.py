import io

from rich.console import Console

from aos_control.models import Action, LifecycleState, OperationOutcome, ServiceStatus, TransitionEvent
from aos_control.reporter import Reporter

OUTCOMES = [
    OperationOutcome("H1", "Alpha", Action.START, ServiceStatus.RUNNING, True, LifecycleState.SUCCEEDED),
    OperationOutcome("H1", "Beta", Action.START, ServiceStatus.START_PENDING, False, LifecycleState.TIMED_OUT,
                     "TimedOut", "Beta on H1 did not reach Running within 60s"),
    OperationOutcome("H2", "Alpha", Action.START, ServiceStatus.UNKNOWN, False, LifecycleState.FAILED,
                     "ServiceManagerUnreachable", "H2: Connection refused"),
]


def make_reporter(show_progress):
    buffer = io.StringIO()
    return Reporter(show_progress, Console(file=buffer, width=120, color_system=None)), buffer


def test_silent_reporter_returns_outcomes_untouched():
    reporter, buffer = make_reporter(False)
    reporter(TransitionEvent("H1", "Alpha", Action.START, LifecycleState.REQUESTED, ServiceStatus.STOPPED))

    assert reporter.report(OUTCOMES) == OUTCOMES
    assert buffer.getvalue() == ""


def test_progress_lines_are_keyed_by_host_and_service():
    reporter, buffer = make_reporter(True)
    reporter(TransitionEvent("H1", "Alpha", Action.START, LifecycleState.REQUESTED, ServiceStatus.STOPPED))
    reporter(TransitionEvent("H1", "Alpha", Action.START, LifecycleState.TRANSITIONING, ServiceStatus.START_PENDING))
    reporter(TransitionEvent("H2", "[x]", Action.START, LifecycleState.FAILED, ServiceStatus.UNKNOWN,
                             "H2: Connection refused"))

    lines = buffer.getvalue().splitlines()
    assert lines == [
        "H1/Alpha: start requested (was Stopped)",
        "H1/Alpha: StartPending",
        "H2/[x]: Failed: H2: Connection refused",
    ]


def test_summary_table_marks_failures():
    reporter, buffer = make_reporter(True)
    assert reporter.report(OUTCOMES) is OUTCOMES

    output = buffer.getvalue()
    assert "Service control summary" in output
    assert "✔ ok" in output
    assert "⏱ timed out" in output
    assert "✘ ServiceManagerUnreachable" in output
