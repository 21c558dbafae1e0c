from rich.text import Text
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen
from textual.widgets import Label, Static

from aos_control.models import Action, ServiceDescriptor
from aos_control.reporter import status_text


def confirm_prompt(action: Action, descriptor: ServiceDescriptor) -> Text:
    # Names go in as plain text so brackets in them are not read as markup
    return Text.assemble(
        f"{action.value} ",
        (descriptor.service_name, "bold"),
        " on ",
        (descriptor.host, "bold"),
        "?",
    )


def transition_text(action: Action, descriptor: ServiceDescriptor, timeout: float) -> Text:
    return Text.assemble(
        status_text(descriptor.status),
        " → ",
        status_text(action.target),
        (f"  (waits up to {timeout:g}s)", "dim"),
    )


class ConfirmScreen(ModalScreen[bool]):
    """Asks before a start/stop; shows where the service is now and where it should end up."""

    BINDINGS = [
        Binding("y", "confirm", "Yes"),
        Binding("n", "cancel", "No"),
        Binding("escape", "cancel", "Cancel", show=False),
    ]

    CSS = """
    ConfirmScreen {
        align: center middle;
    }
    #confirm-dialog {
        width: 64;
        height: auto;
        padding: 1 2;
        border: thick $accent;
        background: $surface;
    }
    #confirm-prompt, #confirm-transition {
        text-align: center;
        margin-bottom: 1;
    }
    #confirm-hint {
        text-align: center;
        color: $text-muted;
    }
    """

    def __init__(self, action: Action, descriptor: ServiceDescriptor, timeout: float):
        super().__init__()
        self.action = action
        self.descriptor = descriptor
        self.timeout = timeout

    def compose(self) -> ComposeResult:
        with Vertical(id="confirm-dialog"):
            yield Label(confirm_prompt(self.action, self.descriptor), id="confirm-prompt")
            yield Label(transition_text(self.action, self.descriptor, self.timeout), id="confirm-transition")
            yield Static(Text("[y] Yes  /  [n] No"), id="confirm-hint")

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)
