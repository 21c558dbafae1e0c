from textual.app import App

from aos_control.models import ByNames, ServiceSelector, Settings
from aos_control.orchestrator import LifecycleOrchestrator
from aos_control.screens.main import MainScreen
from aos_control.ssh import SSHBackend


def describe_selector(selector: ServiceSelector) -> str:
    if isinstance(selector, ByNames):
        return ", ".join(selector.names)
    return selector.pattern


class ServiceDashboardApp(App):
    """Dashboard over one host list and selector; every remote call goes through the orchestrator."""

    TITLE = "AOS Control"

    CSS = """
    Screen {
        background: $surface;
    }
    """

    def __init__(self, hosts: list[str], selector: ServiceSelector, settings: Settings | None = None,
                 backend=None, **kwargs):
        super().__init__(**kwargs)
        self.hosts = hosts
        self.selector = selector
        self.tool_settings = settings or Settings()
        self.backend = backend or SSHBackend(self.tool_settings)
        self.sub_title = f"{describe_selector(selector)} on {len(hosts)} host(s)"

    def orchestrator(self) -> LifecycleOrchestrator:
        return LifecycleOrchestrator(self.backend, self.tool_settings)

    def on_mount(self) -> None:
        self.push_screen(MainScreen(self.hosts, self.selector))

    async def action_quit(self) -> None:
        await self.backend.close()
        self.exit()

    async def on_unmount(self) -> None:
        # close() is a no-op once the sessions are gone
        await self.backend.close()
