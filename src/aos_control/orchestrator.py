from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from aos_control.errors import (
    ActionRejected,
    Cancelled,
    ControlError,
    NotFound,
    ServiceManagerUnreachable,
    TimedOut,
)
from aos_control.models import (
    Action,
    ByNames,
    ByPattern,
    LifecycleState,
    OperationOutcome,
    ServiceDescriptor,
    ServiceSelector,
    ServiceStatus,
    Settings,
    TransitionEvent,
)
from aos_control.services import locate

log = logging.getLogger(__name__)

Observer = Callable[[TransitionEvent], None]


class ServiceBackend(Protocol):
    async def connect(self, hosts: list[str]) -> dict[str, str | None]: ...

    async def list_services(self, host: str) -> list[ServiceDescriptor]: ...

    async def query_service(self, host: str, service: str) -> ServiceDescriptor: ...

    async def send_action(self, host: str, service: str, action: Action) -> None: ...


class LifecycleOrchestrator:
    """Runs one start/stop state machine per (host, service) pair.

    Pairs are independent: a failure is captured into that pair's outcome and
    never stops its siblings. Outcomes come back in host order, then in the
    order the locator matched services on each host, whatever order the
    workers finish in.
    """

    def __init__(self, backend: ServiceBackend, settings: Settings | None = None, observer: Observer | None = None):
        self.backend = backend
        self.settings = settings or Settings()
        self.observer = observer
        self._cancelled = asyncio.Event()

    def cancel(self) -> None:
        """Stop issuing new action requests; in-flight transitions still finish."""
        if not self._cancelled.is_set():
            log.warning("Cancellation requested, no further actions will be issued")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _emit(self, descriptor: ServiceDescriptor, action: Action, state: LifecycleState,
              status: ServiceStatus, error: str | None = None) -> None:
        if self.observer is None:
            return
        self.observer(TransitionEvent(
            host=descriptor.host,
            service_name=descriptor.service_name,
            action=action,
            state=state,
            status=status,
            error=error,
        ))

    def _finish(self, descriptor: ServiceDescriptor, action: Action, state: LifecycleState,
                status: ServiceStatus, error: ControlError | None = None) -> OperationOutcome:
        outcome = OperationOutcome(
            host=descriptor.host,
            service_name=descriptor.service_name,
            action=action,
            final_status=status,
            succeeded=state is LifecycleState.SUCCEEDED,
            state=state,
            error_kind=error.kind if error else None,
            error=str(error) if error else None,
        )
        if error:
            log.warning("%s %s on %s: %s (%s)", action.value, descriptor.service_name,
                        descriptor.host, state.value, error)
        else:
            log.info("%s %s on %s: %s", action.value, descriptor.service_name, descriptor.host, status.value)
        self._emit(descriptor, action, state, status, outcome.error)
        return outcome

    def _timed_out(self, descriptor: ServiceDescriptor, action: Action, status: ServiceStatus) -> OperationOutcome:
        return self._finish(
            descriptor, action, LifecycleState.TIMED_OUT, status,
            TimedOut(f"{descriptor.service_name} on {descriptor.host} did not reach "
                     f"{action.target.value} within {self.settings.timeout:g}s"),
        )

    async def _await_terminal(self, descriptor: ServiceDescriptor, action: Action,
                              status: ServiceStatus, deadline: float) -> OperationOutcome:
        loop = asyncio.get_running_loop()
        self._emit(descriptor, action, LifecycleState.TRANSITIONING, status)
        # A unit that was already "failed" before the start only counts once it has left that state
        watch_failure = not descriptor.failed

        while True:
            if status is action.target:
                return self._finish(descriptor, action, LifecycleState.SUCCEEDED, status)
            remaining = deadline - loop.time()
            if remaining <= 0:
                return self._timed_out(descriptor, action, status)
            await asyncio.sleep(min(self.settings.poll_interval, remaining))
            try:
                current = await asyncio.wait_for(
                    self.backend.query_service(descriptor.host, descriptor.service_name),
                    timeout=max(deadline - loop.time(), 0),
                )
            except asyncio.TimeoutError:
                return self._timed_out(descriptor, action, status)
            except ControlError as exc:
                return self._finish(descriptor, action, LifecycleState.FAILED, status, exc)
            if current.status is not status:
                status = current.status
                self._emit(descriptor, action, LifecycleState.TRANSITIONING, status)
            if action is Action.START and current.failed and watch_failure:
                return self._finish(
                    descriptor, action, LifecycleState.FAILED, status,
                    ActionRejected(f"{descriptor.service_name} on {descriptor.host} entered the failed state"),
                )
            if not current.failed:
                watch_failure = True

    async def apply(self, descriptor: ServiceDescriptor, action: Action) -> OperationOutcome:
        """Drive a single pair from Idle to a terminal state."""
        status = descriptor.status

        if not descriptor.found:
            return self._finish(descriptor, action, LifecycleState.FAILED, ServiceStatus.UNKNOWN,
                                NotFound(descriptor.host, descriptor.service_name))
        if status is action.target:
            return self._finish(descriptor, action, LifecycleState.SUCCEEDED, status)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.timeout
        if status is action.pending:
            return await self._await_terminal(descriptor, action, status, deadline)
        if self.cancelled:
            return self._finish(descriptor, action, LifecycleState.FAILED, status,
                                Cancelled(f"{action.value} of {descriptor.service_name} was not issued"))

        self._emit(descriptor, action, LifecycleState.REQUESTED, status)
        try:
            await asyncio.wait_for(
                self.backend.send_action(descriptor.host, descriptor.service_name, action),
                timeout=self.settings.timeout,
            )
        except asyncio.TimeoutError:
            return self._timed_out(descriptor, action, status)
        except ControlError as exc:
            return self._finish(descriptor, action, LifecycleState.FAILED, status, exc)
        return await self._await_terminal(descriptor, action, status, deadline)

    def _host_failure(self, host: str, selector: ServiceSelector, action: Action,
                      error: ControlError) -> list[OperationOutcome]:
        if isinstance(selector, ByNames):
            names = list(selector.names)
        else:
            names = [selector.pattern]
        return [
            self._finish(
                ServiceDescriptor(host=host, service_name=name, display_name="", status=ServiceStatus.UNKNOWN),
                action, LifecycleState.FAILED, ServiceStatus.UNKNOWN, error,
            )
            for name in names
        ]

    async def locate_all(self, hosts: list[str], selector: ServiceSelector) -> list[list[ServiceDescriptor] | ControlError]:
        """Connect and locate on every host; per-host failures come back as errors."""
        connect_errors = await self.backend.connect(hosts)

        async def _locate_one(host: str):
            error = connect_errors.get(host)
            if error:
                return ServiceManagerUnreachable(host, error)
            try:
                return await asyncio.wait_for(locate(self.backend, host, selector), timeout=self.settings.timeout)
            except asyncio.TimeoutError:
                return ServiceManagerUnreachable(host, f"no service list within {self.settings.timeout:g}s")
            except ControlError as exc:
                return exc

        return list(await asyncio.gather(*[_locate_one(h) for h in hosts]))

    async def run(self, action: Action, hosts: list[str], selector: ServiceSelector) -> list[OperationOutcome]:
        located = await self.locate_all(hosts, selector)
        semaphore = asyncio.Semaphore(self.settings.max_workers)

        async def _worker(descriptor: ServiceDescriptor) -> list[OperationOutcome]:
            async with semaphore:
                return [await self.apply(descriptor, action)]

        async def _failed(outcomes: list[OperationOutcome]) -> list[OperationOutcome]:
            return outcomes

        jobs = []
        for host, result in zip(hosts, located):
            if isinstance(result, ControlError):
                jobs.append(_failed(self._host_failure(host, selector, action, result)))
                continue
            if not result and isinstance(selector, ByPattern):
                log.info("Nothing on %s matches %r, skipping", host, selector.pattern)
            jobs.extend(_worker(d) for d in result)

        batches = await asyncio.gather(*jobs)
        return [outcome for batch in batches for outcome in batch]
