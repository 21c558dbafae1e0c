class ControlError(Exception):
    """Base class for everything aosctl reports as a failure."""

    @property
    def kind(self) -> str:
        return type(self).__name__


# Caller-input errors: the whole invocation fails before any remote call.

class NoTargetHost(ControlError):
    def __init__(self, message: str = "No target host given and no active computer name is configured"):
        super().__init__(message)


class AmbiguousSelector(ControlError):
    pass


class ConfigError(ControlError):
    pass


class InvalidInput(ControlError):
    pass


# Per (host, service) errors: captured into that pair's outcome.

class ServiceManagerUnreachable(ControlError):
    def __init__(self, host: str, reason: str):
        super().__init__(f"{host}: {reason}")
        self.host = host
        self.reason = reason


class ActionRejected(ControlError):
    pass


class TimedOut(ControlError):
    pass


class NotFound(ControlError):
    def __init__(self, host: str, service: str):
        super().__init__(f"Service {service} not found on {host}")
        self.host = host
        self.service = service


class Cancelled(ControlError):
    pass
