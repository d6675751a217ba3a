"""Exception taxonomy for chiro-deploy dispatches."""

from __future__ import annotations

from typing import Iterable, Optional


class DispatchError(Exception):
    """Base class for every error a dispatch can raise."""


class ConfigurationError(DispatchError):
    """Environment-level failure: bad input or missing configuration."""


class SettingsError(ConfigurationError):
    """The deployment settings could not be rendered, parsed or validated."""


class InvalidEnvironment(ConfigurationError):
    def __init__(self, environment_id: str, available: Iterable[str]) -> None:
        self.environment_id = environment_id
        self.available = tuple(available)
        super().__init__(
            f"Unknown environment: '{environment_id}'. "
            f"Available environments: {', '.join(self.available)}"
        )


class ConfigurationNotFound(ConfigurationError):
    def __init__(self, environment_id: str, path) -> None:
        self.environment_id = environment_id
        self.path = path
        super().__init__(f"Topology file for environment '{environment_id}' not found: {path}")


class InvalidOperation(ConfigurationError):
    def __init__(self, operation: str, available: Iterable[str]) -> None:
        self.operation = operation
        super().__init__(
            f"Unknown operation: '{operation}'. Available operations: {', '.join(available)}"
        )


class OperationNotAllowed(ConfigurationError):
    def __init__(self, operation: str, environment_id: str) -> None:
        self.operation = operation
        self.environment_id = environment_id
        super().__init__(f"Operation '{operation}' is not allowed in environment '{environment_id}'")


class UnknownService(ConfigurationError):
    def __init__(self, services: Iterable[str], known: Iterable[str]) -> None:
        self.services = tuple(services)
        self.known = tuple(known)
        super().__init__(
            f"Unknown service(s): {', '.join(self.services)}. "
            f"Known services: {', '.join(self.known)}"
        )


class ExecutionError(DispatchError):
    """The backend binary could not be launched or was killed.

    Fatal to the current dispatch. When raised out of ``dispatch`` the partial
    report is attached as ``report``.
    """

    def __init__(self, message: str, command: Optional[str] = None) -> None:
        super().__init__(message)
        self.command = command
        self.report = None
