"""Command dispatcher: validate, resolve, orchestrate, verify, report."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Sequence

from .backend import CommandRunner
from .builder import validate_services
from .environments import resolve_environment
from .errors import ExecutionError, OperationNotAllowed
from .health import HealthVerifier
from .models import DeploymentReport, Flags, Operation
from .orchestrator import TopologyOrchestrator
from .settings import DeploySettings

logger = logging.getLogger(__name__)

# Health is meaningless mid-build, for log tailing, or after teardown.
HEALTH_CHECKED_OPERATIONS = frozenset({Operation.UP, Operation.STATUS, Operation.RESTART})


def dispatch(
    environment_id: str,
    operation: "Operation | str",
    services: Sequence[str],
    flags: Flags,
    *,
    settings: DeploySettings,
    runner: Optional[CommandRunner] = None,
    verifier: Optional[HealthVerifier] = None,
    sleep: Callable[[float], None] = time.sleep,
    cancel: Optional[threading.Event] = None,
) -> DeploymentReport:
    """
    Run one operation against one environment and return its report.

    All validation (operation, environment, allowed operations, service
    names) happens before any process is launched.

    Raises:
        ConfigurationError: invalid input or missing configuration
        ExecutionError: backend unreachable or killed; the partial report is
            attached as ``error.report``
    """
    operation = Operation.parse(operation)
    environment = resolve_environment(environment_id, settings)
    if not environment.allows(operation):
        raise OperationNotAllowed(operation.value, environment.name)
    selected = validate_services(services, settings.topology)

    runner = runner or CommandRunner(timeout=settings.command_timeout)
    orchestrator = TopologyOrchestrator(runner, settings, sleep=sleep)

    report = DeploymentReport(environment=environment.name, operation=operation, services=selected)
    logger.info(
        f"Dispatch {report.dispatch_id}: {operation.value} on '{environment.name}' "
        f"(services: {', '.join(selected) or 'all'})"
    )

    try:
        orchestrator.execute(environment, operation, selected, flags, report, cancel=cancel)
    except ExecutionError as e:
        logger.error(f"Dispatch {report.dispatch_id} aborted: {e}")
        e.report = report.finish()
        raise

    if operation in HEALTH_CHECKED_OPERATIONS and not report.cancelled:
        verifier = verifier or HealthVerifier(runner, settings)
        report.set_health(verifier.verify(environment))

    return report.finish()
