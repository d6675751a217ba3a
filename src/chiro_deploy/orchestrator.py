#!/usr/bin/env python3
"""
Topology orchestrator: sequences the phases of each operation.

Phase plans per operation:

    build    build
    up       [build] -> start-infrastructure -> wait-infrastructure -> start-applications
             (a subset only starts what it names)
    down     stop
    restart  restart
    logs     logs
    status   status
    clean    teardown -> prune-images -> [prune-volumes]

Rules:
- A failed blocking phase (build / start-infrastructure in up) skips every
  remaining phase. Application failures never roll back infrastructure.
- Non-blocking phases (clean teardown) let the next independent phase run.
- ExecutionError aborts the dispatch: the phase is recorded FAILED without
  an exit code, the rest SKIPPED, and the error propagates.
- Cancellation is only honoured between phases.
- Invocations are built lazily, right before their phase runs, so a skipped
  phase never builds one.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .backend import CommandRunner
from .builder import build_invocation, build_prune_invocations, validate_services
from .errors import ExecutionError
from .models import DeploymentReport, Environment, Flags, Invocation, Operation
from .settings import DeploySettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Phase:
    name: str
    build: Optional[Callable[[], Invocation]] = None
    blocking: bool = False
    settle_seconds: float = 0.0


class TopologyOrchestrator:
    def __init__(
        self,
        runner: CommandRunner,
        settings: DeploySettings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runner = runner
        self.settings = settings
        self.topology = settings.topology
        self.sleep = sleep

    def execute(
        self,
        environment: Environment,
        operation: Operation,
        services: Sequence[str],
        flags: Flags,
        report: DeploymentReport,
        cancel: Optional[threading.Event] = None,
    ) -> DeploymentReport:
        selected = validate_services(services, self.topology)
        planners: Dict[Operation, Callable[[Environment, Tuple[str, ...], Flags], List[Phase]]] = {
            Operation.BUILD: self._plan_build,
            Operation.UP: self._plan_up,
            Operation.DOWN: self._plan_down,
            Operation.RESTART: self._plan_restart,
            Operation.LOGS: self._plan_logs,
            Operation.STATUS: self._plan_status,
            Operation.CLEAN: self._plan_clean,
        }
        phases = planners[operation](environment, selected, flags)
        logger.debug(f"Phase plan for {operation.value}: {[phase.name for phase in phases]}")
        self._run_phases(phases, report, cancel)
        return report

    def _compose(self, environment: Environment, operation: Operation, services: Sequence[str], flags: Flags) -> Callable[[], Invocation]:
        return lambda: build_invocation(environment, operation, services, flags, self.settings)

    def _plan_build(self, environment, selected, flags) -> List[Phase]:
        return [Phase('build', self._compose(environment, Operation.BUILD, selected, flags))]

    def _plan_up(self, environment, selected, flags) -> List[Phase]:
        if selected:
            # Named apps pull in their infrastructure through compose depends_on.
            infra = tuple(s for s in selected if self.topology.is_infrastructure(s))
            apps = tuple(s for s in selected if self.topology.is_application(s))
        else:
            infra = self.topology.infrastructure
            apps = self.topology.applications

        phases: List[Phase] = []
        if flags.build:
            phases.append(
                Phase('build', self._compose(environment, Operation.BUILD, selected, flags), blocking=True)
            )
        if infra:
            phases.append(
                Phase('start-infrastructure', self._compose(environment, Operation.UP, infra, flags), blocking=True)
            )
        if infra and apps:
            phases.append(Phase('wait-infrastructure', settle_seconds=self.settings.settle_seconds))
        if apps:
            phases.append(
                Phase('start-applications', self._compose(environment, Operation.UP, apps, flags))
            )
        return phases

    def _plan_down(self, environment, selected, flags) -> List[Phase]:
        return [Phase('stop', self._compose(environment, Operation.DOWN, selected, flags))]

    def _plan_restart(self, environment, selected, flags) -> List[Phase]:
        return [Phase('restart', self._compose(environment, Operation.RESTART, selected, flags))]

    def _plan_logs(self, environment, selected, flags) -> List[Phase]:
        return [Phase('logs', self._compose(environment, Operation.LOGS, selected, flags))]

    def _plan_status(self, environment, selected, flags) -> List[Phase]:
        return [Phase('status', self._compose(environment, Operation.STATUS, selected, flags))]

    def _plan_clean(self, environment, selected, flags) -> List[Phase]:
        phases = [Phase('teardown', self._compose(environment, Operation.CLEAN, selected, flags))]
        prune_names = ['prune-images', 'prune-volumes']
        for name, invocation in zip(prune_names, build_prune_invocations(environment, flags)):
            phases.append(Phase(name, lambda invocation=invocation: invocation))
        return phases

    def _run_phases(
        self,
        phases: List[Phase],
        report: DeploymentReport,
        cancel: Optional[threading.Event],
    ) -> None:
        for index, phase in enumerate(phases):
            remaining = phases[index:]

            if cancel is not None and cancel.is_set():
                logger.warning(f"Dispatch cancelled before phase '{phase.name}'")
                report.mark_cancelled()
                for skipped in remaining:
                    report.record_skipped(skipped.name, "dispatch cancelled")
                return

            logger.info(f"### PHASE {index + 1}/{len(phases)}: {phase.name} ###")

            if phase.build is None:
                logger.info(f"Waiting {phase.settle_seconds:g}s for infrastructure to settle...")
                self.sleep(phase.settle_seconds)
                report.record_phase(
                    phase.name, None, 0,
                    duration=phase.settle_seconds,
                    detail=f"settled for {phase.settle_seconds:g}s",
                )
                continue

            invocation = phase.build()
            started = time.monotonic()
            try:
                result = self.runner.run(invocation)
            except ExecutionError as e:
                logger.error(f"Phase '{phase.name}' aborted: {e}")
                report.record_phase(
                    phase.name, invocation, None,
                    duration=time.monotonic() - started,
                    detail=str(e),
                )
                for skipped in phases[index + 1:]:
                    report.record_skipped(skipped.name, f"'{phase.name}' aborted")
                raise
            duration = time.monotonic() - started
            report.record_phase(
                phase.name, invocation, result.exit_code,
                output=result.output,
                duration=duration,
            )

            if result.ok:
                logger.info(f"Phase '{phase.name}' completed in {duration:.1f}s")
                continue

            logger.error(f"Phase '{phase.name}' failed with exit code {result.exit_code}")
            if phase.blocking:
                for skipped in phases[index + 1:]:
                    report.record_skipped(skipped.name, f"'{phase.name}' failed")
                return
