#!/usr/bin/env python3
"""
Data model for chiro-deploy.

Environments, topology and invocations are immutable values created once and
passed down. The DeploymentReport is the only accumulator: the orchestrator
appends phase results to it, the dispatcher attaches health results and then
freezes it with ``finish()``.
"""

from __future__ import annotations

import shlex
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .config_constants import BACKEND_BINARY
from .errors import InvalidOperation


class Operation(Enum):
    BUILD = 'build'
    UP = 'up'
    DOWN = 'down'
    RESTART = 'restart'
    LOGS = 'logs'
    STATUS = 'status'
    CLEAN = 'clean'

    @classmethod
    def parse(cls, value: "str | Operation") -> "Operation":
        """Parse a CLI operation name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise InvalidOperation(str(value), [member.value for member in cls])


@dataclass(frozen=True)
class Topology:
    """Static service membership: infrastructure first, then applications."""
    infrastructure: Tuple[str, ...]
    applications: Tuple[str, ...]

    @property
    def all_services(self) -> Tuple[str, ...]:
        return self.infrastructure + self.applications

    def is_infrastructure(self, service: str) -> bool:
        return service in self.infrastructure

    def is_application(self, service: str) -> bool:
        return service in self.applications


@dataclass(frozen=True)
class Environment:
    """A resolved deployment environment. Never mutated after resolution."""
    name: str
    compose_file: Path
    env_file: Path
    log_level: str
    project_name: str
    repo_root: Path
    env_file_present: bool = True
    allowed_operations: Tuple[Operation, ...] = tuple(Operation)

    def allows(self, operation: Operation) -> bool:
        return operation in self.allowed_operations


@dataclass(frozen=True)
class Flags:
    force: bool = False
    verbose: bool = False
    build: bool = False
    tail: Optional[int] = None


@dataclass(frozen=True)
class Invocation:
    """A fully constructed backend command plus its execution context."""
    tokens: Tuple[str, ...]
    cwd: Optional[Path] = None
    env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.tokens:
            raise ValueError("Invocation token list must not be empty")
        if self.tokens[0] != BACKEND_BINARY:
            raise ValueError(
                f"Invocation must start with '{BACKEND_BINARY}', got '{self.tokens[0]}'"
            )

    def command_line(self) -> str:
        return shlex.join(self.tokens)


class HealthStatus(Enum):
    HEALTHY = 'healthy'
    UNHEALTHY = 'unhealthy'
    UNKNOWN = 'unknown'


@dataclass(frozen=True)
class HealthProbe:
    service: str
    kind: str
    target: Optional[str] = None
    timeout: float = 5.0


@dataclass(frozen=True)
class ProbeResult:
    service: str
    status: HealthStatus
    detail: str = ''


class PhaseStatus(Enum):
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    SKIPPED = 'skipped'


@dataclass(frozen=True)
class PhaseResult:
    name: str
    tokens: Tuple[str, ...] = ()
    exit_code: Optional[int] = None
    status: PhaseStatus = PhaseStatus.SKIPPED
    output: str = ''
    duration: float = 0.0
    detail: str = ''


class OverallStatus(Enum):
    SUCCESS = 'success'
    PARTIAL = 'partial'
    FAILURE = 'failure'


@dataclass
class DeploymentReport:
    """Per-dispatch record of phase outcomes and health results."""
    environment: str
    operation: Operation
    services: Tuple[str, ...] = ()
    dispatch_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    phases: List[PhaseResult] = field(default_factory=list)
    health: List[ProbeResult] = field(default_factory=list)
    health_checked: bool = False
    cancelled: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def _ensure_open(self) -> None:
        if self.finished_at is not None:
            raise RuntimeError(f"Deployment report {self.dispatch_id} is already finished")

    def record_phase(
        self,
        name: str,
        invocation: Optional[Invocation],
        exit_code: Optional[int],
        output: str = '',
        duration: float = 0.0,
        detail: str = '',
    ) -> PhaseResult:
        self._ensure_open()
        result = PhaseResult(
            name=name,
            tokens=invocation.tokens if invocation else (),
            exit_code=exit_code,
            status=PhaseStatus.SUCCEEDED if exit_code == 0 else PhaseStatus.FAILED,
            output=output,
            duration=duration,
            detail=detail,
        )
        self.phases.append(result)
        return result

    def record_skipped(self, name: str, reason: str) -> PhaseResult:
        self._ensure_open()
        result = PhaseResult(name=name, status=PhaseStatus.SKIPPED, detail=reason)
        self.phases.append(result)
        return result

    def set_health(self, results: List[ProbeResult]) -> None:
        self._ensure_open()
        self.health = list(results)
        self.health_checked = True

    def mark_cancelled(self) -> None:
        self._ensure_open()
        self.cancelled = True

    def finish(self) -> "DeploymentReport":
        if self.finished_at is None:
            self.finished_at = time.time()
        return self

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    @property
    def duration(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.time()
        return end - self.started_at

    @property
    def exit_codes(self) -> List[Optional[int]]:
        return [phase.exit_code for phase in self.phases]

    @property
    def overall_status(self) -> OverallStatus:
        if not self.phases:
            return OverallStatus.FAILURE
        # A phase aborted by an execution error has no exit code and never counts as succeeded.
        succeeded = [p for p in self.phases if p.status is PhaseStatus.SUCCEEDED and p.exit_code == 0]
        if len(succeeded) == len(self.phases):
            return OverallStatus.SUCCESS
        if succeeded:
            return OverallStatus.PARTIAL
        return OverallStatus.FAILURE

    @property
    def succeeded(self) -> bool:
        return self.overall_status is OverallStatus.SUCCESS

    def health_for(self, service: str) -> Optional[ProbeResult]:
        for result in self.health:
            if result.service == service:
                return result
        return None
