#!/usr/bin/env python3
"""
Command builder: (environment, operation, services, flags) -> Invocation.

Pure functions only. Nothing here launches a process, so every invocation can
be asserted on in unit tests.

Every compose invocation carries the environment's compose file and, when it
exists, its variable file as explicit arguments, so the same logical command
is reproducible from any working directory:

    docker compose --project-name <project> -f <compose> [--env-file <vars>] [--verbose] <subcommand> ...

The force flag has two unrelated effects that depend on the operation:
- build:             --no-cache
- down / clean:      --volumes (and volume pruning for clean)
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .config_constants import BACKEND_BINARY, COMPOSE_PROJECT_LABEL, COMPOSE_SUBCOMMAND
from .errors import UnknownService
from .models import Environment, Flags, Invocation, Operation, Topology
from .settings import DeploySettings


def validate_services(services: Iterable[str], topology: Topology) -> Tuple[str, ...]:
    """Normalize a service subset; fail on any name outside the topology.

    Order is preserved and duplicates are dropped. All unknown names are
    reported at once.
    """
    selected: List[str] = []
    for service in services:
        name = service.strip()
        if name and name not in selected:
            selected.append(name)

    unknown = [name for name in selected if name not in topology.all_services]
    if unknown:
        raise UnknownService(unknown, topology.all_services)
    return tuple(selected)


def compose_base_tokens(environment: Environment, flags: Optional[Flags] = None) -> List[str]:
    tokens = [
        BACKEND_BINARY, COMPOSE_SUBCOMMAND,
        '--project-name', environment.project_name,
        '-f', str(environment.compose_file),
    ]
    if environment.env_file_present:
        tokens += ['--env-file', str(environment.env_file)]
    if flags is not None and flags.verbose:
        tokens.append('--verbose')
    return tokens


def _subcommand_tokens(operation: Operation, flags: Flags, settings: DeploySettings) -> List[str]:
    if operation is Operation.BUILD:
        tokens = ['build']
        if flags.force:
            tokens.append('--no-cache')
        return tokens

    if operation is Operation.UP:
        return ['up', '--detach']

    if operation is Operation.DOWN:
        tokens = ['down', '--remove-orphans']
        if flags.force:
            tokens.append('--volumes')
        return tokens

    if operation is Operation.RESTART:
        return ['restart']

    if operation is Operation.LOGS:
        tail = flags.tail if flags.tail is not None else settings.logs_tail
        return ['logs', '--no-color', '--tail', str(tail)]

    if operation is Operation.STATUS:
        return ['ps', '--all']

    if operation is Operation.CLEAN:
        tokens = ['down', '--remove-orphans', '--rmi', 'local']
        if flags.force:
            tokens.append('--volumes')
        return tokens

    raise ValueError(f"Unhandled operation: {operation}")


def build_invocation(
    environment: Environment,
    operation: Operation,
    services: Sequence[str],
    flags: Flags,
    settings: DeploySettings,
) -> Invocation:
    """Build the backend invocation for one phase.

    An empty ``services`` targets the whole declared topology. A non-empty
    subset is validated before any token is assembled.

    Raises:
        UnknownService: a requested service is not part of the topology
    """
    selected = validate_services(services, settings.topology)

    tokens = compose_base_tokens(environment, flags)
    tokens += _subcommand_tokens(operation, flags, settings)
    tokens += list(selected)

    env = {'DOCKER_BUILDKIT': '1'} if operation is Operation.BUILD else {}
    return Invocation(tokens=tuple(tokens), cwd=environment.repo_root, env=env)


def build_prune_invocations(environment: Environment, flags: Flags) -> List[Invocation]:
    """Pruning phase of clean: images always, volumes only when forced."""
    label_filter = f"label={COMPOSE_PROJECT_LABEL}={environment.project_name}"
    invocations = [
        Invocation(
            tokens=(BACKEND_BINARY, 'image', 'prune', '--force', '--filter', label_filter),
            cwd=environment.repo_root,
        )
    ]
    if flags.force:
        invocations.append(
            Invocation(
                tokens=(BACKEND_BINARY, 'volume', 'prune', '--force', '--filter', label_filter),
                cwd=environment.repo_root,
            )
        )
    return invocations


def build_probe_invocation(environment: Environment, service: str) -> Invocation:
    """Container state query used by container health probes."""
    tokens = compose_base_tokens(environment) + ['ps', '--all', '--format', 'json', service]
    return Invocation(tokens=tuple(tokens), cwd=environment.repo_root)


def extract_config_references(invocation: Invocation) -> Tuple[Path, Optional[Path]]:
    """Recover (compose_file, env_file) from a compose invocation's tokens."""
    compose_file: Optional[Path] = None
    env_file: Optional[Path] = None
    tokens = list(invocation.tokens)

    for index, token in enumerate(tokens[:-1]):
        if token == '-f' and compose_file is None:
            compose_file = Path(tokens[index + 1])
        elif token == '--env-file' and env_file is None:
            env_file = Path(tokens[index + 1])

    if compose_file is None:
        raise ValueError(f"Invocation has no compose file reference: {invocation.command_line()}")
    return compose_file, env_file
