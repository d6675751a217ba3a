#!/usr/bin/env python3
"""
chiro-deploy command line interface.

Usage:
    chiro-deploy OPERATION [-e ENV] [-s SERVICES] [--force] [--verbose] [--build]

Operations:
    build      Build images (--force disables the layer cache)
    up         Start infrastructure, wait for it to settle, start applications
    down       Stop services (--force also removes volumes)
    restart    Restart services in place
    logs       Show the last --tail lines of service logs
    status     Show container status
    clean      Tear down and prune images (--force also removes volumes)

Exit codes:
    0    success
    1    a phase exited nonzero (or was skipped)
    2    configuration error (unknown environment/service, missing compose file)
    3    execution error (docker not found, process killed or timed out)
    130  cancelled between phases

Examples:
    chiro-deploy up                                # dev, all services
    chiro-deploy up -e staging --build             # rebuild, then start
    chiro-deploy down -e prod -s core-business-service --force
    chiro-deploy logs -s api-gateway --tail 500
    chiro-deploy status --verbose
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config_constants import (
    EXIT_CANCELLED,
    EXIT_CONFIGURATION_ERROR,
    EXIT_EXECUTION_ERROR,
    EXIT_OPERATION_FAILED,
    EXIT_SUCCESS,
)
from .backend import CommandRunner
from .dispatcher import dispatch
from .environments import list_environments, resolve_environment
from .errors import ConfigurationError, ExecutionError
from .models import DeploymentReport, Flags, HealthStatus, Operation, OverallStatus, PhaseStatus
from .settings import DeploySettings, load_settings

logger = logging.getLogger(__name__)

# Color codes for output
BLUE = '\033[94m'
GREEN = '\033[92m'
YELLOW = '\033[93m'
RED = '\033[91m'
RESET = '\033[0m'


def info(msg: str) -> None:
    print(f"{BLUE}[INFO]{RESET} {msg}", flush=True)


def success(msg: str) -> None:
    print(f"{GREEN}[SUCCESS]{RESET} {msg}", flush=True)


def warn(msg: str) -> None:
    print(f"{YELLOW}[WARN]{RESET} {msg}", flush=True)


def error(msg: str) -> None:
    print(f"{RED}[ERROR]{RESET} {msg}", file=sys.stderr, flush=True)


def get_cli_version() -> str:
    try:
        from importlib.metadata import PackageNotFoundError, version as package_version

        return package_version("chiro-deploy")
    except PackageNotFoundError:
        return __version__


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure logging module with specified level.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='[%(levelname)s] %(message)s',
        force=True
    )


def _split_services(values: Optional[List[str]]) -> List[str]:
    services: List[str] = []
    for value in values or []:
        services.extend(part.strip() for part in value.split(',') if part.strip())
    return services


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    """
    Parse command-line arguments for chiro-deploy.

    Supports arguments:
    1. OPERATION - build|up|down|restart|logs|status|clean
    2. -e, --environment <name> - Target environment (default from settings)
    3. -s, --services <a,b> - Comma-separated service subset (repeatable)
    4. --force - No-cache builds, volume removal on down/clean
    5. --verbose - Backend diagnostic output and DEBUG logging
    6. --build - Rebuild images before up
    7. --tail <n> - Log lines for logs
    8. --stream - Echo backend output while it runs
    9. --dry-run - Print invocations without executing them
    10. --repo-root <path> - Repository root (alias --root-folder)
    11. --log-level <level> - Override the environment's log level
    12. --list-environments / --list-services / --print-config - Inspect and exit
    """
    parser = argparse.ArgumentParser(
        prog='chiro-deploy',
        description='Chiro ERP deployment orchestrator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s up                                   # Start dev (all services)
  %(prog)s up -e staging --build                # Rebuild images, then start
  %(prog)s down -e prod -s core-business-service --force
  %(prog)s logs -s api-gateway --tail 500
  %(prog)s --list-services
        '''
    )

    parser.add_argument(
        'operation',
        nargs='?',
        type=str.lower,
        choices=[operation.value for operation in Operation],
        help='Operation to run'
    )

    parser.add_argument(
        '-e', '--environment',
        default=None,
        metavar='NAME',
        help='Target environment (default: deploy.default_environment, usually dev)'
    )

    parser.add_argument(
        '-s', '--services',
        action='append',
        default=None,
        metavar='A,B',
        help='Comma-separated service subset (default: all services)'
    )

    parser.add_argument('--force', action='store_true', help='Disable build cache; remove volumes on down/clean')
    parser.add_argument('--verbose', action='store_true', help='Verbose backend output and DEBUG logging')
    parser.add_argument('--build', action='store_true', help='Build images before starting (up only)')
    parser.add_argument('--tail', type=int, default=None, metavar='N', help='Number of log lines (logs only)')
    parser.add_argument('--stream', action='store_true', help='Echo backend output while it runs')
    parser.add_argument('--dry-run', action='store_true', help='Print invocations without executing them')

    parser.add_argument(
        '--repo-root',
        type=Path,
        default=None,
        metavar='PATH',
        help='Repository root directory (default: discovered from cwd)'
    )
    parser.add_argument(
        '--root-folder',
        dest='repo_root',
        type=Path,
        default=None,
        metavar='PATH',
        help='Alias for --repo-root'
    )

    parser.add_argument(
        '--log-level',
        type=str.upper,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help="Log level (default: the environment's log level)"
    )

    parser.add_argument('--list-environments', action='store_true', help='List environments and exit')
    parser.add_argument('--list-services', action='store_true', help='List the service topology and exit')
    parser.add_argument('--print-config', action='store_true', help='Print the resolved environment as JSON and exit')
    parser.add_argument('--version', action='version', version=f"%(prog)s {get_cli_version()}")

    args = parser.parse_args(argv)
    args.services = _split_services(args.services)

    inspecting = args.list_environments or args.list_services or args.print_config
    if args.operation is None and not inspecting:
        parser.error("an operation is required (build, up, down, restart, logs, status, clean)")
    return args


def print_environments(settings: DeploySettings) -> None:
    print("\n" + "=" * 70)
    print("ENVIRONMENTS")
    print("=" * 70)
    for name in list_environments(settings):
        config = settings.environments[name]
        marker = " (default)" if name == settings.default_environment else ""
        print(f"\n{BLUE}{name}{RESET}{marker}")
        print(f"  Compose file: {config.compose_file}")
        print(f"  Variable file: {config.env_file}")
        print(f"  Log level: {config.log_level}")
        print(f"  Operations: {', '.join(op.value for op in config.allowed_operations)}")
    print("")


def print_services(settings: DeploySettings) -> None:
    probes = {probe.service: probe for probe in settings.probes}
    print("\n" + "=" * 70)
    print("SERVICE TOPOLOGY")
    print("=" * 70)
    for title, services in (
        ("Infrastructure (started first)", settings.topology.infrastructure),
        ("Applications", settings.topology.applications),
    ):
        print(f"\n{BLUE}{title}{RESET}")
        for service in services:
            probe = probes.get(service)
            suffix = f"  [probe: {probe.kind}{' ' + probe.target if probe.target else ''}]" if probe else ""
            print(f"  - {service}{suffix}")
    print("")


def print_config(settings: DeploySettings, environment_id: str) -> None:
    environment = resolve_environment(environment_id, settings)
    print(json.dumps({
        'environment': environment.name,
        'compose_file': str(environment.compose_file),
        'env_file': str(environment.env_file),
        'env_file_present': environment.env_file_present,
        'project_name': environment.project_name,
        'log_level': environment.log_level,
        'allowed_operations': [op.value for op in environment.allowed_operations],
        'repo_root': str(settings.repo_root),
        'infrastructure': list(settings.topology.infrastructure),
        'applications': list(settings.topology.applications),
        'settle_seconds': settings.settle_seconds,
    }, indent=2))


_STATUS_COLORS = {
    PhaseStatus.SUCCEEDED: GREEN,
    PhaseStatus.FAILED: RED,
    PhaseStatus.SKIPPED: YELLOW,
    HealthStatus.HEALTHY: GREEN,
    HealthStatus.UNHEALTHY: RED,
    HealthStatus.UNKNOWN: YELLOW,
}


def print_report(report: DeploymentReport, streamed: bool = False) -> None:
    """Print the human-readable dispatch summary.

    Captured logs/status output is replayed unless it was already streamed.
    """
    replayed = [] if streamed else report.phases
    for phase in replayed:
        if phase.name in ('logs', 'status') and phase.output:
            print(phase.output, end='' if phase.output.endswith('\n') else '\n')

    print("\n" + "=" * 70)
    info(f"Dispatch {report.dispatch_id}: {report.operation.value} on '{report.environment}'")
    info(f"Services: {', '.join(report.services) or 'all'}")
    print("=" * 70)

    for phase in report.phases:
        color = _STATUS_COLORS[phase.status]
        exit_code = '-' if phase.exit_code is None else phase.exit_code
        line = f"  {phase.name:<22} {color}{phase.status.value:<10}{RESET} exit={exit_code} ({phase.duration:.1f}s)"
        if phase.detail:
            line += f"  {phase.detail}"
        print(line)

    if report.health_checked:
        print("\nHealth:")
        if not report.health:
            print("  (no probes configured)")
        for result in report.health:
            color = _STATUS_COLORS[result.status]
            print(f"  {result.service:<30} {color}{result.status.value:<10}{RESET} {result.detail}")

    print("=" * 70)
    status = report.overall_status
    if report.cancelled:
        warn(f"CANCELLED after {report.duration:.1f}s")
    elif status is OverallStatus.SUCCESS:
        success(f"{report.operation.value.upper()} COMPLETE ({report.duration:.1f}s)")
    elif status is OverallStatus.PARTIAL:
        warn(f"{report.operation.value.upper()} PARTIALLY FAILED ({report.duration:.1f}s)")
    else:
        error(f"{report.operation.value.upper()} FAILED ({report.duration:.1f}s)")
    print("")


def exit_code_for(report: DeploymentReport) -> int:
    if report.cancelled:
        return EXIT_CANCELLED
    if report.overall_status is OverallStatus.SUCCESS:
        return EXIT_SUCCESS
    return EXIT_OPERATION_FAILED


def main(argv: Optional[list] = None) -> int:
    args = parse_arguments(argv)
    configure_logging(args.log_level or ('DEBUG' if args.verbose else 'INFO'))

    try:
        settings = load_settings(args.repo_root)
        environment_id = args.environment or settings.default_environment

        if args.list_environments:
            print_environments(settings)
        if args.list_services:
            print_services(settings)
        if args.print_config:
            print_config(settings, environment_id)
        if args.operation is None:
            return EXIT_SUCCESS

        env_config = settings.environments.get(environment_id.strip().lower())
        if env_config and not args.log_level and not args.verbose:
            configure_logging(env_config.log_level)

        cancel = threading.Event()

        def _request_cancel(signum, _frame) -> None:
            warn(f"Received signal {signum}; stopping after the current phase")
            cancel.set()

        signal.signal(signal.SIGTERM, _request_cancel)

        runner = CommandRunner(
            stream=args.stream,
            timeout=settings.command_timeout,
            dry_run=args.dry_run,
        )
        flags = Flags(force=args.force, verbose=args.verbose, build=args.build, tail=args.tail)
        report = dispatch(
            environment_id,
            args.operation,
            args.services,
            flags,
            settings=settings,
            runner=runner,
            cancel=cancel,
        )
    except ConfigurationError as e:
        error(str(e))
        return EXIT_CONFIGURATION_ERROR
    except ExecutionError as e:
        if e.report is not None:
            print_report(e.report, streamed=args.stream)
        error(f"Execution error: {e}")
        return EXIT_EXECUTION_ERROR

    print_report(report, streamed=args.stream)
    return exit_code_for(report)


if __name__ == '__main__':
    raise SystemExit(main())
