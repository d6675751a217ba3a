#!/usr/bin/env python3
"""
Health verifier: run the static probe list and classify each result.

    HEALTHY    probe ran and the service reported healthy
    UNHEALTHY  probe ran and the service reported a failure
    UNKNOWN    probe could not run (target unreachable, backend missing, ...)

Probes are independent reads, so they fan out to a thread pool; verify()
waits for all of them and returns results in declaration order. verify()
never raises.
"""

from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from .backend import CommandRunner
from .builder import build_probe_invocation
from .errors import ExecutionError
from .models import Environment, HealthProbe, HealthStatus, ProbeResult
from .settings import DeploySettings

logger = logging.getLogger(__name__)

USER_AGENT = 'chiro-deploy-healthcheck/1.0'


def parse_container_states(output: str) -> List[dict]:
    """Parse `docker compose ps --format json` (JSON array or one object per line)."""
    text = output.strip()
    if not text:
        return []
    if text.startswith('['):
        return [item for item in json.loads(text) if isinstance(item, dict)]
    return [json.loads(line) for line in text.splitlines() if line.strip().startswith('{')]


class HealthVerifier:
    def __init__(self, runner: CommandRunner, settings: DeploySettings, max_workers: Optional[int] = None) -> None:
        self.runner = runner
        self.settings = settings
        self.max_workers = max_workers or settings.probe_workers

    def verify(self, environment: Environment) -> List[ProbeResult]:
        probes = list(self.settings.probes)
        if not probes:
            logger.info("No health probes configured")
            return []

        logger.info(f"Running {len(probes)} health probes for '{environment.name}'")
        workers = min(self.max_workers, len(probes))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='probe') as pool:
            futures = [pool.submit(self.run_probe, environment, probe) for probe in probes]
            results = [future.result() for future in futures]

        for result in results:
            logger.info(f"  {result.service}: {result.status.value} ({result.detail})")
        return results

    def run_probe(self, environment: Environment, probe: HealthProbe) -> ProbeResult:
        try:
            if getattr(self.runner, 'dry_run', False):
                return ProbeResult(probe.service, HealthStatus.UNKNOWN, "dry run, probe not executed")
            if probe.kind == 'container':
                return self._probe_container(environment, probe)
            if probe.kind == 'http':
                return self._probe_http(probe)
            if probe.kind == 'tcp':
                return self._probe_tcp(probe)
            return ProbeResult(probe.service, HealthStatus.UNKNOWN, f"unsupported probe kind '{probe.kind}'")
        except Exception as e:
            logger.debug(f"Probe for {probe.service} raised: {e!r}")
            return ProbeResult(probe.service, HealthStatus.UNKNOWN, f"probe error: {e}")

    def _probe_container(self, environment: Environment, probe: HealthProbe) -> ProbeResult:
        try:
            result = self.runner.run(
                build_probe_invocation(environment, probe.service), stream=False, timeout=probe.timeout
            )
        except ExecutionError as e:
            return ProbeResult(probe.service, HealthStatus.UNKNOWN, f"backend unavailable: {e}")

        if not result.ok:
            return ProbeResult(
                probe.service, HealthStatus.UNKNOWN, f"status query failed (exit {result.exit_code})"
            )

        containers = parse_container_states(result.output)
        if not containers:
            return ProbeResult(probe.service, HealthStatus.UNHEALTHY, "no container found")

        for container in containers:
            state = str(container.get('State', '')).lower()
            health = str(container.get('Health', '') or '').lower()
            name = container.get('Name', probe.service)
            if state != 'running':
                return ProbeResult(probe.service, HealthStatus.UNHEALTHY, f"{name}: {state or 'unknown state'}")
            if health and health != 'healthy':
                return ProbeResult(probe.service, HealthStatus.UNHEALTHY, f"{name}: running ({health})")

        return ProbeResult(probe.service, HealthStatus.HEALTHY, f"{len(containers)} container(s) running")

    def _probe_http(self, probe: HealthProbe) -> ProbeResult:
        request = urllib.request.Request(probe.target, headers={'User-Agent': USER_AGENT})
        try:
            with urllib.request.urlopen(request, timeout=probe.timeout) as response:
                status = response.status
        except urllib.error.HTTPError as e:
            return ProbeResult(probe.service, HealthStatus.UNHEALTHY, f"HTTP {e.code}: {e.reason}")
        except urllib.error.URLError as e:
            return ProbeResult(probe.service, HealthStatus.UNKNOWN, f"connection failed: {e.reason}")
        except OSError as e:
            return ProbeResult(probe.service, HealthStatus.UNKNOWN, f"connection failed: {e}")

        if 200 <= status < 300:
            return ProbeResult(probe.service, HealthStatus.HEALTHY, f"HTTP {status}")
        return ProbeResult(probe.service, HealthStatus.UNHEALTHY, f"HTTP {status}")

    def _probe_tcp(self, probe: HealthProbe) -> ProbeResult:
        host, _, port = str(probe.target).rpartition(':')
        try:
            with socket.create_connection((host, int(port)), timeout=probe.timeout):
                return ProbeResult(probe.service, HealthStatus.HEALTHY, f"accepting connections on {probe.target}")
        except OSError as e:
            return ProbeResult(probe.service, HealthStatus.UNKNOWN, f"connection failed: {e}")
