#!/usr/bin/env python3
"""
Deployment settings: render, merge and validate.

Render chain (executed once per CLI invocation):
1. Start from built-in DEFAULT_SETTINGS
2. Render chiro-deploy.defaults.toml.j2 (Jinja2, env in context), expand
   $VAR / ${VAR}, parse TOML, deep merge (key-level, lists replace)
3. Same for chiro-deploy.toml.j2 (local overrides)
4. Write the merged result to chiro-deploy.toml with tomli_w

When no template exists but a rendered chiro-deploy.toml does, it is loaded
as-is. The raw dict is then validated into typed settings; nothing below this
layer reads os.environ for configuration.
"""

from __future__ import annotations

import copy
import logging
import os
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .config_constants import (
    DEFAULT_SETTINGS,
    DEPLOY_CONFIG_DEFAULTS,
    DEPLOY_CONFIG_OVERRIDES,
    DEPLOY_CONFIG_RENDERED,
    REPO_ROOT_ENV_VAR,
    REPO_ROOT_MARKERS,
)
from .errors import InvalidOperation, SettingsError
from .models import HealthProbe, Operation, Topology

logger = logging.getLogger(__name__)

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')
PROBE_KINDS = ('container', 'http', 'tcp')


@dataclass(frozen=True)
class EnvironmentConfig:
    name: str
    compose_file: str
    env_file: str
    log_level: str
    allowed_operations: Tuple[Operation, ...]


@dataclass(frozen=True)
class DeploySettings:
    repo_root: Path
    project_name: str
    default_environment: str
    settle_seconds: float
    logs_tail: int
    command_timeout: Optional[float]
    probe_timeout: float
    probe_workers: int
    topology: Topology
    environments: Dict[str, EnvironmentConfig]
    probes: Tuple[HealthProbe, ...]


def find_repo_root(start: Optional[Path] = None, override: Optional[Path] = None) -> Path:
    """Locate the repository root holding the compose and settings files."""
    if override:
        return Path(override).resolve()

    env_root = os.environ.get(REPO_ROOT_ENV_VAR)
    if env_root:
        return Path(env_root).resolve()

    current = Path(start or Path.cwd()).resolve()
    for directory in [current, *current.parents]:
        if any((directory / marker).exists() for marker in REPO_ROOT_MARKERS):
            return directory
    return current


ENV_VAR_PATTERN = re.compile(r"\$(\w+)|\$\{([^}]+)\}")


def expand_env_vars_or_fail(raw_text: str, source: str) -> str:
    """
    Expand $VAR / ${VAR} using os.environ; fail-fast on missing values.
    """
    missing = set()

    def _replace(match: re.Match) -> str:
        var_name = match.group(1) or match.group(2)
        value = os.environ.get(var_name)
        if value is None or value == "":
            missing.add(var_name)
            return match.group(0)
        return value

    expanded = ENV_VAR_PATTERN.sub(_replace, raw_text)

    if missing:
        raise SettingsError(
            f"Missing required environment values in {source}: {', '.join(sorted(missing))}"
        )
    return expanded


def render_jinja2(template_path: Path, context: dict) -> str:
    """Render a Jinja2 template file with the given context."""
    from jinja2 import StrictUndefined, Template, TemplateError

    logger.debug(f"Rendering Jinja2 template: {template_path}")
    template_content = template_path.read_text()
    try:
        return Template(template_content, undefined=StrictUndefined).render(**context)
    except TemplateError as e:
        raise SettingsError(f"Failed to render template {template_path}: {e}") from e


def parse_toml_string(toml_text: str, source: str) -> dict:
    try:
        return tomllib.loads(toml_text)
    except tomllib.TOMLDecodeError as e:
        raise SettingsError(f"Failed to parse TOML from {source}: {e}") from e


def render_toml_template(template_path: Path, context: dict) -> dict:
    """
    Render a TOML Jinja2 template, expand env vars, and parse.
    """
    rendered = render_jinja2(template_path, {**context, "env": dict(os.environ)})
    expanded = expand_env_vars_or_fail(rendered, str(template_path))
    return parse_toml_string(expanded, str(template_path))


def deep_merge_configs(base: dict, override: dict) -> dict:
    """Key-level deep merge; scalars and lists in ``override`` replace."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge_configs(result[key], value)
        else:
            if key in result:
                logger.debug(f"  Override: {key} = {value} (was: {result[key]})")
            result[key] = value
    return result


def write_rendered_toml(output_path: Path, config: dict) -> None:
    """
    Write rendered TOML to disk using tomli_w.
    """
    import tomli_w

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'wb') as f:
        tomli_w.dump(config, f)


def render_settings(repo_root: Path) -> dict:
    """Run the render chain and return the merged raw settings dict."""
    merged = copy.deepcopy(DEFAULT_SETTINGS)
    defaults_path = repo_root / DEPLOY_CONFIG_DEFAULTS
    overrides_path = repo_root / DEPLOY_CONFIG_OVERRIDES
    rendered_path = repo_root / DEPLOY_CONFIG_RENDERED

    if overrides_path.exists() and not defaults_path.exists():
        raise SettingsError(
            f"Found {DEPLOY_CONFIG_OVERRIDES} without {DEPLOY_CONFIG_DEFAULTS} in {repo_root}"
        )

    if defaults_path.exists():
        merged = deep_merge_configs(merged, render_toml_template(defaults_path, merged))
        if overrides_path.exists():
            merged = deep_merge_configs(merged, render_toml_template(overrides_path, merged))
        write_rendered_toml(rendered_path, merged)
        logger.debug(f"Rendered settings written to {rendered_path}")
    elif rendered_path.exists():
        with open(rendered_path, 'rb') as f:
            try:
                merged = deep_merge_configs(merged, tomllib.load(f))
            except tomllib.TOMLDecodeError as e:
                raise SettingsError(f"Failed to parse TOML from {rendered_path}: {e}") from e
    else:
        logger.debug("No settings files found, using built-in defaults")

    return merged


def _require_str_list(value: Any, name: str) -> Tuple[str, ...]:
    if not isinstance(value, list) or not value:
        raise SettingsError(f"{name} must be a non-empty list of service names")
    if not all(isinstance(item, str) and item.strip() for item in value):
        raise SettingsError(f"{name} must contain only non-empty strings")
    return tuple(item.strip() for item in value)


def _build_topology(raw: dict) -> Topology:
    infrastructure = _require_str_list(raw.get('infrastructure'), 'topology.infrastructure')
    applications = _require_str_list(raw.get('applications'), 'topology.applications')
    overlap = sorted(set(infrastructure) & set(applications))
    if overlap:
        raise SettingsError(
            f"Services cannot be both infrastructure and application: {', '.join(overlap)}"
        )
    return Topology(infrastructure=infrastructure, applications=applications)


def _build_environment(name: str, raw: Any) -> EnvironmentConfig:
    if not isinstance(raw, dict):
        raise SettingsError(f"environments.{name} must be a table")

    compose_file = raw.get('compose_file')
    env_file = raw.get('env_file')
    if not isinstance(compose_file, str) or not compose_file:
        raise SettingsError(f"environments.{name}.compose_file is required")
    if not isinstance(env_file, str) or not env_file:
        raise SettingsError(f"environments.{name}.env_file is required")

    log_level = str(raw.get('log_level', 'INFO')).upper()
    if log_level not in LOG_LEVELS:
        raise SettingsError(
            f"environments.{name}.log_level must be one of {', '.join(LOG_LEVELS)}, got {log_level}"
        )

    allowed_raw = raw.get('allowed_operations')
    if allowed_raw is None:
        allowed = tuple(Operation)
    else:
        try:
            allowed = tuple(Operation.parse(item) for item in allowed_raw)
        except InvalidOperation as e:
            raise SettingsError(f"environments.{name}.allowed_operations: {e}") from e

    return EnvironmentConfig(
        name=name,
        compose_file=compose_file,
        env_file=env_file,
        log_level=log_level,
        allowed_operations=allowed,
    )


def _build_probe(raw: Any, topology: Topology, default_timeout: float) -> HealthProbe:
    if not isinstance(raw, dict):
        raise SettingsError("health.probes entries must be tables")

    service = raw.get('service')
    kind = raw.get('kind', 'container')
    target = raw.get('target')

    if service not in topology.all_services:
        raise SettingsError(f"Health probe references unknown service: {service}")
    if kind not in PROBE_KINDS:
        raise SettingsError(f"Health probe for {service} has invalid kind '{kind}'")
    if kind == 'http' and not target:
        raise SettingsError(f"HTTP health probe for {service} requires a target URL")
    if kind == 'tcp' and (not target or ':' not in str(target)):
        raise SettingsError(f"TCP health probe for {service} requires a host:port target")

    return HealthProbe(
        service=service,
        kind=kind,
        target=target,
        timeout=float(raw.get('timeout', default_timeout)),
    )


def build_settings(raw: dict, repo_root: Path) -> DeploySettings:
    """Validate the merged raw dict into typed settings."""
    deploy = raw.get('deploy', {})
    topology = _build_topology(raw.get('topology', {}))

    environments_raw = raw.get('environments', {})
    if not environments_raw:
        raise SettingsError("No environments defined in [environments]")
    environments = {
        name: _build_environment(name, env_raw) for name, env_raw in environments_raw.items()
    }

    default_environment = deploy.get('default_environment', 'dev')
    if default_environment not in environments:
        raise SettingsError(
            f"deploy.default_environment '{default_environment}' is not a defined environment"
        )

    probe_timeout = float(deploy.get('probe_timeout', 5))
    probes = tuple(
        _build_probe(probe, topology, probe_timeout)
        for probe in raw.get('health', {}).get('probes', [])
    )

    command_timeout = deploy.get('command_timeout')
    return DeploySettings(
        repo_root=repo_root,
        project_name=str(deploy.get('project_name', 'chiro-erp')),
        default_environment=default_environment,
        settle_seconds=float(deploy.get('settle_seconds', 15)),
        logs_tail=int(deploy.get('logs_tail', 100)),
        command_timeout=float(command_timeout) if command_timeout else None,
        probe_timeout=probe_timeout,
        probe_workers=max(1, int(deploy.get('probe_workers', 4))),
        topology=topology,
        environments=environments,
        probes=probes,
    )


def load_settings(repo_root: Optional[Path] = None) -> DeploySettings:
    """Render and validate settings for the given (or discovered) repo root."""
    root = find_repo_root(override=repo_root)
    logger.debug(f"Repository root: {root}")
    return build_settings(render_settings(root), root)
