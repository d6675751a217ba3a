"""Environment resolution: environment name -> immutable Environment."""

from __future__ import annotations

import logging
from typing import List

from .errors import ConfigurationNotFound, InvalidEnvironment
from .models import Environment
from .settings import DeploySettings

logger = logging.getLogger(__name__)


def list_environments(settings: DeploySettings) -> List[str]:
    return list(settings.environments)


def resolve_environment(environment_id: str, settings: DeploySettings) -> Environment:
    """
    Resolve an environment name against the configured closed set.

    A missing topology (compose) file is fatal. A missing variable file only
    warns: the builder then leaves out --env-file and the backend falls back
    to its own defaults.

    Raises:
        InvalidEnvironment: name is not a configured environment
        ConfigurationNotFound: compose file does not exist
    """
    name = (environment_id or '').strip().lower()
    config = settings.environments.get(name)
    if config is None:
        raise InvalidEnvironment(environment_id, list_environments(settings))

    compose_file = (settings.repo_root / config.compose_file).resolve()
    env_file = (settings.repo_root / config.env_file).resolve()

    if not compose_file.is_file():
        raise ConfigurationNotFound(name, compose_file)

    env_file_present = env_file.is_file()
    if not env_file_present:
        logger.warning(
            f"Variable file for environment '{name}' not found: {env_file} "
            "(continuing with backend defaults)"
        )

    logger.debug(f"Resolved environment '{name}': compose={compose_file}, env={env_file}")
    return Environment(
        name=name,
        compose_file=compose_file,
        env_file=env_file,
        log_level=config.log_level,
        project_name=f"{settings.project_name}-{name}",
        repo_root=settings.repo_root,
        env_file_present=env_file_present,
        allowed_operations=config.allowed_operations,
    )
