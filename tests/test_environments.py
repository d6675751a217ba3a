"""
Environment resolver tests.
"""

import logging

import pytest

from chiro_deploy.environments import list_environments, resolve_environment
from chiro_deploy.errors import ConfigurationNotFound, InvalidEnvironment
from chiro_deploy.models import Operation


class TestResolveEnvironment:
    def test_resolves_dev(self, settings, repo):
        env = resolve_environment("dev", settings)

        assert env.name == "dev"
        assert env.compose_file == (repo / "docker-compose.yml").resolve()
        assert env.env_file == (repo / ".env.dev").resolve()
        assert env.env_file_present is True
        assert env.log_level == "DEBUG"
        assert env.project_name == "chiro-erp-dev"

    def test_name_is_normalized(self, settings):
        assert resolve_environment("  PROD ", settings).name == "prod"

    def test_unknown_environment(self, settings):
        with pytest.raises(InvalidEnvironment) as excinfo:
            resolve_environment("qa", settings)

        assert excinfo.value.available == ("dev", "staging", "prod")
        assert "qa" in str(excinfo.value)

    def test_missing_compose_file_is_fatal(self, settings, repo):
        (repo / "docker-compose.prod.yml").unlink()

        with pytest.raises(ConfigurationNotFound, match="docker-compose.prod.yml"):
            resolve_environment("prod", settings)

    def test_missing_variable_file_only_warns(self, settings, caplog):
        with caplog.at_level(logging.WARNING):
            env = resolve_environment("staging", settings)

        assert env.env_file_present is False
        assert any(".env.staging" in record.getMessage() for record in caplog.records)

    def test_allowed_operations_carried(self, settings):
        env = resolve_environment("prod", settings)

        assert not env.allows(Operation.CLEAN)
        assert env.allows(Operation.UP)

    def test_environment_is_immutable(self, settings):
        env = resolve_environment("dev", settings)

        with pytest.raises(Exception):
            env.name = "prod"


def test_list_environments(settings):
    assert list_environments(settings) == ["dev", "staging", "prod"]
