"""
Settings render chain and validation tests.
"""

from pathlib import Path
import tomllib

import pytest

from chiro_deploy.errors import SettingsError
from chiro_deploy.models import Operation
from chiro_deploy.settings import (
    build_settings,
    deep_merge_configs,
    expand_env_vars_or_fail,
    find_repo_root,
    load_settings,
    render_settings,
)
from chiro_deploy.config_constants import DEFAULT_SETTINGS


class TestDefaults:
    def test_builtin_topology(self, settings):
        assert settings.topology.infrastructure == ("postgres", "zookeeper", "kafka", "redis")
        assert "core-business-service" in settings.topology.applications
        assert "api-gateway" in settings.topology.applications

    def test_builtin_environments(self, settings):
        assert list(settings.environments) == ["dev", "staging", "prod"]
        assert settings.environments["dev"].log_level == "DEBUG"
        assert settings.default_environment == "dev"

    def test_prod_forbids_clean(self, settings):
        assert Operation.CLEAN not in settings.environments["prod"].allowed_operations
        assert Operation.DOWN in settings.environments["prod"].allowed_operations

    def test_no_rendered_file_without_templates(self, repo):
        load_settings(repo)
        assert not (repo / "chiro-deploy.toml").exists()


class TestRenderChain:
    def test_defaults_template_is_rendered_and_written(self, repo, monkeypatch):
        monkeypatch.setenv("CHIRO_SETTLE", "3")
        (repo / "chiro-deploy.defaults.toml.j2").write_text(
            '[deploy]\n'
            'project_name = "{{ deploy.project_name }}-test"\n'
            'settle_seconds = $CHIRO_SETTLE\n'
        )

        settings = load_settings(repo)

        assert settings.project_name == "chiro-erp-test"
        assert settings.settle_seconds == 3
        with open(repo / "chiro-deploy.toml", "rb") as f:
            stored = tomllib.load(f)
        assert stored["deploy"]["project_name"] == "chiro-erp-test"
        assert stored["topology"]["infrastructure"][0] == "postgres"

    def test_overrides_template_wins(self, repo):
        (repo / "chiro-deploy.defaults.toml.j2").write_text('[deploy]\nlogs_tail = 50\n')
        (repo / "chiro-deploy.toml.j2").write_text('[deploy]\nlogs_tail = 10\n')

        assert load_settings(repo).logs_tail == 10

    def test_overrides_without_defaults_fail(self, repo):
        (repo / "chiro-deploy.toml.j2").write_text('[deploy]\nlogs_tail = 10\n')

        with pytest.raises(SettingsError, match="without"):
            render_settings(repo)

    def test_rendered_file_loaded_when_no_templates(self, repo):
        (repo / "chiro-deploy.toml").write_text('[deploy]\nsettle_seconds = 1\n')

        assert load_settings(repo).settle_seconds == 1

    def test_jinja_env_context(self, repo, monkeypatch):
        monkeypatch.setenv("CHIRO_PROJECT", "erp-ci")
        (repo / "chiro-deploy.defaults.toml.j2").write_text(
            '[deploy]\nproject_name = "{{ env.CHIRO_PROJECT }}"\n'
        )

        assert load_settings(repo).project_name == "erp-ci"

    def test_invalid_toml_fails(self, repo):
        (repo / "chiro-deploy.defaults.toml.j2").write_text('[deploy\n')

        with pytest.raises(SettingsError, match="TOML"):
            load_settings(repo)


class TestExpandEnvVars:
    def test_expands_both_forms(self, monkeypatch):
        monkeypatch.setenv("A_VALUE", "1")
        monkeypatch.setenv("B_VALUE", "2")

        assert expand_env_vars_or_fail("$A_VALUE-${B_VALUE}", "test") == "1-2"

    def test_missing_value_fails(self, monkeypatch):
        monkeypatch.delenv("CHIRO_MISSING", raising=False)

        with pytest.raises(SettingsError, match="CHIRO_MISSING"):
            expand_env_vars_or_fail("x = $CHIRO_MISSING", "test")


class TestDeepMerge:
    def test_nested_merge_and_list_replace(self):
        base = {"a": {"b": 1, "c": [1, 2]}, "d": 1}
        override = {"a": {"c": [3]}, "e": 2}

        assert deep_merge_configs(base, override) == {"a": {"b": 1, "c": [3]}, "d": 1, "e": 2}


def _raw(**overrides):
    import copy

    return deep_merge_configs(copy.deepcopy(DEFAULT_SETTINGS), overrides)


class TestValidation:
    def test_overlapping_topology_fails(self, tmp_path):
        raw = _raw(topology={"applications": ["redis", "api-gateway"]})

        with pytest.raises(SettingsError, match="redis"):
            build_settings(raw, tmp_path)

    def test_unknown_log_level_fails(self, tmp_path):
        raw = _raw(environments={"dev": {"log_level": "LOUD"}})

        with pytest.raises(SettingsError, match="log_level"):
            build_settings(raw, tmp_path)

    def test_unknown_allowed_operation_fails(self, tmp_path):
        raw = _raw(environments={"dev": {"allowed_operations": ["deploy"]}})

        with pytest.raises(SettingsError, match="allowed_operations"):
            build_settings(raw, tmp_path)

    def test_probe_for_unknown_service_fails(self, tmp_path):
        raw = _raw(health={"probes": [{"service": "mysql", "kind": "container"}]})

        with pytest.raises(SettingsError, match="mysql"):
            build_settings(raw, tmp_path)

    def test_http_probe_requires_target(self, tmp_path):
        raw = _raw(health={"probes": [{"service": "api-gateway", "kind": "http"}]})

        with pytest.raises(SettingsError, match="target"):
            build_settings(raw, tmp_path)

    def test_default_environment_must_exist(self, tmp_path):
        raw = _raw(deploy={"default_environment": "qa"})

        with pytest.raises(SettingsError, match="qa"):
            build_settings(raw, tmp_path)


class TestFindRepoRoot:
    def test_override_wins(self, tmp_path):
        assert find_repo_root(override=tmp_path) == tmp_path.resolve()

    def test_env_var(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CHIRO_REPO_ROOT", str(tmp_path))

        assert find_repo_root() == tmp_path.resolve()

    def test_walks_up_to_compose_file(self, repo, monkeypatch):
        nested = repo / "consolidated-services" / "core-business-service"
        nested.mkdir(parents=True)

        assert find_repo_root(start=nested) == repo.resolve()
