"""
Dispatcher scenario tests.
"""

from unittest.mock import MagicMock, patch

import pytest

from chiro_deploy.backend import CommandResult
from chiro_deploy.dispatcher import dispatch
from chiro_deploy.errors import (
    ConfigurationNotFound,
    ExecutionError,
    InvalidEnvironment,
    InvalidOperation,
    OperationNotAllowed,
    UnknownService,
)
from chiro_deploy.models import Flags, HealthStatus, Operation, OverallStatus, PhaseStatus

from conftest import FakeRunner, running_container_json


def _healthy_backend():
    def respond(invocation):
        if "--format" in invocation.tokens:
            return CommandResult(0, running_container_json(invocation.tokens[-1]))
        return CommandResult(0)
    return FakeRunner(respond)


def _ok_response():
    response = MagicMock()
    response.status = 200
    response.__enter__.return_value = response
    return response


class StubVerifier:
    def __init__(self):
        self.calls = 0

    def verify(self, environment):
        self.calls += 1
        return []


class TestScenarios:
    def test_dev_up_healthy_backend(self, settings):
        runner = _healthy_backend()

        with patch("chiro_deploy.health.urllib.request.urlopen", return_value=_ok_response()):
            report = dispatch("dev", Operation.UP, [], Flags(force=False), settings=settings, runner=runner, sleep=lambda s: None)

        assert report.overall_status is OverallStatus.SUCCESS
        assert report.health_checked
        assert {r.service for r in report.health} == {p.service for p in settings.probes}
        assert all(r.status is HealthStatus.HEALTHY for r in report.health)
        assert report.finished

    def test_prod_down_single_service_forced(self, settings):
        runner = FakeRunner()
        verifier = StubVerifier()

        report = dispatch(
            "prod", Operation.DOWN, ["core-business-service"], Flags(force=True),
            settings=settings, runner=runner, verifier=verifier,
        )

        assert len(runner.invocations) == 1
        tokens = runner.commands[0]
        assert tokens[-1] == "core-business-service"
        assert "--volumes" in tokens
        assert not any(name in tokens for name in settings.topology.all_services if name != "core-business-service")
        assert verifier.calls == 0
        assert not report.health_checked
        assert report.overall_status is OverallStatus.SUCCESS

    def test_operation_accepted_as_string(self, settings, fake_runner):
        report = dispatch("dev", "Build", [], Flags(), settings=settings, runner=fake_runner)

        assert report.operation is Operation.BUILD


class TestHealthMapping:
    @pytest.mark.parametrize("operation,expected", [
        (Operation.UP, 1),
        (Operation.STATUS, 1),
        (Operation.RESTART, 1),
        (Operation.BUILD, 0),
        (Operation.LOGS, 0),
        (Operation.DOWN, 0),
        (Operation.CLEAN, 0),
    ])
    def test_verifier_invoked_only_for_runtime_operations(self, settings, fake_runner, operation, expected):
        verifier = StubVerifier()

        dispatch("dev", operation, [], Flags(), settings=settings, runner=fake_runner, verifier=verifier, sleep=lambda s: None)

        assert verifier.calls == expected

    def test_health_runs_after_partial_failure(self, settings):
        runner = FakeRunner(lambda inv: CommandResult(1 if "api-gateway" in inv.tokens else 0))
        verifier = StubVerifier()

        report = dispatch("dev", Operation.UP, [], Flags(), settings=settings, runner=runner, verifier=verifier, sleep=lambda s: None)

        assert verifier.calls == 1
        assert report.overall_status is OverallStatus.PARTIAL

    def test_health_does_not_change_phase_outcome(self, settings, fake_runner):
        from chiro_deploy.models import ProbeResult

        verifier = MagicMock()
        verifier.verify.return_value = [ProbeResult("postgres", HealthStatus.UNHEALTHY, "down")]

        report = dispatch("dev", Operation.STATUS, [], Flags(), settings=settings, runner=fake_runner, verifier=verifier)

        assert report.overall_status is OverallStatus.SUCCESS
        assert report.exit_codes == [0]


class TestValidation:
    def test_invalid_environment(self, settings, fake_runner):
        with pytest.raises(InvalidEnvironment):
            dispatch("qa", Operation.UP, [], Flags(), settings=settings, runner=fake_runner)
        assert fake_runner.invocations == []

    def test_invalid_operation(self, settings, fake_runner):
        with pytest.raises(InvalidOperation):
            dispatch("dev", "deploy", [], Flags(), settings=settings, runner=fake_runner)

    def test_missing_topology_file(self, settings, repo, fake_runner):
        (repo / "docker-compose.yml").unlink()

        with pytest.raises(ConfigurationNotFound):
            dispatch("dev", Operation.UP, [], Flags(), settings=settings, runner=fake_runner)

    def test_operation_not_allowed(self, settings, fake_runner):
        with pytest.raises(OperationNotAllowed):
            dispatch("prod", Operation.CLEAN, [], Flags(force=True), settings=settings, runner=fake_runner)
        assert fake_runner.invocations == []

    def test_unknown_service_before_any_process(self, settings, fake_runner):
        with pytest.raises(UnknownService):
            dispatch("dev", Operation.RESTART, ["billing"], Flags(), settings=settings, runner=fake_runner)
        assert fake_runner.invocations == []


class TestExecutionError:
    def test_partial_report_attached(self, settings):
        def respond(invocation):
            if "build" in invocation.tokens:
                return CommandResult(0)
            raise ExecutionError("docker daemon unreachable")

        verifier = StubVerifier()
        with pytest.raises(ExecutionError) as excinfo:
            dispatch("dev", Operation.UP, [], Flags(build=True), settings=settings,
                     runner=FakeRunner(respond), verifier=verifier, sleep=lambda s: None)

        report = excinfo.value.report
        assert report is not None
        assert report.finished
        assert [(p.name, p.status) for p in report.phases] == [
            ("build", PhaseStatus.SUCCEEDED),
            ("start-infrastructure", PhaseStatus.FAILED),
            ("wait-infrastructure", PhaseStatus.SKIPPED),
            ("start-applications", PhaseStatus.SKIPPED),
        ]
        assert report.phases[1].exit_code is None
        assert report.overall_status is not OverallStatus.SUCCESS
        assert verifier.calls == 0
