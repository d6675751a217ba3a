"""
Shared fixtures: a temporary repository layout and a recording runner.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Callable, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from chiro_deploy.backend import CommandResult  # noqa: E402
from chiro_deploy.models import Invocation  # noqa: E402
from chiro_deploy.settings import load_settings  # noqa: E402


class FakeRunner:
    """Records invocations instead of launching processes."""

    dry_run = False

    def __init__(self, respond: Optional[Callable[[Invocation], CommandResult]] = None) -> None:
        self.invocations: List[Invocation] = []
        self.timeouts: List[Optional[float]] = []
        self.respond = respond

    def run(self, invocation: Invocation, stream=None, timeout=None) -> CommandResult:
        self.invocations.append(invocation)
        self.timeouts.append(timeout)
        if self.respond is None:
            return CommandResult(exit_code=0)
        return self.respond(invocation)

    @property
    def commands(self) -> List[tuple]:
        return [inv.tokens for inv in self.invocations]

    def subcommands(self) -> List[str]:
        """Compose subcommand (or docker subcommand for prune) of each invocation."""
        names = []
        for tokens in self.commands:
            for candidate in ('build', 'up', 'down', 'restart', 'logs', 'ps', 'image', 'volume'):
                if candidate in tokens:
                    names.append(candidate)
                    break
        return names


def running_container_json(service: str, health: str = "healthy") -> str:
    return json.dumps({"Name": f"chiro-erp-dev-{service}-1", "Service": service, "State": "running", "Health": health})


@pytest.fixture
def repo(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.delenv("CHIRO_REPO_ROOT", raising=False)
    (tmp_path / "docker-compose.yml").write_text("services: {}\n")
    (tmp_path / "docker-compose.staging.yml").write_text("services: {}\n")
    (tmp_path / "docker-compose.prod.yml").write_text("services: {}\n")
    (tmp_path / ".env.dev").write_text("POSTGRES_PASSWORD=dev\n")
    (tmp_path / ".env.prod").write_text("POSTGRES_PASSWORD=prod\n")
    return tmp_path


@pytest.fixture
def settings(repo: Path):
    return load_settings(repo)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()
