"""Chiro ERP deployment orchestrator."""

from __future__ import annotations

__version__ = "0.1.0"

from .cli import main, parse_arguments  # noqa: E402
from .dispatcher import dispatch  # noqa: E402
from .environments import resolve_environment  # noqa: E402
from .models import DeploymentReport, Flags, Operation  # noqa: E402
from .settings import load_settings  # noqa: E402

__all__ = [
    "__version__",
    "DeploymentReport",
    "Flags",
    "Operation",
    "dispatch",
    "load_settings",
    "main",
    "parse_arguments",
    "resolve_environment",
]
