#!/usr/bin/env python3
"""
Execution backend adapter.

Runs an Invocation as a child process and reports its exit status and output.
Three outcomes are distinguished:
- exit 0:                success
- nonzero exit:          returned to the caller, never raised
- cannot launch / killed: ExecutionError (fatal to the dispatch)

No retries happen here.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from typing import List, Optional

from .errors import ExecutionError
from .models import Invocation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    output: str = ''

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    """Run invocations against the docker CLI.

    Args:
        stream: echo child output line by line while it runs (default: buffer)
        timeout: seconds before the child is killed (None: no limit)
        dry_run: log the command and report success without launching it
    """

    def __init__(self, stream: bool = False, timeout: Optional[float] = None, dry_run: bool = False) -> None:
        self.stream = stream
        self.timeout = timeout
        self.dry_run = dry_run

    def run(
        self,
        invocation: Invocation,
        stream: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        streaming = self.stream if stream is None else stream
        limit = self.timeout if timeout is None else timeout
        command = invocation.command_line()

        if self.dry_run:
            logger.info(f"[dry-run] {command}")
            return CommandResult(exit_code=0)

        logger.info(f"Running: {command}")

        env = os.environ.copy()
        env.update(invocation.env)

        try:
            process = subprocess.Popen(
                list(invocation.tokens),
                cwd=invocation.cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            raise ExecutionError(f"Failed to launch '{invocation.tokens[0]}': {e}", command) from e

        timed_out = threading.Event()

        def _expire() -> None:
            timed_out.set()
            process.kill()

        timer = threading.Timer(limit, _expire) if limit else None
        if timer is not None:
            timer.daemon = True
            timer.start()

        lines: List[str] = []
        try:
            if process.stdout is not None:
                for line in process.stdout:
                    lines.append(line)
                    if streaming:
                        print(line, end='', flush=True)
            return_code = process.wait()
        except KeyboardInterrupt:
            logger.warning("Interrupted, terminating backend process")
            try:
                process.terminate()
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
            raise ExecutionError(f"Interrupted while running: {command}", command) from None
        finally:
            if timer is not None:
                timer.cancel()

        output = ''.join(lines)

        # The timer may fire after a normal exit; only a killed child timed out.
        if timed_out.is_set() and return_code < 0:
            raise ExecutionError(f"Command timed out after {limit}s: {command}", command)

        if return_code < 0:
            raise ExecutionError(
                f"Command killed by signal {-return_code}: {command}", command
            )

        if return_code != 0:
            logger.warning(f"Command failed with exit code {return_code}: {command}")
            if output and not streaming:
                logger.debug(output.strip())

        return CommandResult(exit_code=return_code, output=output)
