"""Formatter / linter / test-runner collaborator.

Each configured command is run in the repository root; the pass/fail result
is all the orchestrator needs.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 2000


@dataclass
class CheckResult:
    passed: bool
    failures: list[str] = field(default_factory=list)


class QualityChecks:
    def __init__(self, commands: list[str] | None = None, cwd: str | Path = ".", timeout: int = 600):
        self.commands = list(commands or [])
        self.cwd = Path(cwd)
        self.timeout = timeout

    def run(self) -> CheckResult:
        failures = []
        for command in self.commands:
            logger.debug("Running check: %s", command)
            try:
                proc = subprocess.run(
                    shlex.split(command),
                    cwd=self.cwd,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                failures.append(f"{command}: {e}")
                continue
            if proc.returncode != 0:
                output = (proc.stdout + proc.stderr)[-_OUTPUT_TAIL:]
                failures.append(f"{command} exited {proc.returncode}\n{output}")
        if failures:
            logger.warning("%d of %d check(s) failed", len(failures), len(self.commands))
        return CheckResult(passed=not failures, failures=failures)
