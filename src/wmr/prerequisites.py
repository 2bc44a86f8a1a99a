"""
Prerequisite checks — run each template probe before backup or restore.

A probe is a short script (``inline_script``) or command line (``command``).
It passes when its trimmed output equals ``expected_output``, or, when no
output is expected, when it exits 0. A failed probe applies its
``on_missing`` policy:

  - warn: log and continue
  - skip: mark the whole template as skipped
  - fail: raise PrerequisiteError

A missing interpreter or a timeout counts as a failed probe.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence, Union

from .errors import PrerequisiteError
from .models import ResolvedConfiguration
from .templates.schema import OnMissing, Prerequisite, Template

logger = logging.getLogger("wmr.prerequisites")

# (probe text) -> (exit status, output)
ProbeRunner = Callable[[str], "tuple[int, str]"]


class ProbeStatus(str, Enum):
    """Outcome of a single probe."""
    MET = "met"
    MISSING = "missing"
    ERROR = "error"


@dataclass
class PrerequisiteResult:
    """Result of one prerequisite probe."""

    name: str
    status: ProbeStatus
    on_missing: OnMissing
    expected: str = ""
    actual: str = ""
    detail: str = ""

    @property
    def met(self) -> bool:
        return self.status == ProbeStatus.MET


@dataclass
class PrerequisiteReport:
    """Combined result of every prerequisite of a template."""

    template: str
    results: list[PrerequisiteResult] = field(default_factory=list)

    @property
    def all_met(self) -> bool:
        return all(r.met for r in self.results)

    @property
    def skipped(self) -> bool:
        """True if a failed probe asked to skip the template."""
        return any(not r.met and r.on_missing == OnMissing.SKIP for r in self.results)

    @property
    def warnings(self) -> list[PrerequisiteResult]:
        return [r for r in self.results if not r.met and r.on_missing == OnMissing.WARN]


def default_shell() -> list[str]:
    """Interpreter argv prefix for inline scripts on this platform."""
    if sys.platform == "win32":
        return ["powershell", "-NoProfile", "-NonInteractive", "-Command"]
    return ["/bin/sh", "-c"]


def subprocess_runner(shell: Optional[Sequence[str]] = None, timeout: float = 30) -> ProbeRunner:
    """Build a runner that executes probes through ``shell``.

    Args:
        shell: Argv prefix; the probe text is appended as the last argument.
        timeout: Seconds before a probe is abandoned.
    """
    prefix = list(shell) if shell else default_shell()

    def run(probe: str) -> tuple[int, str]:
        result = subprocess.run(
            prefix + [probe],
            capture_output=True, text=True, timeout=timeout,
        )
        return result.returncode, result.stdout
    return run


def _check_one(prereq: Prerequisite, runner: ProbeRunner) -> PrerequisiteResult:
    result = PrerequisiteResult(
        name=prereq.name or prereq.probe[:40],
        status=ProbeStatus.MISSING,
        on_missing=prereq.on_missing,
        expected=prereq.expected_output,
    )
    if not prereq.probe:
        result.status = ProbeStatus.ERROR
        result.detail = "no inline_script or command to run"
        return result

    try:
        code, output = runner(prereq.probe)
    except subprocess.TimeoutExpired:
        result.status = ProbeStatus.ERROR
        result.detail = "probe timed out"
        return result
    except OSError as exc:
        result.status = ProbeStatus.ERROR
        result.detail = f"could not run probe: {exc}"
        return result

    result.actual = output.strip()
    if prereq.expected_output:
        matched = result.actual == prereq.expected_output.strip()
    else:
        matched = code == 0
        result.actual = result.actual or f"exit {code}"
    if matched:
        result.status = ProbeStatus.MET
    return result


def check_prerequisites(
    template: Union[Template, ResolvedConfiguration],
    runner: Optional[ProbeRunner] = None,
    shell: Optional[Union[str, Sequence[str]]] = None,
    timeout: float = 30,
) -> PrerequisiteReport:
    """Run every prerequisite probe of a template, in declaration order.

    Args:
        template: Template or resolved configuration carrying prerequisites.
        runner: Probe runner. Defaults to a subprocess runner over ``shell``.
        shell: Argv prefix (list, or a string split with shlex).
        timeout: Seconds per probe for the default runner.

    Returns:
        PrerequisiteReport with one result per probe.

    Raises:
        PrerequisiteError: A failed probe's policy is ``fail``.
    """
    if isinstance(shell, str):
        shell = shlex.split(shell)
    runner = runner or subprocess_runner(shell, timeout)
    report = PrerequisiteReport(template=template.name)

    for prereq in template.prerequisites:
        result = _check_one(prereq, runner)
        report.results.append(result)
        if result.met:
            logger.debug("Prerequisite '%s' met", result.name)
            continue

        actual = result.actual or result.detail
        if prereq.on_missing == OnMissing.FAIL:
            raise PrerequisiteError(result.name, result.expected or "exit 0", actual)
        if prereq.on_missing == OnMissing.SKIP:
            logger.warning("Prerequisite '%s' not met (%s): skipping '%s'", result.name, actual, template.name)
        else:
            logger.warning("Prerequisite '%s' not met: expected %r, got %r", result.name, result.expected, actual)

    return report
