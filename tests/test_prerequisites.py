"""Tests for prerequisite probes."""

from __future__ import annotations

import subprocess
import sys

import pytest

from wmr.errors import PrerequisiteError
from wmr.prerequisites import ProbeStatus, check_prerequisites, default_shell, subprocess_runner


def _runner(outputs: dict):
    """Fake runner: probe text -> (exit code, output) or an exception to raise."""
    calls: list[str] = []

    def run(probe: str):
        calls.append(probe)
        result = outputs[probe]
        if isinstance(result, Exception):
            raise result
        return result

    run.calls = calls
    return run


PREREQS = """
    metadata: {name: Probed}
    prerequisites:
      - name: Console available
        command: probe-console
        expected_output: available
        on_missing: warn
      - name: Exit code only
        inline_script: probe-exit
        on_missing: skip
"""


class TestCheckPrerequisites:
    """Tests for check_prerequisites()."""

    def test_all_met(self, template_from) -> None:
        runner = _runner({"probe-console": (0, "available\n"), "probe-exit": (0, "")})
        report = check_prerequisites(template_from(PREREQS), runner=runner)
        assert report.all_met
        assert not report.skipped
        assert runner.calls == ["probe-console", "probe-exit"]

    def test_output_mismatch_warns(self, template_from, caplog) -> None:
        runner = _runner({"probe-console": (0, "unavailable"), "probe-exit": (0, "")})
        with caplog.at_level("WARNING", logger="wmr.prerequisites"):
            report = check_prerequisites(template_from(PREREQS), runner=runner)
        (warning,) = report.warnings
        assert warning.actual == "unavailable"
        assert warning.status is ProbeStatus.MISSING
        assert "Console available" in caplog.text

    def test_nonzero_exit_skips(self, template_from) -> None:
        runner = _runner({"probe-console": (0, "available"), "probe-exit": (3, "")})
        report = check_prerequisites(template_from(PREREQS), runner=runner)
        assert report.skipped
        assert report.results[1].actual == "exit 3"

    def test_fail_policy_raises(self, template_from) -> None:
        tpl = template_from("""
            metadata: {name: Strict}
            prerequisites:
              - name: DISM
                command: dism-check
                expected_output: ok
                on_missing: fail
        """)
        with pytest.raises(PrerequisiteError) as exc_info:
            check_prerequisites(tpl, runner=_runner({"dism-check": (0, "nope")}))
        assert exc_info.value.name == "DISM"
        assert exc_info.value.expected == "ok"
        assert exc_info.value.actual == "nope"

    def test_timeout_and_missing_interpreter_are_errors(self, template_from) -> None:
        runner = _runner({
            "probe-console": subprocess.TimeoutExpired("probe-console", 1),
            "probe-exit": FileNotFoundError("powershell"),
        })
        report = check_prerequisites(template_from(PREREQS), runner=runner)
        assert [r.status for r in report.results] == [ProbeStatus.ERROR, ProbeStatus.ERROR]
        assert report.results[0].detail == "probe timed out"
        assert report.skipped

    def test_empty_probe(self, template_from) -> None:
        tpl = template_from("""
            metadata: {name: Empty}
            prerequisites:
              - name: nothing
        """)
        report = check_prerequisites(tpl, runner=_runner({}))
        assert report.results[0].status is ProbeStatus.ERROR

    def test_no_prerequisites(self, template_from) -> None:
        report = check_prerequisites(template_from("metadata: {name: Nothing}\n"), runner=_runner({}))
        assert report.results == []
        assert report.all_met


@pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh")
class TestSubprocessRunner:
    """The default runner executes probes through a shell."""

    def test_echo(self) -> None:
        code, output = subprocess_runner()("echo available")
        assert code == 0
        assert output.strip() == "available"

    def test_shell_string_is_split(self, template_from) -> None:
        tpl = template_from("""
            metadata: {name: Shell}
            prerequisites:
              - name: echo
                command: "echo hi"
                expected_output: hi
        """)
        assert check_prerequisites(tpl, shell="/bin/sh -c").all_met

    def test_default_shell(self) -> None:
        assert default_shell() == ["/bin/sh", "-c"]
