"""Tests for the privilege model."""

from __future__ import annotations

import pytest

from wmr.errors import AccessDeniedError, ElevationRequiredError, PrivilegeError
from wmr.privilege import OperationType, PrivilegeModel, PrivilegeState, classify_requirements
from wmr.templates import TemplateStore


class TestStates:
    """The model only changes state through an explicit, granted request."""

    def test_probe_decides_initial_state(self, elevated, unprivileged) -> None:
        assert elevated.state is PrivilegeState.ELEVATED
        assert unprivileged.state is PrivilegeState.UNPRIVILEGED

    def test_no_prompt_strategy_never_elevates(self, unprivileged) -> None:
        assert unprivileged.request_elevation("test") is False
        assert not unprivileged.is_elevated()

    def test_granted_prompt_elevates(self) -> None:
        asked: list[str] = []
        model = PrivilegeModel(probe=lambda: False, prompt=lambda reason: asked.append(reason) or True)
        assert model.request_elevation("restore HKLM")
        assert model.is_elevated()
        assert asked == ["restore HKLM"]

    def test_refused_prompt_stays_unprivileged(self) -> None:
        model = PrivilegeModel(probe=lambda: False, prompt=lambda reason: False)
        assert not model.request_elevation("x")
        assert model.state is PrivilegeState.UNPRIVILEGED


class TestSafeAdminOperation:
    """Tests for safe_admin_operation()."""

    def test_user_operation_runs_unprivileged(self, unprivileged) -> None:
        result = unprivileged.safe_admin_operation(lambda: 42, operation_type="user")
        assert result.value == 42
        assert result.full_success

    def test_admin_operation_runs_when_elevated(self, elevated) -> None:
        result = elevated.safe_admin_operation(lambda: "main", fallback=lambda: "fallback")
        assert result.value == "main"
        assert result.operation_type is OperationType.ADMIN
        assert not result.degraded

    def test_admin_falls_back_when_unprivileged(self, unprivileged) -> None:
        ran: list[str] = []
        result = unprivileged.safe_admin_operation(
            lambda: ran.append("main"),
            fallback=lambda: ran.append("fallback") or "fb",
        )
        assert ran == ["fallback"]
        assert result.degraded
        assert result.value == "fb"

    def test_admin_without_fallback_raises(self, unprivileged) -> None:
        with pytest.raises(PrivilegeError, match="requires administrative privileges"):
            unprivileged.safe_admin_operation(lambda: None, description="enable feature")

    def test_access_denied_goes_to_fallback_once(self, elevated) -> None:
        calls: list[str] = []

        def main() -> None:
            calls.append("main")
            raise AccessDeniedError("HKLM:\\SOFTWARE\\X")

        result = elevated.safe_admin_operation(main, fallback=lambda: calls.append("fallback"))
        assert calls == ["main", "fallback"]
        assert result.degraded

    def test_access_denied_without_fallback(self, elevated) -> None:
        def main() -> None:
            raise AccessDeniedError("HKLM:\\SOFTWARE\\X")

        with pytest.raises(PrivilegeError) as exc_info:
            elevated.safe_admin_operation(main, description="write")
        assert isinstance(exc_info.value.__cause__, AccessDeniedError)


class TestWithElevation:
    """Tests for with_elevation()."""

    def test_what_if_runs_nothing(self, unprivileged) -> None:
        ran: list[bool] = []
        result = unprivileged.with_elevation(lambda: ran.append(True), what_if=True, description="restore")
        assert ran == []
        assert result.dry_run
        assert "would request elevation" in result.report

    def test_no_prompt_fails_fast(self) -> None:
        model = PrivilegeModel(probe=lambda: False, prompt=lambda reason: True)
        with pytest.raises(ElevationRequiredError, match="no_prompt"):
            model.with_elevation(lambda: None, no_prompt=True)
        assert not model.is_elevated()

    def test_refused_elevation(self) -> None:
        model = PrivilegeModel(probe=lambda: False, prompt=lambda reason: False)
        with pytest.raises(ElevationRequiredError, match="refused"):
            model.with_elevation(lambda: None)

    def test_granted_elevation_runs_block(self) -> None:
        model = PrivilegeModel(probe=lambda: False, prompt=lambda reason: True)
        assert model.with_elevation(lambda: "done").value == "done"

    def test_already_elevated_never_prompts(self) -> None:
        def prompt(reason: str) -> bool:
            raise AssertionError("should not prompt")

        model = PrivilegeModel(probe=lambda: True, prompt=prompt)
        assert model.with_elevation(lambda: 1, no_prompt=True).value == 1


class TestClassifyRequirements:
    """Tests for classify_requirements()."""

    def test_user_only_template(self, template_from) -> None:
        tpl = template_from("""
            metadata: {name: Terminal}
            registry:
              - path: 'HKCU:\\Console'
        """)
        reqs = classify_requirements(tpl)
        assert not reqs.requires_admin
        assert not reqs.requires_elevation
        assert reqs.reasons == []

    def test_machine_wide_registry_in_machine_config(self, template_from) -> None:
        tpl = template_from("""
            metadata: {name: Display}
            machine_specific:
              - name: intel
                registry:
                  - path: 'HKLM:\\SOFTWARE\\Intel'
        """)
        reqs = classify_requirements(tpl)
        assert reqs.registry_access
        assert reqs.requires_admin
        assert reqs.requires_elevation

    def test_features_and_services_from_metadata(self, template_from) -> None:
        tpl = template_from("""
            metadata:
              name: Windows Features
              tags: [dism, services]
        """)
        reqs = classify_requirements(tpl)
        assert reqs.windows_features
        assert reqs.service_access
        assert reqs.requires_admin

    def test_requires_administrator(self, template_from) -> None:
        tpl = template_from("""
            metadata:
              name: Something
              requires: ["Administrator"]
        """)
        assert classify_requirements(tpl).requires_admin

    def test_builtin_windows_features(self, tmp_path) -> None:
        tpl = TemplateStore(home=tmp_path).get("windows-features")
        reqs = PrivilegeModel(probe=lambda: False).classify_requirements(tpl)
        assert reqs.windows_features and reqs.registry_access and reqs.requires_elevation
