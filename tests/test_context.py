"""
Tests for app detection and per-app rule resolution.
"""

import subprocess

import pytest
from unittest.mock import Mock, patch


def app(name="Code", executable="Code.exe", title="main.py"):
    from fusionscribe.types import ActiveAppInfo
    return ActiveAppInfo(name=name, executable=executable, title=title, last_updated=0.0)


def rule(rule_id, pattern, executable=None, priority=0, enabled=True, **overrides):
    from fusionscribe.types import AppRule, RuleOverrides
    return AppRule(
        id=rule_id,
        app_name_pattern=pattern,
        executable_pattern=executable,
        enabled=enabled,
        priority=priority,
        overrides=RuleOverrides(**overrides),
    )


class TestGlobToRegex:
    """Pattern compilation."""

    def test_wildcard(self):
        from fusionscribe.context import glob_to_regex

        assert glob_to_regex("Visual*Code").search("Visual Studio Code")
        assert not glob_to_regex("Visual*Code").search("Visual Studio")

    def test_case_insensitive_and_unanchored(self):
        from fusionscribe.context import glob_to_regex

        assert glob_to_regex("chrome").search("Google Chrome Beta")

    def test_regex_characters_are_literal(self):
        from fusionscribe.context import glob_to_regex

        assert glob_to_regex("a.b").search("a.b")
        assert not glob_to_regex("a.b").search("axb")
        assert glob_to_regex("C++ (IDE)").search("My C++ (IDE)")


class TestFindMatchingRule:
    """Rule selection."""

    def test_highest_priority_wins(self):
        from fusionscribe.context import find_matching_rule

        rules = [rule("low", "Code", priority=5), rule("high", "Code", priority=10)]

        assert find_matching_rule(app(), rules).id == "high"

    def test_tie_goes_to_smallest_id(self):
        from fusionscribe.context import find_matching_rule

        rules = [rule("zeta", "Code", priority=3), rule("alpha", "Co*", priority=3)]

        assert find_matching_rule(app(), rules).id == "alpha"

    def test_disabled_rules_ignored(self):
        from fusionscribe.context import find_matching_rule

        rules = [rule("off", "Code", priority=10, enabled=False), rule("on", "Code", priority=1)]

        assert find_matching_rule(app(), rules).id == "on"

    def test_executable_pattern_used_when_name_misses(self):
        from fusionscribe.context import find_matching_rule

        rules = [rule("exe", "Nothing", executable="code.EXE")]

        assert find_matching_rule(app(), rules).id == "exe"

    def test_no_match(self):
        from fusionscribe.context import find_matching_rule

        assert find_matching_rule(app(), [rule("x", "Slack")]) is None
        assert find_matching_rule(None, [rule("x", "*")]) is None


class TestEffectiveConfig:
    """Overrides on top of the global snapshot."""

    def test_non_empty_overrides_applied(self):
        from fusionscribe.context import get_effective_config
        from fusionscribe.types import ConfigSnapshot

        snapshot = ConfigSnapshot(stt_provider_id="openai", transcript_post_processing_prompt="global")
        r = rule(
            "r", "Code",
            stt_provider_id="groq",
            transcript_post_processing_enabled=True,
            transcript_post_processing_prompt="",
        )

        effective = get_effective_config(snapshot, r)

        assert effective.stt_provider_id == "groq"
        assert effective.transcript_post_processing_enabled is True
        assert effective.transcript_post_processing_prompt == "global"
        assert snapshot.stt_provider_id == "openai"

    def test_false_override_applies(self):
        from fusionscribe.context import get_effective_config
        from fusionscribe.types import ConfigSnapshot

        snapshot = ConfigSnapshot(transcript_post_processing_enabled=True)

        effective = get_effective_config(snapshot, rule("r", "x", transcript_post_processing_enabled=False))

        assert effective.transcript_post_processing_enabled is False

    def test_no_rule_returns_snapshot(self):
        from fusionscribe.context import get_effective_config
        from fusionscribe.types import ConfigSnapshot

        snapshot = ConfigSnapshot()

        assert get_effective_config(snapshot, None) is snapshot


class TestAppContextMonitor:
    """Polling and rule tracking."""

    def make_monitor(self, detected, rules, enable_app_rules=True):
        from fusionscribe.context import AppContextMonitor
        from fusionscribe.state import SessionContext
        from fusionscribe.types import ConfigSnapshot

        snapshot = ConfigSnapshot(app_rules=tuple(rules), enable_app_rules=enable_app_rules)
        context = SessionContext()
        metrics = Mock()
        monitor = AppContextMonitor(context, lambda: snapshot, detector=lambda: detected, metrics=metrics)
        return monitor, context, metrics

    def test_update_sets_app_and_rule(self):
        r = rule("code", "Code", stt_provider_id="groq")
        monitor, context, metrics = self.make_monitor(app(), [r])

        monitor.update_active_application()

        assert context.active_app.name == "Code"
        assert context.active_rule == r
        assert monitor.effective_config().stt_provider_id == "groq"
        metrics.log.assert_called_once()
        assert metrics.log.call_args.args[0] == "rule_changed"

    def test_unchanged_rule_not_logged_twice(self):
        monitor, _, metrics = self.make_monitor(app(), [rule("code", "Code")])

        monitor.update_active_application()
        monitor.update_active_application()

        assert metrics.log.call_count == 1

    def test_rules_disabled_clears_rule(self):
        monitor, context, _ = self.make_monitor(app(), [rule("code", "Code")], enable_app_rules=False)

        monitor.update_active_application()

        assert context.active_rule is None
        assert monitor.effective_config().stt_provider_id == "openai"

    def test_failed_detection_keeps_last_app(self):
        from fusionscribe.context import AppContextMonitor
        from fusionscribe.state import SessionContext
        from fusionscribe.types import ConfigSnapshot

        context = SessionContext()
        context.set_active_app(app())
        detector = Mock(side_effect=RuntimeError("no display"))
        monitor = AppContextMonitor(context, ConfigSnapshot, detector=detector)

        assert monitor.update_active_application() is None
        assert context.active_app.name == "Code"

    def test_start_stop(self):
        from fusionscribe.context import AppContextMonitor
        from fusionscribe.state import SessionContext
        from fusionscribe.types import ConfigSnapshot

        detector = Mock(return_value=app())

        monitor = AppContextMonitor(SessionContext(), ConfigSnapshot, detector=detector)
        monitor.start()
        monitor.start()
        monitor.stop()
        monitor.stop()

        assert monitor.is_running is False


class TestGetActiveApplication:
    """Platform detection."""

    def test_macos_parses_osascript(self):
        from fusionscribe import context

        completed = subprocess.CompletedProcess(
            args=[], returncode=0,
            stdout="Code|||/Applications/Visual Studio Code.app/|||main.py\n",
        )
        with patch.object(context.sys, "platform", "darwin"), \
                patch.object(context.subprocess, "run", return_value=completed):
            info = context.get_active_application()

        assert info.name == "Code"
        assert info.executable == "Visual Studio Code.app"
        assert info.title == "main.py"

    def test_windows_parses_json(self):
        from fusionscribe import context

        completed = subprocess.CompletedProcess(
            args=[], returncode=0,
            stdout='{"name":"Code","executable":"Code.exe","title":"main.py"}',
        )
        with patch.object(context.sys, "platform", "win32"), \
                patch.object(context.subprocess, "run", return_value=completed):
            info = context.get_active_application()

        assert info.executable == "Code.exe"

    def test_timeout_returns_none(self):
        from fusionscribe import context

        with patch.object(context.sys, "platform", "darwin"), \
                patch.object(context.subprocess, "run",
                             side_effect=subprocess.TimeoutExpired("osascript", 2.0)):
            assert context.get_active_application() is None

    def test_unsupported_platform(self):
        from fusionscribe import context

        with patch.object(context.sys, "platform", "linux"):
            assert context.get_active_application() is None
