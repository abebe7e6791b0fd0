"""
Active application detection and per-app rule resolution.

The foreground app is polled on a background thread; the highest priority
enabled rule matching it supplies overrides on top of the global config.
"""

import json
import re
import subprocess
import sys
import threading
import time
from dataclasses import fields, replace
from typing import Callable, Iterable, Optional

from .metrics import MetricsWriter, log_rule_changed
from .state import SessionContext
from .types import ActiveAppInfo, AppRule, ConfigSnapshot


_MACOS_SCRIPT = '''
tell application "System Events"
    set frontApp to first application process whose frontmost is true
    set appName to name of frontApp
    set appPath to POSIX path of (file of frontApp)

    try
        set windowTitle to name of front window of frontApp
    on error
        set windowTitle to ""
    end try

    return appName & "|||" & appPath & "|||" & windowTitle
end tell
'''

_WINDOWS_SCRIPT = r'''
Add-Type @"
using System;
using System.Runtime.InteropServices;
using System.Text;
public class Win32 {
    [DllImport("user32.dll")]
    public static extern IntPtr GetForegroundWindow();
    [DllImport("user32.dll")]
    public static extern int GetWindowText(IntPtr hWnd, StringBuilder text, int count);
    [DllImport("user32.dll")]
    public static extern uint GetWindowThreadProcessId(IntPtr hWnd, out uint processId);
}
"@
$hwnd = [Win32]::GetForegroundWindow()
$title = New-Object System.Text.StringBuilder 256
[Win32]::GetWindowText($hwnd, $title, $title.Capacity) | Out-Null
$processId = 0
[Win32]::GetWindowThreadProcessId($hwnd, [ref]$processId) | Out-Null
$process = Get-Process -Id $processId -ErrorAction SilentlyContinue
if ($process) {
    @{ name = $process.ProcessName; executable = $process.ProcessName + ".exe"; title = $title.ToString() } | ConvertTo-Json -Compress
}
'''


def get_active_application() -> Optional[ActiveAppInfo]:
    """
    Get the foreground application.

    Uses osascript on macOS and PowerShell on Windows.

    Returns:
        ActiveAppInfo, or None if detection failed or the platform is unsupported
    """
    if sys.platform == "darwin":
        return _get_active_app_macos()
    if sys.platform == "win32":
        return _get_active_app_windows()

    print(f"[Context] App detection not supported on {sys.platform}")
    return None


def _get_active_app_macos() -> Optional[ActiveAppInfo]:
    try:
        result = subprocess.run(
            ["osascript", "-e", _MACOS_SCRIPT],
            capture_output=True,
            text=True,
            timeout=2.0,
        )
    except subprocess.TimeoutExpired:
        print("[Context] osascript timed out")
        return None
    except OSError as e:
        print(f"[Context] App detection failed: {e}")
        return None

    if result.returncode != 0:
        return None

    parts = result.stdout.strip().split("|||")
    if len(parts) < 3:
        return None

    name, path, title = parts[0], parts[1], parts[2]
    executable = path.rstrip("/").split("/")[-1] or name
    return ActiveAppInfo(name=name, executable=executable, title=title, last_updated=time.time())


def _get_active_app_windows() -> Optional[ActiveAppInfo]:
    try:
        result = subprocess.run(
            ["powershell", "-NoProfile", "-Command", _WINDOWS_SCRIPT],
            capture_output=True,
            text=True,
            timeout=5.0,
        )
    except subprocess.TimeoutExpired:
        print("[Context] PowerShell timed out")
        return None
    except OSError as e:
        print(f"[Context] App detection failed: {e}")
        return None

    output = result.stdout.strip()
    if result.returncode != 0 or not output:
        return None

    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        print(f"[Context] Unexpected PowerShell output: {e}")
        return None

    return ActiveAppInfo(
        name=data.get("name") or "",
        executable=data.get("executable") or "",
        title=data.get("title") or "",
        last_updated=time.time(),
    )


def glob_to_regex(pattern: str) -> re.Pattern:
    """
    Compile an app pattern. `*` matches any run of characters; everything
    else is literal. Case-insensitive, matched anywhere in the string.
    """
    return re.compile(re.escape(pattern).replace(r"\*", ".*"), re.IGNORECASE)


def _pattern_matches(pattern: Optional[str], value: str) -> bool:
    if not pattern:
        return False
    return glob_to_regex(pattern).search(value) is not None


def find_matching_rule(app: Optional[ActiveAppInfo], rules: Iterable[AppRule]) -> Optional[AppRule]:
    """
    Find the rule for an application.

    A rule matches on its app name pattern, or on its executable pattern
    when the name does not match. Among matches the highest priority wins;
    equal priorities go to the smallest rule id.
    """
    if app is None:
        return None

    matching = [
        rule for rule in rules
        if rule.enabled and (
            _pattern_matches(rule.app_name_pattern, app.name)
            or _pattern_matches(rule.executable_pattern, app.executable)
        )
    ]
    if not matching:
        return None

    return min(matching, key=lambda rule: (-rule.priority, rule.id))


def get_effective_config(config: ConfigSnapshot, rule: Optional[AppRule]) -> ConfigSnapshot:
    """Global config with the rule's non-empty overrides applied."""
    if rule is None:
        return config

    overrides = {}
    for f in fields(rule.overrides):
        value = getattr(rule.overrides, f.name)
        if value is None or value == "":
            continue
        overrides[f.name] = value

    return replace(config, **overrides) if overrides else config


class AppContextMonitor:
    """
    Tracks the foreground app and its rule in the SessionContext.

    Usage:
        monitor = AppContextMonitor(context, config.snapshot)
        monitor.start()
        effective = monitor.effective_config()
    """

    def __init__(
        self,
        context: SessionContext,
        config_fn: Callable[[], ConfigSnapshot],
        detector: Callable[[], Optional[ActiveAppInfo]] = get_active_application,
        metrics: Optional[MetricsWriter] = None,
    ):
        self.context = context
        self.config_fn = config_fn
        self.detector = detector
        self.metrics = metrics

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def update_active_application(self) -> Optional[ActiveAppInfo]:
        """Detect the foreground app once and refresh the active rule."""
        config = self.config_fn()

        try:
            app = self.detector()
        except Exception as e:
            print(f"[Context] App detection failed: {e}")
            app = None

        if app is not None:
            self.context.set_active_app(app)

        current_app = self.context.active_app
        rule = None
        if config.enable_app_rules:
            rule = find_matching_rule(current_app, config.app_rules)

        if self.context.set_active_rule(rule):
            if rule is not None:
                print(f"[Context] Rule '{rule.id}' active for {current_app.name}")
            else:
                print("[Context] No app rule active")
            log_rule_changed(self.metrics, current_app, rule)

        return app

    def effective_config(self) -> ConfigSnapshot:
        return get_effective_config(self.config_fn(), self.context.active_rule)

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, daemon=True)
        self._thread.start()
        print("[Context] Monitoring active application")

    def stop(self) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.update_active_application()
            except Exception as e:
                print(f"[Context] Error updating active application: {e}")

            interval = self.config_fn().app_poll_interval
            self._stop_event.wait(interval)
