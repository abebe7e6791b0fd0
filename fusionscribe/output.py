"""
Output functions for typing text and notifications.

Typing goes through pynput so it works wherever the keyboard does;
notifications and sounds use macOS system commands.
"""

import subprocess
import sys
import threading


def _escape_for_applescript(text: str) -> str:
    """Escape special characters for AppleScript string."""
    # Order matters: backslash first
    text = text.replace("\\", "\\\\")
    text = text.replace('"', '\\"')
    text = text.replace("\r", "\\r")
    text = text.replace("\n", "\\n")
    text = text.replace("\t", "\\t")
    return text


class TextInserter:
    """
    Types into the focused application.

    Errors are printed, never raised.
    """

    def __init__(self, controller=None):
        if controller is None:
            from pynput.keyboard import Controller
            controller = Controller()
        self.controller = controller
        self._lock = threading.Lock()

    def insert(self, text: str) -> None:
        """Type text at the current cursor position."""
        if not text:
            return
        try:
            with self._lock:
                self.controller.type(text)
        except Exception as e:
            print(f"[Output] Failed to type text: {e}")

    def delete_chars(self, count: int) -> None:
        """Send `count` backspaces."""
        if count <= 0:
            return
        from pynput.keyboard import Key

        try:
            with self._lock:
                for _ in range(count):
                    self.controller.tap(Key.backspace)
        except Exception as e:
            print(f"[Output] Failed to delete text: {e}")

    def undo(self) -> None:
        """Send the platform undo shortcut (Cmd+Z on macOS, Ctrl+Z elsewhere)."""
        from pynput.keyboard import Key

        modifier = Key.cmd if sys.platform == "darwin" else Key.ctrl
        try:
            with self._lock:
                with self.controller.pressed(modifier):
                    self.controller.tap("z")
        except Exception as e:
            print(f"[Output] Failed to send undo: {e}")


def notify(message: str, title: str = "FusionScribe") -> None:
    """
    Show a desktop notification (macOS only; printed elsewhere).

    Args:
        message: Notification body
        title: Notification title
    """
    if sys.platform != "darwin":
        print(f"[{title}] {message}")
        return

    try:
        script = (
            f'display notification "{_escape_for_applescript(message)}" '
            f'with title "{_escape_for_applescript(title)}"'
        )
        subprocess.run(
            ["osascript"],
            input=script.encode("utf-8"),
            capture_output=True,
            timeout=2.0
        )
    except Exception as e:
        print(f"notify error: {e}")


def play_sound(sound_name: str = "Tink") -> None:
    """
    Play a system sound (macOS only).

    Args:
        sound_name: Name of sound in /System/Library/Sounds/
    """
    if sys.platform != "darwin":
        return

    try:
        subprocess.run(
            ["afplay", f"/System/Library/Sounds/{sound_name}.aiff"],
            capture_output=True,
            timeout=2.0
        )
    except Exception as e:
        print(f"play_sound error: {e}")


def play_busy_sound() -> None:
    """Play a sound indicating the system is busy."""
    play_sound("Basso")
