"""
Shared runtime state.

SessionContext is the only state shared between components: the single
"recording in progress" flag plus the active app and rule. It is created
once by the entry point and injected everywhere it is needed.
"""

import threading
import time
from typing import Callable, Optional

from .types import ActiveAppInfo, AppRule, RecordingSession


class SessionContext:
    """
    Owns the recording flag and the current app/rule.

    Only one RecordingSession may exist at a time. Claims are atomic:
    a second claimant gets None and must treat its start as a no-op.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._recording: Optional[RecordingSession] = None
        self._active_rule: Optional[AppRule] = None
        self._active_app: Optional[ActiveAppInfo] = None
        self._audio_level: float = 0.0

    # Recording flag

    def try_begin_recording(self, owner: str) -> Optional[RecordingSession]:
        """Claim the recording flag. Returns None if a recording is active."""
        with self._lock:
            if self._recording is not None and self._recording.is_active:
                return None
            self._recording = RecordingSession(owner=owner, started_at=self._clock())
            return self._recording

    def end_recording(self, owner: str) -> bool:
        """Release the recording flag if `owner` holds it."""
        with self._lock:
            if self._recording is None or self._recording.owner != owner:
                return False
            self._recording.is_active = False
            self._recording = None
            return True

    @property
    def recording(self) -> Optional[RecordingSession]:
        with self._lock:
            return self._recording

    @property
    def is_recording(self) -> bool:
        with self._lock:
            return self._recording is not None and self._recording.is_active

    def recording_owner(self) -> Optional[str]:
        with self._lock:
            return self._recording.owner if self._recording else None

    # App context

    @property
    def active_rule(self) -> Optional[AppRule]:
        with self._lock:
            return self._active_rule

    def set_active_rule(self, rule: Optional[AppRule]) -> bool:
        """Store the active rule. Returns True if it changed."""
        with self._lock:
            changed = rule != self._active_rule
            self._active_rule = rule
            return changed

    @property
    def active_app(self) -> Optional[ActiveAppInfo]:
        with self._lock:
            return self._active_app

    def set_active_app(self, app: Optional[ActiveAppInfo]) -> None:
        with self._lock:
            self._active_app = app

    # Audio level (ephemeral, last value wins)

    @property
    def audio_level(self) -> float:
        with self._lock:
            return self._audio_level

    def set_audio_level(self, level: float) -> None:
        with self._lock:
            self._audio_level = level
