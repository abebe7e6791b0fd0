"""
Streaming dictation: continuous recognition with live text insertion.

Final results are typed into the focused app as they arrive; interim results
only update the preview. A small vocabulary of spoken commands edits the
inserted text or controls the session instead of being typed.
"""

import threading
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Protocol

from .metrics import MetricsWriter, log_dictation_event
from .recognition import RecognitionCapability
from .scheduler import ScheduledTask, Scheduler, ThreadingScheduler
from .state import SessionContext
from .types import StreamingDictationConfig, StreamingDictationState


VOICE_COMMANDS: Dict[str, str] = {
    "new line": "newline",
    "new paragraph": "paragraph",
    "delete": "delete",
    "delete line": "delete_line",
    "undo": "undo",
    "stop dictation": "stop",
    "pause dictation": "pause",
    "resume dictation": "resume",
}

# Commands still honored while paused
PAUSED_COMMANDS = ("resume", "stop")


class TextSink(Protocol):
    """Where dictated text goes (see output.TextInserter)."""

    def insert(self, text: str) -> None: ...

    def delete_chars(self, count: int) -> None: ...

    def undo(self) -> None: ...


def match_voice_command(text: str) -> Optional[str]:
    """Return the command for a final transcript, or None if it is plain text."""
    return VOICE_COMMANDS.get(text.strip().lower().rstrip(".!?"))


class StreamingDictationSession:
    """
    One dictation session driving a RecognitionCapability.

    The session holds the recording flag while active, so voice activation
    and manual recording stay out of the way. If the recognizer ends on its
    own while the session is active and not paused, it is restarted after
    `restart_delay_ms`.

    Usage:
        session = StreamingDictationSession(context, recognizer, TextInserter())
        session.start(config.streaming_dictation)
        ...
        session.stop()
    """

    OWNER = "dictation"

    def __init__(
        self,
        context: SessionContext,
        recognizer: RecognitionCapability,
        inserter: TextSink,
        config: Optional[StreamingDictationConfig] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsWriter] = None,
    ):
        self.context = context
        self.recognizer = recognizer
        self.inserter = inserter
        self.config = config or StreamingDictationConfig()
        self.scheduler = scheduler or ThreadingScheduler()
        self.clock = clock
        self.metrics = metrics

        self.state = StreamingDictationState(language=self.config.language)

        self._restart_task: Optional[ScheduledTask] = None
        self._segments: List[str] = []     # inserted text, newest last
        self._line_chars = 0               # chars inserted since the last line break
        self._lock = threading.RLock()

        recognizer.on_result = self.on_recognition_event
        recognizer.on_start = self.on_recognizer_start
        recognizer.on_end = self.on_recognizer_end
        recognizer.on_error = self.on_recognition_error
        recognizer.on_audio_level = self.on_audio_level

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    def start(self, config: Optional[StreamingDictationConfig] = None) -> bool:
        """
        Start a session.

        Returns:
            False if already active or another recording holds the flag
        """
        with self._lock:
            if config is not None:
                self.config = config
            if self.state.is_active:
                print("[Dictation] Already active")
                return False

            if self.context.try_begin_recording(self.OWNER) is None:
                print(f"[Dictation] Recording already in progress "
                      f"({self.context.recording_owner()}), not starting")
                return False

            self.state = StreamingDictationState(
                is_active=True,
                language=self.config.language,
                start_time=self.clock(),
            )
            self._segments = []
            self._line_chars = 0

        print(f"[Dictation] Started ({self.config.language})")
        log_dictation_event(self.metrics, "start", language=self.config.language)
        self._start_recognizer()
        return True

    def stop(self) -> None:
        """End the session. Word count and start time are kept. Safe to call twice."""
        with self._lock:
            self._cancel_restart()
            if not self.state.is_active:
                return
            self.state.is_active = False
            self.state.is_listening = False
            self.state.is_paused = False
            self.state.current_text = ""
            words = self.state.words_spoken

        try:
            self.recognizer.stop()
        except Exception as e:
            print(f"[Dictation] Failed to stop recognizer: {e}")
        finally:
            self.context.end_recording(self.OWNER)

        print(f"[Dictation] Stopped ({words} words)")
        log_dictation_event(self.metrics, "stop", words_spoken=words)

    def pause(self) -> None:
        """
        Stop typing until resumed.

        Recognizers that keep listening while paused still deliver final
        results; "resume dictation" and "stop dictation" act on them.
        """
        with self._lock:
            if not self.state.is_active or self.state.is_paused:
                return
            self._cancel_restart()
            self.state.is_paused = True
            self.state.is_listening = False

        try:
            self.recognizer.pause()
        except Exception as e:
            print(f"[Dictation] Failed to pause recognizer: {e}")
        print("[Dictation] Paused")
        log_dictation_event(self.metrics, "pause")

    def resume(self) -> None:
        with self._lock:
            if not self.state.is_active or not self.state.is_paused:
                return
            self.state.is_paused = False

        print("[Dictation] Resumed")
        log_dictation_event(self.metrics, "resume")
        try:
            self.recognizer.resume()
        except Exception as e:
            self.on_recognition_error(f"Failed to resume recognizer: {e}")

    def get_state(self) -> StreamingDictationState:
        with self._lock:
            return replace(self.state)

    # Recognizer listeners

    def on_recognition_event(self, text: str, is_final: bool, confidence: float) -> None:
        with self._lock:
            if not self.state.is_active:
                return

            if self.state.is_paused:
                # Only commands that end the pause get through
                if not is_final or not self.config.enable_voice_commands:
                    return
                command = match_voice_command(text)
                if command not in PAUSED_COMMANDS:
                    return
            else:
                command = self._handle_event(text, is_final, confidence)
                if command is None:
                    return

        # Outside the lock: stop/pause/resume take it themselves
        self._dispatch_command(command)

    def _handle_event(self, text: str, is_final: bool, confidence: float) -> Optional[str]:
        """Update state for an event. Returns the voice command, if it was one. Must hold lock."""
        self.state.confidence = confidence
        if not is_final:
            self.state.current_text = text
            return None

        command = match_voice_command(text) if self.config.enable_voice_commands else None
        if command is None:
            self._insert_final(text)
        return command

    def on_recognizer_start(self) -> None:
        with self._lock:
            if self.state.is_active and not self.state.is_paused:
                self.state.is_listening = True

    def on_recognizer_end(self) -> None:
        with self._lock:
            self.state.is_listening = False
            if not self.state.is_active or self.state.is_paused or not self.config.continuous:
                return
            if self._restart_task is not None:
                return

            delay = self.config.restart_delay_ms / 1000
            self._restart_task = self.scheduler.schedule(delay, self._restart)

    def on_recognition_error(self, message: str) -> None:
        print(f"[Dictation] Recognition error: {message}")
        with self._lock:
            self.state.last_error = message
        log_dictation_event(self.metrics, "error", error=message)

    def on_audio_level(self, level: float) -> None:
        self.state.audio_level = level
        self.context.set_audio_level(level)

    # Internals

    def _start_recognizer(self) -> None:
        try:
            self.recognizer.start()
        except Exception as e:
            self.on_recognition_error(f"Failed to start recognizer: {e}")

    def _restart(self) -> None:
        """Restart timer fired. The session may have changed since it was armed."""
        with self._lock:
            self._restart_task = None
            if not self.state.is_active or self.state.is_paused or self.state.is_listening:
                return

        print("[Dictation] Restarting recognition")
        self._start_recognizer()

    def _cancel_restart(self) -> None:
        """Must hold lock."""
        if self._restart_task is not None:
            self._restart_task.cancel()
            self._restart_task = None

    def _insert_final(self, text: str) -> None:
        """Must hold lock."""
        text = text.strip()
        if not text:
            return

        self.state.words_spoken += len(text.split())
        self.state.last_final_text = text
        self.state.current_text = ""

        # Space between consecutive utterances on the same line
        if self._segments and not self._segments[-1].endswith("\n"):
            text = " " + text
        self._insert(text)

    def _insert(self, text: str) -> None:
        """Must hold lock."""
        try:
            self.inserter.insert(text)
        except Exception as e:
            self.on_recognition_error(f"Failed to insert text: {e}")
            return

        self._segments.append(text)
        if "\n" in text:
            self._line_chars = len(text) - text.rfind("\n") - 1
        else:
            self._line_chars += len(text)

    def _delete(self, count: int) -> None:
        """Must hold lock."""
        if count <= 0:
            return
        try:
            self.inserter.delete_chars(count)
        except Exception as e:
            self.on_recognition_error(f"Failed to delete text: {e}")

    def _dispatch_command(self, command: str) -> None:
        print(f"[Dictation] Voice command: {command}")
        log_dictation_event(self.metrics, "command", command=command)

        if command == "stop":
            self.stop()
            return
        if command == "pause":
            self.pause()
            return
        if command == "resume":
            self.resume()
            return

        with self._lock:
            if command == "newline":
                self._insert("\n")
            elif command == "paragraph":
                self._insert("\n\n")
            elif command == "delete":
                if self._segments:
                    segment = self._segments.pop()
                    self._delete(len(segment))
                    self._recount_line()
            elif command == "delete_line":
                self._delete(self._line_chars)
                self._drop_current_line()
            elif command == "undo":
                try:
                    self.inserter.undo()
                except Exception as e:
                    self.on_recognition_error(f"Failed to undo: {e}")
                # The editor's undo may not match our segments
                self._segments = []
                self._line_chars = 0

    def _recount_line(self) -> None:
        """Recompute chars since the last line break. Must hold lock."""
        inserted = "".join(self._segments)
        self._line_chars = len(inserted) - inserted.rfind("\n") - 1

    def _drop_current_line(self) -> None:
        """Forget segments after the last line break. Must hold lock."""
        inserted = "".join(self._segments)
        kept = inserted[: inserted.rfind("\n") + 1]
        self._segments = [kept] if kept else []
        self._line_chars = 0
