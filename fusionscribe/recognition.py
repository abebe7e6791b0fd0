"""
Speech recognition capability used by streaming dictation.

RecognitionCapability is the interface the dictation session talks to.
ChunkedRecognizer is the default implementation: it splits microphone
audio into utterances on silence and transcribes each one with a
transcription provider.
"""

import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import numpy as np

from .audio import AudioEngine, audio_to_wav_bytes
from .fusion import estimate_confidence
from .providers import TranscriptionProvider


class RecognitionCapability(ABC):
    """
    Continuous recognizer.

    Listeners are plain attributes, set by the owner before start():
    - on_result(text, is_final, confidence)
    - on_start()
    - on_end(): recognition stopped, whether asked to or not
    - on_error(message): transient failure, recognition may continue
    - on_audio_level(level)
    """

    def __init__(self):
        self.on_result: Optional[Callable[[str, bool, float], None]] = None
        self.on_start: Optional[Callable[[], None]] = None
        self.on_end: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None
        self.on_audio_level: Optional[Callable[[float], None]] = None

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    def pause(self) -> None:
        """Suspend recognition. Defaults to stop()."""
        self.stop()

    def resume(self) -> None:
        """Continue after pause(). Defaults to start()."""
        self.start()

    def _emit(self, listener: Optional[Callable], *args) -> None:
        if listener is None:
            return
        try:
            listener(*args)
        except Exception as e:
            print(f"[Recognizer] Listener error: {e}")


class ChunkedRecognizer(RecognitionCapability):
    """
    Utterance-at-a-time recognizer on top of AudioEngine chunking.

    Final results come from transcribing each silence-bounded utterance in
    order on a single worker. With interim results enabled, the utterance in
    progress is re-transcribed every `interim_interval` seconds; an interim
    result is dropped if its utterance was finalized meanwhile. Pausing only
    stops interim results; final results keep coming.

    Usage:
        recognizer = ChunkedRecognizer(provider)
        session = StreamingDictationSession(context, recognizer, inserter)
        session.start()
    """

    MIN_INTERIM_SECONDS = 0.5

    def __init__(
        self,
        provider: TranscriptionProvider,
        sample_rate: int = 16000,
        input_device: str = "",
        silence_seconds: float = 0.8,
        interim_results: bool = True,
        interim_interval: float = 1.5,
        engine_factory: Callable[..., AudioEngine] = AudioEngine,
    ):
        super().__init__()
        self.provider = provider
        self.sample_rate = sample_rate
        self.input_device = input_device
        self.silence_seconds = silence_seconds
        self.interim_results = interim_results
        self.interim_interval = interim_interval
        self.engine_factory = engine_factory

        self.engine: Optional[AudioEngine] = None
        self.is_running = False
        self._utterance_id = 0
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="recognizer")
        self.is_paused = False
        # One stop event per interim thread, so a late thread never outlives its run
        self._interim_stop = threading.Event()
        self._interim_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return

            engine = self.engine_factory(
                sample_rate=self.sample_rate,
                input_device=self.input_device,
                chunk_silence_seconds=self.silence_seconds,
            )
            engine.on_level = self._on_level
            engine.on_error = self._on_stream_error
            engine.on_chunk_ready = self._on_chunk

            try:
                engine.initialize()
            except Exception as e:
                failure: Optional[Exception] = e
            else:
                failure = None
                self.engine = engine
                self.is_running = True
                self.is_paused = False
                self._start_interim()

        if failure is not None:
            self._emit(self.on_error, f"Failed to open audio input: {failure}")
            self._emit(self.on_end)
            return

        self._emit(self.on_start)

    def stop(self) -> None:
        if not self._shutdown_engine():
            return
        self._emit(self.on_end)

    def pause(self) -> None:
        """
        Stop interim results but keep the stream open.

        Utterances are still finalized, so a paused listener can hear
        "resume dictation".
        """
        with self._lock:
            if not self.is_running or self.is_paused:
                return
            self.is_paused = True
            self._interim_stop.set()

    def resume(self) -> None:
        with self._lock:
            if self.is_running:
                resumed = self.is_paused
                self.is_paused = False
                if resumed:
                    self._start_interim()
            else:
                resumed = False

        if not resumed:
            self.start()
            return
        self._emit(self.on_start)

    def _start_interim(self) -> None:
        """Must hold lock."""
        if not self.interim_results:
            return
        stop_event = threading.Event()
        self._interim_stop = stop_event
        self._interim_thread = threading.Thread(
            target=self._interim_loop, args=(stop_event,), daemon=True,
        )
        self._interim_thread.start()

    def _shutdown_engine(self) -> bool:
        """Close the stream. Returns False if it was not running."""
        with self._lock:
            if not self.is_running:
                return False
            self.is_running = False
            engine, self.engine = self.engine, None
            self._utterance_id += 1
            self._interim_stop.set()

        if engine is not None:
            engine.on_chunk_ready = None
            engine.shutdown()
        return True

    def _on_level(self, level: float) -> None:
        self._emit(self.on_audio_level, level)

    def _on_stream_error(self, error: Exception) -> None:
        self._emit(self.on_error, str(error))
        if self._shutdown_engine():
            self._emit(self.on_end)

    def _on_chunk(self, audio: np.ndarray) -> None:
        """Utterance finished (audio thread). Transcribe on the worker."""
        with self._lock:
            if not self.is_running:
                return
            self._utterance_id += 1
        self._executor.submit(self._transcribe_final, audio)

    def _transcribe_final(self, audio: np.ndarray) -> None:
        result = self._transcribe(audio)
        if result is None:
            return
        text, confidence = result
        if text.strip():
            self._emit(self.on_result, text, True, confidence)

    def _interim_loop(self, stop_event: threading.Event) -> None:
        last_samples = 0
        while not stop_event.wait(self.interim_interval):
            with self._lock:
                engine = self.engine
                utterance_id = self._utterance_id
            if engine is None:
                return

            audio = engine.peek_chunk()
            if len(audio) < self.MIN_INTERIM_SECONDS * self.sample_rate or len(audio) == last_samples:
                continue
            last_samples = len(audio)

            result = self._transcribe(audio)
            with self._lock:
                stale = utterance_id != self._utterance_id or stop_event.is_set()
            if result is None or stale:
                continue
            text, confidence = result
            if text.strip():
                self._emit(self.on_result, text, False, confidence)

    def _transcribe(self, audio: np.ndarray) -> Optional[tuple]:
        """Returns (text, confidence), or None after reporting an error."""
        start = time.monotonic()
        try:
            text = self.provider.transcribe(audio_to_wav_bytes(audio, self.sample_rate))
        except Exception as e:
            self._emit(self.on_error, f"{self.provider.name}: {e}")
            return None
        latency_ms = (time.monotonic() - start) * 1000
        return text, estimate_confidence(text, self.provider.name, latency_ms)

    def close(self) -> None:
        """Stop and release the worker."""
        self.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)
