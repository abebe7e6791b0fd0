"""
Audio capture with a live level meter and optional silence-based chunking.

One sounddevice input stream feeds three consumers:
- the level meter (0-100 AudioLevel pushed to on_level every block),
- the capture buffer used by the recording pipeline,
- the utterance chunker used by the streaming recognizer.
"""

import io
import threading
from collections import deque
from typing import Callable, Deque, List, Optional

import numpy as np
import soundfile as sf


# Constants
DEFAULT_BLOCKSIZE = 1024
FFT_SIZE = 256              # 128 frequency bins
SMOOTHING = 0.8             # time smoothing between spectra
MIN_DB = -100.0             # spectrum floor, maps to byte 0
MAX_DB = -30.0              # spectrum ceiling, maps to byte 255
SILENCE_THRESHOLD_DB = -35  # dB threshold for utterance silence detection
PREROLL_SECONDS = 0.5       # audio kept from before a recording starts


class LevelMeter:
    """
    Converts audio blocks to a 0-100 level.

    The level is the RMS of the byte-scaled magnitude spectrum of the
    most recent FFT_SIZE samples, normalized to 0-100.
    """

    def __init__(
        self,
        fft_size: int = FFT_SIZE,
        smoothing: float = SMOOTHING,
        min_db: float = MIN_DB,
        max_db: float = MAX_DB,
    ):
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self._window = np.blackman(fft_size)
        self._previous: Optional[np.ndarray] = None

    def process(self, block: np.ndarray) -> float:
        """Return the level of this block (0-100)."""
        samples = np.asarray(block, dtype=np.float64).flatten()[-self.fft_size:]
        if len(samples) < self.fft_size:
            samples = np.pad(samples, (self.fft_size - len(samples), 0))

        spectrum = np.abs(np.fft.rfft(samples * self._window))[: self.fft_size // 2]
        spectrum = spectrum / self.fft_size

        if self._previous is not None and self.smoothing > 0:
            spectrum = self.smoothing * self._previous + (1 - self.smoothing) * spectrum
        self._previous = spectrum

        db = 20 * np.log10(np.maximum(spectrum, 1e-12))
        byte_data = np.clip((db - self.min_db) * 255.0 / (self.max_db - self.min_db), 0, 255)
        byte_data = np.floor(byte_data)

        rms = np.sqrt(np.mean(byte_data ** 2))
        return float(min(100.0, rms / 255.0 * 100.0))

    def reset(self) -> None:
        self._previous = None


def compute_audio_level(block: np.ndarray, fft_size: int = FFT_SIZE) -> float:
    """Level of a single block with no time smoothing."""
    return LevelMeter(fft_size=fft_size, smoothing=0.0).process(block)


def is_silence(audio: np.ndarray, threshold_db: float = SILENCE_THRESHOLD_DB) -> bool:
    """Check if audio block is silence."""
    if len(audio) == 0:
        return True

    # Calculate RMS in dB
    rms = np.sqrt(np.mean(audio ** 2))
    if rms == 0:
        return True

    db = 20 * np.log10(rms)
    return db < threshold_db


def audio_to_wav_bytes(audio: np.ndarray, sample_rate: int = 16000) -> bytes:
    """Convert numpy audio array to WAV bytes."""
    audio_int16 = (np.clip(audio, -1.0, 1.0) * 32767).astype(np.int16)
    buffer = io.BytesIO()
    sf.write(buffer, audio_int16, sample_rate, format="WAV", subtype="PCM_16")
    buffer.seek(0)
    return buffer.getvalue()


class AudioEngine:
    """
    Manages one mic stream with a pre-roll buffer and a level meter.

    Thread-safe: all public methods can be called from any thread.
    Callbacks run on the audio thread without the engine lock held.

    Usage:
        engine = AudioEngine(sample_rate=16000)
        engine.on_level = vae.on_audio_level
        engine.on_error = vae.on_audio_error
        engine.initialize()

        engine.start_recording()
        # ... user speaks ...
        audio = engine.stop_recording()
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        input_device: str = "",
        chunk_silence_seconds: Optional[float] = None,
        min_chunk_seconds: float = 0.5,
    ):
        self.sample_rate = sample_rate
        self.input_device = input_device

        self.stream = None
        self.meter = LevelMeter()
        self.preroll: Deque[np.ndarray] = deque(
            maxlen=max(1, int(PREROLL_SECONDS * sample_rate / DEFAULT_BLOCKSIZE))
        )
        self.recording_buffer: List[np.ndarray] = []

        # Utterance chunking (streaming recognizer only)
        self.chunk_silence_seconds = chunk_silence_seconds
        self.min_chunk_seconds = min_chunk_seconds
        self.current_chunk: List[np.ndarray] = []
        self.silence_duration: float = 0.0
        self._chunk_has_speech = False

        # State
        self.is_recording: bool = False
        self._closing = False
        self._lock = threading.Lock()

        # Callbacks
        self.on_level: Optional[Callable[[float], None]] = None
        self.on_error: Optional[Callable[[Exception], None]] = None
        self.on_chunk_ready: Optional[Callable[[np.ndarray], None]] = None

    def initialize(self) -> None:
        """
        Open and start the input stream.

        Raises:
            Exception from sounddevice if the device cannot be opened
        """
        import sounddevice as sd

        device = self._find_device(self.input_device) if self.input_device else None
        if self.input_device and device is None:
            print(f"[Audio] Mic not found: {self.input_device}, using default input")

        self._closing = False
        self.meter.reset()
        self.stream = sd.InputStream(
            device=device,
            samplerate=self.sample_rate,
            channels=1,
            dtype=np.float32,
            blocksize=DEFAULT_BLOCKSIZE,
            callback=self._audio_callback,
            finished_callback=self._stream_finished,
        )
        self.stream.start()
        print(f"[Audio] Input stream started ({self.input_device or 'default'})")

    def _find_device(self, mic_name: str) -> Optional[int]:
        """Find device index by name (fuzzy matching)."""
        import sounddevice as sd

        devices = sd.query_devices()
        mic_lower = mic_name.lower()

        # Exact match first
        for i, d in enumerate(devices):
            if d["max_input_channels"] > 0 and d["name"].lower() == mic_lower:
                return i

        # Substring match
        for i, d in enumerate(devices):
            if d["max_input_channels"] > 0 and mic_lower in d["name"].lower():
                return i

        return None

    def start_recording(self) -> None:
        """Begin capturing audio. Dumps preroll into the capture buffer."""
        with self._lock:
            self.is_recording = True
            self.recording_buffer = list(self.preroll)

    def stop_recording(self) -> np.ndarray:
        """
        Stop capturing and return everything captured.

        Returns:
            Mono float32 audio (empty array if nothing was captured)
        """
        with self._lock:
            self.is_recording = False
            buffers, self.recording_buffer = self.recording_buffer, []

        if not buffers:
            return np.array([], dtype=np.float32)
        return np.concatenate(buffers)

    def peek_chunk(self) -> np.ndarray:
        """Copy of the utterance collected so far (empty if no speech yet)."""
        with self._lock:
            if not self._chunk_has_speech or not self.current_chunk:
                return np.array([], dtype=np.float32)
            return np.concatenate(self.current_chunk)

    def shutdown(self) -> None:
        """Close the stream cleanly."""
        with self._lock:
            self._closing = True
            self.is_recording = False
            self.recording_buffer = []
            self.current_chunk = []
            self._chunk_has_speech = False
            stream, self.stream = self.stream, None

        # Close stream outside of lock to avoid deadlock with the callback
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                print(f"[Audio] Error closing stream: {e}")

    def _stream_finished(self) -> None:
        """Called by sounddevice when the stream ends."""
        if self._closing:
            return
        callback = self.on_error
        if callback:
            callback(RuntimeError("Audio input stream ended unexpectedly"))

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        """
        Called by sounddevice for each audio block.

        A block flagged with a status is kept in the buffers but skipped by
        the level meter: a hiccup means no level update for that tick.
        """
        audio = indata.copy().flatten()
        chunk: Optional[np.ndarray] = None

        with self._lock:
            if self._closing:
                return

            self.preroll.append(audio)
            if self.is_recording:
                self.recording_buffer.append(audio)

            if self.chunk_silence_seconds is not None:
                chunk = self._append_to_chunk(audio, frames)

        if status:
            print(f"[Audio] Callback status: {status}")
        else:
            level_callback = self.on_level
            if level_callback:
                level_callback(self.meter.process(audio))

        chunk_callback = self.on_chunk_ready
        if chunk is not None and chunk_callback:
            chunk_callback(chunk)

    def _append_to_chunk(self, audio: np.ndarray, frames: int) -> Optional[np.ndarray]:
        """
        Add a block to the current utterance; return it once silence ends it.

        Must be called with lock held.
        """
        self.current_chunk.append(audio)

        if not is_silence(audio):
            self._chunk_has_speech = True
            self.silence_duration = 0.0
            return None

        self.silence_duration += frames / self.sample_rate
        if self.silence_duration < self.chunk_silence_seconds:
            # Bound leading silence to the preroll length
            if not self._chunk_has_speech and len(self.current_chunk) > self.preroll.maxlen:
                self.current_chunk.pop(0)
            return None

        chunk_samples = sum(len(b) for b in self.current_chunk)
        has_speech = self._chunk_has_speech
        buffers = self.current_chunk
        self.current_chunk = []
        self._chunk_has_speech = False
        self.silence_duration = 0.0

        if not has_speech or chunk_samples / self.sample_rate < self.min_chunk_seconds:
            return None
        return np.concatenate(buffers)
