"""
Tests for the level meter and AudioEngine buffering.

The engine is driven by calling its sounddevice callback directly, so no
audio hardware is needed.
"""

import io

import numpy as np
import pytest
import soundfile as sf
from unittest.mock import Mock

BLOCK = 1024


def noise(amplitude, frames=BLOCK, seed=0):
    rng = np.random.default_rng(seed)
    return (rng.standard_normal(frames) * amplitude).astype(np.float32)


def silence(frames=BLOCK):
    return np.zeros(frames, dtype=np.float32)


def feed(engine, block):
    engine._audio_callback(block.reshape(-1, 1), len(block), None, None)


class TestLevelMeter:
    """0-100 audio level."""

    def test_silence_is_zero(self):
        from fusionscribe.audio import compute_audio_level

        assert compute_audio_level(silence()) == 0.0

    def test_speech_level_noise_is_high(self):
        from fusionscribe.audio import compute_audio_level

        assert compute_audio_level(noise(0.5)) > 50

    def test_faint_noise_is_below_silence_ratio(self):
        from fusionscribe.audio import compute_audio_level

        # Below 30% of the default sensitivity
        assert compute_audio_level(noise(1e-4)) < 9

    def test_louder_is_higher(self):
        from fusionscribe.audio import compute_audio_level

        assert compute_audio_level(noise(0.05)) > compute_audio_level(noise(0.001))

    def test_level_capped_at_100(self):
        from fusionscribe.audio import compute_audio_level

        assert compute_audio_level(np.ones(BLOCK, dtype=np.float32) * 50) <= 100.0

    def test_smoothing_carries_previous_spectrum(self):
        from fusionscribe.audio import LevelMeter

        meter = LevelMeter()
        loud = meter.process(noise(0.5))
        after = meter.process(silence())

        assert 0 < after < loud

        meter.reset()
        assert meter.process(silence()) == 0.0


class TestHelpers:
    """Silence detection and WAV encoding."""

    def test_is_silence(self):
        from fusionscribe.audio import is_silence

        assert is_silence(silence())
        assert is_silence(np.array([], dtype=np.float32))
        assert not is_silence(noise(0.5))

    def test_wav_bytes(self):
        from fusionscribe.audio import audio_to_wav_bytes

        wav = audio_to_wav_bytes(noise(0.5, frames=16000), 16000)

        assert wav[:4] == b"RIFF"
        data, sample_rate = sf.read(io.BytesIO(wav))
        assert sample_rate == 16000
        assert len(data) == 16000


class TestAudioEngine:
    """Capture buffer, pre-roll and callbacks."""

    def test_level_callback(self):
        from fusionscribe.audio import AudioEngine

        engine = AudioEngine()
        engine.on_level = Mock()

        feed(engine, noise(0.5))

        level = engine.on_level.call_args.args[0]
        assert 0 < level <= 100

    def test_status_block_skips_level(self):
        from fusionscribe.audio import AudioEngine

        engine = AudioEngine()
        engine.on_level = Mock()

        block = noise(0.5)
        engine._audio_callback(block.reshape(-1, 1), BLOCK, None, "input overflow")

        engine.on_level.assert_not_called()

    def test_recording_includes_preroll(self):
        from fusionscribe.audio import AudioEngine

        engine = AudioEngine()
        for _ in range(3):
            feed(engine, silence())

        engine.start_recording()
        feed(engine, noise(0.5))
        feed(engine, noise(0.5))
        audio = engine.stop_recording()

        assert len(audio) == 5 * BLOCK
        assert engine.is_recording is False

    def test_preroll_is_bounded(self):
        from fusionscribe.audio import AudioEngine

        engine = AudioEngine()
        for _ in range(50):
            feed(engine, silence())

        engine.start_recording()
        audio = engine.stop_recording()

        assert len(audio) == engine.preroll.maxlen * BLOCK

    def test_stop_without_recording(self):
        from fusionscribe.audio import AudioEngine

        audio = AudioEngine().stop_recording()

        assert len(audio) == 0
        assert audio.dtype == np.float32

    def test_stream_finished_reports_error(self):
        from fusionscribe.audio import AudioEngine

        engine = AudioEngine()
        engine.on_error = Mock()

        engine._stream_finished()

        assert isinstance(engine.on_error.call_args.args[0], RuntimeError)

    def test_stream_finished_ignored_when_closing(self):
        from fusionscribe.audio import AudioEngine

        engine = AudioEngine()
        engine.on_error = Mock()

        engine.shutdown()
        engine._stream_finished()

        engine.on_error.assert_not_called()

    def test_callbacks_ignored_after_shutdown(self):
        from fusionscribe.audio import AudioEngine

        engine = AudioEngine()
        engine.on_level = Mock()
        engine.shutdown()

        feed(engine, noise(0.5))

        engine.on_level.assert_not_called()


class TestChunking:
    """Utterance chunks for the streaming recognizer."""

    def make_engine(self):
        from fusionscribe.audio import AudioEngine

        engine = AudioEngine(chunk_silence_seconds=0.2, min_chunk_seconds=0.1)
        engine.on_chunk_ready = Mock()
        return engine

    def test_chunk_emitted_after_silence(self):
        engine = self.make_engine()

        for i in range(3):
            feed(engine, noise(0.5, seed=i))
        assert len(engine.peek_chunk()) == 3 * BLOCK

        # 4 blocks of 64ms reach the 200ms silence limit
        for _ in range(4):
            feed(engine, silence())

        engine.on_chunk_ready.assert_called_once()
        chunk = engine.on_chunk_ready.call_args.args[0]
        assert len(chunk) == 7 * BLOCK
        assert len(engine.peek_chunk()) == 0

    def test_silence_only_emits_nothing(self):
        engine = self.make_engine()

        for _ in range(20):
            feed(engine, silence())

        engine.on_chunk_ready.assert_not_called()
        assert len(engine.peek_chunk()) == 0

    def test_short_speech_dropped(self):
        from fusionscribe.audio import AudioEngine

        engine = AudioEngine(chunk_silence_seconds=0.2, min_chunk_seconds=1.0)
        engine.on_chunk_ready = Mock()

        feed(engine, noise(0.5))
        for _ in range(4):
            feed(engine, silence())

        engine.on_chunk_ready.assert_not_called()
