"""
FusionScribe - Hands-free voice-to-text with multi-provider fusion.

This package provides:
- Voice activation: recording starts and stops with your voice
- Streaming dictation with spoken editing commands
- Parallel transcription via multiple cloud providers, merged by strategy
- Per-application rules that override the global configuration

Main entry point: python -m fusionscribe
"""

__version__ = "1.0.0"
