"""Audio subpackage: capture buffer, microphone recorder, and energy VAD."""

from branchlog.audio.buffer import CaptureBuffer
from branchlog.audio.recorder import MicRecorder
from branchlog.audio.vad import (
    VadConfig,
    VoiceActivityDetector,
    peak_energy,
    rms_energy,
)

__all__ = [
    "CaptureBuffer",
    "MicRecorder",
    "VadConfig",
    "VoiceActivityDetector",
    "peak_energy",
    "rms_energy",
]
