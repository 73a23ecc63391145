"""Speech capture/output contracts and console implementations."""

from halo.speech.base import (
    CaptureListener,
    CaptureOptions,
    NullOverlay,
    Overlay,
    SpeechCapture,
    SpeechCompletion,
    SpeechOutput,
    VoiceProfile,
)
from halo.speech.console import ConsoleCapture, LoggingSpeechOutput

__all__ = [
    "CaptureListener",
    "CaptureOptions",
    "ConsoleCapture",
    "LoggingSpeechOutput",
    "NullOverlay",
    "Overlay",
    "SpeechCapture",
    "SpeechCompletion",
    "SpeechOutput",
    "VoiceProfile",
]
