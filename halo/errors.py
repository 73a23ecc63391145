"""
Error taxonomy for the Reflex Loop.

None of these are allowed to escape the core as a crash. Backend errors are
raised by the inference backends and converted to conservative in-band
results by the selector and the classifier; capture and speech errors are
absorbed by the Reflex Controller's restart and resume paths.
"""

from typing import Optional


class HaloError(Exception):
    """Base class for all guardian errors."""


class BackendError(HaloError):
    """An inference backend call failed."""

    def __init__(self, message: str, *, model: Optional[str] = None):
        super().__init__(message)
        self.model = model


class BackendNetworkError(BackendError):
    """The inference service could not be reached."""


class BackendTimeout(BackendError):
    """The inference call exceeded its time budget."""


class ModelError(BackendError):
    """The service answered but the model failed (HTTP error, load failure)."""

    def __init__(self, message: str, *, model: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message, model=model)
        self.status = status


class BackendUnavailable(HaloError):
    """No model is ready; raised when an operation needs the active model."""


class CaptureTransientError(HaloError):
    """The speech recognizer hiccuped; capture will be restarted."""

    def __init__(self, code: str, message: str = ""):
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code


class SpeechOutputFailure(HaloError):
    """Text-to-speech failed; treated as immediate completion."""
