"""
Collaborator contracts for speech capture, speech output and the overlay.

The Reflex Controller only ever talks to these interfaces. Concrete
recognizers and synthesizers live outside the core; console.py carries a
thin pair used by the service entry point and the demos.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Protocol

from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CaptureOptions:
    language: str = "en-US"
    interim_results: bool = True
    continuous: bool = True


@dataclass(frozen=True)
class VoiceProfile:
    """Delivery settings for a spoken warning."""
    language: str = "en-US"
    pitch: float = 0.95
    rate: float = 0.85
    volume: float = 1.0

    @classmethod
    def for_urgency(cls, urgent: bool, language: str = "en-US") -> "VoiceProfile":
        if urgent:
            return cls(language=language, pitch=1.15, rate=1.0)
        return cls(language=language)


class CaptureListener(Protocol):
    """Receiver of recognizer events (the Reflex Controller)."""

    async def on_result(self, text: str, is_final: bool) -> None: ...

    async def on_end(self) -> None: ...

    async def on_error(self, code: str, message: str = "") -> None: ...


class SpeechCapture(ABC):
    """A speech recognizer session.

    After stop() returns, no further on_result events may be delivered.
    """

    def __init__(self):
        self._listener: Optional[CaptureListener] = None

    def set_listener(self, listener: CaptureListener) -> None:
        self._listener = listener

    @abstractmethod
    async def start(self, options: CaptureOptions) -> None:
        """Begin a recognition session.

        Raises CaptureTransientError when the recognizer cannot start right now.
        """

    @abstractmethod
    async def stop(self) -> None:
        """End the current session."""


class SpeechCompletion:
    """Completion of one speak request, resolved exactly once.

    Success, explicit stop and synthesis error all resolve it; later
    resolutions are ignored. cancel() is used when the guardian is switched
    off and nobody should resume on it anymore.
    """

    DONE = "done"
    STOPPED = "stopped"
    ERROR = "error"

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._future: asyncio.Future = (loop or asyncio.get_running_loop()).create_future()

    def resolve(self, outcome: str = DONE) -> bool:
        """Resolve with an outcome. Returns False if already resolved."""
        if self._future.done():
            return False
        self._future.set_result(outcome)
        return True

    def cancel(self) -> None:
        self._future.cancel()

    def done(self) -> bool:
        return self._future.done()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    @property
    def outcome(self) -> Optional[str]:
        if self._future.done() and not self._future.cancelled():
            return self._future.result()
        return None

    def __await__(self):
        # shield: a cancelled awaiter must not cancel the shared future
        return asyncio.shield(self._future).__await__()


class SpeechOutput(ABC):
    """Text-to-speech."""

    @abstractmethod
    def speak(self, text: str, urgent: bool = False) -> SpeechCompletion:
        """Start voicing text; the returned completion always resolves.

        Raises SpeechOutputFailure when synthesis cannot start at all.
        """

    @abstractmethod
    async def stop(self) -> None:
        """Interrupt any speech in progress."""


class Overlay(ABC):
    """One-way cosmetic danger indicator. Never read back."""

    @abstractmethod
    def set_danger_state(self, danger: bool) -> None:
        ...


class NullOverlay(Overlay):
    """Overlay stand-in that only logs transitions."""

    def __init__(self):
        self._danger = False

    def set_danger_state(self, danger: bool) -> None:
        if danger != self._danger:
            logger.info("Overlay danger state", danger=danger)
        self._danger = danger
