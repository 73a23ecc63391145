"""
Console capture and logging speech output.

ConsoleCapture treats each stdin line as a finalized utterance, which is
enough to drive the Reflex Loop end to end without a microphone.
LoggingSpeechOutput logs the warning it would say and completes after a
simulated speaking time.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Optional, TextIO

from ..errors import CaptureTransientError, SpeechOutputFailure
from ..logging_config import get_logger
from .base import CaptureOptions, SpeechCapture, SpeechCompletion, SpeechOutput, VoiceProfile

logger = get_logger(__name__)


class ConsoleCapture(SpeechCapture):
    """Reads utterances from a text stream, one per line."""

    def __init__(self, stream: Optional[TextIO] = None):
        super().__init__()
        self._stream = stream or sys.stdin
        self._capturing = False
        self._reader_task: Optional[asyncio.Task] = None
        self._options = CaptureOptions()

    @property
    def capturing(self) -> bool:
        return self._capturing

    async def start(self, options: CaptureOptions) -> None:
        if getattr(self._stream, "closed", False):
            raise CaptureTransientError("audio-capture", "input stream is closed")
        self._options = options
        self._capturing = True
        if self._reader_task is None or self._reader_task.done():
            self._reader_task = asyncio.create_task(self._read_loop())
        logger.debug("Console capture started", language=options.language)

    async def stop(self) -> None:
        # Lines read while stopped are dropped by _read_loop
        self._capturing = False
        logger.debug("Console capture stopped")

    async def close(self) -> None:
        self._capturing = False
        if self._reader_task and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._reader_task = None

    async def _read_loop(self) -> None:
        while True:
            try:
                line = await asyncio.to_thread(self._stream.readline)
            except (OSError, ValueError) as e:
                self._capturing = False
                if self._listener is not None:
                    await self._listener.on_error("audio-capture", str(e))
                return
            if line == "":
                logger.info("Console input closed")
                self._capturing = False
                return
            text = line.strip()
            if not text or not self._capturing or self._listener is None:
                continue
            await self._listener.on_result(text, True)


class LoggingSpeechOutput(SpeechOutput):
    """Logs warnings instead of synthesizing them."""

    def __init__(self, speech_duration_sec: float = 1.5, language: str = "en-US"):
        self._duration = speech_duration_sec
        self._language = language
        self._current: Optional[SpeechCompletion] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def speaking(self) -> bool:
        return self._current is not None and not self._current.done()

    def speak(self, text: str, urgent: bool = False) -> SpeechCompletion:
        if not text or not text.strip():
            raise SpeechOutputFailure("Nothing to say")
        if self.speaking:
            self._interrupt()
        profile = VoiceProfile.for_urgency(urgent, self._language)
        completion = SpeechCompletion()
        self._current = completion
        logger.warning(
            "🔊 SPEAKING",
            text=text,
            urgent=urgent,
            pitch=profile.pitch,
            rate=profile.rate,
        )
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._duration, completion.resolve, SpeechCompletion.DONE)
        return completion

    def _interrupt(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._current is not None:
            self._current.resolve(SpeechCompletion.STOPPED)

    async def stop(self) -> None:
        self._interrupt()
