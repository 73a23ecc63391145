"""
Reflex Controller: the listen -> analyze -> react -> resume state machine.

All state lives on one asyncio loop and is mutated only here. Two rules
shape the code:

- Feedback avoidance: capture is stopped before a warning is voiced and is
  restarted only after the speech completion resolves plus a short buffer.
- Liveness: while the guardian is on, a recognizer end or error schedules a
  capture restart, so the guardian is never left deaf.

Every toggle bumps a generation counter. Continuations (classification
results, speech completions, scheduled restarts) remember the generation
they started in and drop themselves when it has moved on, so nothing from a
previous session can speak or restart capture after the user switched off.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

from prometheus_client import Counter, Gauge

from ..backends.selector import BackendSelector
from ..config import ReflexConfig
from ..errors import BackendUnavailable, CaptureTransientError, SpeechOutputFailure
from ..logging_config import get_logger, set_session_id
from ..speech.base import (
    CaptureOptions,
    NullOverlay,
    Overlay,
    SpeechCapture,
    SpeechCompletion,
    SpeechOutput,
)
from .alert_log import AlertLog
from .classifier import SignalClassifier
from .models import AlertEntry, AnalysisResult, ReflexState, Transcript

logger = get_logger(__name__)

_REFLEX_STATE = Gauge(
    "halo_reflex_state",
    "1 for the current Reflex Controller state",
    labelnames=("state",),
)
_CAPTURE_RESTARTS = Counter(
    "halo_capture_restarts_total",
    "Capture restarts scheduled by reason",
    labelnames=("reason",),  # end | error
)
_WARNINGS_SPOKEN = Counter(
    "halo_warnings_spoken_total",
    "Danger warnings handed to speech output",
)

STATUS_INACTIVE = "Guardian paused"
STATUS_NO_MODEL = "No model available"
STATUS_LISTENING = "Listening..."
STATUS_ANALYZING = "Analyzing signal..."
STATUS_SAFE = "Safe. Listening..."
STATUS_THREAT = "THREAT DETECTED"

SIMULATED_ATTACK = (
    "Grandma, this is the police. We need gift cards immediately or you go to jail."
)

RESTART_ON_END = "end"
RESTART_ON_ERROR = "error"


@dataclass(frozen=True)
class RestartPolicy:
    """Backoff tiers for capture restarts."""
    end_delay_sec: float = 0.8
    error_delay_sec: float = 2.0

    def delay_for(self, reason: str) -> float:
        return self.error_delay_sec if reason == RESTART_ON_ERROR else self.end_delay_sec


class ReflexController:
    """Owns ReflexState and drives the Reflex Loop."""

    def __init__(
        self,
        selector: BackendSelector,
        classifier: SignalClassifier,
        capture: SpeechCapture,
        speech: SpeechOutput,
        *,
        alert_log: Optional[AlertLog] = None,
        overlay: Optional[Overlay] = None,
        config: Optional[ReflexConfig] = None,
        min_transcript_chars: int = 3,
        capture_options: Optional[CaptureOptions] = None,
    ):
        self._config = config or ReflexConfig()
        self._selector = selector
        self._classifier = classifier
        self._capture = capture
        self._speech = speech
        self._alerts = alert_log or AlertLog(self._config.alert_capacity)
        self._overlay = overlay or NullOverlay()
        self._min_chars = min_transcript_chars
        self._capture_options = capture_options or CaptureOptions()
        self._restart_policy = RestartPolicy(
            end_delay_sec=self._config.end_restart_delay_sec,
            error_delay_sec=self._config.error_restart_delay_sec,
        )

        self._state = ReflexState.IDLE
        self._status = STATUS_INACTIVE
        self._live_preview = ""
        self._generation = 0
        self._analysis_task: Optional[asyncio.Task] = None
        self._reaction_task: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._pending_speech: Optional[SpeechCompletion] = None

        self._capture.set_listener(self)
        self._publish_state()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def state(self) -> ReflexState:
        return self._state

    @property
    def status(self) -> str:
        return self._status

    @property
    def live_preview(self) -> str:
        return self._live_preview

    @property
    def alert_log(self) -> AlertLog:
        return self._alerts

    @property
    def active(self) -> bool:
        return self._state is not ReflexState.IDLE

    @property
    def has_pending_work(self) -> bool:
        """True while any analysis, reaction, restart or speech is outstanding."""
        tasks = (self._analysis_task, self._reaction_task, self._restart_task)
        if any(t is not None and not t.done() for t in tasks):
            return True
        return self._pending_speech is not None and not self._pending_speech.done()

    def snapshot(self) -> Dict[str, Any]:
        backend_state = self._selector.state
        return {
            "state": self._state.value,
            "status": self._status,
            "active_model": self._selector.active_model,
            "backend_status": backend_state.status.value,
            "live_preview": self._live_preview,
            "alerts": [entry.to_dict() for entry in self._alerts.snapshot()],
        }

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------
    async def toggle(self) -> ReflexState:
        """Switch guarding on or off."""
        if self._state is ReflexState.IDLE:
            try:
                self._selector.require_active_model()
            except BackendUnavailable as e:
                self._status = STATUS_NO_MODEL
                logger.warning("Toggle ignored: no model available", reason=str(e))
                return self._state
            await self._activate()
        else:
            await self._deactivate()
        return self._state

    def clear_alerts(self) -> None:
        self._alerts.clear()
        logger.info("Alert log cleared")

    async def simulate_attack(self) -> Optional[AnalysisResult]:
        """Feed a canned scam utterance through the normal final-result path."""
        if self._state is not ReflexState.LISTENING:
            logger.info("Simulated attack ignored", state=self._state.value)
            return None
        await self.on_result(SIMULATED_ATTACK, True)
        task = self._analysis_task
        if task is None:
            return None
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    async def shutdown(self) -> None:
        if self._state is not ReflexState.IDLE:
            await self._deactivate()

    async def wait_settled(self) -> None:
        """Wait until the current analysis and any reaction have finished."""
        for attr in ("_analysis_task", "_reaction_task"):
            task = getattr(self, attr)
            if task is not None and not task.done():
                await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Capture events
    # ------------------------------------------------------------------
    async def on_result(self, text: str, is_final: bool) -> None:
        self._live_preview = text
        if not is_final or self._state is not ReflexState.LISTENING:
            return
        transcript = Transcript(text=text, final=True)
        if not transcript.is_analyzable(self._min_chars):
            logger.debug("Utterance too short to analyze", chars=len(text.strip()))
            return
        self._set_state(ReflexState.ANALYZING, STATUS_ANALYZING)
        self._analysis_task = asyncio.create_task(self._analyze(transcript, self._generation))

    async def on_end(self) -> None:
        if self._capture_expected_live():
            logger.info("Recognizer session ended; restarting capture")
            self._schedule_restart(RESTART_ON_END)

    async def on_error(self, code: str, message: str = "") -> None:
        if self._capture_expected_live():
            logger.warning("Recognizer error; restarting capture", code=code, message=message)
            self._schedule_restart(RESTART_ON_ERROR)
        else:
            logger.debug("Recognizer error ignored", code=code, state=self._state.value)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _capture_expected_live(self) -> bool:
        # Capture runs through Analyzing; it is deliberately off while Speaking
        return self._state in (ReflexState.LISTENING, ReflexState.ANALYZING)

    def _set_state(self, state: ReflexState, status: Optional[str] = None) -> None:
        if state is not self._state:
            logger.debug("Reflex state", old=self._state.value, new=state.value)
        self._state = state
        if status is not None:
            self._status = status
        self._publish_state()

    def _publish_state(self) -> None:
        for s in ReflexState:
            _REFLEX_STATE.labels(state=s.value).set(1 if s is self._state else 0)

    async def _activate(self) -> None:
        self._generation += 1
        session_id = set_session_id()
        self._set_state(ReflexState.LISTENING, STATUS_LISTENING)
        logger.info("🛡️ Guardian activated", session=session_id, model=self._selector.active_model)
        await self._start_capture(self._generation)

    async def _deactivate(self) -> None:
        self._generation += 1
        self._set_state(ReflexState.IDLE, STATUS_INACTIVE)
        self._live_preview = ""

        current = asyncio.current_task()
        for task in (self._restart_task, self._analysis_task, self._reaction_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._restart_task = None
        self._analysis_task = None
        self._reaction_task = None

        if self._pending_speech is not None:
            self._pending_speech.cancel()
            self._pending_speech = None
        try:
            await self._speech.stop()
        except Exception as e:
            logger.warning("Speech stop failed", error=str(e))
        try:
            await self._capture.stop()
        except Exception as e:
            logger.warning("Capture stop failed", error=str(e))
        self._overlay.set_danger_state(False)
        logger.info("Guardian deactivated")

    async def _start_capture(self, generation: int) -> None:
        try:
            await self._capture.start(self._capture_options)
        except CaptureTransientError as e:
            if self._still_live(generation):
                logger.warning("Capture start failed; retrying", code=e.code, error=str(e))
                self._schedule_restart(RESTART_ON_ERROR)
            return
        except Exception as e:
            if self._still_live(generation):
                logger.error("Capture start raised unexpectedly; retrying", error=str(e), exc_info=True)
                self._schedule_restart(RESTART_ON_ERROR)
            return
        if not self._still_live(generation):
            # Toggled off or started speaking while start() was pending
            logger.info("Stopping capture that finished starting too late")
            try:
                await self._capture.stop()
            except Exception as e:
                logger.warning("Capture stop failed", error=str(e))

    def _still_live(self, generation: int) -> bool:
        return generation == self._generation and self._capture_expected_live()

    def _schedule_restart(self, reason: str) -> None:
        current = asyncio.current_task()
        if self._restart_task is not None and self._restart_task is not current and not self._restart_task.done():
            self._restart_task.cancel()
        delay = self._restart_policy.delay_for(reason)
        _CAPTURE_RESTARTS.labels(reason=reason).inc()
        self._restart_task = asyncio.create_task(self._restart_after(delay, reason, self._generation))

    async def _restart_after(self, delay: float, reason: str, generation: int) -> None:
        await asyncio.sleep(delay)
        if not self._still_live(generation):
            return
        logger.debug("Restarting capture", reason=reason, delay_sec=delay)
        await self._start_capture(generation)

    async def _analyze(self, transcript: Transcript, generation: int) -> AnalysisResult:
        try:
            result = await self._classifier.classify(transcript)
        except Exception as e:
            logger.error("Classifier raised unexpectedly", error=str(e), exc_info=True)
            result = AnalysisResult.safe("Analysis failed")
        if generation != self._generation:
            logger.info("Discarding verdict from a previous session")
            return result

        if not self._selector.state.is_ready:
            # Model dropped mid-session: go inert
            logger.error("Active model lost; deactivating guardian", reason=self._selector.state.reason)
            await self._deactivate()
            self._status = STATUS_NO_MODEL
            return result

        self._alerts.record(AlertEntry(result=result, transcript=transcript.text))

        if not result.danger:
            self._set_state(ReflexState.LISTENING, STATUS_SAFE)
            return result

        # Speaking is entered before capture stops so the recognizer's own
        # end event is not mistaken for a session drop
        self._set_state(ReflexState.SPEAKING, STATUS_THREAT)
        self._reaction_task = asyncio.create_task(self._react(result, generation))
        return result

    async def _react(self, result: AnalysisResult, generation: int) -> None:
        self._overlay.set_danger_state(True)
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()
        try:
            await self._capture.stop()
        except Exception as e:
            logger.warning("Capture stop before warning failed", error=str(e))
        if generation != self._generation:
            return

        logger.warning(
            "🚨 Danger detected; voicing warning",
            confidence=round(result.confidence, 3),
            reasoning=result.reasoning,
        )
        completion = self._request_speech(result.reasoning)
        self._pending_speech = completion
        try:
            outcome = await completion
        finally:
            if self._pending_speech is completion:
                self._pending_speech = None
        logger.debug("Warning speech finished", outcome=outcome)

        await asyncio.sleep(self._config.resume_buffer_sec)
        if generation != self._generation:
            return

        self._set_state(ReflexState.LISTENING, STATUS_LISTENING)
        self._overlay.set_danger_state(False)
        await self._start_capture(generation)

    def _request_speech(self, text: str) -> SpeechCompletion:
        _WARNINGS_SPOKEN.inc()
        try:
            return self._speech.speak(text, urgent=True)
        except SpeechOutputFailure as e:
            logger.error("Speech output failed", error=str(e))
        except Exception as e:
            logger.error("Speech output raised unexpectedly", error=str(e), exc_info=True)
        # Treated as an immediate completion so capture still resumes
        completion = SpeechCompletion()
        completion.resolve(SpeechCompletion.ERROR)
        return completion
