"""Fakes and helpers shared by the test suite."""

import asyncio
from typing import Dict, List, Optional

from halo.backends.base import GenerationOptions, InferenceBackend
from halo.backends.selector import BackendSelector
from halo.config import ReflexConfig
from halo.core.models import BackendState
from halo.errors import CaptureTransientError, SpeechOutputFailure
from halo.speech.base import CaptureOptions, Overlay, SpeechCapture, SpeechCompletion, SpeechOutput


SAFE_JSON = '{"danger": false, "confidence": 0.02, "reasoning": "Dinner plans."}'
DANGER_JSON = '{"danger": true, "confidence": 0.95, "reasoning": "impersonation/gift-card scam"}'


class FakeBackend(InferenceBackend):
    """Scriptable backend. responses maps model id to text or a callable(prompt)."""

    name = "fake"

    def __init__(
        self,
        models=(),
        responses: Optional[Dict] = None,
        default_response: str = SAFE_JSON,
        list_error: Optional[Exception] = None,
        generate_errors: Optional[Dict[str, Exception]] = None,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.models = set(models)
        self.responses = responses or {}
        self.default_response = default_response
        self.list_error = list_error
        self.generate_errors = generate_errors or {}
        self.delays = delays or {}
        self.calls: List[tuple] = []
        self.started = False
        self.stopped = False

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def list_models(self):
        if self.list_error is not None:
            raise self.list_error
        return set(self.models)

    async def generate(self, model_id: str, prompt: str, options: GenerationOptions) -> str:
        self.calls.append((model_id, prompt, options))
        delay = self.delays.get(model_id, 0)
        if delay:
            await asyncio.sleep(delay)
        error = self.generate_errors.get(model_id)
        if error is not None:
            raise error
        response = self.responses.get(model_id, self.default_response)
        return response(prompt) if callable(response) else response

    @property
    def classify_calls(self):
        # Warmup probes use max_output_tokens=1
        return [c for c in self.calls if c[2].max_output_tokens != 1]


class FakeCapture(SpeechCapture):
    def __init__(self, fail_starts: int = 0, start_delay: float = 0.0):
        super().__init__()
        self.start_delay = start_delay
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0
        self.fail_starts = fail_starts
        self.last_options: Optional[CaptureOptions] = None

    async def start(self, options: CaptureOptions) -> None:
        self.start_calls += 1
        self.last_options = options
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.fail_starts > 0:
            self.fail_starts -= 1
            raise CaptureTransientError("audio-capture", "microphone busy")
        self.running = True

    async def stop(self) -> None:
        self.stop_calls += 1
        self.running = False


class FakeSpeech(SpeechOutput):
    """Speech output whose completions are resolved by the test."""

    def __init__(self, auto_complete: bool = False, raise_on_speak: bool = False):
        self.auto_complete = auto_complete
        self.raise_on_speak = raise_on_speak
        self.spoken: List[tuple] = []
        self.completions: List[SpeechCompletion] = []
        self.stop_calls = 0

    def speak(self, text: str, urgent: bool = False) -> SpeechCompletion:
        if self.raise_on_speak:
            raise SpeechOutputFailure("synthesizer crashed")
        self.spoken.append((text, urgent))
        completion = SpeechCompletion()
        self.completions.append(completion)
        if self.auto_complete:
            completion.resolve()
        return completion

    async def stop(self) -> None:
        self.stop_calls += 1
        for completion in self.completions:
            completion.resolve(SpeechCompletion.STOPPED)


class RecordingOverlay(Overlay):
    def __init__(self):
        self.states: List[bool] = []

    def set_danger_state(self, danger: bool) -> None:
        self.states.append(danger)


FAST_REFLEX = ReflexConfig(
    resume_buffer_sec=0.0,
    end_restart_delay_sec=0.0,
    error_restart_delay_sec=0.0,
)


async def settle(rounds: int = 5):
    """Let scheduled callbacks and zero-delay tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_ready_selector(backend: InferenceBackend, model: str = "tinyllama:latest") -> BackendSelector:
    selector = BackendSelector(backend)
    selector._state = BackendState.ready(model)
    return selector


async def wait_until(predicate, timeout: float = 1.0):
    """Poll predicate on the loop until it holds or timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.001)
