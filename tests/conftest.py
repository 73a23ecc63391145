import pytest

from halo.backends.selector import BackendSelector
from halo.config import ClassifierConfig
from halo.core.classifier import SignalClassifier
from halo.core.reflex_controller import ReflexController

from helpers import FAST_REFLEX, FakeBackend, FakeCapture, FakeSpeech, RecordingOverlay, make_ready_selector


@pytest.fixture
def fake_backend():
    return FakeBackend(models={"tinyllama:latest"})


@pytest.fixture
def capture():
    return FakeCapture()


@pytest.fixture
def speech():
    return FakeSpeech()


@pytest.fixture
def overlay():
    return RecordingOverlay()


@pytest.fixture
def build_controller(fake_backend, capture, speech, overlay):
    """Factory for a controller over a ready selector and fake collaborators."""

    def _build(backend=None, reflex_config=None, classifier_config=None, ready=True, **kwargs):
        backend = backend or fake_backend
        selector = make_ready_selector(backend) if ready else BackendSelector(backend)
        classifier = SignalClassifier(selector, classifier_config or ClassifierConfig())
        return ReflexController(
            selector,
            classifier,
            kwargs.pop("capture", capture),
            kwargs.pop("speech", speech),
            overlay=overlay,
            config=reflex_config or FAST_REFLEX,
            **kwargs,
        )

    return _build
