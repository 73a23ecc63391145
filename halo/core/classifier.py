"""
Signal Classifier: transcript in, danger verdict out.

Every failure path (no model, network, timeout, unparseable output) ends in
a safe verdict with confidence 0 and a diagnostic reasoning string. Nothing
here raises to the caller.
"""
from __future__ import annotations

import asyncio
import json
import math
import time
from typing import Any, Dict, Optional, Union

from prometheus_client import Counter, Histogram

from ..backends.base import GenerationOptions
from ..backends.selector import BackendSelector
from ..config import ClassifierConfig
from ..errors import BackendError, BackendNetworkError, BackendTimeout, BackendUnavailable
from ..logging_config import get_logger
from .models import AnalysisResult, Transcript
from .prompts import build_prompt

logger = get_logger(__name__)

_CLASSIFICATIONS = Counter(
    "halo_classifications_total",
    "Classified utterances by outcome",
    labelnames=("outcome",),  # danger | safe | downgraded | failure
)
_CLASSIFY_SECONDS = Histogram(
    "halo_classification_seconds",
    "Time spent in the inference call for one utterance",
    buckets=(0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 10.0, 20.0, 60.0),
)

NO_MODEL = "No model loaded"
PARSE_FAILURE = "Could not parse model response"
TIMED_OUT = "Analysis timed out"
MODEL_ERROR = "Model error"
CONNECTION_ERROR = "Connection error"
DEFAULT_REASONING = "Analysis complete"

DEFAULT_DANGER_THRESHOLD = 0.8


def _extract_object(raw: str) -> Optional[Dict[str, Any]]:
    """Parse the region between the first '{' and the last '}'."""
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    try:
        parsed = json.loads(raw[start:end + 1])
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes")
    return False


def _coerce_confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_verdict(raw: str, threshold: float = DEFAULT_DANGER_THRESHOLD) -> AnalysisResult:
    """Turn free-text model output into a verdict.

    Danger is asserted only when the object says danger AND confidence is at
    or above threshold. A below-threshold danger claim comes back as safe with
    its confidence and reasoning kept.
    """
    obj = _extract_object(raw or "")
    if obj is None or "danger" not in obj or "confidence" not in obj:
        return AnalysisResult.safe(PARSE_FAILURE)

    confidence = _coerce_confidence(obj.get("confidence"))
    if confidence is None:
        return AnalysisResult.safe(PARSE_FAILURE)

    reasoning = str(obj.get("reasoning") or "").strip() or DEFAULT_REASONING
    claimed = _coerce_flag(obj.get("danger"))
    # Compare on the clamped value so 1.3 counts as 1.0
    clamped = max(0.0, min(1.0, confidence))
    return AnalysisResult(
        danger=claimed and clamped >= threshold,
        confidence=clamped,
        reasoning=reasoning,
    )


class SignalClassifier:
    """Classifies finalized utterances with the selector's active model."""

    def __init__(self, selector: BackendSelector, config: Optional[ClassifierConfig] = None):
        self._selector = selector
        self._config = config or ClassifierConfig()
        self._consecutive_failures = 0

    @property
    def threshold(self) -> float:
        return self._config.danger_threshold

    def _options(self) -> GenerationOptions:
        return GenerationOptions(
            temperature=self._config.temperature,
            max_output_tokens=self._config.max_output_tokens,
            timeout_sec=self._config.timeout_sec,
        )

    async def classify(self, transcript: Union[Transcript, str]) -> AnalysisResult:
        text = transcript.text if isinstance(transcript, Transcript) else str(transcript)
        try:
            model = self._selector.require_active_model()
        except BackendUnavailable:
            return AnalysisResult.safe(NO_MODEL)

        prompt = build_prompt(text)
        logger.info("Analyzing utterance", model=model, chars=len(text), preview=text[:40])

        started = time.monotonic()
        try:
            raw = await asyncio.wait_for(
                self._selector.backend.generate(model, prompt, self._options()),
                timeout=self._config.timeout_sec,
            )
        except (asyncio.TimeoutError, BackendTimeout):
            logger.warning("Classification timed out", model=model, timeout_sec=self._config.timeout_sec)
            return self._failure(TIMED_OUT)
        except BackendNetworkError as e:
            logger.error("Classification request failed", model=model, error=str(e))
            return self._failure(CONNECTION_ERROR)
        except BackendError as e:
            logger.error("Model error during classification", model=model, error=str(e))
            return self._failure(MODEL_ERROR)
        finally:
            _CLASSIFY_SECONDS.observe(time.monotonic() - started)

        self._consecutive_failures = 0
        logger.debug("Raw model response", model=model, response_preview=raw[:200])

        result = parse_verdict(raw, self.threshold)
        if result.reasoning == PARSE_FAILURE:
            outcome = "failure"
            logger.warning("Unparseable model response", model=model, response_preview=raw[:120])
        elif result.danger:
            outcome = "danger"
        elif _claimed_danger(raw):
            outcome = "downgraded"
        else:
            outcome = "safe"
        _CLASSIFICATIONS.labels(outcome=outcome).inc()

        logger.info(
            "Verdict",
            model=model,
            danger=result.danger,
            confidence=round(result.confidence, 3),
            reasoning=result.reasoning,
        )
        return result

    def _failure(self, reasoning: str) -> AnalysisResult:
        _CLASSIFICATIONS.labels(outcome="failure").inc()
        self._consecutive_failures += 1
        limit = self._config.max_consecutive_failures
        if limit and self._consecutive_failures >= limit:
            self._selector.mark_unavailable(
                f"{self._consecutive_failures} consecutive classification failures"
            )
            self._consecutive_failures = 0
        return AnalysisResult.safe(reasoning)


def _claimed_danger(raw: str) -> bool:
    obj = _extract_object(raw or "")
    return bool(obj) and _coerce_flag(obj.get("danger"))
