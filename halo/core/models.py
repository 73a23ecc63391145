"""
Core data models for the Reflex Loop.

Everything here is immutable once built: verdicts and alert entries are
shared between the controller, the alert log and the health endpoint, and
nobody is allowed to edit them after the fact.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class ReflexState(Enum):
    """Reflex Controller state."""
    IDLE = "idle"            # guardian inactive, no capture
    LISTENING = "listening"  # capture active, nothing in flight
    ANALYZING = "analyzing"  # a final transcript is being classified
    SPEAKING = "speaking"    # warning being voiced, capture suspended


class BackendStatus(Enum):
    UNINITIALIZED = "uninitialized"
    PROBING = "probing"
    READY = "ready"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class BackendState:
    """Backend selection outcome. model_id is set only when READY."""
    status: BackendStatus = BackendStatus.UNINITIALIZED
    model_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self.status is BackendStatus.READY

    @classmethod
    def ready(cls, model_id: str) -> "BackendState":
        return cls(status=BackendStatus.READY, model_id=model_id)

    @classmethod
    def unavailable(cls, reason: str) -> "BackendState":
        return cls(status=BackendStatus.UNAVAILABLE, reason=reason)


@dataclass(frozen=True)
class ModelCandidate:
    """A model the selector may try. Lower priority value is tried first."""
    model_id: str
    priority: int = 0

    @staticmethod
    def from_ids(model_ids: Iterable[str]) -> List["ModelCandidate"]:
        """Build candidates whose priority follows list order."""
        return [ModelCandidate(model_id=m, priority=i) for i, m in enumerate(model_ids)]


@dataclass(frozen=True)
class Transcript:
    """A speech-to-text result; interim unless final is set."""
    text: str
    final: bool = False

    def is_analyzable(self, min_chars: int) -> bool:
        return self.final and len(self.text.strip()) > min_chars


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass(frozen=True)
class AnalysisResult:
    """A danger verdict. Confidence is always clamped to [0, 1]."""
    danger: bool
    confidence: float
    reasoning: str

    def __post_init__(self):
        object.__setattr__(self, "confidence", _clamp_unit(self.confidence))
        object.__setattr__(self, "danger", bool(self.danger))

    @classmethod
    def safe(cls, reasoning: str) -> "AnalysisResult":
        """Conservative verdict used for every failure path."""
        return cls(danger=False, confidence=0.0, reasoning=reasoning)

    def to_dict(self) -> Dict[str, Any]:
        return {"danger": self.danger, "confidence": self.confidence, "reasoning": self.reasoning}


@dataclass(frozen=True)
class AlertEntry:
    """One analyzed utterance and its verdict."""
    result: AnalysisResult
    transcript: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "transcript": self.transcript,
            "timestamp": self.timestamp,
            **self.result.to_dict(),
        }
