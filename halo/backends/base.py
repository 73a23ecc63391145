"""
Inference backend interface.

Both backends expose the same two calls so the selector and the classifier
never care whether the model runs behind an HTTP server or in-process.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Set


@dataclass(frozen=True)
class GenerationOptions:
    temperature: float = 0.1
    max_output_tokens: int = 100
    timeout_sec: float = 60.0


class InferenceBackend(ABC):
    """A source of text completions from locally hosted models.

    Implementations raise BackendNetworkError, BackendTimeout or ModelError
    from halo.errors; callers decide how to degrade.
    """

    name: str = "backend"

    async def start(self) -> None:
        """Acquire resources (sessions, loaded models)."""

    async def stop(self) -> None:
        """Release resources."""

    @abstractmethod
    async def list_models(self) -> Set[str]:
        """Return the ids of models that can be used right now."""

    @abstractmethod
    async def generate(self, model_id: str, prompt: str, options: GenerationOptions) -> str:
        """Run one completion and return the raw text."""
