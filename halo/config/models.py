"""
Configuration models for Halo Guardian.

Pydantic v2 models give validation and type safety; load_config() is the
single entry point used by the engine.
"""

from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from halo.config.defaults import (
    apply_backend_overrides,
    apply_classifier_overrides,
    apply_health_overrides,
)
from halo.config.loaders import read_config_file, resolve_config_path
from halo.logging_config import get_logger

logger = get_logger(__name__)

_BACKEND_KINDS = ("ollama", "llama_cpp")


class BackendConfig(BaseModel):
    kind: str = Field(default="ollama")  # ollama | llama_cpp
    base_url: str = Field(default="http://localhost:11434")
    # Highest priority first
    candidates: List[str] = Field(
        default_factory=lambda: ["tinyllama:latest", "phi3:mini", "llama3:latest"]
    )
    probe_timeout_sec: float = Field(default=30.0)
    list_timeout_sec: float = Field(default=10.0)
    # llama_cpp only: model id -> GGUF file path
    model_paths: Dict[str, str] = Field(default_factory=dict)
    llama_threads: int = Field(default=4)
    llama_context: int = Field(default=2048)
    llama_gpu_layers: int = Field(default=0)

    @field_validator("kind")
    @classmethod
    def _known_kind(cls, value: str) -> str:
        value = (value or "").strip().lower()
        if value not in _BACKEND_KINDS:
            raise ValueError(f"backend.kind must be one of {_BACKEND_KINDS}, got {value!r}")
        return value


class ClassifierConfig(BaseModel):
    danger_threshold: float = Field(default=0.8)
    temperature: float = Field(default=0.1)
    max_output_tokens: int = Field(default=100)
    timeout_sec: float = Field(default=60.0)
    # Final transcripts must be strictly longer than this (after stripping)
    min_transcript_chars: int = Field(default=3)
    # Network/model failures in a row before the active model is dropped; 0 disables
    max_consecutive_failures: int = Field(default=5)


class ReflexConfig(BaseModel):
    # Lets audio hardware release after a warning before capture resumes
    resume_buffer_sec: float = Field(default=0.8)
    end_restart_delay_sec: float = Field(default=0.8)
    error_restart_delay_sec: float = Field(default=2.0)
    alert_capacity: int = Field(default=10)
    # Start guarding as soon as a model is ready
    auto_activate: bool = Field(default=True)


class SpeechConfig(BaseModel):
    language: str = Field(default="en-US")
    # LoggingSpeechOutput pretends a warning takes this long to voice
    simulated_speech_sec: float = Field(default=1.5)


class HealthConfig(BaseModel):
    enabled: bool = Field(default=True)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=15000)


class LoggingConfig(BaseModel):
    level: str = Field(default="info")  # debug|info|warning|error|critical
    to_file: bool = Field(default=False)
    file_path: str = Field(default="logs/")


class AppConfig(BaseModel):
    backend: BackendConfig = Field(default_factory=BackendConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    reflex: ReflexConfig = Field(default_factory=ReflexConfig)
    speech: SpeechConfig = Field(default_factory=SpeechConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load and validate configuration from a YAML file.

    A missing file is not an error: the guardian runs on defaults plus
    environment overrides. With no path, HALO_CONFIG_PATH or
    config/halo.yaml is used.

    Args:
        path: Path to YAML configuration file (absolute or relative to project root)

    Returns:
        Validated AppConfig instance

    Raises:
        yaml.YAMLError: If YAML parsing fails
        pydantic.ValidationError: If values fail validation
    """
    config_data = read_config_file(resolve_config_path(path))

    apply_backend_overrides(config_data)
    apply_classifier_overrides(config_data)
    apply_health_overrides(config_data)

    config = AppConfig(**config_data)
    logger.debug(
        "Configuration loaded",
        backend=config.backend.kind,
        candidates=config.backend.candidates,
        threshold=config.classifier.danger_threshold,
    )
    return config


def validate_config(config: AppConfig) -> Tuple[List[str], List[str]]:
    """Check a loaded configuration for startup problems.

    Returns:
        (errors, warnings). Errors block startup, warnings are logged.
    """
    errors: List[str] = []
    warnings: List[str] = []

    threshold = config.classifier.danger_threshold
    if not 0.0 < threshold <= 1.0:
        errors.append(f"classifier.danger_threshold {threshold} out of range (0, 1]")
    elif threshold < 0.7:
        warnings.append(f"classifier.danger_threshold {threshold} is low; expect more false interventions")

    if not config.backend.candidates:
        errors.append("backend.candidates is empty; no model can be selected")

    if config.backend.kind == "llama_cpp":
        missing = [c for c in config.backend.candidates if c not in config.backend.model_paths]
        if len(missing) == len(config.backend.candidates):
            errors.append("backend.kind is llama_cpp but no candidate has an entry in backend.model_paths")
        elif missing:
            warnings.append(f"Candidates without a model path will be skipped: {missing}")

    if config.reflex.alert_capacity < 1:
        errors.append("reflex.alert_capacity must be at least 1")

    if config.classifier.min_transcript_chars < 0:
        errors.append("classifier.min_transcript_chars must not be negative")

    if config.health.enabled and config.health.host == "0.0.0.0":
        warnings.append("Health endpoint bound to 0.0.0.0; toggle/simulate endpoints are unauthenticated")

    return errors, warnings


def get_log_level(config: Optional[AppConfig]) -> str:
    if config is None:
        return "INFO"
    return str(config.logging.level or "info").upper()
