"""
Configuration package for Halo Guardian.

This package contains:
- loaders: YAML file loading and parsing
- defaults: Environment variable overrides
- models: Pydantic models, load_config() and validate_config()
"""

from halo.config.models import (
    AppConfig,
    BackendConfig,
    ClassifierConfig,
    HealthConfig,
    LoggingConfig,
    ReflexConfig,
    SpeechConfig,
    get_log_level,
    load_config,
    validate_config,
)

__all__ = [
    'AppConfig',
    'BackendConfig',
    'ClassifierConfig',
    'HealthConfig',
    'LoggingConfig',
    'ReflexConfig',
    'SpeechConfig',
    'get_log_level',
    'load_config',
    'validate_config',
]
