"""
Environment overrides for configuration.

YAML values are the baseline; an environment variable only wins when it is
explicitly set. Invalid numeric values are ignored so the YAML value stays.
"""

import os
from typing import Any, Dict


def apply_backend_overrides(config_data: Dict[str, Any]) -> None:
    """
    Apply inference backend overrides.

    Environment variables:
    - HALO_BACKEND_KIND: 'ollama' or 'llama_cpp'
    - OLLAMA_BASE_URL: Ollama server URL
    - HALO_MODEL_CANDIDATES: comma-separated model ids, highest priority first
    - HALO_PROBE_TIMEOUT_SEC: warmup probe timeout

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    backend_cfg = config_data.get('backend', {}) or {}

    if os.getenv('HALO_BACKEND_KIND'):
        backend_cfg['kind'] = os.getenv('HALO_BACKEND_KIND', '').strip().lower()

    if os.getenv('OLLAMA_BASE_URL'):
        backend_cfg['base_url'] = os.getenv('OLLAMA_BASE_URL', '').strip()

    raw_candidates = os.getenv('HALO_MODEL_CANDIDATES', '').strip()
    if raw_candidates:
        backend_cfg['candidates'] = [c.strip() for c in raw_candidates.split(',') if c.strip()]

    if 'HALO_PROBE_TIMEOUT_SEC' in os.environ:
        try:
            backend_cfg['probe_timeout_sec'] = float(os.getenv('HALO_PROBE_TIMEOUT_SEC', '30'))
        except ValueError:
            pass

    config_data['backend'] = backend_cfg


def apply_classifier_overrides(config_data: Dict[str, Any]) -> None:
    """
    Apply classifier overrides.

    Environment variables:
    - HALO_DANGER_THRESHOLD: confidence needed to assert danger
    - HALO_CLASSIFY_TIMEOUT_SEC: per-utterance request timeout

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    classifier_cfg = config_data.get('classifier', {}) or {}

    try:
        if 'HALO_DANGER_THRESHOLD' in os.environ:
            classifier_cfg['danger_threshold'] = float(os.getenv('HALO_DANGER_THRESHOLD', '0.8'))
        if 'HALO_CLASSIFY_TIMEOUT_SEC' in os.environ:
            classifier_cfg['timeout_sec'] = float(os.getenv('HALO_CLASSIFY_TIMEOUT_SEC', '60'))
    except ValueError:
        pass

    config_data['classifier'] = classifier_cfg


def apply_health_overrides(config_data: Dict[str, Any]) -> None:
    """
    Apply health endpoint bind overrides (HEALTH_BIND_HOST, HEALTH_BIND_PORT).

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    health_cfg = config_data.get('health', {}) or {}

    if 'HEALTH_BIND_HOST' in os.environ:
        health_cfg['host'] = os.getenv('HEALTH_BIND_HOST', '127.0.0.1')
    if 'HEALTH_BIND_PORT' in os.environ:
        try:
            health_cfg['port'] = int(os.getenv('HEALTH_BIND_PORT', '15000'))
        except ValueError:
            pass

    config_data['health'] = health_cfg
