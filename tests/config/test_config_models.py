"""Tests for load_config(), environment overrides and validate_config()."""

import pytest
from pydantic import ValidationError

from halo.config import AppConfig, BackendConfig, get_log_level, load_config, validate_config

_ENV = (
    "HALO_BACKEND_KIND",
    "OLLAMA_BASE_URL",
    "HALO_MODEL_CANDIDATES",
    "HALO_PROBE_TIMEOUT_SEC",
    "HALO_DANGER_THRESHOLD",
    "HALO_CLASSIFY_TIMEOUT_SEC",
    "HEALTH_BIND_HOST",
    "HEALTH_BIND_PORT",
    "HALO_CONFIG_PATH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "absent.yaml"))

        assert config.backend.kind == "ollama"
        assert config.backend.base_url == "http://localhost:11434"
        assert config.backend.candidates == ["tinyllama:latest", "phi3:mini", "llama3:latest"]
        assert config.backend.probe_timeout_sec == 30.0
        assert config.classifier.danger_threshold == 0.8
        assert config.classifier.temperature == 0.1
        assert config.classifier.max_output_tokens == 100
        assert config.reflex.resume_buffer_sec == 0.8
        assert config.reflex.end_restart_delay_sec == 0.8
        assert config.reflex.error_restart_delay_sec == 2.0
        assert config.reflex.alert_capacity == 10
        assert config.health.host == "127.0.0.1"

    def test_shipped_sample_config_is_valid(self):
        config = load_config("config/halo.yaml")
        errors, _ = validate_config(config)
        assert errors == []


class TestYamlAndOverrides:

    def test_path_from_env(self, tmp_path, monkeypatch):
        config_file = tmp_path / "halo.yaml"
        config_file.write_text("reflex:\n  alert_capacity: 4\n")
        monkeypatch.setenv("HALO_CONFIG_PATH", str(config_file))

        assert load_config().reflex.alert_capacity == 4

    def test_yaml_values(self, tmp_path):
        config_file = tmp_path / "halo.yaml"
        config_file.write_text(
            "backend:\n  candidates: [phi3:mini]\nclassifier:\n  danger_threshold: 0.9\n"
        )

        config = load_config(str(config_file))

        assert config.backend.candidates == ["phi3:mini"]
        assert config.classifier.danger_threshold == 0.9

    def test_env_overrides_win(self, tmp_path, monkeypatch):
        config_file = tmp_path / "halo.yaml"
        config_file.write_text("backend:\n  base_url: http://yaml-host:11434\n")
        monkeypatch.setenv("OLLAMA_BASE_URL", "http://env-host:11434")
        monkeypatch.setenv("HALO_MODEL_CANDIDATES", "llama3:latest, phi3:mini,")
        monkeypatch.setenv("HALO_DANGER_THRESHOLD", "0.85")
        monkeypatch.setenv("HEALTH_BIND_PORT", "16000")

        config = load_config(str(config_file))

        assert config.backend.base_url == "http://env-host:11434"
        assert config.backend.candidates == ["llama3:latest", "phi3:mini"]
        assert config.classifier.danger_threshold == 0.85
        assert config.health.port == 16000

    def test_invalid_numeric_env_is_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HALO_PROBE_TIMEOUT_SEC", "soon")
        monkeypatch.setenv("HEALTH_BIND_PORT", "abc")

        config = load_config(str(tmp_path / "absent.yaml"))

        assert config.backend.probe_timeout_sec == 30.0
        assert config.health.port == 15000

    def test_backend_kind_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HALO_BACKEND_KIND", "LLAMA_CPP")

        config = load_config(str(tmp_path / "absent.yaml"))

        assert config.backend.kind == "llama_cpp"

    def test_unknown_backend_kind_rejected(self):
        with pytest.raises(ValidationError):
            BackendConfig(kind="openai")


class TestValidateConfig:

    def test_defaults_are_clean(self):
        errors, warnings = validate_config(AppConfig())
        assert errors == []
        assert warnings == []

    @pytest.mark.parametrize("threshold", [0.0, 1.2, -0.5])
    def test_threshold_out_of_range(self, threshold):
        config = AppConfig(classifier={"danger_threshold": threshold})
        errors, _ = validate_config(config)
        assert any("danger_threshold" in e for e in errors)

    def test_low_threshold_warns(self):
        errors, warnings = validate_config(AppConfig(classifier={"danger_threshold": 0.5}))
        assert errors == []
        assert any("low" in w for w in warnings)

    def test_empty_candidates(self):
        errors, _ = validate_config(AppConfig(backend={"candidates": []}))
        assert any("candidates" in e for e in errors)

    def test_llama_cpp_needs_model_paths(self):
        errors, _ = validate_config(AppConfig(backend={"kind": "llama_cpp"}))
        assert any("model_paths" in e for e in errors)

    def test_llama_cpp_partial_paths_warn(self):
        config = AppConfig(backend={"kind": "llama_cpp", "model_paths": {"phi3:mini": "/models/phi3.gguf"}})
        errors, warnings = validate_config(config)
        assert errors == []
        assert any("tinyllama:latest" in w for w in warnings)

    def test_alert_capacity(self):
        errors, _ = validate_config(AppConfig(reflex={"alert_capacity": 0}))
        assert any("alert_capacity" in e for e in errors)

    def test_public_health_bind_warns(self):
        _, warnings = validate_config(AppConfig(health={"host": "0.0.0.0"}))
        assert any("0.0.0.0" in w for w in warnings)


def test_get_log_level():
    assert get_log_level(None) == "INFO"
    assert get_log_level(AppConfig(logging={"level": "debug"})) == "DEBUG"
