"""Tests for pipeline configuration loading."""

import pytest
from pathlib import Path

from src.models.enums import LayerName
from src.pipeline.config import DEFAULT_STAGE_MODELS, PipelineConfig


ENV_VARS = (
    "PIPELINE_CONFIG",
    "LATENCY_BUDGET_MS",
    "STAGE_TIMEOUT_S",
    "TIMEOUT_RETRIES",
    "CASE_STORE_DIR",
    "INFERENCE_BACKEND",
    "OPENROUTER_API_KEY",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Unset pipeline variables and stop a local .env from leaking in."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("src.pipeline.config.load_dotenv", lambda: False)
    return monkeypatch


class TestPipelineConfig:
    """Tests for PipelineConfig."""

    def test_defaults(self):
        config = PipelineConfig()

        assert config.latency_budget_ms == 500.0
        assert config.timeout_retries == 1
        assert config.store_dir is None
        assert config.inference_backend == "rules"

    def test_timeout_for_with_override(self):
        config = PipelineConfig(stage_timeout_s=2.0, stage_timeouts_s={"synthesis": 5.0})

        assert config.timeout_for(LayerName.FOUNDATION) == 2.0
        assert config.timeout_for(LayerName.SYNTHESIS) == 5.0

    def test_from_dict(self):
        config = PipelineConfig.from_dict({
            "latency_budget_ms": 250,
            "store_dir": "data/cases",
            "stage_models": {"strategic": "openai/gpt-4o"},
            "unknown_key": True,
        })

        assert config.latency_budget_ms == 250
        assert config.store_dir == Path("data/cases")
        assert config.model_for(LayerName.STRATEGIC) == "openai/gpt-4o"
        assert config.model_for(LayerName.FOUNDATION) == DEFAULT_STAGE_MODELS["foundation"]

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "pipeline.yaml"
        path.write_text(
            "pipeline:\n"
            "  latency_budget_ms: 800\n"
            "  timeout_retries: 2\n"
            "  stage_timeouts_s:\n"
            "    foundation: 3.5\n"
        )

        config = PipelineConfig.from_yaml(str(path))

        assert config.latency_budget_ms == 800
        assert config.timeout_retries == 2
        assert config.timeout_for(LayerName.FOUNDATION) == 3.5

    def test_from_yaml_missing_file(self, tmp_path):
        assert PipelineConfig.from_yaml(str(tmp_path / "missing.yaml")) == PipelineConfig()

    def test_shipped_config_loads(self):
        config = PipelineConfig.from_yaml(str(Path(__file__).parent.parent / "config" / "pipeline.yaml"))
        assert config.latency_budget_ms > 0

    def test_from_env(self, clean_env, tmp_path):
        clean_env.setenv("LATENCY_BUDGET_MS", "300")
        clean_env.setenv("STAGE_TIMEOUT_S", "0.5")
        clean_env.setenv("TIMEOUT_RETRIES", "0")
        clean_env.setenv("CASE_STORE_DIR", str(tmp_path))

        config = PipelineConfig.from_env()

        assert config.latency_budget_ms == 300.0
        assert config.stage_timeout_s == 0.5
        assert config.timeout_retries == 0
        assert config.store_dir == tmp_path
        assert config.inference_backend == "rules"

    def test_api_key_selects_llm_backend(self, clean_env):
        clean_env.setenv("OPENROUTER_API_KEY", "sk-test")
        assert PipelineConfig.from_env().inference_backend == "llm"

    def test_explicit_backend_wins(self, clean_env):
        clean_env.setenv("OPENROUTER_API_KEY", "sk-test")
        clean_env.setenv("INFERENCE_BACKEND", "rules")
        assert PipelineConfig.from_env().inference_backend == "rules"

    def test_config_file_from_env(self, clean_env, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("pipeline:\n  latency_budget_ms: 1200\n")
        clean_env.setenv("PIPELINE_CONFIG", str(path))

        assert PipelineConfig.from_env().latency_budget_ms == 1200
