"""
Pipeline configuration.

Values come from (in order of precedence) explicit arguments, a YAML file,
environment variables (a local .env is loaded via python-dotenv), then the
defaults below.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from src.models.enums import LayerName


logger = logging.getLogger(__name__)


DEFAULT_STAGE_MODELS = {
    LayerName.FOUNDATION.value: "openai/gpt-4o-mini",
    LayerName.STRATEGIC.value: "anthropic/claude-3-haiku",
    LayerName.SYNTHESIS.value: "anthropic/claude-3-haiku",
}


@dataclass
class PipelineConfig:
    """
    Runtime settings for the case pipeline.

    The latency budget is an SLO: overruns flag the case, they never abort it.
    """

    # Target for the sum of inference times across the three stages
    latency_budget_ms: float = 500.0

    # Per-call bound on each inference collaborator
    stage_timeout_s: float = 2.0
    stage_timeouts_s: dict[str, float] = field(default_factory=dict)

    # Extra attempts after a StageTimeout (other stage errors are never retried)
    timeout_retries: int = 1

    # Directory for one-JSON-file-per-case persistence; None keeps cases in memory
    store_dir: Optional[Path] = None

    # "rules" for the deterministic collaborators, "llm" for OpenRouter-backed ones
    inference_backend: str = "rules"
    stage_models: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_STAGE_MODELS))
    llm_temperature: float = 0.1

    def timeout_for(self, stage: LayerName) -> float:
        """Timeout in seconds for one call to the given stage's collaborator."""
        return self.stage_timeouts_s.get(LayerName(stage).value, self.stage_timeout_s)

    def model_for(self, stage: LayerName) -> str:
        return self.stage_models.get(
            LayerName(stage).value, DEFAULT_STAGE_MODELS[LayerName(stage).value]
        )

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineConfig":
        """Create config from dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown pipeline config keys: {sorted(unknown)}")

        kwargs = {k: v for k, v in data.items() if k in known}
        if kwargs.get("store_dir") is not None:
            kwargs["store_dir"] = Path(kwargs["store_dir"])
        if "stage_models" in kwargs:
            kwargs["stage_models"] = {**DEFAULT_STAGE_MODELS, **kwargs["stage_models"]}
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, config_path: str = "config/pipeline.yaml") -> "PipelineConfig":
        """Load config from a YAML file, falling back to defaults if it is missing."""
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.info(f"No pipeline config at {config_path}, using defaults")
            return cls()

        return cls.from_dict(data.get("pipeline", data))

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """
        Build config from environment variables.

        Recognized variables:
            PIPELINE_CONFIG: Path to a YAML file (takes precedence)
            LATENCY_BUDGET_MS, STAGE_TIMEOUT_S, TIMEOUT_RETRIES,
            CASE_STORE_DIR, INFERENCE_BACKEND
        """
        load_dotenv()

        config_path = os.getenv("PIPELINE_CONFIG")
        if config_path:
            return cls.from_yaml(config_path)

        data: dict = {}
        if os.getenv("LATENCY_BUDGET_MS"):
            data["latency_budget_ms"] = float(os.environ["LATENCY_BUDGET_MS"])
        if os.getenv("STAGE_TIMEOUT_S"):
            data["stage_timeout_s"] = float(os.environ["STAGE_TIMEOUT_S"])
        if os.getenv("TIMEOUT_RETRIES"):
            data["timeout_retries"] = int(os.environ["TIMEOUT_RETRIES"])
        if os.getenv("CASE_STORE_DIR"):
            data["store_dir"] = os.environ["CASE_STORE_DIR"]

        backend = os.getenv("INFERENCE_BACKEND")
        if backend:
            data["inference_backend"] = backend
        elif os.getenv("OPENROUTER_API_KEY"):
            data["inference_backend"] = "llm"

        return cls.from_dict(data)
