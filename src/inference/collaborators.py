"""
LLM-backed stage collaborators.

Each stage has one collaborator that turns a StageRequest into raw items.
The LLM variant prompts a model through OpenRouter and parses a JSON object
of the form {"items": [...]} from the completion.
"""

import logging
import time
from typing import Optional

from src.inference.llm_client import LLMClient
from src.models.enums import LayerName
from src.models.inference import StageRequest, StageResponse
from src.utils.parsing import extract_json_object
from src.utils.prompt_loader import build_stage_user_prompt, load_prompt
from src.utils.protocols import LLMClientProtocol


logger = logging.getLogger(__name__)


# Display names used in logs and audit details
COLLABORATOR_ROLES = {
    LayerName.FOUNDATION: "EventExtractor",
    LayerName.STRATEGIC: "RiskAnalyzer",
    LayerName.SYNTHESIS: "RecommendationSLM",
}


class MalformedOutput(ValueError):
    """The model's completion could not be turned into an item list."""


class LLMStageModel:
    """
    Stage collaborator backed by a chat completion model.

    The system prompt is loaded from prompts/stages/<stage>.md; the user
    prompt carries only what the stage is allowed to read.
    """

    def __init__(
        self,
        stage: LayerName,
        llm_client: LLMClientProtocol,
        model: str,
        temperature: float = 0.1,
        max_tokens: Optional[int] = 1500,
    ):
        """
        Initialize the collaborator.

        Args:
            stage: Layer this collaborator produces
            llm_client: Client used for completions
            model: Model identifier (e.g., "anthropic/claude-3-haiku")
            temperature: Sampling temperature
            max_tokens: Completion length cap
        """
        self.stage = LayerName(stage)
        self.llm_client = llm_client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.name = f"{COLLABORATOR_ROLES[self.stage]}[{model}]"
        self.system_prompt = load_prompt(self.stage.value)

    async def infer(self, request: StageRequest) -> StageResponse:
        start = time.perf_counter()
        response = await self.llm_client.complete(
            model=self.model,
            messages=[
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": build_stage_user_prompt(request)},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        latency_ms = (time.perf_counter() - start) * 1000

        try:
            data = extract_json_object(response.content)
        except ValueError as e:
            raise MalformedOutput(f"{self.name}: {e}") from e

        items = data.get("items")
        if not isinstance(items, list):
            raise MalformedOutput(f"{self.name}: response has no 'items' list")

        logger.debug(f"{self.name} returned {len(items)} items in {latency_ms:.0f}ms")
        return StageResponse(items=items, latency_ms=latency_ms, model=response.model)

    async def ping(self) -> bool:
        return bool(getattr(self.llm_client, "api_key", True))


def build_llm_collaborators(
    stage_models: dict[str, str],
    temperature: float = 0.1,
    llm_client: Optional[LLMClientProtocol] = None,
) -> dict[LayerName, LLMStageModel]:
    """Create one LLM collaborator per stage, sharing a client."""
    client = llm_client or LLMClient()
    return {
        stage: LLMStageModel(
            stage=stage,
            llm_client=client,
            model=stage_models[stage.value],
            temperature=temperature,
        )
        for stage in LayerName
    }
