"""
Structural interfaces for the pipeline's pluggable dependencies.

Stage collaborators and LLM clients are injected, so rule-based, LLM-backed
and test doubles are interchangeable.
"""

from typing import Optional, Protocol

from src.models.inference import StageRequest, StageResponse
from src.models.llm import LLMResponse


class LLMClientProtocol(Protocol):
    """Chat completion client used by LLM-backed collaborators."""

    async def complete(
        self,
        model: str,
        messages: list[dict],
        temperature: float,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Return one completion for `messages` from `model`."""
        ...


class InferenceCollaboratorProtocol(Protocol):
    """
    Protocol for the per-stage inference collaborators.

    Collaborators are opaque: structured request in, structured items plus
    latency out. Anything else is rejected by the stage runner.
    """

    name: str

    async def infer(self, request: StageRequest) -> StageResponse:
        """
        Run inference for one stage of one case.

        Args:
            request: Case id, stage, and the committed upstream items

        Returns:
            StageResponse with raw item dicts and optional declared latency
        """
        ...

    async def ping(self) -> bool:
        """Whether the collaborator is able to serve requests."""
        ...
