"""
Stage Runner - Executes one stage for one case.

Builds the stage input from committed layers, calls the collaborator under a
timeout, validates the returned items, commits the layer, and writes the
audit trail. Every collaborator attempt leaves exactly one ActionRecord,
whatever its outcome.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from pydantic import BaseModel

from src.inference.latency_tracker import LatencyTracker
from src.models.case import ActionRecord, Case, HandoffRecord
from src.models.enums import ActionType, LayerName
from src.models.inference import StageResponse
from src.pipeline.config import PipelineConfig
from src.pipeline.errors import (
    LayerConflict,
    StageConflict,
    StageError,
    StageTimeout,
    StageValidationFailed,
    ValidationFailed,
)
from src.pipeline.ledger import ProvenanceLedger
from src.pipeline.stages import STAGES, StageDefinition, build_stage_request, summarize_layer
from src.pipeline.store import LayerStore
from src.utils.protocols import InferenceCollaboratorProtocol


logger = logging.getLogger(__name__)


class StageRunner:
    """Runs a single named stage against the store and ledger."""

    def __init__(
        self,
        store: LayerStore,
        ledger: ProvenanceLedger,
        collaborators: dict[LayerName, InferenceCollaboratorProtocol],
        config: Optional[PipelineConfig] = None,
        latency_tracker: Optional[LatencyTracker] = None,
        timer: Callable[[], float] = time.perf_counter,
    ):
        """
        Initialize the runner.

        Args:
            store: Case document store
            ledger: Audit trail writer
            collaborators: One inference collaborator per layer
            config: Pipeline settings (timeouts)
            latency_tracker: Optional sink for per-call latencies
            timer: Monotonic clock in seconds, injectable for tests
        """
        missing = [layer.value for layer in LayerName if layer not in collaborators]
        if missing:
            raise ValueError(f"No collaborator configured for stages: {missing}")

        self.store = store
        self.ledger = ledger
        self.collaborators = collaborators
        self.config = config or PipelineConfig()
        self.latency_tracker = latency_tracker
        self.timer = timer

    async def run(self, case_id: str, stage: LayerName, attempt: int = 1) -> Case:
        """
        Execute one stage and commit its layer.

        Args:
            case_id: Case to process; must be in the stage's running status
            stage: Layer to produce
            attempt: Attempt number, recorded in the audit trail

        Returns:
            The case document after the commit

        Raises:
            StageTimeout: Collaborator did not answer within the stage timeout
            StageValidationFailed: Output malformed or references did not resolve
            StageConflict: Case status changed underneath the stage
            StageError: Collaborator raised an unexpected error
        """
        stage_def = STAGES[LayerName(stage)]
        collaborator = self.collaborators[stage_def.layer]
        timeout = self.config.timeout_for(stage_def.layer)

        request = build_stage_request(self.store.get_case(case_id), stage_def)

        start = self.timer()
        try:
            response = await asyncio.wait_for(collaborator.infer(request), timeout=timeout)
        except asyncio.TimeoutError as e:
            message = f"{collaborator.name} did not respond within {timeout:.2f}s"
            self._record(case_id, stage_def, ActionType.STAGE_TIMEOUT, message, self._elapsed_ms(start), None, attempt)
            raise StageTimeout(stage_def.layer, message, attempts=attempt) from e
        except ValueError as e:
            message = f"{collaborator.name} returned malformed output: {e}"
            self._record(case_id, stage_def, ActionType.STAGE_REJECTED, message, self._elapsed_ms(start), None, attempt)
            raise StageValidationFailed(stage_def.layer, message, attempts=attempt) from e
        except Exception as e:
            message = f"{collaborator.name} failed: {type(e).__name__}: {e}"
            self._record(case_id, stage_def, ActionType.STAGE_REJECTED, message, self._elapsed_ms(start), None, attempt)
            raise StageError(stage_def.layer, message, attempts=attempt) from e
        elapsed_ms = self._elapsed_ms(start)

        try:
            response, items = self._validate_response(stage_def, response)
        except ValueError as e:
            message = f"{collaborator.name} output failed validation: {e}"
            self._record(case_id, stage_def, ActionType.STAGE_REJECTED, message, elapsed_ms, None, attempt)
            raise StageValidationFailed(stage_def.layer, message, attempts=attempt) from e

        declared = response.latency_ms
        try:
            self.store.commit_layer(
                case_id,
                stage_def.layer,
                items,
                expected_prior_status=stage_def.running_status,
            )
        except ValidationFailed as e:
            self._record(case_id, stage_def, ActionType.STAGE_REJECTED, e.message, elapsed_ms, declared, attempt)
            raise StageValidationFailed(stage_def.layer, e.message, attempts=attempt) from e
        except LayerConflict as e:
            self._record(case_id, stage_def, ActionType.STAGE_CONFLICT, e.message, elapsed_ms, declared, attempt)
            raise StageConflict(stage_def.layer, e.message, attempts=attempt) from e

        summary, snapshot = summarize_layer(stage_def.layer, items)
        case = self._record(
            case_id,
            stage_def,
            ActionType.STAGE_COMPLETED,
            f"{collaborator.name}: {summary}",
            elapsed_ms,
            declared,
            attempt,
        )

        if not stage_def.is_final:
            case = self.ledger.append_handoff(
                case_id,
                HandoffRecord(
                    source_stage=stage_def.layer,
                    destination_stage=stage_def.next_layer,
                    summary=summary,
                    snapshot=snapshot,
                    timestamp=self.store.clock(),
                ),
            )

        logger.info(
            f"Case {case_id}: {stage_def.layer.value} stage committed in {elapsed_ms:.1f}ms "
            f"(attempt {attempt}) - {summary}"
        )
        return case

    def _validate_response(self, stage_def: StageDefinition, response) -> tuple[StageResponse, list[BaseModel]]:
        """
        Check the collaborator output against the stage's item model.

        Raises:
            ValueError: Wrong envelope, bad item shape, or duplicate ids
                (pydantic's ValidationError is a ValueError)
        """
        if not isinstance(response, StageResponse):
            response = StageResponse.model_validate(response)

        items = [stage_def.item_model.model_validate(raw) for raw in response.items]

        seen: set[str] = set()
        for item in items:
            if item.item_id in seen:
                raise ValueError(f"duplicate item id {item.item_id!r}")
            seen.add(item.item_id)
        return response, items

    def _elapsed_ms(self, start: float) -> float:
        return max(0.0, (self.timer() - start) * 1000)

    def _record(
        self,
        case_id: str,
        stage_def: StageDefinition,
        action_type: ActionType,
        detail: str,
        elapsed_ms: float,
        declared_latency_ms: Optional[float],
        attempt: int,
    ) -> Case:
        """Append the ActionRecord for one attempt and feed the latency tracker."""
        if self.latency_tracker is not None:
            self.latency_tracker.record(stage_def.layer, elapsed_ms, action_type, case_id=case_id)

        if action_type != ActionType.STAGE_COMPLETED:
            logger.warning(f"Case {case_id}: {stage_def.layer.value} attempt {attempt} {action_type.value}: {detail}")

        return self.ledger.append_action(
            case_id,
            ActionRecord(
                stage=stage_def.layer,
                action_type=action_type,
                detail=detail,
                inference_time_ms=elapsed_ms,
                declared_latency_ms=declared_latency_ms,
                attempt=attempt,
                timestamp=self.store.clock(),
            ),
        )
