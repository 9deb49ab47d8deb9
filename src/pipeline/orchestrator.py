"""
Case Orchestrator - Drives the three stages for one case.

State machine:

    ready -> extracting -> analyzing -> recommending -> complete
                 \\            |              /
                  +-------> failed <--------+

The caller (CaseRegistry) holds the per-case lock for the whole call.
A failed case resumes from its first incomplete layer; completed stages are
never re-run. The latency budget is an SLO: overruns flag the case but never
stop it mid-pipeline.
"""

import logging
from typing import Optional

from src.models.case import Case, StageFailure
from src.models.enums import LAYER_ORDER, CaseStatus
from src.models.progress import STATUS_PERCENT, ProgressCallback, ProgressUpdate
from src.pipeline.config import PipelineConfig
from src.pipeline.errors import AlreadyRunning, LayerConflict, StageError, StageTimeout
from src.pipeline.runner import StageRunner
from src.pipeline.stages import STAGES, StageDefinition
from src.pipeline.store import LayerStore


logger = logging.getLogger(__name__)


class CaseOrchestrator:
    """Runs a case to `complete` or `failed`."""

    def __init__(
        self,
        store: LayerStore,
        runner: StageRunner,
        config: Optional[PipelineConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Case document store
            runner: Stage runner shared by all cases
            config: Pipeline settings (budget, retries)
            progress_callback: Optional listener for status transitions
        """
        self.store = store
        self.runner = runner
        self.config = config or PipelineConfig()
        self.progress_callback = progress_callback

    async def execute(self, case_id: str) -> Case:
        """
        Run the remaining stages of a case.

        Returns:
            The final case document (status `complete` or `failed`)

        Raises:
            NotFound: Unknown case
            AlreadyRunning: Case is mid-execution
        """
        case = self.store.get_case(case_id)

        if case.status == CaseStatus.COMPLETE:
            logger.debug(f"Case {case_id} already complete, returning existing result")
            return case
        if case.status.is_in_progress:
            raise AlreadyRunning(f"Case {case_id} is already {case.status.value}")

        first = case.layers.first_incomplete()
        if first is None:
            # All layers committed; only the status lags behind
            return self.store.transition(case_id, case.status, CaseStatus.COMPLETE)

        if case.status == CaseStatus.FAILED:
            logger.info(f"Resuming failed case {case_id} from {first.value} stage")

        stage_def = STAGES[first]
        try:
            case = self.store.transition(case_id, case.status, stage_def.running_status, error=None)
        except LayerConflict as e:
            raise AlreadyRunning(e.message) from e
        self._notify(case, f"Starting {first.value} stage")

        for layer in LAYER_ORDER[first.rank:]:
            stage_def = STAGES[layer]
            self._check_budget(case)
            try:
                case = await self._run_stage(case_id, stage_def)
            except StageError as e:
                return self._fail(case_id, stage_def, e)
            self._notify(case, f"{layer.value} stage committed", stage=layer.value)

        self._check_budget(case)
        case = self.store.get_case(case_id)
        logger.info(
            f"Case {case_id} complete in {case.total_processing_time_ms:.1f}ms "
            f"(budget {self.config.latency_budget_ms:.0f}ms, over_budget={case.over_budget})"
        )
        return case

    async def _run_stage(self, case_id: str, stage_def: StageDefinition) -> Case:
        """Run one stage, retrying timeouts up to the configured count."""
        max_attempts = 1 + max(0, self.config.timeout_retries)
        for attempt in range(1, max_attempts + 1):
            try:
                return await self.runner.run(case_id, stage_def.layer, attempt=attempt)
            except StageTimeout:
                if attempt >= max_attempts:
                    raise
                logger.warning(
                    f"Case {case_id}: {stage_def.layer.value} stage timed out, "
                    f"retrying ({attempt}/{max_attempts - 1} retries)"
                )
        raise AssertionError("unreachable")

    def _check_budget(self, case: Case) -> None:
        if case.over_budget:
            return
        if case.total_processing_time_ms > self.config.latency_budget_ms:
            logger.warning(
                f"Case {case.case_id} over latency budget: "
                f"{case.total_processing_time_ms:.1f}ms > {self.config.latency_budget_ms:.0f}ms"
            )
            self.store.flag_over_budget(case.case_id)
            case.over_budget = True

    def _fail(self, case_id: str, stage_def: StageDefinition, error: StageError) -> Case:
        """Move the case to failed, recording the error verbatim."""
        failure = StageFailure(
            code=error.code,
            stage=error.stage,
            message=error.message,
            occurred_at=self.store.clock(),
        )
        logger.error(f"Case {case_id} failed in {stage_def.layer.value} stage: {error.code}: {error.message}")
        try:
            case = self.store.transition(case_id, stage_def.running_status, CaseStatus.FAILED, error=failure)
        except LayerConflict:
            # Another writer moved the case; its state wins
            logger.error(f"Case {case_id} changed status while failing {stage_def.layer.value} stage")
            return self.store.get_case(case_id)

        self._notify(case, f"{error.code} in {stage_def.layer.value} stage", code=error.code)
        return case

    def _notify(self, case: Case, message: str, **detail) -> None:
        if self.progress_callback is None:
            return
        self.progress_callback(ProgressUpdate(
            case_id=case.case_id,
            status=case.status,
            message=message,
            percent=STATUS_PERCENT[case.status],
            detail=detail,
        ))
