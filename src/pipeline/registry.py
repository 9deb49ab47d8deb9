"""
Case Registry - External entry point for case operations.

Owns the per-case lock table. Locks are created on first use and never
removed, so two callers can never end up holding different locks for the
same case. Lock contention is reported as AlreadyRunning instead of waiting.
"""

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator, Callable, Optional

from pydantic import ValidationError

from src.inference.latency_tracker import LatencyTracker
from src.models.case import AdverseEventReport, Case
from src.models.enums import LayerName
from src.models.progress import ProgressCallback
from src.pipeline.config import PipelineConfig
from src.pipeline.errors import AlreadyRunning, ValidationFailed
from src.pipeline.ledger import ProvenanceLedger, TracedChain
from src.pipeline.orchestrator import CaseOrchestrator
from src.pipeline.runner import StageRunner
from src.pipeline.store import LayerStore
from src.utils.protocols import InferenceCollaboratorProtocol


logger = logging.getLogger(__name__)


class CaseRegistry:
    """Maps case ids to their lock and exposes execute/fetch/reset."""

    def __init__(
        self,
        store: LayerStore,
        orchestrator: CaseOrchestrator,
        ledger: ProvenanceLedger,
        collaborators: dict[LayerName, InferenceCollaboratorProtocol],
        latency_tracker: Optional[LatencyTracker] = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.collaborators = collaborators
        self.latency_tracker = latency_tracker or LatencyTracker()
        self._locks: dict[str, asyncio.Lock] = {}

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    def _lock_for(self, case_id: str) -> asyncio.Lock:
        return self._locks.setdefault(case_id, asyncio.Lock())

    @asynccontextmanager
    async def _exclusive(self, case_id: str) -> AsyncIterator[None]:
        """Hold the case lock, or fail fast with AlreadyRunning."""
        lock = self._lock_for(case_id)
        if lock.locked():
            raise AlreadyRunning(f"Case {case_id} is locked by another operation")
        # An uncontended acquire completes without yielding to the event loop
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, case_id: str) -> bool:
        lock = self._locks.get(case_id)
        return lock is not None and lock.locked()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def upload(
        self,
        report_text: str,
        patient_id: str,
        report_date: Optional[date] = None,
        reporter: Optional[str] = None,
        source_filename: Optional[str] = None,
        page_count: Optional[int] = None,
        case_id: Optional[str] = None,
    ) -> Case:
        """
        Create a new case from an uploaded report.

        Raises:
            ValidationFailed: Blank text or patient id, or invalid metadata
        """
        if not patient_id or not patient_id.strip():
            raise ValidationFailed("patient_id must not be blank")
        try:
            report = AdverseEventReport(
                text=report_text,
                report_date=report_date,
                reporter=reporter,
                source_filename=source_filename,
                page_count=page_count,
            )
        except ValidationError as e:
            raise ValidationFailed(f"Invalid report: {e.errors()[0]['msg']}") from e

        return self.store.create_case(report, patient_id.strip(), case_id=case_id)

    async def execute(self, case_id: str) -> Case:
        """Run the case under its lock; see CaseOrchestrator.execute."""
        self.store.get_case(case_id)
        async with self._exclusive(case_id):
            return await self.orchestrator.execute(case_id)

    def fetch(self, case_id: str) -> Case:
        """Read the current document without locking; may observe an in-flight case."""
        return self.store.get_case(case_id)

    async def reset(self, case_id: str) -> Case:
        self.store.get_case(case_id)
        async with self._exclusive(case_id):
            return self.store.reset_case(case_id)

    async def delete(self, case_id: str) -> None:
        self.store.get_case(case_id)
        async with self._exclusive(case_id):
            self.store.delete_case(case_id)

    def list_cases(self) -> list[Case]:
        return sorted(self.store.list_cases(), key=lambda case: case.created_at)

    def trace(self, case_id: str, item_id: str) -> TracedChain:
        return self.ledger.traced_chain(case_id, item_id)

    def stats(self) -> dict:
        """Aggregate inference latencies per stage plus case counters."""
        cases = self.store.list_cases()
        return {
            "stages": self.latency_tracker.get_summary(),
            "over_budget_cases": sum(1 for case in cases if case.over_budget),
            "total_cases": len(cases),
            "cases_by_status": dict(Counter(case.status.value for case in cases)),
            "latency_budget_ms": self.orchestrator.config.latency_budget_ms,
            "llm_usage": self._llm_usage(),
        }

    def _llm_usage(self) -> dict:
        """Token totals from LLM-backed collaborators; empty for the rule backend."""
        usage: dict = {}
        clients = {
            id(c.llm_client): c.llm_client
            for c in self.collaborators.values()
            if hasattr(c, "llm_client")
        }
        for client in clients.values():
            if hasattr(client, "get_session_usage"):
                usage.update(client.get_session_usage())
        return usage

    async def health(self) -> dict:
        store_up = self.store.ping()
        try:
            results = await asyncio.gather(*(c.ping() for c in self.collaborators.values()))
            inference_up = all(results)
        except Exception as e:
            logger.warning(f"Inference health check failed: {e}")
            inference_up = False
        return {
            "store": "up" if store_up else "down",
            "inference": "up" if inference_up else "down",
        }


def build_registry(
    config: Optional[PipelineConfig] = None,
    collaborators: Optional[dict[LayerName, InferenceCollaboratorProtocol]] = None,
    clock: Optional[Callable[[], datetime]] = None,
    progress_callback: Optional[ProgressCallback] = None,
    **runner_kwargs,
) -> CaseRegistry:
    """
    Wire up store, ledger, runner, orchestrator and registry.

    Args:
        config: Pipeline settings (defaults to environment)
        collaborators: Per-stage collaborators; built from config if omitted
        clock: Timestamp source for the store
        progress_callback: Listener for status transitions
        **runner_kwargs: Extra StageRunner arguments (e.g. timer)
    """
    config = config or PipelineConfig.from_env()

    if collaborators is None:
        if config.inference_backend == "llm":
            from src.inference.collaborators import build_llm_collaborators

            collaborators = build_llm_collaborators(
                config.stage_models,
                temperature=config.llm_temperature,
            )
        else:
            from src.inference.rules import build_rule_collaborators

            collaborators = build_rule_collaborators()

    store = LayerStore(storage_dir=config.store_dir, clock=clock)
    ledger = ProvenanceLedger(store)
    tracker = LatencyTracker()
    runner = StageRunner(
        store,
        ledger,
        collaborators,
        config=config,
        latency_tracker=tracker,
        **runner_kwargs,
    )
    orchestrator = CaseOrchestrator(
        store,
        runner,
        config=config,
        progress_callback=progress_callback,
    )

    logger.info(
        f"Case registry ready (backend={config.inference_backend}, "
        f"budget={config.latency_budget_ms:.0f}ms, store={config.store_dir or 'memory'})"
    )
    return CaseRegistry(store, orchestrator, ledger, collaborators, latency_tracker=tracker)
