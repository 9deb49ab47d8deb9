"""
Layer Store - Versioned per-case documents.

Holds one Case document per case id, in memory with optional JSON-file
persistence (one file per case). Every mutation is applied to a private copy
under a single lock and swapped in only once it is complete, so a failed
validation or write never leaves a half-updated document behind.
"""

import json
import logging
import os
import re
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel, ValidationError

from src.models.case import LAYER_ITEM_MODELS, AdverseEventReport, Case, CaseLayers, StageFailure
from src.models.enums import CaseStatus, LayerName
from src.pipeline.errors import LayerConflict, NotFound, ValidationFailed


logger = logging.getLogger(__name__)


CASE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Which layer an in-progress status is allowed to commit, and where it goes next
LAYER_FOR_STATUS: dict[CaseStatus, LayerName] = {
    CaseStatus.EXTRACTING: LayerName.FOUNDATION,
    CaseStatus.ANALYZING: LayerName.STRATEGIC,
    CaseStatus.RECOMMENDING: LayerName.SYNTHESIS,
}
STATUS_AFTER_COMMIT: dict[LayerName, CaseStatus] = {
    LayerName.FOUNDATION: CaseStatus.ANALYZING,
    LayerName.STRATEGIC: CaseStatus.RECOMMENDING,
    LayerName.SYNTHESIS: CaseStatus.COMPLETE,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LayerStore:
    """
    In-memory case store with JSON file persistence.

    `commit_layer` is the only way a layer gets written. Status changes that
    do not commit a layer go through `transition`, which is also a
    compare-and-swap on the current status.
    """

    def __init__(
        self,
        storage_dir: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the store.

        Args:
            storage_dir: Directory for per-case JSON files (optional)
            clock: Timestamp source, injectable for deterministic tests
        """
        self.storage_dir = Path(storage_dir) if storage_dir else None
        self.clock = clock or utc_now
        self._cases: dict[str, Case] = {}
        self._lock = threading.RLock()

        if self.storage_dir:
            self._load_from_storage()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_case(self, case_id: str) -> Case:
        """Return a detached copy of the case document."""
        with self._lock:
            return self._require(case_id).model_copy(deep=True)

    def list_cases(self) -> list[Case]:
        with self._lock:
            return [case.model_copy(deep=True) for case in self._cases.values()]

    def ping(self) -> bool:
        """Whether the store can accept writes."""
        if not self.storage_dir:
            return True
        return self.storage_dir.is_dir() and os.access(self.storage_dir, os.W_OK)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create_case(
        self,
        report: AdverseEventReport,
        patient_id: str,
        case_id: Optional[str] = None,
    ) -> Case:
        """Create a new case in `ready` with all layers empty."""
        if case_id is None:
            case_id = uuid.uuid4().hex[:12]
        if not CASE_ID_PATTERN.match(case_id):
            raise ValidationFailed(f"Invalid case id: {case_id!r}")

        with self._lock:
            if case_id in self._cases:
                raise ValidationFailed(f"Case {case_id} already exists")
            now = self.clock()
            case = Case(
                case_id=case_id,
                patient_id=patient_id,
                report=report,
                created_at=now,
                updated_at=now,
            )
            self._persist(case)
            self._cases[case_id] = case
            logger.info(f"Created case {case_id} for patient {patient_id}")
            return case.model_copy(deep=True)

    def commit_layer(
        self,
        case_id: str,
        layer_name: LayerName,
        items: Iterable[Any],
        expected_prior_status: CaseStatus,
    ) -> Case:
        """
        Atomically write one layer and advance the case status.

        Args:
            case_id: Case to write
            layer_name: Layer being committed
            items: Item models or dicts for that layer
            expected_prior_status: Status the writer believes the case is in

        Returns:
            The updated case document

        Raises:
            NotFound: Unknown case
            LayerConflict: Current status differs from expected_prior_status
            ValidationFailed: Wrong layer for the status, bad item shape,
                duplicate ids, or a reference that does not resolve to an
                earlier completed layer
        """
        layer_name = LayerName(layer_name)
        expected_prior_status = CaseStatus(expected_prior_status)
        raw_items = list(items)

        def apply(case: Case) -> None:
            if case.status != expected_prior_status:
                raise LayerConflict(
                    f"Case {case_id} is {case.status.value}, "
                    f"expected {expected_prior_status.value}"
                )

            owned = LAYER_FOR_STATUS.get(case.status)
            if owned != layer_name:
                raise ValidationFailed(
                    f"Layer {layer_name.value} cannot be committed while case is {case.status.value}"
                )
            layer = case.layers.get(layer_name)
            if layer.completed:
                raise ValidationFailed(f"Layer {layer_name.value} is already complete")

            validated = self._validate_items(case, layer_name, raw_items)

            new_layer = layer.model_copy(
                update={
                    "items": validated,
                    "completed": True,
                    "processed_at": self.clock(),
                }
            )
            setattr(case.layers, layer_name.value, new_layer)
            case.status = STATUS_AFTER_COMMIT[layer_name]

        case = self._apply(case_id, apply)
        logger.info(
            f"Committed {layer_name.value} layer for case {case_id} "
            f"({len(raw_items)} items), status -> {case.status.value}"
        )
        return case

    def transition(
        self,
        case_id: str,
        expected: CaseStatus,
        new: CaseStatus,
        error: Optional[StageFailure] = None,
    ) -> Case:
        """
        Compare-and-swap the case status without touching layers.

        Raises:
            LayerConflict: If the current status is not `expected`
        """
        expected = CaseStatus(expected)
        new = CaseStatus(new)

        def apply(case: Case) -> None:
            if case.status != expected:
                raise LayerConflict(
                    f"Case {case_id} is {case.status.value}, expected {expected.value}"
                )
            case.status = new
            case.error = error

        return self._apply(case_id, apply)

    def flag_over_budget(self, case_id: str) -> Case:
        def apply(case: Case) -> None:
            case.over_budget = True

        return self._apply(case_id, apply)

    def mutate(self, case_id: str, fn: Callable[[Case], None]) -> Case:
        """Apply `fn` to a copy of the case and swap it in. Used by the ledger."""
        return self._apply(case_id, fn)

    def reset_case(self, case_id: str) -> Case:
        """Clear layers, records and timings; keep the report and identity."""

        def apply(case: Case) -> None:
            case.status = CaseStatus.READY
            case.error = None
            case.total_processing_time_ms = 0.0
            case.over_budget = False
            case.layers = CaseLayers()
            case.handoffs = []
            case.actions = []

        case = self._apply(case_id, apply)
        logger.info(f"Reset case {case_id}")
        return case

    def delete_case(self, case_id: str) -> None:
        with self._lock:
            self._require(case_id)
            if self.storage_dir:
                self._case_path(case_id).unlink(missing_ok=True)
            del self._cases[case_id]
            logger.info(f"Deleted case {case_id}")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require(self, case_id: str) -> Case:
        case = self._cases.get(case_id)
        if case is None:
            raise NotFound(f"Case {case_id} not found")
        return case

    def _apply(self, case_id: str, fn: Callable[[Case], None]) -> Case:
        with self._lock:
            working = self._require(case_id).model_copy(deep=True)
            fn(working)
            working.updated_at = self.clock()
            self._persist(working)
            self._cases[case_id] = working
            return working.model_copy(deep=True)

    def _validate_items(
        self,
        case: Case,
        layer_name: LayerName,
        raw_items: list[Any],
    ) -> list[BaseModel]:
        item_model = LAYER_ITEM_MODELS[layer_name]
        try:
            items = [
                item_model.model_validate(
                    raw.model_dump() if isinstance(raw, BaseModel) else raw
                )
                for raw in raw_items
            ]
        except ValidationError as e:
            raise ValidationFailed(
                f"Malformed {layer_name.value} item: {e.errors()[0]['msg']}"
            ) from e

        # Only items of strictly earlier, completed layers are referenceable
        existing = case.item_index()
        resolvable = {
            item_id
            for item_id, owner in existing.items()
            if owner.rank < layer_name.rank and case.layers.get(owner).completed
        }

        seen: set[str] = set()
        for item in items:
            if item.item_id in seen or item.item_id in existing:
                raise ValidationFailed(f"Duplicate item id: {item.item_id}")
            seen.add(item.item_id)

        for item in items:
            for ref in item.references:
                if ref not in resolvable:
                    raise ValidationFailed(
                        f"Item {item.item_id} references {ref!r}, which is not an item "
                        f"of an earlier completed layer"
                    )
        return items

    def _case_path(self, case_id: str) -> Path:
        return self.storage_dir / f"{case_id}.json"

    def _persist(self, case: Case) -> None:
        """Write the case document atomically (temp file + rename)."""
        if not self.storage_dir:
            return
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        path = self._case_path(case.case_id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(case.model_dump(mode="json"), indent=2))
        os.replace(tmp_path, path)

    def _load_from_storage(self) -> None:
        """Load every case document found in the storage directory."""
        if not self.storage_dir.exists():
            return

        for path in sorted(self.storage_dir.glob("*.json")):
            try:
                case = Case.model_validate_json(path.read_text())
                self._cases[case.case_id] = case
            except (OSError, ValidationError) as e:
                logger.error(f"Failed to load case document {path.name}: {e}")

        logger.info(f"Loaded {len(self._cases)} cases from {self.storage_dir}")
