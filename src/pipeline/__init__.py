"""Layered-context case pipeline: store, ledger, stages and orchestration."""

from src.pipeline.config import PipelineConfig
from src.pipeline.errors import (
    AlreadyRunning,
    LayerConflict,
    NotFound,
    PipelineError,
    StageConflict,
    StageError,
    StageTimeout,
    StageValidationFailed,
    ValidationFailed,
)
from src.pipeline.ledger import ProvenanceLedger, TracedChain, verify_references
from src.pipeline.orchestrator import CaseOrchestrator
from src.pipeline.registry import CaseRegistry, build_registry
from src.pipeline.runner import StageRunner
from src.pipeline.store import LayerStore

__all__ = [
    "AlreadyRunning",
    "CaseOrchestrator",
    "CaseRegistry",
    "LayerConflict",
    "LayerStore",
    "NotFound",
    "PipelineConfig",
    "PipelineError",
    "ProvenanceLedger",
    "StageConflict",
    "StageError",
    "StageRunner",
    "StageTimeout",
    "StageValidationFailed",
    "TracedChain",
    "ValidationFailed",
    "build_registry",
    "verify_references",
]
