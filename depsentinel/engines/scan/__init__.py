"""Scan orchestrator engine — one pass from manifest to report-ready result."""

from depsentinel.engines.scan.models import (
    AvailableUpdate,
    DetailLevel,
    OutputFormat,
    ScanOptions,
    ScanResult,
    ScanState,
    ScanStatus,
    StateTransition,
)
from depsentinel.engines.scan.orchestrator import ScanOrchestrator
from depsentinel.engines.scan.state import ScanStateMachine
from depsentinel.engines.scan.updates import compute_updates

__all__ = [
    "AvailableUpdate",
    "DetailLevel",
    "OutputFormat",
    "ScanOptions",
    "ScanOrchestrator",
    "ScanResult",
    "ScanState",
    "ScanStateMachine",
    "ScanStatus",
    "StateTransition",
    "compute_updates",
]
