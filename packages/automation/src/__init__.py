"""Review automation rule engine."""

from .actions import ActionRegistry, ActionResult, build_action_registry
from .cache import AutomationCache
from .conditions import evaluate, is_compatible
from .dispatcher import DispatchCoordinator
from .engine import AutomationEngine, EngineState, ReviewSequencer, running
from .fingerprint import compute_fingerprint
from .ingestion import EventIngestionAdapter, build_event, normalize_kind
from .matcher import RuleMatcher
from .retry import RetryReport, RetrySweep
from .scanner import ScannerState, ScanReport, ScheduledTriggerScanner, cycle_version

__all__ = [
    # Evaluation
    "evaluate",
    "is_compatible",
    "AutomationCache",
    "RuleMatcher",
    # Dispatch
    "ActionRegistry",
    "ActionResult",
    "build_action_registry",
    "DispatchCoordinator",
    "compute_fingerprint",
    # Runtime
    "AutomationEngine",
    "EngineState",
    "ReviewSequencer",
    "running",
    "EventIngestionAdapter",
    "build_event",
    "normalize_kind",
    "ScheduledTriggerScanner",
    "ScannerState",
    "ScanReport",
    "cycle_version",
    "RetrySweep",
    "RetryReport",
]
