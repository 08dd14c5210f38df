"""Model acquisition: make the configured model available on the backend.

- progress: thread-safe status store with a persisted completion record
- manager: background state machine (check, pull, wait, verify, retry)
"""

from ollama_gate.acquisition.manager import (
    AcquisitionConfig,
    AcquisitionError,
    AcquisitionManager,
    AcquisitionState,
    estimate_wait_window,
    should_probe_usable,
    verification_delays,
)
from ollama_gate.acquisition.progress import ProgressSnapshot, ProgressStatus, ProgressStore

__all__ = [
    "AcquisitionConfig",
    "AcquisitionError",
    "AcquisitionManager",
    "AcquisitionState",
    "ProgressSnapshot",
    "ProgressStatus",
    "ProgressStore",
    "estimate_wait_window",
    "should_probe_usable",
    "verification_delays",
]
