"""Progress store for the model download.

Holds the current acquisition status for the configured model and the
one-time completion record. The completion record is persisted to a small
JSON file so a restart does not lose when (and how fast) the model became
available.

Persisted file format:
    {"status": "completed", "model_name": "qwen3:0.6b", "completed_at": 1760000000, "duration": 42}
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from ollama_gate.gateway.transforms.types import PullProgress

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = Path("data") / "progress_state.json"


class ProgressStatus(str, Enum):
    """Status values exposed at /api/progress."""

    IDLE = "idle"
    STARTING = "starting"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time copy of the store."""

    status: str
    model_name: str
    detail: str
    completed: int
    total: int
    progress: float
    timestamp: int
    completed_at: int | None = None
    duration: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize, omitting completion fields that are not set."""
        data = asdict(self)
        if self.completed_at is None:
            data.pop("completed_at")
        if self.duration is None:
            data.pop("duration")
        return data


class ProgressStore:
    """Thread-safe progress state for one model.

    Mutated only by the acquisition task; read by the HTTP handlers.
    completed_at and duration are set once, on the first transition into
    COMPLETED, and never overwritten.
    """

    def __init__(
        self,
        model_name: str,
        state_file: str | Path | None = DEFAULT_STATE_FILE,
        app_url: str = "",
        clock: Callable[[], float] = time.time,
    ):
        self._lock = threading.Lock()
        self._clock = clock
        self._started_at = clock()
        self._state_file = Path(state_file) if state_file else None

        self.model_name = model_name
        self.app_url = app_url

        self._status = ProgressStatus.IDLE
        self._detail = ""
        self._completed = 0
        self._total = 0
        self._progress = 0.0
        self._completed_at: int | None = None
        self._duration: int | None = None

        self._load_state()

    @property
    def status(self) -> ProgressStatus:
        with self._lock:
            return self._status

    @property
    def completed_at(self) -> int | None:
        with self._lock:
            return self._completed_at

    def update(
        self,
        status: ProgressStatus,
        completed: int = 0,
        total: int = 0,
        detail: str | None = None,
    ) -> None:
        """Record a status change.

        Byte counters are only replaced when total is known (> 0), so lines
        such as "pulling manifest" or "success" keep the last reported
        counters.
        """
        with self._lock:
            self._status = status
            if detail is not None:
                self._detail = detail
            if total > 0:
                self._completed = completed
                self._total = total
                self._progress = completed / total * 100

            if status is ProgressStatus.COMPLETED and self._completed_at is None:
                now = int(self._clock())
                self._completed_at = now
                self._duration = max(0, now - int(self._started_at))
                self._save_state()

    def record_pull(self, progress: PullProgress) -> None:
        """Record one line of the pull stream as DOWNLOADING."""
        self.update(
            ProgressStatus.DOWNLOADING,
            completed=progress.completed,
            total=progress.total,
            detail=progress.status,
        )

    def byte_counters(self) -> tuple[int, int]:
        """Return (completed, total) bytes as last reported."""
        with self._lock:
            return self._completed, self._total

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(
                status=self._status.value,
                model_name=self.model_name,
                detail=self._detail,
                completed=self._completed,
                total=self._total,
                progress=self._progress,
                timestamp=int(self._clock()),
                completed_at=self._completed_at,
                duration=self._duration,
            )

    def to_response(self) -> dict[str, Any]:
        """Body for GET /api/progress."""
        data = self.snapshot().to_dict()
        data["app_url"] = self.app_url
        return data

    def _load_state(self) -> None:
        """Restore a completion record for this model, if one was persisted."""
        if self._state_file is None:
            return

        try:
            raw = self._state_file.read_text()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning("Failed to read state file %s: %s", self._state_file, e)
            return

        try:
            state = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse state file %s: %s", self._state_file, e)
            return

        if not isinstance(state, dict):
            logger.warning("Ignoring state file %s: not a JSON object", self._state_file)
            return

        completed_at = state.get("completed_at")
        if (
            state.get("status") != ProgressStatus.COMPLETED.value
            or not isinstance(completed_at, int)
            or completed_at <= 0
        ):
            return

        if state.get("model_name") != self.model_name:
            logger.info(
                "Ignoring persisted state for model '%s' (configured: '%s')",
                state.get("model_name"),
                self.model_name,
            )
            return

        duration = state.get("duration")
        self._status = ProgressStatus.COMPLETED
        self._completed_at = completed_at
        self._duration = duration if isinstance(duration, int) else 0
        logger.info(
            "Loaded persisted state: model=%s, completed_at=%d, duration=%ds",
            self.model_name,
            self._completed_at,
            self._duration,
        )

    def _save_state(self) -> None:
        """Write the completion record. Caller holds the lock."""
        if self._state_file is None or self._completed_at is None:
            return

        state = {
            "status": ProgressStatus.COMPLETED.value,
            "model_name": self.model_name,
            "completed_at": self._completed_at,
            "duration": self._duration or 0,
        }
        try:
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
            self._state_file.write_text(json.dumps(state, indent=2))
        except OSError as e:
            logger.warning("Failed to write state file %s: %s", self._state_file, e)
            return

        logger.info("Saved progress state to %s", self._state_file)
