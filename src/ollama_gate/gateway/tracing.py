"""Request tracing for the gateway server.

Provides human-readable trace IDs and debug data saving.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class RequestTracer:
    """Handles request tracing and debug data saving.

    Debug files are saved to: {debug_dir}/logs/{session_id}/{trace_id}/

    Example:
        tracer = RequestTracer(debug_dir="/tmp/debug")
        trace_id = tracer.generate_trace_id("/v1/chat/completions")
        tracer.save_debug(trace_id, "1_inbound.json", body)
    """

    def __init__(self, debug_dir: str | Path | None = None):
        self._request_counter = 0
        self._session_id: str | None = None
        self._debug_dir_config = debug_dir

    @property
    def debug_dir(self) -> Path | None:
        """Get the debug directory path, creating session folder on first access."""
        if not self._debug_dir_config:
            return None

        if self._session_id is None:
            self._session_id = time.strftime("%Y-%m-%d_%H-%M-%S")

        return Path(self._debug_dir_config) / "logs" / self._session_id

    def generate_trace_id(self, path: str) -> str:
        """Generate a human-readable trace ID with sequence number and route.

        Format: {counter}_{hhmmss}_{route}
        Example: 00001_031333_v1_chat_completions
        """
        self._request_counter += 1
        timestamp = time.strftime("%H%M%S")

        route = "_".join(part for part in path.strip("/").split("/") if part)
        route = "".join(c if c.isalnum() or c == "_" else "" for c in route)[:40] or "root"

        return f"{self._request_counter:05d}_{timestamp}_{route}"

    def save_debug(self, trace_id: str, filename: str, data: Any) -> None:
        """Save debug data to JSON file if debug_dir is configured."""
        if not self.debug_dir:
            return

        try:
            trace_path = self.debug_dir / trace_id
            trace_path.mkdir(parents=True, exist_ok=True)

            filepath = trace_path / filename
            with open(filepath, "w") as f:
                json.dump(data, f, indent=2, default=str)
            logger.debug("[%s] Saved debug file: %s", trace_id, filepath)
        except Exception as e:
            logger.warning("[%s] Failed to save debug file %s: %s", trace_id, filename, e)

    def log_request(self, trace_id: str, method: str, path: str, body_size: int) -> None:
        logger.debug(
            "[%s] request_start: method=%s, path=%s, body_size=%d",
            trace_id,
            method,
            path,
            body_size,
        )

    def log_response(
        self,
        trace_id: str,
        status_code: int,
        duration_s: float,
        response_size: int = 0,
        error: str | None = None,
    ) -> None:
        """Log a response event.

        Args:
            trace_id: Trace ID for this request.
            status_code: HTTP status code.
            duration_s: Request duration in seconds.
            response_size: Size of response body in bytes, when known.
            error: Error message if request failed.
        """
        if error:
            logger.warning(
                "[%s] request_failed: status=%d, error=%s (%.2fs)",
                trace_id,
                status_code,
                error[:100],
                duration_s,
            )
        else:
            logger.debug(
                "[%s] request_complete: status=%d, size=%d (%.2fs)",
                trace_id,
                status_code,
                response_size,
                duration_s,
            )
