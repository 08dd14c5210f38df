"""Model acquisition state machine.

Makes sure the configured model is present on the backend:

    IDLE -> CHECKING -> COMPLETED                                  (already present)
    IDLE -> CHECKING -> DOWNLOADING -> VERIFYING -> COMPLETED      (pulled)

Any failure moves to ERROR; the whole sequence is retried up to
max_attempts times with a cooldown in between. The backend's pull stream
can end (even with "success") before the model shows up in its listing,
so a bounded wait and a backoff verification follow every pull.

All waits go through an injectable sleep so the timing can be tested
without real time passing.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from ollama_gate.acquisition.progress import ProgressStatus, ProgressStore
from ollama_gate.gateway.clients.backend_client import (
    BackendClient,
    BackendError,
    BackendTransportError,
)

logger = logging.getLogger(__name__)

MIB = 1024 * 1024

Sleep = Callable[[float], Awaitable[None]]


class AcquisitionState(Enum):
    """States of the acquisition task."""

    IDLE = "idle"
    CHECKING = "checking"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    ERROR = "error"


class AcquisitionError(Exception):
    """Raised when one acquisition attempt cannot confirm the model."""

    pass


@dataclass
class AcquisitionConfig:
    """Timing constants for acquisition (seconds unless noted)."""

    # Outer retry
    max_attempts: int = 3
    retry_cooldown: float = 10.0

    # Bounded wait after the pull stream ends
    assumed_throughput: float = 10 * MIB  # bytes per second
    wait_buffer: float = 30.0
    wait_default: float = 30.0
    wait_max: float = 300.0
    poll_interval: float = 5.0

    # Verification
    verify_initial_delay: float = 5.0
    verify_attempts: int = 10
    verify_base_delay: float = 3.0
    verify_max_delay: float = 30.0


def estimate_wait_window(completed: int, total: int, config: AcquisitionConfig) -> float:
    """How long to keep polling for the model after the pull stream ends.

    Remaining bytes at the assumed throughput plus a buffer, capped at
    wait_max. Without a known total the default window is used.
    """
    if total <= 0:
        return config.wait_default
    remaining = max(0, total - completed)
    return min(remaining / config.assumed_throughput + config.wait_buffer, config.wait_max)


def verification_delays(config: AcquisitionConfig) -> list[float]:
    """Delays before verification attempts 2..verify_attempts.

    Doubles from verify_base_delay, capped at verify_max_delay:
    3, 6, 12, 24, 30, 30, ...
    """
    delays: list[float] = []
    delay = config.verify_base_delay
    for _ in range(max(0, config.verify_attempts - 1)):
        delays.append(delay)
        delay = min(delay * 2, config.verify_max_delay)
    return delays


def should_probe_usable(attempt: int, config: AcquisitionConfig) -> bool:
    """Whether a failed listing check (1-based attempt) also runs the usability probe."""
    return attempt >= config.verify_attempts // 2


class AcquisitionManager:
    """Runs the acquisition state machine as one background task.

    Example:
        manager = AcquisitionManager(client, store)
        manager.start()
        ...
        await manager.stop()
    """

    def __init__(
        self,
        client: BackendClient,
        store: ProgressStore,
        config: AcquisitionConfig | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.config = config or AcquisitionConfig()
        self._sleep = sleep
        self._state = AcquisitionState.IDLE
        self._task: asyncio.Task[AcquisitionState] | None = None

    @property
    def model(self) -> str:
        return self.store.model_name

    @property
    def state(self) -> AcquisitionState:
        return self._state

    def _set_state(self, state: AcquisitionState) -> None:
        if state is not self._state:
            logger.debug("Acquisition state %s -> %s", self._state.value, state.value)
        self._state = state

    def start(self) -> asyncio.Task[AcquisitionState]:
        """Launch the background task (once)."""
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="model-acquisition")
        return self._task

    async def stop(self) -> None:
        """Cancel the background task if it is still running."""
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("Model acquisition cancelled")

    async def wait(self) -> AcquisitionState:
        """Wait for the background task to reach a terminal state."""
        if self._task is None:
            return self._state
        return await self._task

    async def run(self) -> AcquisitionState:
        """Run attempts until the model is confirmed or the budget is spent.

        Failures of any kind are retried; the outcome is reported through
        the progress store and the returned state.
        """
        for attempt in range(1, self.config.max_attempts + 1):
            logger.info(
                "Acquisition attempt %d/%d for model %s",
                attempt,
                self.config.max_attempts,
                self.model,
            )
            try:
                await self._attempt()
                return self._state
            except (AcquisitionError, BackendError, BackendTransportError) as e:
                logger.warning("Acquisition attempt %d failed: %s", attempt, e)
                self._set_state(AcquisitionState.ERROR)
                self.store.update(ProgressStatus.ERROR)
            except Exception as e:
                logger.exception("Acquisition attempt %d failed unexpectedly: %s", attempt, e)
                self._set_state(AcquisitionState.ERROR)
                self.store.update(ProgressStatus.ERROR)

            if attempt < self.config.max_attempts:
                logger.info("Waiting %.0f seconds before retry...", self.config.retry_cooldown)
                await self._sleep(self.config.retry_cooldown)

        logger.error(
            "Failed to acquire model %s after %d attempts",
            self.model,
            self.config.max_attempts,
        )
        return self._state

    async def _attempt(self) -> None:
        self._set_state(AcquisitionState.CHECKING)
        logger.info("Checking if model %s is available...", self.model)
        if await self.client.model_exists(self.model):
            logger.info("Model %s is already available", self.model)
            self._complete()
            return

        logger.info("Model %s not found, starting download...", self.model)
        self._set_state(AcquisitionState.DOWNLOADING)
        self.store.update(ProgressStatus.STARTING, detail="")

        success_count = await self.client.pull_model(self.model, self.store.record_pull)
        if success_count:
            logger.info("Pull stream ended with 'success' (received %d times)", success_count)
        else:
            logger.warning("Pull stream for %s ended without 'success' status", self.model)

        if await self._wait_for_listing():
            return

        await self._verify()

    async def _wait_for_listing(self) -> bool:
        """Poll the listing while the backend finishes writing the model."""
        completed, total = self.store.byte_counters()
        window = estimate_wait_window(completed, total, self.config)
        logger.info(
            "Waiting up to %.0fs for the backend to register %s (%d MB remaining)",
            window,
            self.model,
            max(0, total - completed) // MIB,
        )

        elapsed = 0.0
        while elapsed < window:
            await self._sleep(self.config.poll_interval)
            elapsed += self.config.poll_interval
            try:
                exists = await self.client.model_exists(self.model)
            except (BackendError, BackendTransportError) as e:
                logger.debug("Listing check during wait failed: %s", e)
                continue
            if exists:
                logger.info(
                    "Model %s appeared in list during wait (after %.0fs)",
                    self.model,
                    elapsed,
                )
                self._complete()
                return True

        logger.info("Wait window of %.0fs elapsed, proceeding to verification", window)
        return False

    async def _verify(self) -> None:
        """Confirm the model with backoff, probing usability past the midpoint.

        Raises:
            AcquisitionError: If every verification attempt fails
        """
        self._set_state(AcquisitionState.VERIFYING)
        self.store.update(ProgressStatus.VERIFYING)
        logger.info(
            "Waiting %.0fs before first verification attempt...",
            self.config.verify_initial_delay,
        )
        await self._sleep(self.config.verify_initial_delay)

        delays = verification_delays(self.config)
        last_error: Exception | None = None

        for attempt in range(1, self.config.verify_attempts + 1):
            if attempt > 1:
                delay = delays[attempt - 2]
                logger.info(
                    "Verification attempt %d/%d for model %s (waiting %.0fs)...",
                    attempt,
                    self.config.verify_attempts,
                    self.model,
                    delay,
                )
                await self._sleep(delay)

            try:
                exists = await self.client.model_exists(self.model)
            except (BackendError, BackendTransportError) as e:
                logger.warning("Error verifying model %s: %s", self.model, e)
                last_error = e
                continue
            last_error = None

            if exists:
                logger.info(
                    "Model %s verified on attempt %d/%d",
                    self.model,
                    attempt,
                    self.config.verify_attempts,
                )
                self._complete()
                return

            logger.info(
                "Model %s not found in model list (attempt %d/%d)",
                self.model,
                attempt,
                self.config.verify_attempts,
            )
            if should_probe_usable(attempt, self.config):
                if await self.client.model_usable(self.model):
                    logger.info("Model %s verified as usable via API call", self.model)
                    self._complete()
                    return

        if last_error is not None:
            raise AcquisitionError(f"Failed to verify model after download: {last_error}")
        raise AcquisitionError(
            f"Model {self.model} download reported success but model is not available"
        )

    def _complete(self) -> None:
        self._set_state(AcquisitionState.COMPLETED)
        self.store.update(ProgressStatus.COMPLETED)
