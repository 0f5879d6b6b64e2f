"""Polling state machine for Meshy generation tasks."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Callable, Optional, Protocol

from healthlab.core.errors import HealthLabError, PollingError, PollingTimeout
from healthlab.core.models import TERMINAL_STATUSES, GenerationRequest, GenerationTask
from healthlab.core.settings import DEFAULT_POLL_INTERVAL_S

logger = logging.getLogger(__name__)


class TaskService(Protocol):
    async def submit(self, kind: str, request: GenerationRequest) -> GenerationTask: ...

    async def poll(self, task_id: str, source: str, endpoint_hint: Optional[str] = None) -> GenerationTask: ...


class SlotState(str, enum.Enum):
    IDLE = "IDLE"
    SUBMITTING = "SUBMITTING"
    POLLING = "POLLING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    ERROR = "ERROR"


_TERMINAL_STATES = {status: SlotState(status) for status in TERMINAL_STATUSES}


class TaskSlot:
    """Owns one generation task and the loop that polls it.

    Starting a new submission cancels the previous loop first, so at most one
    loop updates the slot at a time. The loop polls immediately after a
    successful submission and then every ``interval_s`` seconds until the
    provider reports a terminal status, a poll fails, or ``cancel`` is called.
    """

    def __init__(
        self,
        service: TaskService,
        interval_s: float = DEFAULT_POLL_INTERVAL_S,
        max_attempts: Optional[int] = None,
        on_update: Optional[Callable[[GenerationTask], None]] = None,
        on_error: Optional[Callable[[PollingError], None]] = None,
    ) -> None:
        self.service = service
        self.interval_s = interval_s
        self.max_attempts = max_attempts
        self.on_update = on_update
        self.on_error = on_error
        self.state = SlotState.IDLE
        self.task: Optional[GenerationTask] = None
        self.error: Optional[PollingError] = None
        self.poll_count = 0
        self._runner: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def is_active(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def submit(self, kind: str, request: GenerationRequest) -> GenerationTask:
        """Submit a new task and start polling it.

        If the slot is canceled or resubmitted while this submission is in
        flight, the created task is returned but not tracked or polled.
        """
        self.cancel()
        generation = self._generation
        self.state = SlotState.SUBMITTING
        try:
            task = await self.service.submit(kind, request)
        except BaseException:
            if generation == self._generation:
                self.state = SlotState.IDLE
            raise
        if generation != self._generation:
            logger.debug("Submission of task %s superseded, not polling it", task.task_id)
            return task
        self.task = task
        self.state = SlotState.POLLING
        self._emit(task)
        self._runner = asyncio.create_task(self._run(task))
        return task

    def cancel(self) -> None:
        """Stop polling and release the slot. Safe to call repeatedly."""
        self._generation += 1
        runner, self._runner = self._runner, None
        if runner is not None and not runner.done():
            runner.cancel()
            logger.debug("Polling canceled for task %s", self.task.task_id if self.task else None)
        self.state = SlotState.IDLE
        self.task = None
        self.error = None
        self.poll_count = 0

    async def wait(self) -> GenerationTask:
        """Wait for the loop to finish and return the final snapshot.

        Raises the ``PollingError`` that stopped the loop, if any.
        """
        if self._runner is not None:
            await self._runner
        if self.error is not None:
            raise self.error
        if self.task is None:
            raise PollingError("No task is being tracked.")
        return self.task

    async def _run(self, task: GenerationTask) -> None:
        while True:
            try:
                snapshot = await self.service.poll(task.task_id, task.source, task.accepted_endpoint)
            except HealthLabError as exc:
                error = PollingError(f"Status check for task {task.task_id} failed: {exc}", exc.status_code)
                error.__cause__ = exc
                self._fail(error)
                return
            self.poll_count += 1
            if not snapshot.accepted_endpoint:
                snapshot.accepted_endpoint = task.accepted_endpoint
            task = snapshot
            self.task = task
            self._emit(task)

            terminal = _TERMINAL_STATES.get(str(task.status).upper())
            if terminal is not None:
                self.state = terminal
                logger.info("Task %s finished with status %s", task.task_id, task.status)
                return

            if self.max_attempts is not None and self.poll_count >= self.max_attempts:
                self._fail(
                    PollingTimeout(f"Task {task.task_id} still {task.status} after {self.poll_count} status checks"),
                    state=SlotState.FAILED,
                )
                return

            await asyncio.sleep(self.interval_s)

    def _fail(self, error: PollingError, state: SlotState = SlotState.ERROR) -> None:
        self.error = error
        self.state = state
        logger.warning("%s", error)
        if self.on_error is not None:
            self.on_error(error)

    def _emit(self, task: GenerationTask) -> None:
        if self.on_update is not None:
            self.on_update(task)
