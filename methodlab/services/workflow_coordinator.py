"""
Workflow coordinator for the Method Card pipeline.

Runs Draft Stage then QC/Finalize Stage for one user session with:
- Input validation before any external call
- A single in-flight run (re-submission while busy is rejected)
- Snapshot publication on every state transition (for SSE progress)
- Atomic settlement: final and report appear together or not at all
- Cancellation of the in-flight run

State machine:
    IDLE --submit--> DRAFTING --draft ok--> REVIEWING --qc ok--> IDLE (success)
                        |                       |
                        +--------- error -------+--> IDLE (error)
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from methodlab.config import settings
from methodlab.errors import GenerationCancelled, GenerationError, WorkflowBusyError
from methodlab.models import (
    IDLE_SNAPSHOT,
    AppLanguage,
    AuditReport,
    GenerationParameters,
    MethodDocument,
    WorkflowRun,
    WorkflowSnapshot,
    WorkflowStep,
)
from methodlab.services.draft_stage import DraftStage
from methodlab.services.qc_stage import QCStage

logger = logging.getLogger(__name__)


# Single user-facing failure message; the cause is logged
USER_FACING_ERRORS = {
    AppLanguage.VI: "Hệ thống đang bận hoặc dữ liệu quá phức tạp. Thử lại sau.",
    AppLanguage.EN: "Workflow failed. Try again.",
}


class WorkflowCoordinator:
    """
    Orchestrates the two-stage Method Card workflow.

    The coordinator is the only writer of its WorkflowRun; readers get
    immutable WorkflowSnapshot copies via current() or subscribe().
    """

    def __init__(
        self,
        draft_stage: Optional[DraftStage] = None,
        qc_stage: Optional[QCStage] = None,
        expose_error_details: Optional[bool] = None,
    ):
        """
        Initialize coordinator with its stages.

        Args:
            draft_stage: Draft Stage (default builds its own Gemini client)
            qc_stage: QC/Finalize Stage (default builds its own Gemini client)
            expose_error_details: Include the failure cause in snapshots
                (default from settings)
        """
        self.draft_stage = draft_stage or DraftStage()
        self.qc_stage = qc_stage or QCStage(self.draft_stage.gemini_service)
        if expose_error_details is None:
            expose_error_details = settings.expose_error_details
        self.expose_error_details = expose_error_details

        self._run: Optional[WorkflowRun] = None
        self._task: Optional[asyncio.Task] = None
        self._subscribers: List[asyncio.Queue] = []

    # =========================================================================
    # READERS
    # =========================================================================

    def current(self) -> WorkflowSnapshot:
        """Latest snapshot of the run (IDLE_SNAPSHOT before the first run)."""
        if self._run is None:
            return IDLE_SNAPSHOT
        return self._run.snapshot()

    @property
    def is_busy(self) -> bool:
        return self._run is not None and self._run.step != WorkflowStep.IDLE

    def subscribe(self) -> asyncio.Queue:
        """Queue receiving a snapshot on every transition, starting with the current one."""
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self.current())
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def submit(self, params: GenerationParameters) -> WorkflowSnapshot:
        """
        Start a run in the background.

        Must be called from within a running event loop.

        Returns:
            The DRAFTING snapshot of the new run

        Raises:
            InputValidationError: If analyte or matrix is blank (no state change)
            WorkflowBusyError: If a run is already drafting or reviewing
        """
        params.validate()
        if self.is_busy:
            raise WorkflowBusyError(
                f"Run {self._run.run_id} is still {self._run.step.value}"
            )

        run = WorkflowRun(run_id=uuid.uuid4().hex, parameters=params)
        self._run = run
        self._transition(run, WorkflowStep.DRAFTING)
        logger.info(f"Run {run.run_id}: started for {params.analyte} / {params.matrix}")

        self._task = asyncio.create_task(self._execute(run))
        self._task.add_done_callback(lambda task: self._on_task_done(run, task))
        return run.snapshot()

    async def run(self, params: GenerationParameters) -> WorkflowSnapshot:
        """Start a run and wait until it settles."""
        self.submit(params)
        return await self.wait()

    async def wait(self) -> WorkflowSnapshot:
        """Wait for the in-flight run (if any) to settle."""
        task = self._task
        if task is not None and not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                # Only swallow the run's own cancellation, not the waiter's
                if not task.cancelled():
                    raise
        return self.current()

    def cancel(self) -> bool:
        """
        Cancel the in-flight run at its current await point.

        Returns:
            True if a run was cancelled
        """
        if self._task is None or self._task.done():
            return False
        logger.info(f"Run {self._run.run_id}: cancellation requested")
        self._task.cancel()
        return True

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def _execute(self, run: WorkflowRun) -> None:
        try:
            draft = await self.draft_stage.draft(run.parameters)

            # QC needs the complete draft; it is only issued after drafting succeeded
            run.draft = draft
            self._transition(run, WorkflowStep.REVIEWING)

            report, final = await self.qc_stage.review_and_finalize(
                draft, run.parameters.language
            )
        except asyncio.CancelledError as e:
            self._fail(run, GenerationCancelled(
                "Run cancelled", stage=run.step.value, cause=e
            ))
        except GenerationError as e:
            self._fail(run, e)
        except Exception as e:
            logger.exception(f"Run {run.run_id}: unexpected failure during {run.step.value}")
            self._fail(run, e)
        else:
            self._complete(run, report, final)

    def _on_task_done(self, run: WorkflowRun, task: asyncio.Task) -> None:
        # A task cancelled before its first step never reaches _execute's handlers
        if task.cancelled() and run.step != WorkflowStep.IDLE:
            self._fail(run, GenerationCancelled("Run cancelled", stage=run.step.value))

    def _transition(self, run: WorkflowRun, step: WorkflowStep) -> None:
        previous = run.step
        run.step = step
        logger.info(f"Run {run.run_id}: {previous.value} -> {step.value}")
        self._publish(run)

    def _complete(self, run: WorkflowRun, report: AuditReport, final: MethodDocument) -> None:
        # Both assigned before anyone can observe the run again
        run.report = report
        run.final = final
        run.draft = None
        run.error = None
        run.finished_at = datetime.now(timezone.utc)
        self._transition(run, WorkflowStep.IDLE)
        logger.info(
            f"Run {run.run_id}: completed (ready={report.is_ready}, "
            f"confidence={report.confidence.value})"
        )

    def _fail(self, run: WorkflowRun, error: BaseException) -> None:
        failed_step = run.step.value
        logger.error(f"Run {run.run_id}: failed during {failed_step}: {error!r}")

        run.draft = None
        run.final = None
        run.report = None
        run.error = USER_FACING_ERRORS[run.parameters.language or AppLanguage.VI]
        if self.expose_error_details:
            if isinstance(error, GenerationError):
                run.error_details = error.to_dict()
            else:
                run.error_details = {
                    "type": type(error).__name__,
                    "stage": failed_step,
                    "message": str(error),
                    "cause": None,
                }
        run.finished_at = datetime.now(timezone.utc)
        self._transition(run, WorkflowStep.IDLE)

    def _publish(self, run: WorkflowRun) -> None:
        snapshot = run.snapshot()
        for queue in list(self._subscribers):
            queue.put_nowait(snapshot)
