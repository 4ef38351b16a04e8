"""Fire-and-forget reconciliation on task mutations.

The mutation path calls :meth:`SyncTrigger.submit` once both task states are
known and returns to its caller immediately.  Exactly one reconciliation is
attempted per mutation; failures are logged and counted, never raised into
the mutation path.
"""

from __future__ import annotations

import asyncio
import logging

from tareai.calendar.errors import CalendarSyncError
from tareai.calendar.models import ReconcileResult, TaskSnapshot
from tareai.calendar.reconciler import TaskEventReconciler
from tareai.core.logging import set_user_context
from tareai.core.metrics import calendar_metrics

logger = logging.getLogger(__name__)


class SyncTrigger:
    """Schedules background reconciliations and keeps them referenced until done."""

    def __init__(self, reconciler: TaskEventReconciler) -> None:
        self._reconciler = reconciler
        self._pending: set[asyncio.Task[ReconcileResult]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def submit(
        self,
        user_id: str,
        before: TaskSnapshot | None,
        after: TaskSnapshot | None,
        *,
        deleted: bool = False,
    ) -> asyncio.Task[ReconcileResult]:
        """Start one reconciliation in the background and return its task."""
        task_ref = after or before
        task_id = task_ref.id if task_ref is not None else "?"
        task = asyncio.create_task(
            self._run(user_id, before, after, deleted=deleted),
            name=f"calendar-sync-{task_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def task_created(self, user_id: str, task: TaskSnapshot) -> asyncio.Task[ReconcileResult]:
        return self.submit(user_id, None, task)

    def task_updated(
        self,
        user_id: str,
        before: TaskSnapshot | None,
        after: TaskSnapshot,
    ) -> asyncio.Task[ReconcileResult]:
        return self.submit(user_id, before, after)

    def task_deleted(self, user_id: str, task: TaskSnapshot) -> asyncio.Task[ReconcileResult]:
        return self.submit(user_id, task, None, deleted=True)

    async def drain(self, timeout_s: float | None = None) -> None:
        """Wait for every pending reconciliation (shutdown and tests)."""
        if not self._pending:
            return
        _, still_pending = await asyncio.wait(list(self._pending), timeout=timeout_s)
        if still_pending:
            logger.warning(
                "Calendar sync drain timed out after %.1fs; %d job(s) still pending",
                timeout_s,
                len(still_pending),
            )

    async def _run(
        self,
        user_id: str,
        before: TaskSnapshot | None,
        after: TaskSnapshot | None,
        *,
        deleted: bool,
    ) -> ReconcileResult:
        set_user_context(user_id)
        return await self._reconciler.reconcile(user_id, before, after, deleted=deleted)

    def _on_done(self, task: asyncio.Task[ReconcileResult]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Calendar sync job %s was cancelled", task.get_name())
            return

        exc = task.exception()
        if exc is None:
            result = task.result()
            logger.info(
                "Calendar sync finished: task_id=%s intent=%s outcome=%s",
                result.task_id,
                result.intent.value,
                result.outcome,
            )
            return

        calendar_metrics.record_trigger_failure()
        if isinstance(exc, CalendarSyncError):
            logger.warning("Calendar sync failed for %s: %s", task.get_name(), exc)
        else:
            logger.error(
                "Unexpected error in calendar sync job %s",
                task.get_name(),
                exc_info=exc,
            )
