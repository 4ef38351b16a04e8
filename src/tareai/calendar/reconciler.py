"""Task to remote-event reconciliation.

Intent is decided from the task's due date after the mutation and whether a
link existed before it:

=============  ==========  =======
due (after)    link        intent
=============  ==========  =======
yes            no          create
yes            yes         update
no             yes         delete
no             no          noop
=============  ==========  =======

A hard-deleted task with a link is always ``delete``; without one, ``noop``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta
from typing import Any
from zoneinfo import ZoneInfo

from tareai.calendar.client import GoogleCalendarClient
from tareai.calendar.errors import (
    CalendarRequestError,
    CalendarSyncError,
    NotConnected,
    SyncFailed,
)
from tareai.calendar.links import TaskEventLinkStore
from tareai.calendar.models import ReconcileResult, SyncIntent, TaskEventLink, TaskSnapshot
from tareai.config import CalendarSyncConfig
from tareai.core.metrics import calendar_metrics

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], GoogleCalendarClient]


def compute_intent(*, has_due_date: bool, has_link: bool, deleted: bool = False) -> SyncIntent:
    if deleted:
        return SyncIntent.DELETE if has_link else SyncIntent.NOOP
    if has_due_date:
        return SyncIntent.UPDATE if has_link else SyncIntent.CREATE
    return SyncIntent.DELETE if has_link else SyncIntent.NOOP


def build_event_body(task: TaskSnapshot, config: CalendarSyncConfig) -> dict[str, Any]:
    """Build an ``events`` resource body for a task with a due date."""
    if task.due_date is None:
        raise ValueError(f"task {task.id!r} has no due date")
    tz = ZoneInfo(config.timezone)
    start = task.due_date.astimezone(tz)
    end = start + timedelta(minutes=config.event_duration_minutes)
    body: dict[str, Any] = {
        "summary": task.title,
        "start": {"dateTime": start.isoformat(), "timeZone": config.timezone},
        "end": {"dateTime": end.isoformat(), "timeZone": config.timezone},
    }
    if task.description:
        body["description"] = task.description
    return body


class TaskEventReconciler:
    """Bring one task's remote event into agreement with its due-date state.

    Parameters
    ----------
    links:
        Link store; the only state this class persists.
    client_factory:
        Builds a request-scoped :class:`GoogleCalendarClient` for a user id.
    config:
        Event duration, time zone and target calendar.
    """

    def __init__(
        self,
        links: TaskEventLinkStore,
        client_factory: ClientFactory,
        config: CalendarSyncConfig,
    ) -> None:
        self._links = links
        self._client_factory = client_factory
        self._config = config

    async def reconcile(
        self,
        user_id: str,
        before: TaskSnapshot | None,
        after: TaskSnapshot | None,
        *,
        deleted: bool = False,
    ) -> ReconcileResult:
        """Apply one reconciliation attempt.

        Raises
        ------
        SyncFailed
            When the provider rejects the change (other than not-found), or
            a token/transport failure prevents it.
        """
        task = after or before
        if task is None:
            raise ValueError("reconcile needs at least one of before/after")
        deleted = deleted or after is None

        link = await self._links.get(task.id)
        intent = compute_intent(
            has_due_date=bool(after is not None and after.has_due_date),
            has_link=link is not None,
            deleted=deleted,
        )

        if intent is SyncIntent.NOOP:
            return self._result(task.id, intent, "noop", link.remote_event_id if link else None)

        # A linked event lives in its owner's calendar, whoever edits the task.
        owner_id = link.user_id if link is not None else user_id
        if owner_id != user_id:
            logger.info(
                "Task %s is linked in another user's calendar; acting as owner %s",
                task.id,
                owner_id,
            )
        client = self._client_factory(owner_id)
        try:
            await client.session.credential()
        except NotConnected:
            if intent is SyncIntent.DELETE and deleted and link is not None:
                await self._links.delete(task.id)
                logger.info(
                    "Calendar not connected; dropped dangling link for deleted task %s",
                    task.id,
                )
            else:
                logger.info(
                    "Calendar not connected; skipping %s for task %s", intent.value, task.id
                )
            return self._result(task.id, intent, "not_connected", None)

        try:
            if intent is SyncIntent.CREATE:
                assert after is not None
                return await self._create(client, user_id, after)
            if intent is SyncIntent.UPDATE:
                assert after is not None and link is not None
                return await self._update(client, after, link)
            assert link is not None
            return await self._delete(client, task.id, link)
        except SyncFailed:
            calendar_metrics.record_reconcile(intent.value, "failed")
            raise
        except CalendarSyncError as exc:
            calendar_metrics.record_reconcile(intent.value, "failed")
            raise SyncFailed(f"{intent.value} failed for task {task.id}: {exc}") from exc

    async def _create(
        self,
        client: GoogleCalendarClient,
        user_id: str,
        task: TaskSnapshot,
    ) -> ReconcileResult:
        calendar_id = self._config.default_calendar_id
        event_id = await client.insert_event(calendar_id, build_event_body(task, self._config))
        await self._links.upsert(
            task_id=task.id,
            user_id=user_id,
            remote_event_id=event_id,
            calendar_id=calendar_id,
        )
        logger.info("Created calendar event for task %s", task.id)
        return self._result(task.id, SyncIntent.CREATE, "applied", event_id)

    async def _update(
        self,
        client: GoogleCalendarClient,
        task: TaskSnapshot,
        link: TaskEventLink,
    ) -> ReconcileResult:
        body = build_event_body(task, self._config)
        try:
            await client.patch_event(link.calendar_id, link.remote_event_id, body)
        except CalendarRequestError as exc:
            if not exc.not_found:
                raise
            # Event removed on the provider side; recreate it and relink.
            event_id = await client.insert_event(link.calendar_id, body)
            await self._links.upsert(
                task_id=task.id,
                user_id=link.user_id,
                remote_event_id=event_id,
                calendar_id=link.calendar_id,
            )
            logger.info(
                "Linked calendar event missing for task %s (status=%d); recreated",
                task.id,
                exc.status_code,
            )
            return self._result(task.id, SyncIntent.UPDATE, "self_healed", event_id)

        await self._links.touch(task.id)
        logger.info("Updated calendar event for task %s", task.id)
        return self._result(task.id, SyncIntent.UPDATE, "applied", link.remote_event_id)

    async def _delete(
        self,
        client: GoogleCalendarClient,
        task_id: str,
        link: TaskEventLink,
    ) -> ReconcileResult:
        removed = await client.delete_event(link.calendar_id, link.remote_event_id)
        await self._links.delete(task_id)
        logger.info(
            "Deleted calendar event for task %s (%s)",
            task_id,
            "removed" if removed else "already gone",
        )
        return self._result(task_id, SyncIntent.DELETE, "applied", link.remote_event_id)

    def _result(
        self,
        task_id: str,
        intent: SyncIntent,
        outcome: str,
        remote_event_id: str | None,
    ) -> ReconcileResult:
        calendar_metrics.record_reconcile(intent.value, outcome)
        return ReconcileResult(
            task_id=task_id,
            intent=intent,
            outcome=outcome,
            remote_event_id=remote_event_id,
        )
