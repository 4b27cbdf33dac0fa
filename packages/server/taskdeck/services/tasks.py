"""
Task service layer: ordering and status bookkeeping.

Handles:
- Drag-and-drop reorder with neighbor verification
- Column rebalance when the key space between two neighbors runs out
- Appending to the end of a column (create, column change on edit)
- Completion timestamp on moves into and out of ``done``
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from taskdeck.core import positions
from taskdeck.core.config import Settings, get_settings
from taskdeck.core.errors import PositionSpaceExhausted, ReorderConflict, TaskNotFound
from taskdeck.core.ports import TaskStore
from taskdeck.models.task import Task
from taskdeck_shared.schemas.common import TaskStatus
from taskdeck_shared.schemas.tasks import TaskReorder

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def status_fields(
    old_status: str, new_status: str, now: Optional[datetime] = None
) -> dict[str, Any]:
    """Fields to write when a task changes column. Empty when it does not."""
    if new_status == old_status:
        return {}
    fields: dict[str, Any] = {"status": new_status}
    if new_status == TaskStatus.DONE.value:
        fields["completed_at"] = now or datetime.now(timezone.utc)
    elif old_status == TaskStatus.DONE.value:
        fields["completed_at"] = None  # reopen
    return fields


def _remap_neighbors(
    old_keys: list[str],
    new_keys: list[str],
    before_key: Optional[str],
    after_key: Optional[str],
) -> tuple[Optional[str], Optional[str]]:
    """Translate neighbor keys into the keys their tasks hold after a rebalance."""
    values = [positions.parse_key(k) for k in old_keys]

    before = None
    if before_key is not None:
        bound = positions.parse_key(before_key)
        index = sum(1 for v in values if v <= bound)
        before = new_keys[index - 1] if index > 0 else None

    after = None
    if after_key is not None:
        bound = positions.parse_key(after_key)
        index = sum(1 for v in values if v < bound)
        after = new_keys[index] if index < len(new_keys) else None

    return before, after


async def rebalance_column(tasks: TaskStore, column: list[Task]) -> list[str]:
    """Rewrite a column with evenly spaced keys in one write. Returns the new keys."""
    new_keys = positions.rebalance(len(column))
    await tasks.update_positions({t.id: key for t, key in zip(column, new_keys)})
    log.info(
        "reorder.rebalanced",
        column_size=len(column),
        organization_id=str(column[0].organization_id) if column else None,
    )
    return new_keys


async def append_position(
    tasks: TaskStore,
    organization_id: uuid.UUID,
    status: str,
    exclude: Optional[uuid.UUID] = None,
) -> str:
    """Key placing a task after every other task in a column."""
    column = [t for t in await tasks.list_column(organization_id, status) if t.id != exclude]
    if not column:
        return positions.initial_key()
    try:
        return positions.allocate(column[-1].position, None)
    except PositionSpaceExhausted:
        new_keys = await rebalance_column(tasks, column)
        return positions.allocate(new_keys[-1], None)


# ---------------------------------------------------------------------------
# Reorder
# ---------------------------------------------------------------------------


class ReorderCoordinator:
    """
    Compute and persist a dragged task's new position.

    The position, status, completion timestamp and any column rebalance go
    out in a single ``TaskStore.update`` call, so a failed write leaves the
    task and its column where they were.
    """

    def __init__(self, tasks: TaskStore, settings: Settings | None = None):
        self._tasks = tasks
        self._settings = settings or get_settings()

    async def reorder(
        self,
        task_id: uuid.UUID,
        request: TaskReorder,
        organization_id: uuid.UUID,
    ) -> Task:
        """
        Move a task between two neighbors, optionally into another column.

        Raises:
            TaskNotFound: unknown task, or one from another organization
            ReorderConflict: the neighbor keys are not adjacent in the column
        """
        task = await self._tasks.get_by_id(task_id)
        if task is None or task.organization_id != organization_id:
            raise TaskNotFound(f"Task {task_id} not found")

        old_status = task.status
        target = request.status.value if request.status is not None else task.status
        before_key = request.before_position
        after_key = request.after_position

        column: Optional[list[Task]] = None
        if self._settings.reorder_verify_neighbors:
            column = await self._column_without(task, target)
            self._verify_neighbors(column, before_key, after_key)

        rewrites: dict[uuid.UUID, str] = {}
        try:
            position = positions.allocate(before_key, after_key)
        except PositionSpaceExhausted:
            if column is None:
                column = await self._column_without(task, target)
            old_keys = [t.position for t in column]
            new_keys = positions.rebalance(len(column))
            rewrites = {t.id: key for t, key in zip(column, new_keys)}
            before_key, after_key = _remap_neighbors(old_keys, new_keys, before_key, after_key)
            position = positions.allocate(before_key, after_key)
            log.info(
                "reorder.rebalanced",
                column_size=len(column),
                organization_id=str(organization_id),
            )

        fields: dict[str, Any] = {"position": position}
        fields.update(status_fields(old_status, target))

        # The column rewrite and the move commit together or not at all
        updated = await self._tasks.update(task_id, fields, positions=rewrites or None)
        log.info(
            "reorder.applied",
            task_id=str(task_id),
            from_status=old_status,
            to_status=target,
            position=position,
        )
        return updated

    async def _column_without(self, task: Task, status: str) -> list[Task]:
        column = await self._tasks.list_column(task.organization_id, status)
        return [t for t in column if t.id != task.id]

    @staticmethod
    def _verify_neighbors(
        column: list[Task], before_key: Optional[str], after_key: Optional[str]
    ) -> None:
        keys = [t.position for t in column]

        if before_key is not None and before_key not in keys:
            raise ReorderConflict(f"Unknown neighbor position {before_key!r}")
        if after_key is not None and after_key not in keys:
            raise ReorderConflict(f"Unknown neighbor position {after_key!r}")

        if before_key is None and after_key is None:
            if keys:
                raise ReorderConflict("Column is not empty; a neighbor is required")
            return
        if before_key is None:
            if keys.index(after_key) != 0:
                raise ReorderConflict(f"{after_key!r} is not the first task in the column")
            return
        if after_key is None:
            if keys.index(before_key) != len(keys) - 1:
                raise ReorderConflict(f"{before_key!r} is not the last task in the column")
            return

        if keys.index(after_key) != keys.index(before_key) + 1:
            raise ReorderConflict(
                f"{before_key!r} and {after_key!r} are not adjacent in the column"
            )
