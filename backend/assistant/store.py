"""
Task stores: the collaborator that owns the canonical task list.

The engine only ever sees snapshots from ``snapshot()`` and hands back
whole lists through ``replace()``. The list operations the user performs
directly (add, toggle, delete, reorder) are expressed on top of those
two primitives, so every change goes through the same atomic swap.
"""

import logging
from dataclasses import replace as replace_task
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from django.db import transaction

from .engine import Priority, Task, new_task_id, now_ms
from .exceptions import InvalidOrderError, TaskNotFoundError
from .models import Task as TaskRecord


logger = logging.getLogger(__name__)


class BaseTaskStore:
    """Common list operations; subclasses provide snapshot() and replace()."""

    def snapshot(self) -> List[Task]:
        raise NotImplementedError

    def replace(self, tasks: Sequence[Task]) -> None:
        raise NotImplementedError

    def get(self, task_id: str) -> Task:
        for task in self.snapshot():
            if task.id == task_id:
                return task
        raise TaskNotFoundError(task_id)

    def add(
        self,
        text: str,
        priority: Priority = Priority.MEDIUM,
        now: Optional[int] = None
    ) -> Task:
        """Append a new task with a fresh id and the current time."""
        task = Task(
            id=new_task_id(),
            text=text.strip(),
            created_at=now if now is not None else now_ms(),
            priority=priority,
        )
        self.replace(self.snapshot() + [task])
        return task

    def toggle(self, task_id: str) -> Task:
        """Flip a task's completion state."""
        tasks = self.snapshot()
        for index, task in enumerate(tasks):
            if task.id == task_id:
                tasks[index] = replace_task(task, completed=not task.completed)
                self.replace(tasks)
                return tasks[index]
        raise TaskNotFoundError(task_id)

    def delete(self, task_id: str) -> None:
        tasks = self.snapshot()
        remaining = [task for task in tasks if task.id != task_id]
        if len(remaining) == len(tasks):
            raise TaskNotFoundError(task_id)
        self.replace(remaining)

    def reorder(self, task_ids: Sequence[str]) -> List[Task]:
        """
        Put the tasks in the order given by ``task_ids``.

        Raises:
            InvalidOrderError: unless ``task_ids`` names every stored task once
        """
        by_id = {task.id: task for task in self.snapshot()}
        if len(task_ids) != len(by_id) or set(task_ids) != set(by_id):
            raise InvalidOrderError("Reorder must list every task id exactly once")

        reordered = [by_id[task_id] for task_id in task_ids]
        self.replace(reordered)
        return reordered


class InMemoryTaskStore(BaseTaskStore):
    """List-backed store for tests and embedding callers."""

    def __init__(self, tasks: Optional[Sequence[Task]] = None):
        self._tasks: List[Task] = list(tasks or [])

    def snapshot(self) -> List[Task]:
        return list(self._tasks)

    def replace(self, tasks: Sequence[Task]) -> None:
        self._tasks = list(tasks)


class DatabaseTaskStore(BaseTaskStore):
    """Store backed by the ``assistant.Task`` model."""

    def snapshot(self) -> List[Task]:
        return [record.to_snapshot() for record in TaskRecord.objects.all()]

    def replace(self, tasks: Sequence[Task]) -> None:
        """Swap the whole list in one transaction."""
        with transaction.atomic():
            TaskRecord.objects.all().delete()
            TaskRecord.objects.bulk_create([
                TaskRecord.from_snapshot(task, position)
                for position, task in enumerate(tasks)
            ])
        logger.info("Task store replaced with %d task(s)", len(tasks))


def day_key(timestamp_ms: int) -> str:
    """UTC calendar day (YYYY-MM-DD) of a millisecond timestamp."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date().isoformat()


def group_by_day(tasks: Sequence[Task]) -> Dict[str, List[Task]]:
    """Bucket tasks by the calendar day they were created, keeping list order."""
    grouped: Dict[str, List[Task]] = {}
    for task in tasks:
        grouped.setdefault(day_key(task.created_at), []).append(task)
    return grouped
