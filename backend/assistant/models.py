"""
Task Model for the Todo Assistant.

Rows back the database task store. List order is explicit (``position``)
because the assistant's rules depend on it ("the first two active
tasks"), and creation time is kept in milliseconds to match the
snapshots the engine works with.
"""

from django.db import models

from .engine import Priority, Task as TaskSnapshot


class Task(models.Model):
    """
    A stored task.

    Attributes:
        id: Opaque identifier assigned at creation, never reused
        text: The task description
        completed: Whether the task is done
        created_at: Creation time in ms since epoch
        priority: low / medium / high
        ai_suggestion: Optional note attached by the assistant
        position: Zero-based index in the user's list
    """

    PRIORITY_CHOICES = [(priority.value, priority.value.title()) for priority in Priority]

    id = models.CharField(max_length=100, primary_key=True)
    text = models.TextField(help_text="Task description")
    completed = models.BooleanField(default=False)
    created_at = models.BigIntegerField(help_text="Creation time in ms since epoch")
    priority = models.CharField(
        max_length=10,
        choices=PRIORITY_CHOICES,
        default=Priority.MEDIUM.value,
    )
    ai_suggestion = models.TextField(null=True, blank=True)
    position = models.PositiveIntegerField(default=0, db_index=True)

    class Meta:
        ordering = ['position', 'created_at']

    def __str__(self):
        return f"{self.text} ({self.priority})"

    def to_snapshot(self) -> TaskSnapshot:
        return TaskSnapshot(
            id=self.id,
            text=self.text,
            created_at=self.created_at,
            completed=self.completed,
            priority=Priority(self.priority),
            ai_suggestion=self.ai_suggestion,
        )

    @classmethod
    def from_snapshot(cls, task: TaskSnapshot, position: int) -> 'Task':
        return cls(
            id=task.id,
            text=task.text,
            completed=task.completed,
            created_at=task.created_at,
            priority=task.priority.value,
            ai_suggestion=task.ai_suggestion,
            position=position,
        )
