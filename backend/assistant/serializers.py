"""
Serializers for task snapshots.

Incoming task records are validated for type, then repaired rather than
rejected: missing ids, creation times, completion flags and priorities
are filled in by ``normalize_task``.
"""

from typing import List

from rest_framework import serializers

from .engine import Priority, Task, normalize_task, now_ms
from .suggestions import SuggestionType


PRIORITY_CHOICES = [(priority.value, priority.value.title()) for priority in Priority]


class TaskSerializer(serializers.Serializer):
    """
    Serializer for a single task record in a snapshot.

    Only ``text`` is required; everything else has a default.
    """

    id = serializers.CharField(max_length=100, required=False, allow_blank=True, allow_null=True)
    text = serializers.CharField(allow_blank=True, trim_whitespace=False)
    completed = serializers.BooleanField(required=False, allow_null=True)
    created_at = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    priority = serializers.ChoiceField(choices=PRIORITY_CHOICES, required=False, allow_null=True)
    ai_suggestion = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class TaskSnapshotSerializer(serializers.Serializer):
    """
    Serializer for a whole task list, as sent for a stateless preview.
    """

    tasks = serializers.ListField(child=TaskSerializer(), allow_empty=True)
    now = serializers.IntegerField(required=False, min_value=0)

    def validate_tasks(self, value):
        """Ensure ids, where given, are unique."""
        ids = [task['id'] for task in value if task.get('id')]
        if len(ids) != len(set(ids)):
            raise serializers.ValidationError("Task ids must be unique")
        return value

    def to_tasks(self) -> List[Task]:
        now = self.validated_data.get('now') or now_ms()
        return [normalize_task(task, now) for task in self.validated_data['tasks']]


class TaskCreateSerializer(serializers.Serializer):
    """
    Serializer for adding a task to the store.
    """

    text = serializers.CharField(max_length=1000)
    priority = serializers.ChoiceField(choices=PRIORITY_CHOICES, default=Priority.MEDIUM.value)

    def validate_text(self, value):
        """Ensure text is not empty or just whitespace."""
        if not value or not value.strip():
            raise serializers.ValidationError("Task text cannot be empty")
        return value.strip()


class ApplySuggestionSerializer(serializers.Serializer):
    """
    Serializer for applying a suggestion by index.

    ``type`` is the type the client saw at that index; the request is
    refused if the current list puts a different suggestion there.
    """

    type = serializers.ChoiceField(
        choices=[suggestion_type.value for suggestion_type in SuggestionType],
        required=False
    )


class ReorderSerializer(serializers.Serializer):
    """
    Serializer for a reorder request: every task id in the new order.
    """

    ids = serializers.ListField(child=serializers.CharField(max_length=100), allow_empty=True)
