"""
Exceptions raised by the assistant's collaborator-facing layers.

The analysis engine itself never raises; these cover misuse of the
pending-change flow and lookups against the task store.
"""

from enum import Enum


class ErrorCode(Enum):
    """Error codes used in API responses."""
    SUCCESS = "SUCCESS"
    ERR_INVALID_TASKS = "ERR_INVALID_TASKS"
    ERR_SUGGESTION_NOT_FOUND = "ERR_SUGGESTION_NOT_FOUND"
    ERR_SUGGESTION_CHANGED = "ERR_SUGGESTION_CHANGED"
    ERR_NOT_APPLICABLE = "ERR_NOT_APPLICABLE"
    ERR_CHANGE_PENDING = "ERR_CHANGE_PENDING"
    ERR_NO_PENDING_CHANGE = "ERR_NO_PENDING_CHANGE"
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"
    ERR_INVALID_ORDER = "ERR_INVALID_ORDER"


class AssistantError(Exception):
    """Base class for assistant errors."""
    code = ErrorCode.ERR_INVALID_TASKS


class ChangePendingError(AssistantError):
    """A new change was proposed while another one awaits confirmation."""
    code = ErrorCode.ERR_CHANGE_PENDING


class NotApplicableError(AssistantError):
    """The suggestion is informational and carries no mutation."""
    code = ErrorCode.ERR_NOT_APPLICABLE


class TaskNotFoundError(AssistantError):
    """No task with the given id exists in the store."""
    code = ErrorCode.ERR_TASK_NOT_FOUND

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class InvalidOrderError(AssistantError):
    """A reorder request does not name exactly the stored task ids."""
    code = ErrorCode.ERR_INVALID_ORDER
