"""
Pending-change arbiter.

Holds at most one proposed replacement of the task list. A proposal is
either confirmed (the store adopts it), cancelled (the store is left
alone) or, when nobody acts within the timeout, confirmed automatically.

State Machine:
-------------
    Idle --begin_pending--> Pending(deadline)
    Pending --confirm / timeout--> Idle   (store.replace(proposed))
    Pending --cancel-->            Idle   (proposal discarded)

The countdown is a one-shot timer that runs on its own thread, so every
transition happens under a lock and a timer only confirms the episode
it was started for.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Union

from .engine import Task, normalize_tasks
from .exceptions import ChangePendingError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


class TaskSink(Protocol):
    """Anything that can adopt a task list wholesale."""

    def replace(self, tasks: Sequence[Task]) -> None:
        ...


class Timer(Protocol):
    def start(self) -> None:
        ...

    def cancel(self) -> None:
        ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


def thread_timer(interval: float, callback: Callable[[], None]) -> Timer:
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


@dataclass(frozen=True)
class Idle:
    """No change awaits confirmation."""


@dataclass(frozen=True)
class Pending:
    """A proposed list awaiting confirmation until ``deadline`` (epoch seconds)."""
    original_tasks: List[Task]
    proposed_tasks: List[Task]
    deadline: float
    episode: int = 0


ArbiterState = Union[Idle, Pending]


class PendingChangeArbiter:
    """
    Single-slot holder for a proposed task list.

    Args:
        store: Receives the proposed list on confirm or timeout
        timeout: Seconds before a pending change confirms itself
        timer_factory: Builds the one-shot countdown timer
        clock: Returns the current time in seconds (for deadlines)
    """

    def __init__(
        self,
        store: TaskSink,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        timer_factory: Optional[TimerFactory] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.timeout = timeout
        self._timer_factory = timer_factory or thread_timer
        self._clock = clock
        self._lock = threading.Lock()
        self._state: ArbiterState = Idle()
        self._timer: Optional[Timer] = None
        self._episodes = 0

    @property
    def state(self) -> ArbiterState:
        return self._state

    @property
    def is_pending(self) -> bool:
        return isinstance(self._state, Pending)

    def begin_pending(
        self,
        original: Sequence[Task],
        proposed: Sequence[Task]
    ) -> Pending:
        """
        Hold ``proposed`` as the pending replacement of ``original``.

        Proposed tasks are normalized so every field is populated.

        Raises:
            ChangePendingError: if a change is already pending
        """
        with self._lock:
            if isinstance(self._state, Pending):
                raise ChangePendingError("A change is already awaiting confirmation")

            self._episodes += 1
            pending = Pending(
                original_tasks=list(original),
                proposed_tasks=normalize_tasks(proposed),
                deadline=self._clock() + self.timeout,
                episode=self._episodes,
            )
            self._state = pending

            episode = pending.episode
            self._timer = self._timer_factory(self.timeout, lambda: self._expire(episode))
            self._timer.start()

        logger.info(
            "Change pending: %d -> %d task(s), auto-confirm in %.0fs",
            len(pending.original_tasks), len(pending.proposed_tasks), self.timeout,
        )
        return pending

    def confirm(self) -> bool:
        """Adopt the pending proposal. Returns False when nothing is pending."""
        with self._lock:
            pending = self._take()
        if pending is None:
            return False

        self.store.replace(pending.proposed_tasks)
        logger.info("Change confirmed: store now holds %d task(s)", len(pending.proposed_tasks))
        return True

    def cancel(self) -> bool:
        """Discard the pending proposal. Returns False when nothing is pending."""
        with self._lock:
            pending = self._take()
        if pending is None:
            return False

        logger.info("Change cancelled: %d proposed task(s) discarded", len(pending.proposed_tasks))
        return True

    def seconds_remaining(self) -> float:
        state = self._state
        if not isinstance(state, Pending):
            return 0.0
        return max(0.0, state.deadline - self._clock())

    def _take(self) -> Optional[Pending]:
        """Move to Idle and return the previous pending state. Caller holds the lock."""
        state = self._state
        if not isinstance(state, Pending):
            return None

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._state = Idle()
        return state

    def _expire(self, episode: int) -> None:
        with self._lock:
            state = self._state
            if not isinstance(state, Pending) or state.episode != episode:
                return
            self._timer = None
            self._state = Idle()

        # Runs on the timer thread; nothing above it can see the error
        try:
            self.store.replace(state.proposed_tasks)
        except Exception:
            logger.exception(
                "Auto-confirm failed; %d proposed task(s) discarded",
                len(state.proposed_tasks),
            )
            return
        logger.info("Change auto-confirmed after %.0fs timeout", self.timeout)


# ==================== Change summary ====================

@dataclass
class TaskChange:
    """Differences between a task and its proposed replacement."""
    task: Task
    changes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {'task': self.task.to_dict(), 'changes': list(self.changes)}


@dataclass
class ChangeSet:
    """What a proposal would do to the current list."""
    modified: List[TaskChange] = field(default_factory=list)
    added: List[Task] = field(default_factory=list)
    removed: List[Task] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.modified or self.added or self.removed)

    def to_dict(self) -> Dict:
        return {
            'modified': [change.to_dict() for change in self.modified],
            'added': [task.to_dict() for task in self.added],
            'removed': [task.to_dict() for task in self.removed],
        }


def describe_changes(original: Sequence[Task], proposed: Sequence[Task]) -> ChangeSet:
    """
    Summarize a proposal for display before it is confirmed.

    Tasks are matched by id. Text, priority and completion differences
    are listed per task; unmatched ids show up as added or removed.
    """
    original_by_id = {task.id: task for task in original}
    proposed_ids = {task.id for task in proposed}
    change_set = ChangeSet()

    for task in proposed:
        before = original_by_id.get(task.id)
        if before is None:
            change_set.added.append(task)
            continue

        changes = []
        if before.text != task.text:
            changes.append(f'文本: "{before.text}" → "{task.text}"')
        if before.priority != task.priority:
            changes.append(f"优先级: {before.priority.value} → {task.priority.value}")
        if before.completed != task.completed:
            changes.append('已完成' if task.completed else '未完成')
        if changes:
            change_set.modified.append(TaskChange(task, changes))

    change_set.removed = [task for task in original if task.id not in proposed_ids]
    return change_set
