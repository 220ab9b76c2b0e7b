"""
Suggestion generator for the Todo Assistant.

Rules are evaluated in a fixed order over one analysis snapshot. Each
rule contributes at most one suggestion; all rules run independently,
except that an all-done list short-circuits to a single encouragement.

Rule Set:
--------
R0 all done          -> encourage  (low)     celebrate completed tasks
R1 merge similar     -> merge      (high)    fold two similar tasks into one
R2 urgent keywords   -> priority   (high)    raise urgent tasks to high
R3 dominant category -> categorize (medium)  raise low tasks of that category
R4 no high priority  -> priority   (medium)  raise the first two active tasks
R5 recurring pattern -> pattern    (medium)  raise tasks matching past habits
R6 heavy workload    -> schedule   (medium)  mark focus tasks with a tomato
R7 long descriptions -> decompose  (low)     split long tasks into parts
R8 high completion   -> encourage  (low)     mark recent achievements

Every suggestion carries a ``mutate`` callable. Mutations are pure: they
take the current list and return a new one, leaving their input alone,
so a proposal can be replayed or discarded freely.
"""

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence

from .engine import (
    DEFAULT_CONFIG,
    PRIORITY_RANK,
    EngineConfig,
    Priority,
    Task,
    TaskAnalysis,
    analyze,
    categorize,
    contains_keyword,
    normalize_tasks,
    now_ms,
)
from .exceptions import NotApplicableError
from .taxonomy import category_display_name


logger = logging.getLogger(__name__)

Mutation = Callable[[Sequence[Task]], List[Task]]

CELEBRATION_MARKER = '🎉'
ACHIEVEMENT_MARKER = '✨'
FOCUS_MARKER = '🍅'
DECOMPOSE_MARKER = '📋'
DECOMPOSE_HINT = '(建议分解)'

# Full-width/half-width comma, full stop, enumeration comma and "and" words
SPLIT_PATTERN = re.compile(r'[，,。、和与及]')


class SuggestionType(Enum):
    """Kind of change a suggestion proposes."""
    PRIORITY = "priority"
    MERGE = "merge"
    CATEGORIZE = "categorize"
    DECOMPOSE = "decompose"
    SCHEDULE = "schedule"
    PATTERN = "pattern"
    ENCOURAGE = "encourage"


@dataclass(frozen=True)
class Suggestion:
    """
    A proposed change to the task list.

    Attributes:
        text: Human-readable suggestion
        type: What kind of change is proposed
        priority: Ranking weight (independent of task priority)
        mutate: Pure function producing the proposed list, or None when
                the suggestion is informational only
    """
    text: str
    type: SuggestionType
    priority: Priority
    mutate: Optional[Mutation] = None

    @property
    def actionable(self) -> bool:
        return self.mutate is not None

    def to_dict(self) -> Dict:
        return {
            'text': self.text,
            'type': self.type.value,
            'priority': self.priority.value,
            'actionable': self.actionable,
        }


# ==================== Mutation helpers ====================

def _is_marked(text: str) -> bool:
    return CELEBRATION_MARKER in text or ACHIEVEMENT_MARKER in text


def _with_prefix(text: str, marker: str) -> str:
    return f"{marker} {text}"


def _percent(ratio: float) -> int:
    """Whole percentage, rounding halves up."""
    return int(ratio * 100 + 0.5)


def _set_priority(ids: FrozenSet[str], priority: Priority) -> Mutation:
    """Set ``priority`` on exactly the tasks whose id is in ``ids``."""
    def mutate(tasks: Sequence[Task]) -> List[Task]:
        return [
            replace(task, priority=priority) if task.id in ids else task
            for task in tasks
        ]
    return mutate


def _upgrade_low(ids: FrozenSet[str]) -> Mutation:
    """Raise low tasks in ``ids`` to medium; medium and high stay put."""
    def mutate(tasks: Sequence[Task]) -> List[Task]:
        return [
            replace(task, priority=Priority.MEDIUM)
            if task.id in ids and task.priority == Priority.LOW else task
            for task in tasks
        ]
    return mutate


def _raise_unless_high(ids: FrozenSet[str]) -> Mutation:
    def mutate(tasks: Sequence[Task]) -> List[Task]:
        return [
            replace(task, priority=Priority.HIGH)
            if task.id in ids and task.priority != Priority.HIGH else task
            for task in tasks
        ]
    return mutate


def _merge(first_id: str, second_id: str) -> Mutation:
    """Fold the second task's text into the first and drop the second."""
    def mutate(tasks: Sequence[Task]) -> List[Task]:
        by_id = {task.id: task for task in tasks}
        if first_id not in by_id or second_id not in by_id:
            return list(tasks)

        second = by_id[second_id]
        merged = []
        for task in tasks:
            if task.id == second_id:
                continue
            if task.id == first_id:
                task = replace(
                    task,
                    text=f"{task.text} + {second.text}",
                    priority=Priority.HIGH,
                )
            merged.append(task)
        return merged
    return mutate


def _mark_focus(ids: FrozenSet[str], raise_priority: bool) -> Mutation:
    """Prefix tasks in ``ids`` with the focus marker, at most once."""
    def mutate(tasks: Sequence[Task]) -> List[Task]:
        result = []
        for task in tasks:
            if task.id in ids:
                changes = {}
                if not task.text.startswith(FOCUS_MARKER):
                    changes['text'] = _with_prefix(task.text, FOCUS_MARKER)
                if raise_priority:
                    changes['priority'] = Priority.HIGH
                if changes:
                    task = replace(task, **changes)
            result.append(task)
        return result
    return mutate


def split_task(task: Task) -> List[Task]:
    """
    Split a long task on separator characters.

    Each non-empty part becomes a sub-task with id ``<id>-<index>``; the
    first keeps the original priority and the rest are medium. A task
    that does not split is kept whole with a decompose hint instead.
    """
    parts = [part.strip() for part in SPLIT_PATTERN.split(task.text)]
    parts = [part for part in parts if part]

    if len(parts) <= 1:
        return [replace(
            task,
            text=f"{_with_prefix(task.text, DECOMPOSE_MARKER)} {DECOMPOSE_HINT}",
        )]

    return [
        replace(
            task,
            id=f"{task.id}-{index}",
            text=part,
            completed=False,
            priority=task.priority if index == 0 else Priority.MEDIUM,
        )
        for index, part in enumerate(parts)
    ]


def _decompose(ids: FrozenSet[str]) -> Mutation:
    def mutate(tasks: Sequence[Task]) -> List[Task]:
        result: List[Task] = []
        for task in tasks:
            if task.id in ids:
                result.extend(split_task(task))
            else:
                result.append(task)
        return result
    return mutate


def _celebrate_completed(tasks: Sequence[Task]) -> List[Task]:
    return [
        replace(task, text=_with_prefix(task.text, CELEBRATION_MARKER))
        if task.completed and not _is_marked(task.text) else task
        for task in tasks
    ]


def _mark_recent_achievements(now: int, window_ms: int) -> Mutation:
    def mutate(tasks: Sequence[Task]) -> List[Task]:
        return [
            replace(task, text=_with_prefix(task.text, ACHIEVEMENT_MARKER))
            if task.completed
            and not _is_marked(task.text)
            and now - task.created_at < window_ms
            else task
            for task in tasks
        ]
    return mutate


# ==================== Rules ====================

def _all_done(analysis: TaskAnalysis) -> Suggestion:
    recent = len(analysis.recent_completed)
    done = f"{recent} 个任务" if recent > 0 else '一些任务'
    return Suggestion(
        text=f"🎉 恭喜！所有任务已完成。根据历史记录，您最近完成了 {done}，继续保持！",
        type=SuggestionType.ENCOURAGE,
        priority=Priority.LOW,
        mutate=_celebrate_completed,
    )


def _merge_similar(analysis: TaskAnalysis, config: EngineConfig) -> Optional[Suggestion]:
    if not analysis.similar_tasks:
        return None

    # max() keeps the first pair among equal scores
    top = max(analysis.similar_tasks, key=lambda pair: pair.score)
    if top.score <= config.merge_threshold:
        return None

    return Suggestion(
        text=(
            f"发现相似任务：\"{top.first.text}\" 和 \"{top.second.text}\"，"
            f"相似度 {_percent(top.score)}%，建议合并处理以提高效率"
        ),
        type=SuggestionType.MERGE,
        priority=Priority.HIGH,
        mutate=_merge(top.first.id, top.second.id),
    )


def _urgent_priority(
    active: Sequence[Task],
    analysis: TaskAnalysis,
    config: EngineConfig
) -> Optional[Suggestion]:
    if analysis.urgent_count == 0:
        return None

    urgent = [
        task for task in active
        if contains_keyword(task.text, config.urgent_keywords)
        and task.priority != Priority.HIGH
    ]
    if not urgent:
        return None

    return Suggestion(
        text=f"检测到 {len(urgent)} 个包含紧急关键词的任务，建议将它们设置为高优先级",
        type=SuggestionType.PRIORITY,
        priority=Priority.HIGH,
        mutate=_set_priority(frozenset(task.id for task in urgent), Priority.HIGH),
    )


def _dominant_category(
    active: Sequence[Task],
    analysis: TaskAnalysis,
    config: EngineConfig
) -> Optional[Suggestion]:
    if not analysis.categories:
        return None

    category, count = max(analysis.categories.items(), key=lambda item: item[1])
    if count < config.dominant_category_min:
        return None

    members = frozenset(
        task.id for task in active
        if category in categorize(task.text, config.categories)
    )
    return Suggestion(
        text=f"您有 {count} 个{category_display_name(category)}相关任务，建议将它们分组处理",
        type=SuggestionType.CATEGORIZE,
        priority=Priority.MEDIUM,
        mutate=_upgrade_low(members),
    )


def _no_high_priority(
    active: Sequence[Task],
    analysis: TaskAnalysis,
    config: EngineConfig
) -> Optional[Suggestion]:
    if analysis.high_priority_count != 0 or len(active) <= config.no_high_min_active:
        return None

    return Suggestion(
        text=(
            f"您有 {len(active)} 个待办事项，但没有高优先级任务。"
            f"建议将最重要的 2-3 个任务设置为高优先级"
        ),
        type=SuggestionType.PRIORITY,
        priority=Priority.MEDIUM,
        mutate=_set_priority(frozenset(task.id for task in active[:2]), Priority.HIGH),
    )


def _recurring_pattern(active: Sequence[Task], analysis: TaskAnalysis) -> Optional[Suggestion]:
    patterns = analysis.frequent_patterns
    if not patterns:
        return None

    top_pattern = patterns[0]
    if not any(top_pattern in task.text.lower() for task in active):
        return None

    matching = frozenset(
        task.id for task in active if contains_keyword(task.text, patterns)
    )
    return Suggestion(
        text=f"根据历史记录，您经常处理包含\"{top_pattern}\"的任务。建议优先完成这类任务",
        type=SuggestionType.PATTERN,
        priority=Priority.MEDIUM,
        mutate=_raise_unless_high(matching),
    )


def _heavy_workload(active: Sequence[Task], config: EngineConfig) -> Optional[Suggestion]:
    if len(active) <= config.workload_threshold:
        return None

    high = [task for task in active if task.priority == Priority.HIGH]
    if high:
        return Suggestion(
            text=f"您当前有 {len(active)} 个待办事项，建议使用番茄工作法，为高优先级任务添加专注标记",
            type=SuggestionType.SCHEDULE,
            priority=Priority.MEDIUM,
            mutate=_mark_focus(frozenset(task.id for task in high), raise_priority=False),
        )

    return Suggestion(
        text=f"您当前有 {len(active)} 个待办事项，建议将前3个任务设置为高优先级并使用番茄工作法",
        type=SuggestionType.SCHEDULE,
        priority=Priority.MEDIUM,
        mutate=_mark_focus(frozenset(task.id for task in active[:3]), raise_priority=True),
    )


def _long_tasks(active: Sequence[Task], config: EngineConfig) -> Optional[Suggestion]:
    long_tasks = [task for task in active if len(task.text) > config.long_task_length]
    if not long_tasks:
        return None

    return Suggestion(
        text=f"检测到 {len(long_tasks)} 个较长的任务描述，建议将它们分解为更小的子任务",
        type=SuggestionType.DECOMPOSE,
        priority=Priority.LOW,
        mutate=_decompose(frozenset(task.id for task in long_tasks)),
    )


def _completion_rate(
    tasks: Sequence[Task],
    analysis: TaskAnalysis,
    now: int,
    config: EngineConfig
) -> Optional[Suggestion]:
    completed = sum(1 for task in tasks if task.completed)
    if (analysis.completion_rate <= config.completion_rate_threshold
            or completed <= config.min_completed_for_encouragement):
        return None

    return Suggestion(
        text=(
            f"您的任务完成率是 {_percent(analysis.completion_rate)}%，表现优秀！"
            f"建议为最近完成的任务添加成就标记"
        ),
        type=SuggestionType.ENCOURAGE,
        priority=Priority.LOW,
        mutate=_mark_recent_achievements(now, config.recent_window_ms),
    )


# ==================== Public API ====================

def generate(
    tasks: Sequence[Task],
    now: Optional[int] = None,
    config: Optional[EngineConfig] = None
) -> List[Suggestion]:
    """
    Produce ranked suggestions for the current task list.

    The input list is analyzed once and never modified. Suggestions are
    ordered high before medium before low; ties keep rule order.

    Args:
        tasks: The current task list
        now: Reference time in ms (defaults to the current time)
        config: Thresholds to use (defaults to ``DEFAULT_CONFIG``)

    Returns:
        List of Suggestion objects, possibly empty
    """
    if now is None:
        now = now_ms()
    if config is None:
        config = DEFAULT_CONFIG

    analysis = analyze(tasks, now=now, config=config)
    active = [task for task in tasks if not task.completed]

    if not active:
        return [_all_done(analysis)]

    candidates = [
        _merge_similar(analysis, config),
        _urgent_priority(active, analysis, config),
        _dominant_category(active, analysis, config),
        _no_high_priority(active, analysis, config),
        _recurring_pattern(active, analysis),
        _heavy_workload(active, config),
        _long_tasks(active, config),
        _completion_rate(tasks, analysis, now, config),
    ]
    suggestions = [suggestion for suggestion in candidates if suggestion is not None]

    logger.debug(
        "Generated %d suggestion(s) for %d task(s): %s",
        len(suggestions), len(tasks),
        [suggestion.type.value for suggestion in suggestions],
    )

    # sorted() is stable, so rule order breaks ties
    return sorted(suggestions, key=lambda suggestion: PRIORITY_RANK[suggestion.priority])


def apply_suggestion(
    suggestion: Suggestion,
    tasks: Sequence[Task],
    now: Optional[int] = None
) -> List[Task]:
    """
    Run a suggestion's mutation and return the normalized proposal.

    Raises:
        NotApplicableError: if the suggestion is informational only
    """
    if suggestion.mutate is None:
        raise NotApplicableError(f"Suggestion has no mutation: {suggestion.text}")
    return normalize_tasks(suggestion.mutate(list(tasks)), now)
