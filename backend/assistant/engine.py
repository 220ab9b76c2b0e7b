"""
Task analysis engine for the Todo Assistant.

This module holds the task record, the keyword categorizer, the text
similarity scorer and the analyzer that folds them into a single
``TaskAnalysis`` snapshot. Everything here is pure: functions read a
task list and return new values, never touching their input.

Analysis Overview:
-----------------
For the active (incomplete) tasks the analyzer computes:
- category counts from the keyword taxonomy
- pairs of similar tasks (Jaccard similarity over whitespace tokens)
- the priority distribution, average text length and urgent-keyword hits

For the completed tasks it computes:
- the completion rate over the whole list
- the most recent completions within the recency window
- frequent words, used later to bias prioritization

Pairwise similarity is O(n^2) in the number of active tasks.
"""

import time
import uuid
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from itertools import combinations
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .taxonomy import OTHER_CATEGORY, TASK_CATEGORIES, URGENT_KEYWORDS


DAY_MS = 24 * 60 * 60 * 1000


class Priority(str, Enum):
    """Task (and suggestion) priority levels."""
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


# Ranking order used when sorting suggestions
PRIORITY_RANK = {
    Priority.HIGH: 0,
    Priority.MEDIUM: 1,
    Priority.LOW: 2,
}


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def new_task_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Task:
    """
    A single actionable item.

    Tasks are immutable; every change produces a new instance via
    ``dataclasses.replace`` so that snapshots handed out by the store
    can never be altered behind its back.

    Attributes:
        id: Opaque unique identifier, assigned once at creation
        text: The task description
        created_at: Creation time in ms since epoch (also the calendar key)
        completed: Whether the task is done
        priority: One of low / medium / high
        ai_suggestion: Optional note attached by the assistant
    """
    id: str
    text: str
    created_at: int
    completed: bool = False
    priority: Priority = Priority.MEDIUM
    ai_suggestion: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'text': self.text,
            'completed': self.completed,
            'created_at': self.created_at,
            'priority': self.priority.value,
            'ai_suggestion': self.ai_suggestion,
        }


TaskLike = Union[Task, Mapping[str, Any]]


def _coerce_priority(value: Any) -> Priority:
    if isinstance(value, Priority):
        return value
    try:
        return Priority(str(value).lower())
    except ValueError:
        return Priority.MEDIUM


def normalize_task(raw: TaskLike, now: Optional[int] = None) -> Task:
    """
    Repair a task record so that every required field is populated.

    Missing values get defaults instead of being rejected:
    - id: a freshly generated identifier
    - created_at: the current time
    - completed: False
    - priority: medium

    Both ``created_at``/``ai_suggestion`` and the camelCase keys used by
    browser snapshots (``createdAt``/``aiSuggestion``) are accepted.
    """
    if now is None:
        now = now_ms()

    if isinstance(raw, Task):
        return replace(
            raw,
            id=raw.id or new_task_id(),
            created_at=now if raw.created_at is None else raw.created_at,
            completed=bool(raw.completed),
            priority=_coerce_priority(raw.priority),
        )

    created_at = raw.get('created_at', raw.get('createdAt'))
    ai_suggestion = raw.get('ai_suggestion', raw.get('aiSuggestion'))

    return Task(
        id=str(raw.get('id') or new_task_id()),
        text=str(raw.get('text') or ''),
        created_at=now if created_at is None else int(created_at),
        completed=bool(raw.get('completed') or False),
        priority=_coerce_priority(raw.get('priority')),
        ai_suggestion=ai_suggestion,
    )


def normalize_tasks(tasks: Sequence[TaskLike], now: Optional[int] = None) -> List[Task]:
    if now is None:
        now = now_ms()
    return [normalize_task(task, now) for task in tasks]


# ==================== Configuration ====================

@dataclass
class EngineConfig:
    """
    Tunable constants for analysis and suggestion rules.

    Every field can be overridden per deployment through the
    ``TODO_ASSISTANT`` setting (see ``assistant.conf``).
    """
    similarity_threshold: float = 0.3
    merge_threshold: float = 0.5
    long_task_length: int = 30
    pattern_min_count: int = 3
    pattern_min_length: int = 2
    pattern_token_min_length: int = 1
    max_patterns: int = 10
    workload_threshold: int = 8
    recent_window_days: int = 7
    max_recent_completed: int = 5
    completion_rate_threshold: float = 0.7
    min_completed_for_encouragement: int = 5
    dominant_category_min: int = 3
    no_high_min_active: int = 3
    categories: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(TASK_CATEGORIES)
    )
    urgent_keywords: Tuple[str, ...] = URGENT_KEYWORDS

    @property
    def recent_window_ms(self) -> int:
        return self.recent_window_days * DAY_MS


DEFAULT_CONFIG = EngineConfig()


# ==================== Categorizer ====================

def categorize(
    text: str,
    categories: Optional[Mapping[str, Sequence[str]]] = None
) -> Tuple[str, ...]:
    """
    Map free text to the categories whose keywords it contains.

    Matching is a plain substring test on the lower-cased text, not a
    tokenized match. Returns ``('other',)`` when nothing matches.
    """
    if categories is None:
        categories = TASK_CATEGORIES

    lowered = text.lower()
    matched = tuple(
        category for category, keywords in categories.items()
        if any(keyword in lowered for keyword in keywords)
    )
    return matched or (OTHER_CATEGORY,)


def contains_keyword(text: str, keywords: Sequence[str]) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


# ==================== Similarity Scorer ====================

def _tokens(text: str) -> set:
    return set(text.lower().split())


def similarity(a: str, b: str) -> float:
    """
    Jaccard similarity of the whitespace-delimited lowercase tokens.

    Returns a value in [0, 1]; two empty strings score 0.
    """
    words_a = _tokens(a)
    words_b = _tokens(b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


# ==================== Task Analyzer ====================

@dataclass(frozen=True)
class SimilarPair:
    """Two active tasks whose descriptions overlap."""
    first: Task
    second: Task
    score: float

    def to_dict(self) -> Dict:
        return {
            'first': self.first.id,
            'second': self.second.id,
            'score': round(self.score, 3),
        }


@dataclass
class TaskAnalysis:
    """Snapshot of everything the suggestion rules need to know."""
    categories: Dict[str, int] = field(default_factory=dict)
    similar_tasks: List[SimilarPair] = field(default_factory=list)
    high_priority_count: int = 0
    medium_priority_count: int = 0
    low_priority_count: int = 0
    average_task_length: float = 0.0
    urgent_count: int = 0
    completion_rate: float = 0.0
    recent_completed: List[Task] = field(default_factory=list)
    frequent_patterns: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'categories': dict(self.categories),
            'similar_tasks': [pair.to_dict() for pair in self.similar_tasks],
            'priority_counts': {
                'high': self.high_priority_count,
                'medium': self.medium_priority_count,
                'low': self.low_priority_count,
            },
            'average_task_length': round(self.average_task_length, 2),
            'urgent_count': self.urgent_count,
            'completion_rate': round(self.completion_rate, 3),
            'recent_completed': [task.id for task in self.recent_completed],
            'frequent_patterns': list(self.frequent_patterns),
        }


def find_frequent_patterns(
    completed: Sequence[Task],
    config: EngineConfig = DEFAULT_CONFIG
) -> List[str]:
    """
    Words recurring across completed task text.

    Counter preserves first-seen order, and that order is kept on purpose:
    the result is not re-sorted by frequency.
    """
    frequency: Counter = Counter()
    for task in completed:
        words = [
            word for word in task.text.lower().split()
            if len(word) > config.pattern_token_min_length
        ]
        frequency.update(words)

    patterns = [
        word for word, count in frequency.items()
        if count >= config.pattern_min_count and len(word) > config.pattern_min_length
    ]
    return patterns[:config.max_patterns]


def analyze(
    tasks: Sequence[Task],
    now: Optional[int] = None,
    config: Optional[EngineConfig] = None
) -> TaskAnalysis:
    """
    Aggregate categorization, similarity and completion statistics.

    Args:
        tasks: The current task list (never modified)
        now: Reference time in ms (defaults to the current time)
        config: Thresholds to use (defaults to ``DEFAULT_CONFIG``)

    Returns:
        A fresh TaskAnalysis
    """
    if now is None:
        now = now_ms()
    if config is None:
        config = DEFAULT_CONFIG

    active = [task for task in tasks if not task.completed]
    completed = [task for task in tasks if task.completed]

    categories: Dict[str, int] = {}
    for task in active:
        for category in categorize(task.text, config.categories):
            categories[category] = categories.get(category, 0) + 1

    similar_tasks = []
    for first, second in combinations(active, 2):
        score = similarity(first.text, second.text)
        if score > config.similarity_threshold:
            similar_tasks.append(SimilarPair(first, second, score))

    priority_counts = Counter(task.priority for task in active)

    average_length = (
        sum(len(task.text) for task in active) / len(active) if active else 0.0
    )

    urgent_count = sum(
        1 for task in active if contains_keyword(task.text, config.urgent_keywords)
    )

    completion_rate = len(completed) / len(tasks) if tasks else 0.0

    window_start = now - config.recent_window_ms
    recent_completed = sorted(
        (task for task in completed if task.created_at > window_start),
        key=lambda task: task.created_at,
        reverse=True,
    )[:config.max_recent_completed]

    return TaskAnalysis(
        categories=categories,
        similar_tasks=similar_tasks,
        high_priority_count=priority_counts[Priority.HIGH],
        medium_priority_count=priority_counts[Priority.MEDIUM],
        low_priority_count=priority_counts[Priority.LOW],
        average_task_length=average_length,
        urgent_count=urgent_count,
        completion_rate=completion_rate,
        recent_completed=recent_completed,
        frequent_patterns=find_frequent_patterns(completed, config),
    )
