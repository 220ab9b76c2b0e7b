"""
Unit Tests for the Todo Assistant.

This module covers the categorizer, the similarity scorer, the analyzer,
every suggestion rule, the pending-change arbiter and the REST API.
"""

import json
import time
from dataclasses import replace
from unittest.mock import patch

from django.core.cache import cache
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from . import views
from .conf import get_engine_config, get_pending_timeout
from .engine import (
    DAY_MS,
    EngineConfig,
    Priority,
    Task,
    analyze,
    categorize,
    normalize_task,
    similarity,
)
from .exceptions import (
    ChangePendingError,
    InvalidOrderError,
    NotApplicableError,
    TaskNotFoundError,
)
from .pending import Idle, Pending, PendingChangeArbiter, describe_changes
from .store import DatabaseTaskStore, InMemoryTaskStore, day_key, group_by_day
from .suggestions import (
    Suggestion,
    SuggestionType,
    apply_suggestion,
    generate,
    split_task,
)


NOW = 1_700_000_000_000


def make_task(task_id, text, priority=Priority.MEDIUM, completed=False, created_at=NOW):
    return Task(
        id=task_id,
        text=text,
        created_at=created_at,
        completed=completed,
        priority=priority,
    )


def find(suggestions, suggestion_type, priority=None):
    """Return the first suggestion of a type (and priority), or None."""
    for suggestion in suggestions:
        if suggestion.type == suggestion_type and (priority is None or suggestion.priority == priority):
            return suggestion
    return None


class FakeTimer:
    """Timer stand-in that only fires when told to."""

    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.callback()


class FakeTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, callback):
        timer = FakeTimer(interval, callback)
        self.timers.append(timer)
        return timer


class FailingStore:
    def replace(self, tasks):
        raise RuntimeError('database is locked')


class CategorizerTests(SimpleTestCase):
    """Tests for keyword categorization."""

    def test_single_category(self):
        """A meeting task belongs to work."""
        self.assertEqual(categorize('准备会议'), ('work',))

    def test_multiple_categories(self):
        """Every matching category is returned, in table order."""
        self.assertEqual(categorize('紧急 去医生那里体检'), ('health', 'urgent'))

    def test_no_match_is_other(self):
        """Text without any keyword falls into 'other'."""
        self.assertEqual(categorize('buy milk'), ('other',))
        self.assertEqual(categorize(''), ('other',))

    def test_substring_match(self):
        """Keywords match anywhere in the text, without tokenizing."""
        self.assertEqual(categorize('明天的项目周报'), ('work',))

    def test_case_insensitive_with_custom_table(self):
        """Text is lower-cased before matching."""
        table = {'work': ('meeting',), 'health': ('gym',)}
        self.assertEqual(categorize('Prepare MEETING notes', table), ('work',))
        self.assertEqual(categorize('Call mom', table), ('other',))

    def test_deterministic(self):
        """The same text always yields the same categories."""
        text = '周末去超市购物并报销出差费用'
        self.assertEqual(categorize(text), categorize(text))


class SimilarityTests(SimpleTestCase):
    """Tests for the Jaccard similarity scorer."""

    def test_identical_texts(self):
        self.assertEqual(similarity('write the report', 'write the report'), 1.0)

    def test_disjoint_texts(self):
        self.assertEqual(similarity('buy milk', 'call mom'), 0.0)

    def test_partial_overlap(self):
        """Two of four distinct tokens shared."""
        self.assertAlmostEqual(similarity('整理 会议 纪要', '发送 会议 纪要'), 0.5)

    def test_symmetric(self):
        pairs = [
            ('a b c', 'b c d e'),
            ('Report DRAFT', 'report final'),
            ('', 'something'),
        ]
        for a, b in pairs:
            self.assertEqual(similarity(a, b), similarity(b, a))

    def test_bounds(self):
        for a, b in [('a', 'a a a'), ('x y', 'y z'), ('  ', 'q')]:
            score = similarity(a, b)
            self.assertGreaterEqual(score, 0)
            self.assertLessEqual(score, 1)

    def test_empty_strings_score_zero(self):
        """An empty union scores 0 rather than dividing by zero."""
        self.assertEqual(similarity('', ''), 0)
        self.assertEqual(similarity('   ', '\t'), 0)

    def test_case_insensitive(self):
        self.assertEqual(similarity('Write Report', 'write report'), 1.0)

    def test_unspaced_text_is_one_token(self):
        """Text without whitespace forms a single token."""
        self.assertEqual(similarity('写会议纪要', '准备会议材料'), 0)


class NormalizationTests(SimpleTestCase):
    """Tests for boundary repair of task records."""

    def test_missing_fields_get_defaults(self):
        task = normalize_task({'text': '买菜'}, now=NOW)

        self.assertTrue(task.id)
        self.assertEqual(task.created_at, NOW)
        self.assertFalse(task.completed)
        self.assertEqual(task.priority, Priority.MEDIUM)

    def test_existing_fields_kept(self):
        task = normalize_task(
            {'id': 'x1', 'text': 'a', 'completed': True, 'created_at': 5, 'priority': 'high'},
            now=NOW
        )
        self.assertEqual(task, make_task('x1', 'a', Priority.HIGH, completed=True, created_at=5))

    def test_camel_case_keys(self):
        """Browser snapshots use createdAt / aiSuggestion."""
        task = normalize_task({'id': 'x', 'text': 'a', 'createdAt': 42, 'aiSuggestion': 'hint'})
        self.assertEqual(task.created_at, 42)
        self.assertEqual(task.ai_suggestion, 'hint')

    def test_invalid_priority_defaults_to_medium(self):
        task = normalize_task({'id': 'x', 'text': 'a', 'priority': 'urgent!'}, now=NOW)
        self.assertEqual(task.priority, Priority.MEDIUM)

    def test_fresh_ids_are_unique(self):
        first = normalize_task({'text': 'a'}, now=NOW)
        second = normalize_task({'text': 'a'}, now=NOW)
        self.assertNotEqual(first.id, second.id)

    def test_task_instance_with_blank_id(self):
        task = normalize_task(make_task('', 'a', created_at=None), now=NOW)
        self.assertTrue(task.id)
        self.assertEqual(task.created_at, NOW)

    def test_epoch_creation_time_kept(self):
        """A creation time of 0 is a real timestamp, not a missing one."""
        self.assertEqual(normalize_task({'id': 'x', 'text': 'a', 'created_at': 0}, now=NOW).created_at, 0)
        self.assertEqual(normalize_task({'id': 'x', 'text': 'a', 'createdAt': 0}, now=NOW).created_at, 0)
        self.assertEqual(normalize_task(make_task('x', 'a', created_at=0), now=NOW).created_at, 0)


class AnalyzerTests(SimpleTestCase):
    """Tests for the analysis snapshot."""

    def test_empty_list(self):
        analysis = analyze([], now=NOW)

        self.assertEqual(analysis.categories, {})
        self.assertEqual(analysis.similar_tasks, [])
        self.assertEqual(analysis.average_task_length, 0)
        self.assertEqual(analysis.completion_rate, 0)
        self.assertEqual(analysis.recent_completed, [])
        self.assertEqual(analysis.frequent_patterns, [])

    def test_categories_count_active_only(self):
        tasks = [
            make_task('1', '准备会议'),
            make_task('2', '写报告'),
            make_task('3', '跑步'),
            make_task('4', '项目复盘', completed=True),
        ]
        analysis = analyze(tasks, now=NOW)
        self.assertEqual(analysis.categories, {'work': 2, 'health': 1})

    def test_similar_pairs_above_threshold(self):
        tasks = [
            make_task('1', 'review pull request'),
            make_task('2', 'review pull request today'),
            make_task('3', 'buy milk'),
        ]
        analysis = analyze(tasks, now=NOW)

        self.assertEqual(len(analysis.similar_tasks), 1)
        pair = analysis.similar_tasks[0]
        self.assertEqual((pair.first.id, pair.second.id), ('1', '2'))
        self.assertAlmostEqual(pair.score, 0.75)

    def test_threshold_is_exclusive(self):
        """A pair scoring exactly the threshold is not kept."""
        # 3 shared tokens out of 10 distinct
        tasks = [make_task('1', 'a b c d e f'), make_task('2', 'a b c g h i j')]
        self.assertEqual(similarity(tasks[0].text, tasks[1].text), 0.3)
        self.assertEqual(analyze(tasks, now=NOW).similar_tasks, [])

        config = EngineConfig(similarity_threshold=0.5)
        tasks = [make_task('1', 'a b c'), make_task('2', 'a b d')]
        self.assertEqual(analyze(tasks, now=NOW, config=config).similar_tasks, [])

    def test_completed_tasks_never_paired(self):
        tasks = [
            make_task('1', 'same text'),
            make_task('2', 'same text', completed=True),
        ]
        self.assertEqual(analyze(tasks, now=NOW).similar_tasks, [])

    def test_priority_counts_and_length(self):
        tasks = [
            make_task('1', 'abcd', Priority.HIGH),
            make_task('2', 'ab', Priority.LOW),
            make_task('3', 'abcdef', Priority.LOW),
            make_task('4', 'zzzzzzzzzz', Priority.HIGH, completed=True),
        ]
        analysis = analyze(tasks, now=NOW)

        self.assertEqual(analysis.high_priority_count, 1)
        self.assertEqual(analysis.medium_priority_count, 0)
        self.assertEqual(analysis.low_priority_count, 2)
        self.assertAlmostEqual(analysis.average_task_length, 4.0)

    def test_urgent_count(self):
        tasks = [
            make_task('1', '紧急修复'),
            make_task('2', '今天必须交作业'),
            make_task('3', '散步'),
            make_task('4', '重要会议', completed=True),
        ]
        self.assertEqual(analyze(tasks, now=NOW).urgent_count, 2)

    def test_completion_rate(self):
        tasks = [
            make_task('1', 'a', completed=True),
            make_task('2', 'b', completed=True),
            make_task('3', 'c'),
            make_task('4', 'd'),
        ]
        self.assertEqual(analyze(tasks, now=NOW).completion_rate, 0.5)

    def test_recent_completed_window_order_and_cap(self):
        """Newest first, at most five, nothing older than seven days."""
        tasks = [
            make_task(f'c{day}', f'done {day}', completed=True, created_at=NOW - day * DAY_MS)
            for day in range(7)
        ]
        tasks.append(make_task('old', 'old', completed=True, created_at=NOW - 8 * DAY_MS))
        tasks.append(make_task('active', 'active', created_at=NOW))

        recent = analyze(tasks, now=NOW).recent_completed
        self.assertEqual([task.id for task in recent], ['c0', 'c1', 'c2', 'c3', 'c4'])

    def test_frequent_patterns_keep_first_seen_order(self):
        completed = [
            make_task('1', 'weekly sync report', completed=True),
            make_task('2', 'report sync', completed=True),
            make_task('3', 'sync report ab', completed=True),
            make_task('4', 'ab ab', completed=True),
        ]
        analysis = analyze(completed + [make_task('5', 'weekly')], now=NOW)

        # "ab" occurs 3 times but is too short; "weekly" only once
        self.assertEqual(analysis.frequent_patterns, ['sync', 'report'])

    def test_frequent_patterns_capped_at_ten(self):
        words = [f'word{i:02d}' for i in range(12)]
        completed = [
            make_task(f'c{n}', ' '.join(words), completed=True)
            for n in range(3)
        ]
        self.assertEqual(analyze(completed, now=NOW).frequent_patterns, words[:10])

    def test_analyze_is_pure_and_repeatable(self):
        tasks = [
            make_task('1', 'review pull request'),
            make_task('2', 'review pull request today', Priority.LOW),
            make_task('3', 'done', completed=True),
        ]
        before = list(tasks)

        first = analyze(tasks, now=NOW)
        second = analyze(tasks, now=NOW)

        self.assertEqual(tasks, before)
        self.assertEqual(first, second)

    def test_to_dict(self):
        data = analyze([make_task('1', '准备会议', Priority.HIGH)], now=NOW).to_dict()

        self.assertEqual(data['categories'], {'work': 1})
        self.assertEqual(data['priority_counts'], {'high': 1, 'medium': 0, 'low': 0})


class AllDoneRuleTests(SimpleTestCase):
    """Tests for the all-complete encouragement (R0)."""

    def setUp(self):
        self.tasks = [
            make_task('1', 'a', completed=True, created_at=NOW - DAY_MS),
            make_task('2', '🎉 b', completed=True, created_at=NOW - DAY_MS),
            make_task('3', '✨ c', completed=True, created_at=NOW - 10 * DAY_MS),
        ]

    def test_single_encouragement(self):
        suggestions = generate(self.tasks, now=NOW)

        self.assertEqual(len(suggestions), 1)
        self.assertEqual(suggestions[0].type, SuggestionType.ENCOURAGE)
        self.assertIn('2 个任务', suggestions[0].text)

    def test_empty_list_also_encourages(self):
        suggestions = generate([], now=NOW)

        self.assertEqual(len(suggestions), 1)
        self.assertIn('一些任务', suggestions[0].text)

    def test_mutation_marks_unmarked_tasks(self):
        suggestion = generate(self.tasks, now=NOW)[0]
        result = suggestion.mutate(self.tasks)

        self.assertEqual([task.text for task in result], ['🎉 a', '🎉 b', '✨ c'])


class MergeRuleTests(SimpleTestCase):
    """Tests for merging similar tasks (R1)."""

    def setUp(self):
        self.tasks = [
            make_task('1', '整理 会议 纪要'),
            make_task('2', '整理 会议 材料 纪要', Priority.LOW),
        ]

    def test_merge_suggested(self):
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.MERGE)

        self.assertIsNotNone(suggestion)
        self.assertEqual(suggestion.priority, Priority.HIGH)
        self.assertIn('75%', suggestion.text)
        self.assertIn('整理 会议 纪要', suggestion.text)

    def test_merge_mutation(self):
        """The first task absorbs the second and becomes high priority."""
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.MERGE)
        result = apply_suggestion(suggestion, self.tasks, now=NOW)

        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].id, '1')
        self.assertEqual(result[0].text, '整理 会议 纪要 + 整理 会议 材料 纪要')
        self.assertEqual(result[0].priority, Priority.HIGH)

    def test_half_overlap_not_merged(self):
        tasks = [make_task('1', '整理 会议 纪要'), make_task('2', '发送 会议 纪要')]
        self.assertIsNone(find(generate(tasks, now=NOW), SuggestionType.MERGE))

    def test_best_pair_wins(self):
        tasks = [
            make_task('1', 'a b c d'),
            make_task('2', 'a b c e'),
            make_task('3', 'x y z'),
            make_task('4', 'x y z'),
        ]
        suggestion = find(generate(tasks, now=NOW), SuggestionType.MERGE)
        result = suggestion.mutate(tasks)

        self.assertEqual([task.id for task in result], ['1', '2', '3'])
        self.assertEqual(result[2].text, 'x y z + x y z')

    def test_merge_on_changed_list_is_noop(self):
        """If either task is gone the list is returned unchanged."""
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.MERGE)
        remaining = [self.tasks[0]]

        self.assertEqual(suggestion.mutate(remaining), remaining)


class UrgentRuleTests(SimpleTestCase):
    """Tests for urgent re-prioritization (R2)."""

    def setUp(self):
        self.tasks = [
            make_task('1', '紧急修复服务器'),
            make_task('2', '重要电话', Priority.HIGH),
            make_task('3', '买牛奶', Priority.LOW),
        ]

    def test_urgent_suggested(self):
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.PRIORITY, Priority.HIGH)

        self.assertIsNotNone(suggestion)
        self.assertIn('1 个', suggestion.text)

    def test_only_urgent_tasks_raised(self):
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.PRIORITY, Priority.HIGH)
        result = suggestion.mutate(self.tasks)

        self.assertEqual(
            [task.priority for task in result],
            [Priority.HIGH, Priority.HIGH, Priority.LOW]
        )

    def test_all_urgent_already_high(self):
        tasks = [make_task('1', '紧急修复', Priority.HIGH), make_task('2', '散步')]
        self.assertIsNone(find(generate(tasks, now=NOW), SuggestionType.PRIORITY, Priority.HIGH))


class CategoryRuleTests(SimpleTestCase):
    """Tests for the dominant-category rule (R3)."""

    def setUp(self):
        self.tasks = [
            make_task('1', '准备会议', Priority.LOW),
            make_task('2', '参加会议', Priority.MEDIUM),
            make_task('3', '会议总结', Priority.HIGH),
            make_task('4', '买牛奶', Priority.LOW),
        ]

    def test_category_suggested(self):
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.CATEGORIZE)

        self.assertIsNotNone(suggestion)
        self.assertEqual(suggestion.priority, Priority.MEDIUM)
        self.assertIn('3 个工作相关任务', suggestion.text)

    def test_only_low_members_upgraded_to_medium(self):
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.CATEGORIZE)
        result = suggestion.mutate(self.tasks)

        self.assertEqual(
            [task.priority for task in result],
            [Priority.MEDIUM, Priority.MEDIUM, Priority.HIGH, Priority.LOW]
        )

    def test_below_minimum_not_suggested(self):
        self.assertIsNone(find(generate(self.tasks[:2], now=NOW), SuggestionType.CATEGORIZE))


class NoHighPriorityRuleTests(SimpleTestCase):
    """Tests for the no-high-priority rule (R4)."""

    def setUp(self):
        self.tasks = [make_task('done', 'finished', completed=True)] + [
            make_task(f't{i}', f'item-{i}', Priority.LOW if i % 2 else Priority.MEDIUM)
            for i in range(9)
        ]

    def test_suggested_for_nine_active_tasks(self):
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.PRIORITY, Priority.MEDIUM)

        self.assertIsNotNone(suggestion)
        self.assertIn('9 个待办事项', suggestion.text)

    def test_first_two_active_become_high(self):
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.PRIORITY, Priority.MEDIUM)
        result = suggestion.mutate(self.tasks)

        high = [task.id for task in result if task.priority == Priority.HIGH]
        self.assertEqual(high, ['t0', 't1'])
        self.assertEqual(result[0], self.tasks[0])
        self.assertEqual(result[3:], self.tasks[3:])

    def test_three_active_not_enough(self):
        tasks = self.tasks[:4]
        self.assertIsNone(find(generate(tasks, now=NOW), SuggestionType.PRIORITY, Priority.MEDIUM))

    def test_existing_high_task_suppresses(self):
        tasks = self.tasks + [make_task('h', 'item-h', Priority.HIGH)]
        self.assertIsNone(find(generate(tasks, now=NOW), SuggestionType.PRIORITY, Priority.MEDIUM))


class PatternRuleTests(SimpleTestCase):
    """Tests for the recurring-pattern rule (R5)."""

    def setUp(self):
        self.tasks = [
            make_task('c1', 'write report', completed=True),
            make_task('c2', 'review report', completed=True),
            make_task('c3', 'send report', completed=True),
            make_task('a1', 'fix Report'),
            make_task('a2', 'call mom', Priority.LOW),
        ]

    def test_pattern_suggested(self):
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.PATTERN)

        self.assertIsNotNone(suggestion)
        self.assertIn('"report"', suggestion.text)

    def test_matching_tasks_raised_to_high(self):
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.PATTERN)
        result = suggestion.mutate(self.tasks)

        self.assertEqual(result[3].priority, Priority.HIGH)
        self.assertEqual(result[4].priority, Priority.LOW)

    def test_top_pattern_must_match(self):
        """Only later patterns matching an active task is not enough."""
        tasks = [
            make_task(f'c{i}', 'alpha beta', completed=True) for i in range(3)
        ] + [make_task('a1', 'beta task')]
        self.assertIsNone(find(generate(tasks, now=NOW), SuggestionType.PATTERN))

    def test_mutation_covers_every_pattern(self):
        tasks = [
            make_task(f'c{i}', 'alpha beta', completed=True) for i in range(3)
        ] + [
            make_task('a1', 'alpha task', Priority.LOW),
            make_task('a2', 'beta task', Priority.MEDIUM),
            make_task('a3', 'gamma task', Priority.LOW),
        ]
        suggestion = find(generate(tasks, now=NOW), SuggestionType.PATTERN)
        result = suggestion.mutate(tasks)

        self.assertEqual(
            [task.priority for task in result[3:]],
            [Priority.HIGH, Priority.HIGH, Priority.LOW]
        )


class WorkloadRuleTests(SimpleTestCase):
    """Tests for the heavy-workload focus rule (R6)."""

    def test_marks_high_priority_tasks(self):
        tasks = [
            make_task('h1', 'ship release', Priority.HIGH),
            make_task('h2', '🍅 fix build', Priority.HIGH),
        ] + [make_task(f't{i}', f'item-{i}') for i in range(7)]

        suggestion = find(generate(tasks, now=NOW), SuggestionType.SCHEDULE)
        result = suggestion.mutate(tasks)

        self.assertEqual(result[0].text, '🍅 ship release')
        self.assertEqual(result[1].text, '🍅 fix build')
        self.assertEqual(result[2:], tasks[2:])

    def test_without_high_tasks_seeds_first_three(self):
        tasks = [make_task('t0', '🍅 item-0')] + [
            make_task(f't{i}', f'item-{i}') for i in range(1, 9)
        ]

        suggestion = find(generate(tasks, now=NOW), SuggestionType.SCHEDULE)
        self.assertIn('前3个任务', suggestion.text)
        result = suggestion.mutate(tasks)

        self.assertEqual(
            [task.text for task in result[:4]],
            ['🍅 item-0', '🍅 item-1', '🍅 item-2', 'item-3']
        )
        self.assertEqual(
            [task.priority for task in result[:4]],
            [Priority.HIGH, Priority.HIGH, Priority.HIGH, Priority.MEDIUM]
        )

    def test_focus_mutation_idempotent(self):
        tasks = [make_task(f't{i}', f'item-{i}') for i in range(9)]
        suggestion = find(generate(tasks, now=NOW), SuggestionType.SCHEDULE)

        once = suggestion.mutate(tasks)
        self.assertEqual(suggestion.mutate(once), once)

    def test_eight_tasks_not_heavy(self):
        tasks = [make_task(f't{i}', f'item-{i}') for i in range(8)]
        self.assertIsNone(find(generate(tasks, now=NOW), SuggestionType.SCHEDULE))


class DecomposeRuleTests(SimpleTestCase):
    """Tests for splitting long tasks (R7)."""

    LONG_TEXT = '准备季度报告，整理客户资料，安排团队会议和发送邮件给所有相关的同事们'

    def test_decompose_suggested(self):
        tasks = [make_task('t', self.LONG_TEXT), make_task('s', 'short')]
        suggestion = find(generate(tasks, now=NOW), SuggestionType.DECOMPOSE)

        self.assertIsNotNone(suggestion)
        self.assertEqual(suggestion.priority, Priority.LOW)
        self.assertIn('1 个', suggestion.text)

    def test_split_on_separators(self):
        tasks = [make_task('t', self.LONG_TEXT, Priority.LOW), make_task('s', 'short')]
        suggestion = find(generate(tasks, now=NOW), SuggestionType.DECOMPOSE)
        result = suggestion.mutate(tasks)

        self.assertEqual(
            [task.id for task in result],
            ['t-0', 't-1', 't-2', 't-3', 's']
        )
        self.assertEqual(
            [task.text for task in result[:4]],
            ['准备季度报告', '整理客户资料', '安排团队会议', '发送邮件给所有相关的同事们']
        )
        self.assertEqual(
            [task.priority for task in result[:4]],
            [Priority.LOW, Priority.MEDIUM, Priority.MEDIUM, Priority.MEDIUM]
        )
        self.assertTrue(all(task.created_at == NOW for task in result))
        self.assertFalse(any(task.completed for task in result))

    def test_unsplittable_task_gets_hint(self):
        """A 40-character task without separators stays whole."""
        text = 'a' * 40
        tasks = [make_task('t', text)]
        suggestion = find(generate(tasks, now=NOW), SuggestionType.DECOMPOSE)
        result = suggestion.mutate(tasks)

        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].id, 't')
        self.assertEqual(result[0].text, f'📋 {text} (建议分解)')

    def test_empty_parts_dropped(self):
        parts = split_task(make_task('t', '，买菜，，做饭。'))
        self.assertEqual([task.text for task in parts], ['买菜', '做饭'])

    def test_thirty_characters_is_not_long(self):
        tasks = [make_task('t', 'b' * 30)]
        self.assertIsNone(find(generate(tasks, now=NOW), SuggestionType.DECOMPOSE))


class CompletionRateRuleTests(SimpleTestCase):
    """Tests for the completion-rate encouragement (R8)."""

    def setUp(self):
        self.tasks = [
            make_task('c1', 'c1', completed=True, created_at=NOW - DAY_MS),
            make_task('c2', 'c2', completed=True, created_at=NOW - DAY_MS),
            make_task('c3', 'c3', completed=True, created_at=NOW - 2 * DAY_MS),
            make_task('c4', 'c4', completed=True, created_at=NOW - 3 * DAY_MS),
            make_task('old', 'old', completed=True, created_at=NOW - 8 * DAY_MS),
            make_task('party', '🎉 party', completed=True, created_at=NOW - DAY_MS),
            make_task('a1', 'a1'),
        ]

    def test_encouragement_suggested(self):
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.ENCOURAGE)

        self.assertIsNotNone(suggestion)
        self.assertIn('86%', suggestion.text)

    def test_marks_recent_unmarked_completions(self):
        suggestion = find(generate(self.tasks, now=NOW), SuggestionType.ENCOURAGE)
        result = suggestion.mutate(self.tasks)

        self.assertEqual(
            [task.text for task in result],
            ['✨ c1', '✨ c2', '✨ c3', '✨ c4', 'old', '🎉 party', 'a1']
        )

    def test_five_completed_not_enough(self):
        tasks = self.tasks[:4] + self.tasks[5:]
        self.assertIsNone(find(generate(tasks, now=NOW), SuggestionType.ENCOURAGE))


class GeneratorTests(SimpleTestCase):
    """Tests for ordering, purity and mutation closure."""

    def setUp(self):
        self.tasks = [
            make_task('c1', 'write report', completed=True, created_at=NOW - DAY_MS),
            make_task('c2', 'send report', completed=True, created_at=NOW - DAY_MS),
            make_task('c3', 'read report', completed=True, created_at=NOW - DAY_MS),
            make_task('m1', '整理 会议 纪要', Priority.LOW),
            make_task('m2', '整理 会议 材料 纪要', Priority.LOW),
            make_task('u1', '紧急 处理客户投诉'),
            make_task('d1', '准备季度报告，整理客户资料，安排团队会议和发送邮件给所有相关的同事们'),
            make_task('p1', 'fix report'),
        ] + [make_task(f't{i}', f'item-{i}', Priority.LOW) for i in range(4)]

    def test_ranking_high_before_medium_before_low(self):
        suggestions = generate(self.tasks, now=NOW)
        ranks = [{'high': 0, 'medium': 1, 'low': 2}[s.priority.value] for s in suggestions]

        self.assertGreater(len(suggestions), 3)
        self.assertEqual(ranks, sorted(ranks))

    def test_ties_keep_rule_order(self):
        types = [s.type for s in generate(self.tasks, now=NOW)]

        self.assertEqual(types[:2], [SuggestionType.MERGE, SuggestionType.PRIORITY])
        self.assertLess(types.index(SuggestionType.CATEGORIZE), types.index(SuggestionType.SCHEDULE))

    def test_deterministic(self):
        first = [(s.text, s.type, s.priority) for s in generate(self.tasks, now=NOW)]
        second = [(s.text, s.type, s.priority) for s in generate(self.tasks, now=NOW)]
        self.assertEqual(first, second)

    def test_generate_and_mutate_are_pure(self):
        before = list(self.tasks)
        for suggestion in generate(self.tasks, now=NOW):
            suggestion.mutate(self.tasks)
        self.assertEqual(self.tasks, before)

    def test_mutation_closure(self):
        """Every mutated task has all required fields populated."""
        for suggestion in generate(self.tasks, now=NOW):
            for task in apply_suggestion(suggestion, self.tasks, now=NOW):
                self.assertTrue(task.id)
                self.assertIsInstance(task.created_at, int)
                self.assertIsInstance(task.completed, bool)
                self.assertIsInstance(task.priority, Priority)

    def test_mutations_keep_ids_unique(self):
        for suggestion in generate(self.tasks, now=NOW):
            ids = [task.id for task in suggestion.mutate(self.tasks)]
            self.assertEqual(len(ids), len(set(ids)))

    def test_no_rules_match(self):
        self.assertEqual(generate([make_task('1', 'walk')], now=NOW), [])

    def test_informational_suggestion_not_applicable(self):
        suggestion = Suggestion('just saying', SuggestionType.PATTERN, Priority.LOW)
        with self.assertRaises(NotApplicableError):
            apply_suggestion(suggestion, self.tasks)

    def test_custom_config(self):
        tasks = [make_task(f't{i}', f'item-{i}', Priority.HIGH) for i in range(3)]
        config = EngineConfig(workload_threshold=2)
        self.assertIsNotNone(find(generate(tasks, now=NOW, config=config), SuggestionType.SCHEDULE))


class ArbiterTests(SimpleTestCase):
    """Tests for the pending-change state machine."""

    def setUp(self):
        self.original = [make_task('1', 'a'), make_task('2', 'b')]
        self.proposed = [make_task('1', 'a', Priority.HIGH)]
        self.store = InMemoryTaskStore(self.original)
        self.timers = FakeTimerFactory()
        self.clock = [1000.0]
        self.arbiter = PendingChangeArbiter(
            self.store,
            timeout=60,
            timer_factory=self.timers,
            clock=lambda: self.clock[0],
        )

    def test_starts_idle(self):
        self.assertIsInstance(self.arbiter.state, Idle)
        self.assertFalse(self.arbiter.is_pending)
        self.assertEqual(self.arbiter.seconds_remaining(), 0)

    def test_begin_pending(self):
        pending = self.arbiter.begin_pending(self.original, self.proposed)

        self.assertIsInstance(self.arbiter.state, Pending)
        self.assertEqual(pending.deadline, 1060.0)
        self.assertEqual(len(self.timers.timers), 1)
        self.assertEqual(self.timers.timers[0].interval, 60)
        self.assertTrue(self.timers.timers[0].started)
        self.assertEqual(self.store.snapshot(), self.original)

    def test_confirm_replaces_store(self):
        self.arbiter.begin_pending(self.original, self.proposed)

        self.assertTrue(self.arbiter.confirm())
        self.assertEqual(self.store.snapshot(), self.proposed)
        self.assertIsInstance(self.arbiter.state, Idle)
        self.assertTrue(self.timers.timers[0].cancelled)

    def test_cancel_leaves_store_alone(self):
        self.arbiter.begin_pending(self.original, self.proposed)

        self.assertTrue(self.arbiter.cancel())
        self.assertEqual(self.store.snapshot(), self.original)
        self.assertIsInstance(self.arbiter.state, Idle)
        self.assertTrue(self.timers.timers[0].cancelled)

    def test_confirm_and_cancel_idempotent(self):
        self.arbiter.begin_pending(self.original, self.proposed)
        self.arbiter.confirm()

        self.assertFalse(self.arbiter.confirm())
        self.assertFalse(self.arbiter.cancel())
        self.assertEqual(self.store.snapshot(), self.proposed)

    def test_timeout_confirms(self):
        """No action before the deadline: the store ends up with the proposal."""
        self.arbiter.begin_pending(self.original, self.proposed)
        self.clock[0] += 60
        self.timers.timers[0].fire()

        self.assertEqual(self.store.snapshot(), self.proposed)
        self.assertIsInstance(self.arbiter.state, Idle)

    def test_timer_after_cancel_does_nothing(self):
        self.arbiter.begin_pending(self.original, self.proposed)
        self.arbiter.cancel()
        self.timers.timers[0].fire()

        self.assertEqual(self.store.snapshot(), self.original)

    def test_stale_timer_ignores_new_episode(self):
        self.arbiter.begin_pending(self.original, self.proposed)
        self.arbiter.cancel()
        self.arbiter.begin_pending(self.original, [make_task('9', 'z')])
        self.timers.timers[0].fire()

        self.assertTrue(self.arbiter.is_pending)
        self.assertEqual(self.store.snapshot(), self.original)

    def test_second_begin_rejected(self):
        self.arbiter.begin_pending(self.original, self.proposed)
        with self.assertRaises(ChangePendingError):
            self.arbiter.begin_pending(self.original, self.proposed)

    def test_seconds_remaining(self):
        self.arbiter.begin_pending(self.original, self.proposed)
        self.clock[0] += 15
        self.assertEqual(self.arbiter.seconds_remaining(), 45)

        self.clock[0] += 100
        self.assertEqual(self.arbiter.seconds_remaining(), 0)

    def test_proposed_tasks_normalized(self):
        self.arbiter.begin_pending(self.original, [{'text': 'new'}])
        self.arbiter.confirm()

        task = self.store.snapshot()[0]
        self.assertTrue(task.id)
        self.assertEqual(task.priority, Priority.MEDIUM)
        self.assertFalse(task.completed)

    def test_failed_auto_confirm_is_logged(self):
        """A store error on the timer thread is logged and leaves the arbiter idle."""
        arbiter = PendingChangeArbiter(FailingStore(), timer_factory=self.timers)
        arbiter.begin_pending(self.original, self.proposed)

        with self.assertLogs('assistant.pending', level='ERROR') as logs:
            self.timers.timers[0].fire()

        self.assertIsInstance(arbiter.state, Idle)
        self.assertIn('Auto-confirm failed', logs.output[0])

    def test_closing_timer_releases_connection(self):
        """The API's countdown thread closes its database connection when done."""
        fired = []
        with patch.object(views, 'connection') as connection:
            timer = views.closing_timer(0.01, lambda: fired.append(True))
            timer.start()
            timer.join(5)

        self.assertEqual(fired, [True])
        connection.close.assert_called_once_with()

    def test_real_timer_fires(self):
        arbiter = PendingChangeArbiter(self.store, timeout=0.05)
        arbiter.begin_pending(self.original, self.proposed)

        deadline = time.time() + 5
        while arbiter.is_pending and time.time() < deadline:
            time.sleep(0.01)

        self.assertFalse(arbiter.is_pending)
        self.assertEqual(self.store.snapshot(), self.proposed)


class ChangeSummaryTests(SimpleTestCase):
    """Tests for describe_changes."""

    def test_modified_added_removed(self):
        original = [
            make_task('1', 'a'),
            make_task('2', 'b'),
            make_task('3', 'c', completed=True),
        ]
        proposed = [
            make_task('1', 'a + b', Priority.HIGH),
            make_task('3', 'c'),
            make_task('4', 'd'),
        ]
        changes = describe_changes(original, proposed)

        self.assertEqual([change.task.id for change in changes.modified], ['1', '3'])
        self.assertEqual(changes.modified[0].changes, ['文本: "a" → "a + b"', '优先级: medium → high'])
        self.assertEqual(changes.modified[1].changes, ['未完成'])
        self.assertEqual([task.id for task in changes.added], ['4'])
        self.assertEqual([task.id for task in changes.removed], ['2'])

    def test_no_changes(self):
        tasks = [make_task('1', 'a')]
        self.assertTrue(describe_changes(tasks, list(tasks)).is_empty)


class InMemoryStoreTests(SimpleTestCase):
    """Tests for the list operations shared by every store."""

    def setUp(self):
        self.store = InMemoryTaskStore([make_task('1', 'a'), make_task('2', 'b')])

    def test_snapshot_is_a_copy(self):
        snapshot = self.store.snapshot()
        snapshot.append(make_task('3', 'c'))
        self.assertEqual(len(self.store.snapshot()), 2)

    def test_add(self):
        task = self.store.add('  c  ', Priority.HIGH, now=NOW)

        self.assertEqual(task.text, 'c')
        self.assertEqual(task.created_at, NOW)
        self.assertEqual(self.store.snapshot()[-1], task)

    def test_toggle(self):
        self.assertTrue(self.store.toggle('1').completed)
        self.assertFalse(self.store.toggle('1').completed)

    def test_delete(self):
        self.store.delete('1')
        self.assertEqual([task.id for task in self.store.snapshot()], ['2'])

    def test_missing_task(self):
        with self.assertRaises(TaskNotFoundError):
            self.store.toggle('nope')
        with self.assertRaises(TaskNotFoundError):
            self.store.delete('nope')

    def test_reorder(self):
        self.store.reorder(['2', '1'])
        self.assertEqual([task.id for task in self.store.snapshot()], ['2', '1'])

    def test_reorder_requires_every_id(self):
        with self.assertRaises(InvalidOrderError):
            self.store.reorder(['2'])
        with self.assertRaises(InvalidOrderError):
            self.store.reorder(['1', '1'])

    def test_group_by_day(self):
        tasks = [
            make_task('1', 'a', created_at=NOW),
            make_task('2', 'b', created_at=NOW - DAY_MS),
            make_task('3', 'c', created_at=NOW + 1000),
        ]
        grouped = group_by_day(tasks)

        self.assertEqual(day_key(NOW), '2023-11-14')
        self.assertEqual([task.id for task in grouped['2023-11-14']], ['1', '3'])
        self.assertEqual([task.id for task in grouped['2023-11-13']], ['2'])


class DatabaseStoreTests(TestCase):
    """Tests for the model-backed store."""

    def setUp(self):
        self.store = DatabaseTaskStore()

    def test_replace_and_snapshot_keep_order(self):
        tasks = [
            make_task('b', 'second created first', created_at=NOW + 5),
            make_task('a', 'first', Priority.HIGH, completed=True),
        ]
        self.store.replace(tasks)
        self.assertEqual(self.store.snapshot(), tasks)

    def test_replace_drops_missing_rows(self):
        self.store.replace([make_task('1', 'a'), make_task('2', 'b')])
        self.store.replace([make_task('2', 'b')])

        self.assertEqual([task.id for task in self.store.snapshot()], ['2'])

    def test_operations(self):
        task = self.store.add('买菜', Priority.LOW)
        self.store.add('做饭')
        self.store.toggle(task.id)

        snapshot = self.store.snapshot()
        self.assertEqual([t.text for t in snapshot], ['买菜', '做饭'])
        self.assertTrue(snapshot[0].completed)
        self.assertEqual(snapshot[0].priority, Priority.LOW)

    def test_arbiter_commits_to_database(self):
        self.store.replace([make_task('1', 'a'), make_task('2', 'b')])
        arbiter = PendingChangeArbiter(self.store, timer_factory=FakeTimerFactory())
        snapshot = self.store.snapshot()

        arbiter.begin_pending(snapshot, [replace(snapshot[0], priority=Priority.HIGH)])
        arbiter.confirm()

        self.assertEqual(self.store.snapshot(), [make_task('1', 'a', Priority.HIGH)])


class ConfigTests(SimpleTestCase):
    """Tests for reading assistant settings."""

    @override_settings(TODO_ASSISTANT={
        'workload_threshold': 3,
        'categories': {'work': ['meeting']},
        'PENDING_TIMEOUT_SECONDS': 5,
        'bogus': 1,
    })
    def test_overrides(self):
        config = get_engine_config()

        self.assertEqual(config.workload_threshold, 3)
        self.assertEqual(config.categories, {'work': ('meeting',)})
        self.assertEqual(config.merge_threshold, 0.5)
        self.assertEqual(get_pending_timeout(), 5.0)

    @override_settings(TODO_ASSISTANT={})
    def test_defaults(self):
        self.assertEqual(get_engine_config(), EngineConfig())
        self.assertEqual(get_pending_timeout(), 60.0)


class APIEndpointTests(APITestCase):
    """Tests for the API endpoints."""

    def setUp(self):
        cache.clear()
        views.reset_arbiter()
        self.store = DatabaseTaskStore()

    def tearDown(self):
        views.reset_arbiter()

    def post_json(self, url, data=None):
        return self.client.post(
            url,
            data=json.dumps(data or {}),
            content_type='application/json'
        )

    def test_api_info_endpoint(self):
        response = self.client.get('/api/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('endpoints', response.data)
        self.assertIn('ERR_CHANGE_PENDING', response.data['error_codes'])

    def test_add_and_list_tasks(self):
        response = self.post_json('/api/tasks/', {'text': '准备会议', 'priority': 'high'})
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.get('/api/tasks/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['tasks'][0]['priority'], 'high')

    def test_add_task_rejects_blank_text(self):
        response = self.post_json('/api/tasks/', {'text': '   '})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])

    def test_toggle_and_delete(self):
        task = self.store.add('a')

        response = self.client.patch(f'/api/tasks/{task.id}/toggle/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['task']['completed'])

        response = self.client.delete(f'/api/tasks/{task.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.store.snapshot(), [])

        response = self.client.delete(f'/api/tasks/{task.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error_code'], 'ERR_TASK_NOT_FOUND')

    def test_reorder(self):
        self.store.replace([make_task('1', 'a'), make_task('2', 'b')])

        response = self.post_json('/api/tasks/reorder/', {'ids': ['2', '1']})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([task.id for task in self.store.snapshot()], ['2', '1'])

        response = self.post_json('/api/tasks/reorder/', {'ids': ['2']})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], 'ERR_INVALID_ORDER')

    def test_calendar(self):
        self.store.replace([make_task('1', 'a'), make_task('2', 'b', created_at=NOW - DAY_MS)])

        response = self.client.get('/api/tasks/calendar/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(set(response.data['days']), {'2023-11-14', '2023-11-13'})

    def test_analysis_endpoint(self):
        self.store.replace([make_task('1', '准备会议'), make_task('2', 'done', completed=True)])

        response = self.client.get('/api/assistant/analysis/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['analysis']['categories'], {'work': 1})
        self.assertEqual(response.data['analysis']['completion_rate'], 0.5)

    def test_apply_and_confirm_merge(self):
        self.store.replace([
            make_task('1', '整理 会议 纪要'),
            make_task('2', '整理 会议 材料 纪要'),
        ])

        response = self.client.get('/api/assistant/suggestions/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['suggestions'][0]['type'], 'merge')
        self.assertFalse(response.data['pending'])

        response = self.post_json('/api/assistant/suggestions/0/apply/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        pending = response.data['pending']
        self.assertEqual(pending['state'], 'pending')
        self.assertEqual(len(pending['proposed_tasks']), 1)
        self.assertEqual([task['id'] for task in pending['changes']['removed']], ['2'])

        # Store untouched until confirmed
        self.assertEqual(len(self.store.snapshot()), 2)

        response = self.post_json('/api/assistant/suggestions/0/apply/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error_code'], 'ERR_CHANGE_PENDING')

        response = self.post_json('/api/assistant/pending/confirm/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        tasks = self.store.snapshot()
        self.assertEqual(len(tasks), 1)
        self.assertEqual(tasks[0].priority, Priority.HIGH)

        response = self.post_json('/api/assistant/pending/confirm/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_apply_and_cancel(self):
        self.store.replace([make_task('1', '紧急修复')])

        response = self.post_json('/api/assistant/suggestions/0/apply/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get('/api/assistant/pending/')
        self.assertEqual(response.data['pending']['state'], 'pending')
        self.assertGreater(response.data['pending']['seconds_remaining'], 0)

        response = self.post_json('/api/assistant/pending/cancel/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.store.snapshot(), [make_task('1', '紧急修复')])

        response = self.client.get('/api/assistant/pending/')
        self.assertEqual(response.data['pending']['state'], 'idle')

    def test_apply_unknown_index(self):
        response = self.post_json('/api/assistant/suggestions/5/apply/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error_code'], 'ERR_SUGGESTION_NOT_FOUND')

    def test_preview_endpoint(self):
        data = {
            'now': NOW,
            'tasks': [
                {'id': 'a', 'text': '整理 会议 纪要', 'created_at': NOW},
                {'id': 'b', 'text': '整理 会议 材料 纪要'},
            ]
        }
        response = self.post_json('/api/assistant/preview/', data)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        merge = response.data['suggestions'][0]
        self.assertEqual(merge['type'], 'merge')
        self.assertEqual(len(merge['proposed_tasks']), 1)
        self.assertEqual(merge['proposed_tasks'][0]['priority'], 'high')
        self.assertEqual(self.store.snapshot(), [])

    def test_preview_rejects_duplicate_ids(self):
        data = {'tasks': [{'id': 'a', 'text': 'x'}, {'id': 'a', 'text': 'y'}]}
        response = self.post_json('/api/assistant/preview/', data)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], 'ERR_INVALID_TASKS')

    def test_preview_rejects_bad_priority(self):
        data = {'tasks': [{'text': 'x', 'priority': 'urgent'}]}
        response = self.post_json('/api/assistant/preview/', data)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_edits_refused_while_change_pending(self):
        """Add, toggle, delete and reorder wait until the pending change is settled."""
        self.store.replace([make_task('1', '紧急修复'), make_task('2', 'b')])

        response = self.post_json('/api/assistant/suggestions/0/apply/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        responses = [
            self.post_json('/api/tasks/', {'text': 'added while pending'}),
            self.client.patch('/api/tasks/2/toggle/'),
            self.client.delete('/api/tasks/2/'),
            self.post_json('/api/tasks/reorder/', {'ids': ['2', '1']}),
        ]
        for response in responses:
            self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
            self.assertEqual(response.data['error_code'], 'ERR_CHANGE_PENDING')
            self.assertEqual(response.data['pending']['state'], 'pending')

        # Reads still work
        response = self.client.get('/api/tasks/')
        self.assertEqual(response.data['count'], 2)

        response = self.post_json('/api/assistant/pending/confirm/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            self.store.snapshot(),
            [make_task('1', '紧急修复', Priority.HIGH), make_task('2', 'b')]
        )

        response = self.post_json('/api/tasks/', {'text': 'added after confirm'})
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(
            [task.text for task in self.store.snapshot()],
            ['紧急修复', 'b', 'added after confirm']
        )

    def test_edits_allowed_again_after_cancel(self):
        self.store.replace([make_task('1', '紧急修复')])
        self.post_json('/api/assistant/suggestions/0/apply/')
        self.post_json('/api/assistant/pending/cancel/')

        response = self.client.patch('/api/tasks/1/toggle/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(self.store.snapshot()[0].completed)

    def test_apply_refused_when_index_moved(self):
        """The listed type guards against the list changing between GET and apply."""
        self.store.replace([
            make_task('m1', '整理 会议 纪要'),
            make_task('m2', '整理 会议 材料 纪要'),
            make_task('u1', '紧急修复'),
        ])
        response = self.client.get('/api/assistant/suggestions/')
        self.assertEqual(
            [item['type'] for item in response.data['suggestions']],
            ['merge', 'priority']
        )

        # Completing m1 removes the merge suggestion, so #0 is now the urgent one
        self.client.patch('/api/tasks/m1/toggle/')

        response = self.post_json('/api/assistant/suggestions/0/apply/', {'type': 'merge'})
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error_code'], 'ERR_SUGGESTION_CHANGED')
        self.assertEqual(response.data['suggestion']['type'], 'priority')

        response = self.client.get('/api/assistant/pending/')
        self.assertEqual(response.data['pending']['state'], 'idle')

        response = self.post_json('/api/assistant/suggestions/0/apply/', {'type': 'priority'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['suggestion']['type'], 'priority')

    def test_apply_rejects_unknown_type(self):
        self.store.replace([make_task('1', '紧急修复')])

        response = self.post_json('/api/assistant/suggestions/0/apply/', {'type': 'teleport'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
