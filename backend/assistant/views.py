"""
API Views for the Todo Assistant.

This module exposes the task store, the analysis engine and the
pending-change flow over REST. The store and the arbiter are process
wide: the assistant serves a single personal task list.
"""

import logging
import threading
from typing import Optional

from django.db import connection
from rest_framework import status
from rest_framework.decorators import api_view, throttle_classes
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema

from .conf import get_engine_config, get_pending_timeout
from .engine import Priority, analyze
from .exceptions import AssistantError, ChangePendingError, ErrorCode
from .pending import Pending, PendingChangeArbiter, describe_changes, thread_timer
from .serializers import (
    ApplySuggestionSerializer,
    ReorderSerializer,
    TaskCreateSerializer,
    TaskSnapshotSerializer,
)
from .store import DatabaseTaskStore, group_by_day
from .suggestions import apply_suggestion, generate


logger = logging.getLogger(__name__)


# ============================================
# RATE LIMITING CLASSES
# ============================================

class AnalyzeRateThrottle(AnonRateThrottle):
    """Rate limit for analysis and suggestion endpoints - 30 requests per minute."""
    rate = '30/min'


class ApplyRateThrottle(AnonRateThrottle):
    """Rate limit for applying suggestions - 10 requests per minute."""
    rate = '10/min'


# ============================================
# SHARED STATE
# ============================================

_arbiter: Optional[PendingChangeArbiter] = None
_arbiter_lock = threading.Lock()


def get_store() -> DatabaseTaskStore:
    return DatabaseTaskStore()


def closing_timer(interval, callback):
    """Countdown timer whose thread releases its database connection."""
    def run():
        try:
            callback()
        finally:
            connection.close()
    return thread_timer(interval, run)


def get_arbiter() -> PendingChangeArbiter:
    """Return the process-wide arbiter, creating it on first use."""
    global _arbiter
    with _arbiter_lock:
        if _arbiter is None:
            _arbiter = PendingChangeArbiter(
                get_store(),
                timeout=get_pending_timeout(),
                timer_factory=closing_timer
            )
        return _arbiter


def reset_arbiter() -> None:
    """Drop the process-wide arbiter, cancelling any pending change."""
    global _arbiter
    with _arbiter_lock:
        if _arbiter is not None:
            _arbiter.cancel()
        _arbiter = None


def _error(code: ErrorCode, message: str, http_status: int, **extra) -> Response:
    return Response(
        {
            'success': False,
            'error_code': code.value,
            'message': message,
            **extra
        },
        status=http_status
    )


def _assistant_error(exc: AssistantError, http_status: int) -> Response:
    return _error(exc.code, str(exc), http_status)


def _change_pending(arbiter: PendingChangeArbiter) -> Response:
    return _error(
        ErrorCode.ERR_CHANGE_PENDING,
        'Another change is awaiting confirmation.',
        status.HTTP_409_CONFLICT,
        pending=_pending_payload(arbiter)
    )


def _blocked_by_pending() -> Optional[Response]:
    """
    Refuse direct list edits while a proposal awaits confirmation.

    The proposal was built from the list as it was when the suggestion
    was applied, and confirming it replaces the whole list.
    """
    arbiter = get_arbiter()
    if arbiter.is_pending:
        return _change_pending(arbiter)
    return None


def _pending_payload(arbiter: PendingChangeArbiter) -> dict:
    state = arbiter.state
    if not isinstance(state, Pending):
        return {'state': 'idle', 'seconds_remaining': 0}

    return {
        'state': 'pending',
        'seconds_remaining': round(arbiter.seconds_remaining(), 1),
        'deadline': state.deadline,
        'proposed_tasks': [task.to_dict() for task in state.proposed_tasks],
        'changes': describe_changes(state.original_tasks, state.proposed_tasks).to_dict(),
    }


# ============================================
# TASK STORE ENDPOINTS
# ============================================

@extend_schema(
    summary="List or add tasks",
    description="GET returns the stored list in order. POST appends a new task.",
    request=TaskCreateSerializer,
    responses={200: OpenApiTypes.OBJECT, 201: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['GET', 'POST'])
def task_list(request: Request) -> Response:
    """
    GET  /api/tasks/
    POST /api/tasks/   {"text": "...", "priority": "medium"}
    """
    store = get_store()

    if request.method == 'GET':
        tasks = store.snapshot()
        return Response({
            'success': True,
            'count': len(tasks),
            'tasks': [task.to_dict() for task in tasks]
        })

    blocked = _blocked_by_pending()
    if blocked is not None:
        return blocked

    serializer = TaskCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return _error(
            ErrorCode.ERR_INVALID_TASKS,
            'Invalid task data.',
            status.HTTP_400_BAD_REQUEST,
            errors=serializer.errors
        )

    task = store.add(
        serializer.validated_data['text'],
        priority=Priority(serializer.validated_data['priority'])
    )
    return Response({'success': True, 'task': task.to_dict()}, status=status.HTTP_201_CREATED)


@extend_schema(
    summary="Delete a task",
    responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['DELETE'])
def task_detail(request: Request, task_id: str) -> Response:
    """
    DELETE /api/tasks/<id>/
    """
    blocked = _blocked_by_pending()
    if blocked is not None:
        return blocked

    try:
        get_store().delete(task_id)
    except AssistantError as exc:
        return _assistant_error(exc, status.HTTP_404_NOT_FOUND)
    return Response({'success': True, 'deleted': task_id})


@extend_schema(
    summary="Toggle task completion",
    request=None,
    responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['PATCH'])
def toggle_task(request: Request, task_id: str) -> Response:
    """
    PATCH /api/tasks/<id>/toggle/
    """
    blocked = _blocked_by_pending()
    if blocked is not None:
        return blocked

    try:
        task = get_store().toggle(task_id)
    except AssistantError as exc:
        return _assistant_error(exc, status.HTTP_404_NOT_FOUND)
    return Response({'success': True, 'task': task.to_dict()})


@extend_schema(
    summary="Reorder tasks",
    request=ReorderSerializer,
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['POST'])
def reorder_tasks(request: Request) -> Response:
    """
    POST /api/tasks/reorder/   {"ids": ["b", "a", "c"]}
    """
    blocked = _blocked_by_pending()
    if blocked is not None:
        return blocked

    serializer = ReorderSerializer(data=request.data)
    if not serializer.is_valid():
        return _error(
            ErrorCode.ERR_INVALID_ORDER,
            'Invalid reorder request.',
            status.HTTP_400_BAD_REQUEST,
            errors=serializer.errors
        )

    try:
        tasks = get_store().reorder(serializer.validated_data['ids'])
    except AssistantError as exc:
        return _assistant_error(exc, status.HTTP_400_BAD_REQUEST)
    return Response({'success': True, 'tasks': [task.to_dict() for task in tasks]})


@extend_schema(
    summary="Tasks grouped by day",
    description="Bucket the stored tasks by the UTC day they were created.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Tasks']
)
@api_view(['GET'])
def task_calendar(request: Request) -> Response:
    """
    GET /api/tasks/calendar/
    """
    grouped = group_by_day(get_store().snapshot())
    return Response({
        'success': True,
        'days': {
            day: [task.to_dict() for task in tasks]
            for day, tasks in grouped.items()
        }
    })


# ============================================
# ASSISTANT ENDPOINTS
# ============================================

@extend_schema(
    summary="Analyze the stored task list",
    description="Category counts, similar pairs, priority distribution and completion statistics.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Assistant']
)
@api_view(['GET'])
@throttle_classes([AnalyzeRateThrottle])
def task_analysis(request: Request) -> Response:
    """
    GET /api/assistant/analysis/
    """
    tasks = get_store().snapshot()
    analysis = analyze(tasks, config=get_engine_config())
    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'total_tasks': len(tasks),
        'analysis': analysis.to_dict()
    })


@extend_schema(
    summary="Get ranked suggestions",
    description="""
    Suggestions for the stored task list, high priority first.
    Use the index of a suggestion to apply it.
    """,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Assistant']
)
@api_view(['GET'])
@throttle_classes([AnalyzeRateThrottle])
def suggestion_list(request: Request) -> Response:
    """
    GET /api/assistant/suggestions/
    """
    suggestions = generate(get_store().snapshot(), config=get_engine_config())
    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'count': len(suggestions),
        'pending': get_arbiter().is_pending,
        'suggestions': [
            {'index': index, **suggestion.to_dict()}
            for index, suggestion in enumerate(suggestions)
        ]
    })


@extend_schema(
    summary="Apply a suggestion",
    description="""
    Run the suggestion's mutation against the stored list and hold the
    result as a pending change. The change confirms itself when the
    countdown runs out unless it is cancelled first.

    Send the ``type`` listed at that index to have the request refused
    when the list has changed and the index now names another suggestion.
    """,
    request=ApplySuggestionSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        404: OpenApiTypes.OBJECT,
        409: OpenApiTypes.OBJECT
    },
    tags=['Assistant']
)
@api_view(['POST'])
@throttle_classes([ApplyRateThrottle])
def apply_suggestion_view(request: Request, index: int) -> Response:
    """
    POST /api/assistant/suggestions/<index>/apply/   {"type": "merge"}
    """
    serializer = ApplySuggestionSerializer(data=request.data)
    if not serializer.is_valid():
        return _error(
            ErrorCode.ERR_SUGGESTION_NOT_FOUND,
            'Invalid suggestion type.',
            status.HTTP_400_BAD_REQUEST,
            errors=serializer.errors
        )

    arbiter = get_arbiter()
    if arbiter.is_pending:
        return _change_pending(arbiter)

    snapshot = get_store().snapshot()
    suggestions = generate(snapshot, config=get_engine_config())
    if index >= len(suggestions):
        return _error(
            ErrorCode.ERR_SUGGESTION_NOT_FOUND,
            f"No suggestion #{index}; {len(suggestions)} available.",
            status.HTTP_404_NOT_FOUND
        )

    suggestion = suggestions[index]
    expected_type = serializer.validated_data.get('type')
    if expected_type is not None and suggestion.type.value != expected_type:
        return _error(
            ErrorCode.ERR_SUGGESTION_CHANGED,
            f"Suggestion #{index} is now '{suggestion.type.value}', not '{expected_type}'.",
            status.HTTP_409_CONFLICT,
            suggestion={'index': index, **suggestion.to_dict()}
        )

    try:
        proposed = apply_suggestion(suggestion, snapshot)
        arbiter.begin_pending(snapshot, proposed)
    except ChangePendingError as exc:
        return _assistant_error(exc, status.HTTP_409_CONFLICT)
    except AssistantError as exc:
        return _assistant_error(exc, status.HTTP_400_BAD_REQUEST)

    logger.info("Applied suggestion #%d (%s)", index, suggestion.type.value)
    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'suggestion': suggestion.to_dict(),
        'pending': _pending_payload(arbiter)
    })


@extend_schema(
    summary="Pending change status",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Assistant']
)
@api_view(['GET'])
def pending_status(request: Request) -> Response:
    """
    GET /api/assistant/pending/
    """
    return Response({'success': True, 'pending': _pending_payload(get_arbiter())})


@extend_schema(
    summary="Confirm the pending change",
    request=None,
    responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    tags=['Assistant']
)
@api_view(['POST'])
def confirm_pending(request: Request) -> Response:
    """
    POST /api/assistant/pending/confirm/
    """
    if not get_arbiter().confirm():
        return _error(
            ErrorCode.ERR_NO_PENDING_CHANGE,
            'No change is awaiting confirmation.',
            status.HTTP_404_NOT_FOUND
        )
    tasks = get_store().snapshot()
    return Response({'success': True, 'tasks': [task.to_dict() for task in tasks]})


@extend_schema(
    summary="Cancel the pending change",
    request=None,
    responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    tags=['Assistant']
)
@api_view(['POST'])
def cancel_pending(request: Request) -> Response:
    """
    POST /api/assistant/pending/cancel/
    """
    if not get_arbiter().cancel():
        return _error(
            ErrorCode.ERR_NO_PENDING_CHANGE,
            'No change is awaiting confirmation.',
            status.HTTP_404_NOT_FOUND
        )
    return Response({'success': True})


@extend_schema(
    summary="Preview suggestions for a snapshot",
    description="""
    Stateless: analyze a posted task list and return its suggestions
    together with the list each suggestion would produce. Nothing is
    stored and no change becomes pending.
    """,
    request=TaskSnapshotSerializer,
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
    tags=['Assistant']
)
@api_view(['POST'])
@throttle_classes([AnalyzeRateThrottle])
def preview_suggestions(request: Request) -> Response:
    """
    POST /api/assistant/preview/   {"tasks": [...], "now": 1700000000000}
    """
    serializer = TaskSnapshotSerializer(data=request.data)
    if not serializer.is_valid():
        return _error(
            ErrorCode.ERR_INVALID_TASKS,
            'Invalid input data. Please check your tasks format.',
            status.HTTP_400_BAD_REQUEST,
            errors=serializer.errors
        )

    tasks = serializer.to_tasks()
    now = serializer.validated_data.get('now')
    config = get_engine_config()
    suggestions = generate(tasks, now=now, config=config)

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'analysis': analyze(tasks, now=now, config=config).to_dict(),
        'suggestions': [
            {
                **suggestion.to_dict(),
                'proposed_tasks': [
                    task.to_dict() for task in apply_suggestion(suggestion, tasks, now)
                ] if suggestion.actionable else None
            }
            for suggestion in suggestions
        ]
    })


@extend_schema(
    summary="API information",
    description="Get API information and available endpoints.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Info']
)
@api_view(['GET'])
def api_info(request: Request) -> Response:
    """
    Return API information and available endpoints.

    GET /api/
    """
    return Response({
        'name': 'Todo Assistant API',
        'version': '1.0.0',
        'documentation': '/api/docs/',
        'pending_timeout_seconds': get_pending_timeout(),
        'endpoints': {
            'GET /api/tasks/': 'List tasks',
            'POST /api/tasks/': 'Add a task',
            'DELETE /api/tasks/<id>/': 'Delete a task',
            'PATCH /api/tasks/<id>/toggle/': 'Toggle completion',
            'POST /api/tasks/reorder/': 'Reorder tasks',
            'GET /api/tasks/calendar/': 'Tasks grouped by creation day',
            'GET /api/assistant/analysis/': 'Analysis of the stored list',
            'GET /api/assistant/suggestions/': 'Ranked suggestions',
            'POST /api/assistant/suggestions/<index>/apply/': 'Start a pending change',
            'GET /api/assistant/pending/': 'Pending change status',
            'POST /api/assistant/pending/confirm/': 'Confirm the pending change',
            'POST /api/assistant/pending/cancel/': 'Cancel the pending change',
            'POST /api/assistant/preview/': 'Suggestions for a posted snapshot',
            'GET /api/docs/': 'Interactive API documentation',
            'GET /api/schema/': 'OpenAPI schema',
        },
        'error_codes': {
            code.value: code.name for code in ErrorCode
        }
    })
