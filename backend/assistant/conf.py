"""
Settings bridge for the assistant.

Reads the ``TODO_ASSISTANT`` dict from Django settings. Keys are the
lower-case ``EngineConfig`` field names plus ``PENDING_TIMEOUT_SECONDS``:

    TODO_ASSISTANT = {
        'similarity_threshold': 0.3,
        'workload_threshold': 8,
        'categories': {'work': ('meeting', 'report')},
        'PENDING_TIMEOUT_SECONDS': 60,
    }

Unknown keys are ignored with a warning.
"""

import logging
from dataclasses import fields
from typing import Any, Dict

from django.conf import settings

from .engine import EngineConfig
from .pending import DEFAULT_TIMEOUT_SECONDS


logger = logging.getLogger(__name__)

TIMEOUT_KEY = 'PENDING_TIMEOUT_SECONDS'


def _overrides() -> Dict[str, Any]:
    return dict(getattr(settings, 'TODO_ASSISTANT', {}) or {})


def get_engine_config() -> EngineConfig:
    """Build an EngineConfig from the defaults and the settings overrides."""
    known = {f.name for f in fields(EngineConfig)}
    overrides = {}
    for key, value in _overrides().items():
        if key == TIMEOUT_KEY:
            continue
        if key not in known:
            logger.warning("Ignoring unknown TODO_ASSISTANT setting: %s", key)
            continue
        if key == 'categories':
            value = {tag: tuple(keywords) for tag, keywords in value.items()}
        elif key == 'urgent_keywords':
            value = tuple(value)
        overrides[key] = value
    return EngineConfig(**overrides)


def get_pending_timeout() -> float:
    return float(_overrides().get(TIMEOUT_KEY, DEFAULT_TIMEOUT_SECONDS))
