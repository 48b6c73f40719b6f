"""
Доменные перечисления (enum).

Используются во всей системе:
- жизненный цикл батча
- статусы записей ретраев
- типы саммари и миксов
"""

from __future__ import annotations

import enum


class BatchStatus(str, enum.Enum):
    """
    Статус батча (см. domain/state_machine.py).
    """

    pending = "pending"
    partial_complete = "partial_complete"
    complete = "complete"
    audio_requested = "audio_requested"
    audio_complete = "audio_complete"
    audio_failed = "audio_failed"
    failed = "failed"


class RetryStatus(str, enum.Enum):
    """
    Статус записи в журнале ретраев отправки на озвучку.
    """

    pending = "pending"
    retrying = "retrying"
    success = "success"
    failed = "failed"


class SummaryType(str, enum.Enum):
    user = "user"
    category = "category"


class MixType(str, enum.Enum):
    morning = "morning"
    afternoon = "afternoon"
    evening = "evening"
    night = "night"
