"""
Машина состояний батча.

Назначение:
- единая таблица допустимых переходов статуса батча
- пороги завершения первой стадии (50% / 100%)
- основа для условных (compare-and-swap) апдейтов в репозитории

Правило: переход допустим только из перечисленных исходных статусов.
Попытка перехода из любого другого статуса — no-op, а не ошибка.
"""

from __future__ import annotations

from .enums import BatchStatus

PARTIAL_THRESHOLD = 0.5
FULL_THRESHOLD = 1.0


# =============================================================================
# ТАБЛИЦА ПЕРЕХОДОВ (target <- sources)
# =============================================================================
_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.partial_complete: frozenset({BatchStatus.pending}),
    BatchStatus.complete: frozenset(
        {BatchStatus.pending, BatchStatus.partial_complete, BatchStatus.failed}
    ),
    BatchStatus.audio_requested: frozenset(
        {BatchStatus.complete, BatchStatus.partial_complete}
    ),
    BatchStatus.audio_complete: frozenset({BatchStatus.audio_requested, BatchStatus.complete}),
    BatchStatus.failed: frozenset({BatchStatus.pending, BatchStatus.partial_complete}),
    # отказ озвучки: last-writer-wins, кроме уже успешно озвученного батча.
    # вебхук audio.failed безусловный, но audio_complete не откатываем:
    # статус батча только движется вперёд
    BatchStatus.audio_failed: frozenset(set(BatchStatus) - {BatchStatus.audio_complete}),
}

# Статусы, в которых батч ещё ждёт результатов первой стадии
COLLECTING_STATES = frozenset({BatchStatus.pending, BatchStatus.partial_complete})

# Статусы, при которых повторная отправка батча на озвучку запрещена
AUDIO_DISPATCHED_STATES = frozenset(
    {BatchStatus.audio_requested, BatchStatus.audio_complete, BatchStatus.audio_failed}
)


def allowed_sources(target: BatchStatus) -> frozenset[BatchStatus]:
    """
    Исходные статусы, из которых допустим переход в target.
    """
    return _TRANSITIONS.get(target, frozenset())


def can_transition(current: BatchStatus, target: BatchStatus) -> bool:
    return current in allowed_sources(target)


def completion_ratio(received: int, expected: int) -> float:
    if expected <= 0:
        return 0.0
    return max(0, received) / expected


def reached_partial(received: int, expected: int) -> bool:
    return completion_ratio(received, expected) >= PARTIAL_THRESHOLD


def reached_full(received: int, expected: int) -> bool:
    return completion_ratio(received, expected) >= FULL_THRESHOLD
