"""
Утилиты времени.

Назначение:
- единый источник "сейчас" в UTC
- naive-UTC значения для колонок БД (DateTime без таймзоны)
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Текущее время в UTC (aware datetime).
    """
    return datetime.now(UTC)


def utc_now_naive() -> datetime:
    """
    Текущее время в UTC без tzinfo — так хранятся все таймстампы в БД.
    """
    return utc_now().replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """
    Приводит datetime к naive UTC (aware значения конвертируются).
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def utc_now_iso() -> str:
    return utc_now().isoformat()
