"""
Пользовательские аудио-миксы.

Название и тип микса зависят от часа события:
05–12 утро, 12–18 день, 18–23 вечер, остальное — ночь.
"""

from __future__ import annotations

from datetime import datetime

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.domain.enums import MixType
from digest_orchestrator.storage.models import UserMix

_MIX_NAMES = {
    MixType.morning: "Your Morning Mix",
    MixType.afternoon: "Your Afternoon Mix",
    MixType.evening: "Your Evening Mix",
    MixType.night: "Your Night Mix",
}


def mix_type_for_hour(hour: int) -> MixType:
    if 5 <= hour < 12:
        return MixType.morning
    if 12 <= hour < 18:
        return MixType.afternoon
    if 18 <= hour < 23:
        return MixType.evening
    return MixType.night


def mix_info(at: datetime) -> tuple[str, MixType]:
    mix_type = mix_type_for_hour(at.hour)
    return _MIX_NAMES[mix_type], mix_type


def build_user_mix(*, user_id: str, audio_url: str, at: datetime) -> UserMix:
    """
    Создаёт ORM объект UserMix (без сохранения в БД).
    """
    name, mix_type = mix_info(at)
    return UserMix(
        user_id=user_id,
        audio_url=audio_url,
        mix_name=name,
        mix_type=mix_type.value,
        mix_icon=get_settings().mix_icon_url,
        created_at=at,
    )
