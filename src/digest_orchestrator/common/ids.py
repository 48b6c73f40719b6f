"""
Генерация идентификаторов.

Назначение:
- batch_id / summary_id / event_id
- все id непрозрачные строки с префиксом типа сущности
"""

from __future__ import annotations

import secrets
import uuid

from digest_orchestrator.common.time import utc_now


def new_uuid() -> str:
    """UUIDv4 строкой."""
    return str(uuid.uuid4())


def _stamped(prefix: str, nbytes: int) -> str:
    ts = utc_now().strftime("%Y%m%d%H%M%S")
    return f"{prefix}_{ts}_{secrets.token_hex(nbytes)}"


def new_event_id(prefix: str = "evt") -> str:
    """
    Идентификатор события (лог/очереди/трассировка).
    Формат: <prefix>_<UTCYYYYMMDDHHMMSS>_<rand>
    """
    return _stamped(prefix, 6)


def new_batch_id(prefix: str = "batch") -> str:
    """
    Идентификатор батча.
    Формат: <prefix>_<UTCYYYYMMDDHHMMSS>_<rand>
    """
    return _stamped(prefix, 8)


def new_summary_id(prefix: str = "sum") -> str:
    """Идентификатор саммари (юнита батча)."""
    return f"{prefix}_{secrets.token_hex(12)}"
