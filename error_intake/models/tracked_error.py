"""
Модель отслеживаемой системной ошибки и связанные перечисления.

`TrackedError` — одна запись на «класс» одинаковых ошибок в пределах окна
дедупликации. Запись создаётся при первом неподавленном появлении,
обновляется при каждом повторе и закрывается только явным действием
администратора.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @classmethod
    def coerce(cls, value: "Severity | str | None") -> "Severity":
        """Приводит строку к `Severity`; неизвестные значения считаются ``low``."""
        try:
            return cls(value)
        except ValueError:
            return cls.LOW

    @classmethod
    def most_severe(cls, *values: "Severity | str") -> "Severity":
        return max((cls.coerce(v) for v in values), key=lambda s: s.rank)


_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class ErrorSource(str, Enum):
    DATABASE = "database"
    EXTERNAL_API = "external_api"
    INTERNAL_SERVICE = "internal_service"
    AUTHENTICATION = "authentication"
    PAYMENT = "payment"
    FILE_STORAGE = "file_storage"
    WEBSOCKET = "websocket"
    EMAIL = "email"
    SMS = "sms"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: "ErrorSource | str | None") -> "ErrorSource":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class ErrorType(str, Enum):
    CONNECTION_ERROR = "connection_error"
    TIMEOUT_ERROR = "timeout_error"
    VALIDATION_ERROR = "validation_error"
    PERMISSION_ERROR = "permission_error"
    NOT_FOUND_ERROR = "not_found_error"
    RATE_LIMIT_ERROR = "rate_limit_error"
    CONFIGURATION_ERROR = "configuration_error"
    INTEGRATION_ERROR = "integration_error"
    SYSTEM_ERROR = "system_error"
    UNKNOWN_ERROR = "unknown_error"

    @classmethod
    def coerce(cls, value: "ErrorType | str | None") -> "ErrorType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN_ERROR


class CalculatedPriority(str, Enum):
    URGENTE = "urgente"
    ALTA = "alta"
    MEDIA = "media"
    BAJA = "baja"

    @property
    def is_high(self) -> bool:
        return self in (CalculatedPriority.URGENTE, CalculatedPriority.ALTA)


class TrackedError(BaseModel):
    """
    Сохранённая запись об ошибке.

    Инварианты:
    - ``occurrence_count`` только растёт;
    - ``severity`` при повторе берётся как максимум из сохранённой и новой;
    - ``ticket_id`` выставляется один раз и далее переиспользуется;
    - ``calculated_priority`` и ``priority_score`` пересчитываются при каждом
      появлении ошибки.
    """

    id: str
    fingerprint: str
    error_type: str
    error_source: str
    severity: Severity
    message: str
    stack_trace: str | None = None
    route: str | None = None
    method: str | None = None
    user_id: str | None = None
    metadata: str | None = None
    occurrence_count: int = Field(default=1, ge=1)
    first_occurrence: datetime
    last_occurrence: datetime
    calculated_priority: CalculatedPriority = CalculatedPriority.MEDIA
    priority_score: int = Field(default=0, ge=0, le=100)
    group_key: str | None = None
    is_transient: bool = False
    ticket_id: str | None = None
    resolved: bool = False
    resolved_at: datetime | None = None
    resolved_by: str | None = None


TRUNCATION_MARKER = "…[truncated]"


def serialize_metadata(metadata: Dict[str, Any] | None, max_bytes: int = 8192) -> str | None:
    """
    Сериализует метаданные ошибки в JSON с ограничением размера.

    Несериализуемые значения приводятся к строке. Если результат в UTF‑8
    длиннее ``max_bytes``, строка обрезается и дополняется маркером
    ``…[truncated]`` так, чтобы итог укладывался в лимит.

    :return: JSON‑строка или ``None``, если метаданных нет.
    """
    if not metadata:
        return None
    serialized = json.dumps(metadata, ensure_ascii=False, default=str, sort_keys=True)
    encoded = serialized.encode("utf-8")
    if len(encoded) <= max_bytes:
        return serialized
    marker = TRUNCATION_MARKER.encode("utf-8")
    if max_bytes <= len(marker):
        return marker[:max(max_bytes, 0)].decode("utf-8", errors="ignore")
    budget = max_bytes - len(marker)
    # errors="ignore" отбрасывает разрезанный многобайтовый символ на границе
    return encoded[:budget].decode("utf-8", errors="ignore") + TRUNCATION_MARKER
