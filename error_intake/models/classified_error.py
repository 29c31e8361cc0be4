from typing import Any, Dict

from pydantic import BaseModel, field_validator

from error_intake.models.tracked_error import ErrorSource, ErrorType, Severity


class ClassifiedError(BaseModel):
    """
    Ошибка, уже классифицированная обработчиком исключений.

    Поля:
        error_type: тип ошибки (``connection_error``, ``validation_error`` ...);
        error_source: подсистема‑источник (``payment``, ``database`` ...);
        severity: исходная серьёзность, назначенная классификатором;
        message: текст ошибки как есть;
        stack_trace: полный стек вызовов, если он доступен.

    Неизвестные тип и источник приводятся к ``unknown_error`` и ``unknown``.
    """

    error_type: ErrorType = ErrorType.UNKNOWN_ERROR
    error_source: ErrorSource = ErrorSource.UNKNOWN
    severity: Severity = Severity.MEDIUM
    message: str
    stack_trace: str | None = None

    @field_validator("error_type", mode="before")
    @classmethod
    def _known_type(cls, value):
        return ErrorType.coerce(value)

    @field_validator("error_source", mode="before")
    @classmethod
    def _known_source(cls, value):
        return ErrorSource.coerce(value)


class ErrorContext(BaseModel):
    """Контекст запроса, в котором произошла ошибка."""

    route: str | None = None
    method: str | None = None
    user_id: str | None = None
    metadata: Dict[str, Any] | None = None


class TrackResult(BaseModel):
    """
    Итог обработки одной ошибки движком.

    ``filtered=True`` означает, что ошибка отброшена фильтром шума и ничего
    не сохранялось; в этом случае ``error_id`` пуст, а ``reason`` объясняет
    причину.
    """

    error_id: str | None = None
    ticket_id: str | None = None
    is_new: bool = False
    filtered: bool = False
    reason: str | None = None
