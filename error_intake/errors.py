"""
Классы ошибок приложения с метаданными классификации.

Каждое исключение несёт тип, источник и серьёзность, а также признаки
«ошибка пользователя» и «нужен тикет». Глобальный обработчик исключений
опирается на эти поля, чтобы решить, отправлять ли ошибку в движок учёта
и какой ответ вернуть клиенту.
"""

from typing import Any, Dict

DEFAULT_USER_MESSAGE = "Ha ocurrido un error. Por favor, intenta de nuevo."
UNEXPECTED_USER_MESSAGE = "Ha ocurrido un error inesperado. Por favor, intenta de nuevo."


class AppError(Exception):
    """Базовая ошибка приложения с метаданными для автоматических тикетов."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        error_type: str = "unknown_error",
        error_source: str = "unknown",
        severity: str = "medium",
        is_user_error: bool = False,
        should_create_ticket: bool | None = None,
        user_message: str | None = None,
        metadata: Dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.error_source = error_source
        self.severity = severity
        self.is_user_error = is_user_error
        self.should_create_ticket = (
            (not is_user_error) if should_create_ticket is None else should_create_ticket
        )
        self.user_message = user_message or DEFAULT_USER_MESSAGE
        self.metadata = metadata
        self.original_error = original_error


# ============ Ошибки пользователя (без тикетов) ============

class ValidationError(AppError):
    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(
            message,
            status_code=400,
            error_type="validation_error",
            error_source="internal_service",
            severity="low",
            is_user_error=True,
            user_message=message,
            metadata={"field": field} if field else None,
        )


class AuthenticationError(AppError):
    def __init__(self, message: str = "No autorizado") -> None:
        super().__init__(
            message,
            status_code=401,
            error_type="permission_error",
            error_source="authentication",
            severity="low",
            is_user_error=True,
            user_message=message,
        )


class ForbiddenError(AppError):
    def __init__(self, message: str = "Acceso denegado") -> None:
        super().__init__(
            message,
            status_code=403,
            error_type="permission_error",
            error_source="authentication",
            severity="low",
            is_user_error=True,
            user_message=message,
        )


class NotFoundError(AppError):
    def __init__(self, resource: str = "Recurso") -> None:
        super().__init__(
            f"{resource} no encontrado",
            status_code=404,
            error_type="not_found_error",
            error_source="internal_service",
            severity="low",
            is_user_error=True,
            user_message=f"{resource} no encontrado",
        )


class ConflictError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            status_code=409,
            error_type="validation_error",
            error_source="internal_service",
            severity="low",
            is_user_error=True,
            user_message=message,
        )


class RateLimitError(AppError):
    def __init__(self, message: str = "Demasiadas solicitudes. Intenta de nuevo más tarde.") -> None:
        super().__init__(
            message,
            status_code=429,
            error_type="rate_limit_error",
            error_source="internal_service",
            severity="low",
            is_user_error=True,
            user_message=message,
        )


# ============ Системные ошибки (создают тикеты) ============

class DatabaseError(AppError):
    def __init__(self, message: str, original_error: BaseException | None = None) -> None:
        super().__init__(
            message,
            status_code=500,
            error_type="connection_error",
            error_source="database",
            severity="high",
            user_message="Error de conexión con la base de datos. Estamos trabajando en solucionarlo.",
            original_error=original_error,
        )


class ExternalApiError(AppError):
    def __init__(
        self,
        service: str,
        message: str,
        original_error: BaseException | None = None,
        severity: str = "medium",
    ) -> None:
        super().__init__(
            f"Error en servicio externo {service}: {message}",
            status_code=502,
            error_type="integration_error",
            error_source="external_api",
            severity=severity,
            user_message=f"Error al conectar con {service}. Por favor, intenta de nuevo.",
            metadata={"service": service},
            original_error=original_error,
        )


class PaymentError(AppError):
    """Ошибка платежа: пользовательская (400, без тикета) или системная (500, critical)."""

    def __init__(
        self,
        message: str,
        original_error: BaseException | None = None,
        is_user_error: bool = False,
    ) -> None:
        super().__init__(
            message,
            status_code=400 if is_user_error else 500,
            error_type="validation_error" if is_user_error else "integration_error",
            error_source="payment",
            severity="low" if is_user_error else "critical",
            is_user_error=is_user_error,
            user_message=message if is_user_error else "Error procesando el pago. Nuestro equipo ha sido notificado.",
            original_error=original_error,
        )


class FileStorageError(AppError):
    def __init__(self, operation: str, message: str, original_error: BaseException | None = None) -> None:
        super().__init__(
            f"Error de almacenamiento ({operation}): {message}",
            status_code=500,
            error_type="system_error",
            error_source="file_storage",
            severity="high",
            user_message="Error al procesar el archivo. Por favor, intenta de nuevo.",
            metadata={"operation": operation},
            original_error=original_error,
        )


class EmailServiceError(AppError):
    def __init__(self, message: str, original_error: BaseException | None = None) -> None:
        super().__init__(
            message,
            status_code=500,
            error_type="integration_error",
            error_source="email",
            severity="medium",
            user_message="Error al enviar el correo. Lo intentaremos de nuevo.",
            original_error=original_error,
        )


class SMSServiceError(AppError):
    def __init__(self, message: str, original_error: BaseException | None = None) -> None:
        super().__init__(
            message,
            status_code=500,
            error_type="integration_error",
            error_source="sms",
            severity="medium",
            user_message="Error al enviar el SMS. Lo intentaremos de nuevo.",
            original_error=original_error,
        )


class WebSocketError(AppError):
    def __init__(self, message: str, original_error: BaseException | None = None) -> None:
        super().__init__(
            message,
            status_code=500,
            error_type="connection_error",
            error_source="websocket",
            severity="high",
            user_message="Error de conexión en tiempo real.",
            original_error=original_error,
        )


class ConfigurationError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            status_code=500,
            error_type="configuration_error",
            error_source="internal_service",
            severity="critical",
            user_message="Error de configuración del sistema. Nuestro equipo ha sido notificado.",
        )


class OperationTimeoutError(AppError):
    def __init__(self, operation: str, timeout_ms: int, original_error: BaseException | None = None) -> None:
        super().__init__(
            f"Timeout en operación {operation} después de {timeout_ms}ms",
            status_code=504,
            error_type="timeout_error",
            error_source="internal_service",
            severity="high",
            user_message="La operación tardó demasiado. Por favor, intenta de nuevo.",
            metadata={"operation": operation, "timeout_ms": timeout_ms},
            original_error=original_error,
        )


class InternalError(AppError):
    def __init__(
        self,
        message: str,
        original_error: BaseException | None = None,
        severity: str = "high",
    ) -> None:
        super().__init__(
            message,
            status_code=500,
            error_type="system_error",
            error_source="internal_service",
            severity=severity,
            user_message="Error interno del servidor. Nuestro equipo ha sido notificado.",
            original_error=original_error,
        )


def wrap_error(error: BaseException | Any, context: str | None = None) -> AppError:
    """Приводит любое исключение к `AppError`; неизвестные становятся `InternalError`."""
    if isinstance(error, AppError):
        return error
    if isinstance(error, BaseException):
        text = str(error) or error.__class__.__name__
        return InternalError(f"{context}: {text}" if context else text, original_error=error)
    return InternalError(f"{context}: {error}" if context else str(error))


def should_create_ticket_for_error(error: BaseException | Any) -> bool:
    if isinstance(error, AppError):
        return error.should_create_ticket
    # Неизвестные ошибки всегда заслуживают тикета
    return True


def get_user_message(error: BaseException | Any) -> str:
    if isinstance(error, AppError):
        return error.user_message
    return UNEXPECTED_USER_MESSAGE


# ============ Ошибки самого движка ============

class StorageError(RuntimeError):
    """Сбой хранилища записей об ошибках; пробрасывается вызывающему коду."""


class FingerprintConflictError(StorageError):
    """
    Незакрытая запись с таким же отпечатком уже существует в окне.

    Хранилище возбуждает это исключение вместо создания дубликата; в
    атрибуте ``existing`` лежит запись‑владелец отпечатка.
    """

    def __init__(self, fingerprint: str, existing: Any) -> None:
        super().__init__(f"Отпечаток {fingerprint} уже занят записью {getattr(existing, 'id', '?')}")
        self.fingerprint = fingerprint
        self.existing = existing


class IssueTrackerError(RuntimeError):
    """Ошибка обращения к внешнему трекеру задач."""


class EmailDeliveryError(RuntimeError):
    """Ошибка отправки письма через почтовый сервис."""
