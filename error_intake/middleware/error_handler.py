"""
Глобальные обработчики исключений FastAPI.

Любое исключение приводится к `AppError`, логируется и, если это
системная ошибка, заслуживающая тикета, передаётся в движок учёта.
Ответ клиенту от результата учёта не зависит: сбой движка только
логируется.
"""

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from error_intake.errors import AppError, wrap_error
from error_intake.models.classified_error import ClassifiedError, ErrorContext
from error_intake.models.tracked_error import Severity

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Recurso no encontrado"


def build_context(request: Request) -> ErrorContext:
    """Собирает контекст запроса для записи об ошибке."""
    client = request.client
    return ErrorContext(
        route=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        metadata={
            "query": dict(request.query_params),
            "path_params": dict(request.path_params),
            "user_agent": request.headers.get("user-agent"),
            "ip": client.host if client else None,
        },
    )


def classify(app_error: AppError, exc: BaseException) -> ClassifiedError:
    source = app_error.original_error or exc
    stack_trace = "".join(traceback.format_exception(type(source), source, source.__traceback__))
    return ClassifiedError(
        error_type=app_error.error_type,
        error_source=app_error.error_source,
        severity=Severity.coerce(app_error.severity),
        message=app_error.message,
        stack_trace=stack_trace,
    )


async def error_handler(request: Request, exc: Exception) -> JSONResponse:
    app_error = wrap_error(exc)
    context = build_context(request)

    logger.error(
        "Ошибка запроса %s %s: %s (status=%d type=%s source=%s severity=%s user_error=%s)",
        context.method, context.route, app_error.message, app_error.status_code,
        app_error.error_type, app_error.error_source, app_error.severity, app_error.is_user_error,
    )

    tracker = getattr(request.app.state, "error_tracker", None)
    if tracker is not None and app_error.should_create_ticket and not app_error.is_user_error:
        try:
            await tracker.track_error(classify(app_error, exc), context)
        except Exception:
            logger.exception("Не удалось сохранить системную ошибку")

    body = {"success": False, "message": app_error.user_message}
    settings = getattr(request.app.state, "settings", None)
    is_production = bool(settings and settings.is_production)
    if not is_production or app_error.is_user_error:
        body["error"] = {"type": app_error.error_type}
        if app_error.metadata:
            body["error"]["details"] = app_error.metadata

    return JSONResponse(status_code=app_error.status_code, content=body)


async def not_found_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # У Starlette detail по умолчанию "Not Found", собственное сообщение эндпоинта сохраняем
    detail = exc.detail if isinstance(exc.detail, str) and exc.detail != "Not Found" else None
    return JSONResponse(
        status_code=404,
        content={
            "success": False,
            "message": detail or NOT_FOUND_MESSAGE,
            "error": {"type": "not_found_error", "path": request.url.path},
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(404, not_found_handler)
    app.add_exception_handler(AppError, error_handler)
    app.add_exception_handler(Exception, error_handler)
