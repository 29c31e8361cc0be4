"""
Главная точка входа FastAPI‑приложения.

`create_app` собирает настройки, логирование, хранилища, внешние
клиенты и сервис учёта ошибок, кладёт их в ``app.state``, регистрирует
глобальные обработчики исключений и подключает маршруты API с префиксом
``/api``. Запуск из командной строки: ``python -m error_intake.main``.
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

import uvicorn
from fastapi import FastAPI

from error_intake.api.endpoints import router
from error_intake.clients.email_client import ResendEmailClient
from error_intake.clients.jira_client import JiraClient
from error_intake.config import Settings
from error_intake.logging_config import setup_logging
from error_intake.middleware.error_handler import register_error_handlers
from error_intake.models.ticket import User
from error_intake.services.error_tracker import ErrorTrackingService
from error_intake.services.noise_filter import NoiseFilter
from error_intake.services.notifier import HighPriorityNotifier
from error_intake.services.ticket_dispatcher import TicketDispatcher
from error_intake.storage.memory import InMemoryErrorStore, InMemoryTicketStore, InMemoryUserDirectory

logger = logging.getLogger(__name__)


def build_tracker(settings: Settings) -> ErrorTrackingService:
    """Собирает сервис учёта ошибок с хранилищами в памяти и клиентами из настроек."""
    errors = InMemoryErrorStore()
    users = InMemoryUserDirectory([
        User(id="admin", name="Administrador", email=settings.admin_alert_email, user_type="admin"),
    ])
    dispatcher = TicketDispatcher(
        tickets=InMemoryTicketStore(),
        users=users,
        errors=errors,
        issue_tracker=JiraClient.from_settings(settings),
    )
    notifier = HighPriorityNotifier(ResendEmailClient.from_settings(settings), settings.admin_alert_email)
    return ErrorTrackingService(
        errors=errors,
        noise_filter=NoiseFilter(prune_threshold=settings.suppression_prune_threshold),
        tickets=dispatcher,
        notifier=notifier,
        dedup_window=timedelta(minutes=settings.dedup_window_minutes),
        max_metadata_bytes=settings.max_metadata_bytes,
        cascade_detection=settings.cascade_detection_enabled,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Фоновые синхронизации с трекером должны успеть завершиться до остановки
    await app.state.error_tracker.tickets.drain()


def create_app(settings: Settings | None = None, tracker: ErrorTrackingService | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_file, settings.log_level)

    app = FastAPI(title="System Error Intake Engine", version="1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.error_tracker = tracker or build_tracker(settings)

    register_error_handlers(app)
    app.include_router(router, prefix="/api")

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    logger.info("Приложение инициализировано (environment=%s)", settings.environment)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
