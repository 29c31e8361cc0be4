"""
Конфигурация движка учёта системных ошибок.

Параметры читаются из переменных окружения (и из файла `.env`, если он
есть) один раз при создании объекта `Settings`. Все значения имеют
безопасные значения по умолчанию, поэтому приложение поднимается и без
настроенных внешних сервисов: e‑mail и Jira просто считаются
неподключёнными.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


# Загружаем переменные из .env файла, если он существует
load_dotenv()


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


@dataclass(frozen=True)
class Settings:
    # Общие
    environment: str
    log_level: str
    log_file: str | None
    port: int

    # Учёт ошибок
    admin_alert_email: str
    dedup_window_minutes: int
    suppression_prune_threshold: int
    max_metadata_bytes: int
    cascade_detection_enabled: bool

    # E-mail (Resend)
    resend_api_key: str
    resend_from_email: str

    # Jira
    jira_base_url: str
    jira_email: str
    jira_api_token: str
    jira_project_key: str

    # Выгрузка отчётов
    reports_dir: str

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @staticmethod
    def from_env() -> "Settings":
        """Собирает настройки из текущего окружения процесса."""
        return Settings(
            environment=_get_str("ENVIRONMENT", "development").lower() or "development",
            log_level=_get_str("LOG_LEVEL", "INFO").upper() or "INFO",
            log_file=_get_str("LOG_FILE") or None,
            port=_get_int("PORT", 8080),
            admin_alert_email=_get_str("ADMIN_ALERT_EMAIL", "admin@example.com"),
            dedup_window_minutes=_get_int("DEDUP_WINDOW_MINUTES", 60),
            suppression_prune_threshold=_get_int("SUPPRESSION_PRUNE_THRESHOLD", 1000),
            max_metadata_bytes=_get_int("MAX_METADATA_BYTES", 8192),
            cascade_detection_enabled=_get_bool("CASCADE_DETECTION_ENABLED", True),
            resend_api_key=_get_str("RESEND_API_KEY"),
            resend_from_email=_get_str("RESEND_FROM_EMAIL", "noreply@example.com"),
            jira_base_url=_get_str("JIRA_BASE_URL").rstrip("/"),
            jira_email=_get_str("JIRA_EMAIL"),
            jira_api_token=_get_str("JIRA_API_TOKEN"),
            jira_project_key=_get_str("JIRA_PROJECT_KEY"),
            reports_dir=_get_str("REPORTS_DIR", "reports"),
        )
