"""Единая настройка логирования для всего приложения.

Корневой логгер получает формат с временем, именем логгера и уровнем.
Переводы строк в сообщениях экранируются: текст ошибок приходит от
клиентов и не должен подделывать соседние записи журнала.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def sanitize_log_message(record_msg: str) -> str:
    """Экранирует переводы строк в сообщении журнала."""
    if isinstance(record_msg, str):
        return record_msg.replace("\n", "\\n").replace("\r", "\\r")
    return record_msg


class SanitizedFormatter(logging.Formatter):
    """Форматтер, экранирующий переводы строк в тексте сообщения."""

    def formatMessage(self, record):
        original_message = record.message
        record.message = sanitize_log_message(record.message)
        s = super().formatMessage(record)
        record.message = original_message
        return s


def setup_logging(log_file: str | None = None, level: str | None = None) -> None:
    """
    Настраивает корневой логгер.

    :param log_file: путь к файлу журнала; если задан, добавляется
        `RotatingFileHandler` (5 МБ, 5 архивов). Вывод в stdout остаётся
        всегда.
    :param level: имя уровня (``DEBUG``, ``INFO`` ...); по умолчанию
        берётся из переменной ``LOG_LEVEL`` или ``INFO``.
    """
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    formatter = SanitizedFormatter(LOG_FORMAT)
    handlers: list[logging.Handler] = []

    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as e:
            sys.stderr.write(f"WARNING: не удалось открыть файл журнала {log_file}: {e}\n")

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        handlers=handlers,
        force=True,
    )

    # Сторонние библиотеки слишком многословны на уровне INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
