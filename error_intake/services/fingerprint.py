"""
Отпечатки ошибок для дедупликации.

Отпечаток строится из типа, источника, нормализованного сообщения и
маршрута. Нормализация убирает из сообщения случайные идентификаторы
(UUID, числа), поэтому «Заказ 17 не найден» и «Заказ 42 не найден»
считаются одной и той же ошибкой, а отпечаток стабилен между запусками.
"""

import hashlib
import re

# UUID заменяем раньше чисел, иначе цифры внутри UUID разрушат шаблон
UUID_PATTERN = re.compile(r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}", re.IGNORECASE)
DIGITS_PATTERN = re.compile(r"\d+")
WHITESPACE_PATTERN = re.compile(r"\s+")

UUID_PLACEHOLDER = "<UUID>"
NUM_PLACEHOLDER = "<NUM>"
UNKNOWN_ROUTE = "unknown"
FINGERPRINT_LENGTH = 32


def mask_identifiers(message: str) -> str:
    """Заменяет UUID и последовательности цифр на плейсхолдеры."""
    message = UUID_PATTERN.sub(UUID_PLACEHOLDER, message or "")
    return DIGITS_PATTERN.sub(NUM_PLACEHOLDER, message)


def normalize_message(message: str) -> str:
    """
    Нормализует сообщение об ошибке для вычисления отпечатка.

    - маскирует UUID и числа (``<UUID>``, ``<NUM>``);
    - схлопывает пробельные символы и обрезает края;
    - приводит к нижнему регистру.
    """
    message = mask_identifiers(message)
    message = WHITESPACE_PATTERN.sub(" ", message).strip()
    return message.lower()


def generate_fingerprint(error_type: str, error_source: str, message: str, route: str | None = None) -> str:
    """
    Вычисляет отпечаток ошибки: SHA‑256 от
    ``"<тип>:<источник>:<нормализованное сообщение>:<маршрут>"``, усечённый
    до 32 шестнадцатеричных символов. При отсутствии маршрута используется
    ``unknown``.
    """
    data = f"{error_type}:{error_source}:{normalize_message(message)}:{route or UNKNOWN_ROUTE}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]
