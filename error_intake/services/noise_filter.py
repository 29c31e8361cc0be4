"""
Фильтр шума для входящих системных ошибок.

Фильтр дёшево отсеивает ошибки без эксплуатационной ценности (запросы
статики, health‑check, CORS preflight, отмены пользователем, истёкшие
сессии) и на время подавляет повторы заведомо временных сбоев
(обрывы соединений, rate limit, DNS), чтобы один сетевой сбой не
превращался в лавину тикетов и писем.

Состояние подавления хранится в объекте `SuppressionCache`. По умолчанию
это словарь в памяти процесса: в многопроцессном развёртывании у каждого
процесса своё состояние. Для общего состояния достаточно передать другую
реализацию кэша, логика фильтра от этого не меняется.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from error_intake.services.fingerprint import UNKNOWN_ROUTE, mask_identifiers

logger = logging.getLogger(__name__)

SUPPRESSION_KEY_LENGTH = 100
DEFAULT_PRUNE_THRESHOLD = 1000


class NoiseFilterResult(BaseModel):
    """
    Решение фильтра по одной ошибке.

    should_process: нужно ли сохранять ошибку и создавать тикет;
    reason: человекочитаемое объяснение решения;
    is_transient: ошибка относится к временным сбоям;
    suppress_duration: окно подавления повторов в минутах;
    group_key: доменная группа для сортировки ошибок (``payment_errors`` ...).
    """

    should_process: bool
    reason: str | None = None
    is_transient: bool = False
    suppress_duration: int | None = None
    group_key: str | None = None


@dataclass(frozen=True)
class ErrorPattern:
    pattern: re.Pattern
    description: str
    suppress_minutes: Optional[int] = None


KNOWN_TRANSIENT_PATTERNS: List[ErrorPattern] = [
    ErrorPattern(
        re.compile(r"ECONNRESET|ECONNREFUSED|ETIMEDOUT|ENOTFOUND|connection reset by peer|connection refused", re.I),
        "Network connection error - usually resolves automatically",
        5,
    ),
    ErrorPattern(
        re.compile(r"socket hang up|network socket disconnected", re.I),
        "Socket disconnection - typically transient",
        5,
    ),
    ErrorPattern(
        re.compile(r"EPIPE|broken pipe", re.I),
        "Broken pipe - client disconnected",
        3,
    ),
    ErrorPattern(
        re.compile(r"too many connections|connection pool exhausted|pool exhausted", re.I),
        "Connection pool saturation - usually recovers",
        10,
    ),
    ErrorPattern(
        re.compile(r"rate limit|\b429\b|too many requests", re.I),
        "Rate limiting - wait for reset",
        15,
    ),
    ErrorPattern(
        re.compile(r"DNS resolution|getaddrinfo|ENOENT.*dns|name or service not known", re.I),
        "DNS resolution issues - often temporary",
        5,
    ),
]

# Проблемы TLS/сертификатов никогда не считаются временными и не подавляются
NON_TRANSIENT_PATTERNS: List[ErrorPattern] = [
    ErrorPattern(
        re.compile(r"certificate.*expired|SSL.*error|TLS.*handshake|CERT_HAS_EXPIRED|self[- ]signed certificate", re.I),
        "SSL/TLS certificate issue - requires attention",
    ),
]

IGNORABLE_PATTERNS: List[ErrorPattern] = [
    ErrorPattern(
        re.compile(r"favicon\.ico|robots\.txt|\.well-known", re.I),
        "Static file requests - ignorable",
    ),
    ErrorPattern(
        re.compile(r"\b(?:healthcheck|health-check|healthz|ping|ready|alive)\b", re.I),
        "Health check endpoint - monitoring noise",
    ),
    ErrorPattern(
        # Метод OPTIONS ищем только в верхнем регистре, иначе слово «options» в тексте даёт ложные срабатывания
        re.compile(r"(?i:\bpreflight\b)|\bOPTIONS\b"),
        "CORS preflight request - expected behavior",
    ),
    ErrorPattern(
        re.compile(r"user cancell?ed|user aborted|AbortError", re.I),
        "User-initiated cancellation - not an error",
    ),
    ErrorPattern(
        re.compile(r"session.*expired|session not found", re.I),
        "Normal session expiration",
    ),
]

GROUPING_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"database|postgres|pg_|connection pool", re.I), "database_errors"),
    (re.compile(r"azul|payment|stripe|transaction", re.I), "payment_errors"),
    (re.compile(r"email|smtp|resend|sendgrid", re.I), "email_errors"),
    (re.compile(r"\bsms\b|twilio|vonage", re.I), "sms_errors"),
    (re.compile(r"storage|\bs3\b|upload|download", re.I), "storage_errors"),
    (re.compile(r"websocket|ws:|socket", re.I), "websocket_errors"),
    (re.compile(r"jira|github|external.*api", re.I), "integration_errors"),
    (re.compile(r"auth|login|session|token|jwt", re.I), "auth_errors"),
]


@dataclass
class SuppressionEntry:
    until: datetime
    count: int = 1


class SuppressionCache(ABC):
    """
    Хранилище активных подавлений: ключ → `SuppressionEntry`.

    Интерфейс намеренно минимален (get/set/prune), чтобы его можно было
    реализовать поверх распределённого кэша.
    """

    @abstractmethod
    def get(self, key: str) -> SuppressionEntry | None:
        ...

    @abstractmethod
    def set(self, key: str, entry: SuppressionEntry) -> None:
        ...

    @abstractmethod
    def prune(self, now: datetime) -> int:
        """Удаляет истёкшие записи и возвращает их количество."""

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...


class InMemorySuppressionCache(SuppressionCache):
    """Подавления в словаре текущего процесса."""

    def __init__(self) -> None:
        self._entries: Dict[str, SuppressionEntry] = {}

    def get(self, key: str) -> SuppressionEntry | None:
        return self._entries.get(key)

    def set(self, key: str, entry: SuppressionEntry) -> None:
        self._entries[key] = entry

    def prune(self, now: datetime) -> int:
        expired = [key for key, entry in self._entries.items() if entry.until <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NoiseFilter:
    """
    Классифицирует ошибку как игнорируемую, временную или требующую обработки.

    Порядок проверок: игнорируемые шаблоны (наивысший приоритет), затем
    проблемы TLS (всегда обрабатываются), затем временные сбои с окном
    подавления. Группа вычисляется независимо от остальных проверок.
    """

    def __init__(
        self,
        cache: SuppressionCache | None = None,
        clock: Callable[[], datetime] | None = None,
        prune_threshold: int = DEFAULT_PRUNE_THRESHOLD,
    ) -> None:
        self.cache = cache if cache is not None else InMemorySuppressionCache()
        self.clock = clock or _utcnow
        self.prune_threshold = prune_threshold

    def evaluate(
        self,
        message: str,
        stack_trace: str | None = None,
        route: str | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> NoiseFilterResult:
        """
        Оценивает одну ошибку.

        :param message: текст ошибки.
        :param stack_trace: стек вызовов, участвует только в группировке.
        :param route: маршрут запроса.
        :param metadata: дополнительный контекст, участвует только в группировке.
        :return: `NoiseFilterResult` с решением и причиной.
        """
        message = message or ""
        full_context = " ".join([
            message,
            stack_trace or "",
            route or "",
            json.dumps(metadata or {}, default=str),
        ])

        ignorable = self._match_ignorable(message, route)
        if ignorable:
            logger.debug("Ошибка отброшена как шум: %s (%s)", message[:100], ignorable.description)
            return NoiseFilterResult(
                should_process=False,
                reason=ignorable.description,
                is_transient=False,
            )

        non_transient = self._match(NON_TRANSIENT_PATTERNS, message)
        if non_transient:
            return NoiseFilterResult(
                should_process=True,
                reason=non_transient.description,
                is_transient=False,
                group_key=self._find_group_key(full_context),
            )

        transient = self._match(KNOWN_TRANSIENT_PATTERNS, message)
        if transient:
            now = self.clock()
            key = self.generate_suppression_key(message, route)
            suppressed = self.cache.get(key)

            if suppressed and suppressed.until > now:
                suppressed.count += 1
                self.cache.set(key, suppressed)
                logger.debug("Временная ошибка подавлена: %s (повторов: %d)", message[:100], suppressed.count)
                return NoiseFilterResult(
                    should_process=False,
                    reason=f"Suppressed transient error ({suppressed.count} occurrences)",
                    is_transient=True,
                    suppress_duration=transient.suppress_minutes,
                )

            if transient.suppress_minutes:
                until = now + timedelta(minutes=transient.suppress_minutes)
                self.cache.set(key, SuppressionEntry(until=until, count=1))
                if len(self.cache) > self.prune_threshold:
                    self._cleanup_expired(now)

            return NoiseFilterResult(
                should_process=True,
                reason=transient.description,
                is_transient=True,
                suppress_duration=transient.suppress_minutes,
                group_key=self._find_group_key(full_context),
            )

        return NoiseFilterResult(
            should_process=True,
            is_transient=False,
            group_key=self._find_group_key(full_context),
        )

    @staticmethod
    def generate_suppression_key(message: str, route: str | None = None) -> str:
        """Ключ подавления: сообщение без идентификаторов (до 100 символов) и маршрут."""
        normalized = mask_identifiers(message)[:SUPPRESSION_KEY_LENGTH]
        return f"{normalized}:{route or UNKNOWN_ROUTE}"

    @staticmethod
    def _match_ignorable(message: str, route: str | None) -> ErrorPattern | None:
        combined = f"{message} {route or ''}"
        return NoiseFilter._match(IGNORABLE_PATTERNS, combined)

    @staticmethod
    def _match(patterns: List[ErrorPattern], text: str) -> ErrorPattern | None:
        for pattern in patterns:
            if pattern.pattern.search(text):
                return pattern
        return None

    @staticmethod
    def _find_group_key(context: str) -> str | None:
        for pattern, group_key in GROUPING_PATTERNS:
            if pattern.search(context):
                return group_key
        return None

    def _cleanup_expired(self, now: datetime | None = None) -> int:
        cleaned = self.cache.prune(now or self.clock())
        if cleaned:
            logger.debug("Удалено истёкших подавлений: %d", cleaned)
        return cleaned

    def get_suppression_stats(self) -> Dict[str, int]:
        """Количество активных подавлений и число известных шаблонов."""
        self._cleanup_expired()
        return {
            "active": len(self.cache),
            "patterns": len(KNOWN_TRANSIENT_PATTERNS) + len(NON_TRANSIENT_PATTERNS) + len(IGNORABLE_PATTERNS),
        }

    def reset(self) -> None:
        self.cache.clear()
