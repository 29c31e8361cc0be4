"""
Оркестратор учёта системных ошибок.

Связывает фильтр шума, расчёт приоритета, хранилище записей и побочные
эффекты (тикеты, уведомления). Сбои хранилища пробрасываются вызывающему
коду: потерять запись об ошибке нельзя. Тикеты и письма создаются по
принципу «как получится» и никогда не ломают основной путь.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List

from error_intake.errors import FingerprintConflictError
from error_intake.models.classified_error import ClassifiedError, ErrorContext, TrackResult
from error_intake.models.tracked_error import Severity, TrackedError, serialize_metadata
from error_intake.services.fingerprint import generate_fingerprint
from error_intake.services.noise_filter import NoiseFilter, NoiseFilterResult
from error_intake.services.notifier import HighPriorityNotifier
from error_intake.services.priority_calculator import (
    CascadeIndicators,
    PriorityCalculator,
    PriorityFactors,
    PriorityScore,
)
from error_intake.services.ticket_dispatcher import TicketDispatcher
from error_intake.storage.base import ErrorStore

logger = logging.getLogger(__name__)

DEFAULT_DEDUP_WINDOW = timedelta(hours=1)
STATS_SAMPLE_SIZE = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorTrackingService:
    """
    Точка входа движка: одна операция `track_error` на каждую наблюдаемую ошибку.

    Атрибуты:
        errors: хранилище записей об ошибках.
        noise_filter: фильтр шума с собственным кэшем подавлений.
        tickets: диспетчер автоматических тикетов.
        notifier: рассылка писем о высокоприоритетных ошибках.
        dedup_window: окно, в пределах которого повторы сливаются в одну запись.
    """

    def __init__(
        self,
        errors: ErrorStore,
        noise_filter: NoiseFilter,
        tickets: TicketDispatcher,
        notifier: HighPriorityNotifier,
        clock: Callable[[], datetime] | None = None,
        dedup_window: timedelta = DEFAULT_DEDUP_WINDOW,
        max_metadata_bytes: int = 8192,
        cascade_detection: bool = True,
    ) -> None:
        self.errors = errors
        self.noise_filter = noise_filter
        self.tickets = tickets
        self.notifier = notifier
        self.clock = clock or _utcnow
        self.dedup_window = dedup_window
        self.max_metadata_bytes = max_metadata_bytes
        self.cascade_detection = cascade_detection

    async def track_error(self, error: ClassifiedError, context: ErrorContext | None = None) -> TrackResult:
        """
        Фильтрует, дедуплицирует, сохраняет ошибку и запускает побочные эффекты.

        :param error: классифицированная ошибка.
        :param context: контекст запроса (маршрут, метод, пользователь, метаданные).
        :return: `TrackResult`; при ``filtered=True`` ничего не сохранялось.
        :raises StorageError: и любые другие ошибки хранилища пробрасываются.
        """
        context = context or ErrorContext()

        verdict = self.noise_filter.evaluate(
            error.message,
            stack_trace=error.stack_trace,
            route=context.route,
            metadata=context.metadata,
        )
        if not verdict.should_process:
            logger.debug("Ошибка отфильтрована: %s", verdict.reason)
            return TrackResult(filtered=True, reason=verdict.reason)

        now = self.clock()
        since = now - self.dedup_window
        error_type, error_source = error.error_type.value, error.error_source.value
        fingerprint = generate_fingerprint(error_type, error_source, error.message, context.route)

        existing = await self.errors.find_unresolved_by_fingerprint(fingerprint, since)
        if existing:
            return await self._track_repeat(existing, error, context, verdict, now)

        indicators = await self._cascade_indicators(verdict.group_key, since)
        score = self._score(error_source, error_type, error.severity, 1, context, indicators)

        try:
            record = await self.errors.create_error(
                {
                    "fingerprint": fingerprint,
                    "error_type": error_type,
                    "error_source": error_source,
                    "severity": error.severity,
                    "message": error.message,
                    "stack_trace": error.stack_trace,
                    "route": context.route,
                    "method": context.method,
                    "user_id": context.user_id,
                    "metadata": serialize_metadata(context.metadata, self.max_metadata_bytes),
                    "occurrence_count": 1,
                    "first_occurrence": now,
                    "last_occurrence": now,
                    "calculated_priority": score.priority,
                    "priority_score": score.total,
                    "group_key": verdict.group_key,
                    "is_transient": verdict.is_transient,
                },
                since,
            )
        except FingerprintConflictError as conflict:
            # Параллельный запрос успел создать запись первым
            logger.info("Отпечаток %s уже занят, ошибка учтена как повтор", fingerprint)
            return await self._track_repeat(conflict.existing, error, context, verdict, now)

        logger.info(
            "Новая системная ошибка %s: %s/%s priority=%s score=%d",
            record.id, record.error_source, record.error_type, score.priority.value, score.total,
        )

        ticket_id = await self.tickets.create_ticket_for_error(record, score.reasoning, context.user_id)
        if ticket_id:
            record = record.model_copy(update={"ticket_id": ticket_id})
        await self.notifier.notify(record, score.reasoning)

        return TrackResult(error_id=record.id, ticket_id=ticket_id, is_new=True)

    async def _track_repeat(
        self,
        existing: TrackedError,
        error: ClassifiedError,
        context: ErrorContext,
        verdict: NoiseFilterResult,
        now: datetime,
    ) -> TrackResult:
        occurrence_count = existing.occurrence_count + 1
        severity = Severity.most_severe(existing.severity, error.severity)
        group_key = verdict.group_key or existing.group_key

        indicators = await self._cascade_indicators(group_key, now - self.dedup_window, existing)
        score = self._score(existing.error_source, existing.error_type, severity, occurrence_count, context, indicators)

        record = await self.errors.update_error(
            existing.id,
            occurrence_count=occurrence_count,
            last_occurrence=now,
            severity=severity,
            calculated_priority=score.priority,
            priority_score=score.total,
            group_key=group_key,
            is_transient=verdict.is_transient,
        )
        logger.debug(
            "Повтор ошибки %s (#%d) priority=%s score=%d",
            record.id, occurrence_count, score.priority.value, score.total,
        )

        ticket_id = record.ticket_id
        if not ticket_id:
            ticket_id = await self.tickets.create_ticket_for_error(record, score.reasoning, context.user_id)
            if ticket_id:
                record = record.model_copy(update={"ticket_id": ticket_id})
        await self.notifier.notify(record, score.reasoning)

        return TrackResult(error_id=record.id, ticket_id=ticket_id, is_new=False)

    @staticmethod
    def _score(
        error_source: str,
        error_type: str,
        severity: Severity,
        occurrence_count: int,
        context: ErrorContext,
        indicators: CascadeIndicators | None,
    ) -> PriorityScore:
        return PriorityCalculator.calculate(PriorityFactors(
            error_source=error_source,
            error_type=error_type,
            severity=severity.value,
            occurrence_count=occurrence_count,
            route=context.route,
            metadata=context.metadata,
            cascade_indicators=indicators,
        ))

    async def _cascade_indicators(
        self,
        group_key: str | None,
        since: datetime,
        current: TrackedError | None = None,
    ) -> CascadeIndicators | None:
        """
        Признаки каскада по незакрытым записям той же группы в окне.

        Первопричиной считается самая ранняя запись группы; новая ошибка,
        у которой уже есть соседи, первопричиной быть не может.
        """
        if not self.cascade_detection or not group_key:
            return None

        related = await self.errors.list_unresolved_by_group(
            group_key, since, exclude_id=current.id if current else None
        )
        if not related:
            return None

        is_root_cause = current is not None and all(
            current.first_occurrence <= e.first_occurrence for e in related
        )
        return CascadeIndicators(
            has_related_errors=True,
            related_error_count=len(related),
            is_root_cause=is_root_cause,
        )

    async def resolve_error(self, error_id: str, resolved_by: str) -> TrackedError:
        """
        Закрывает запись по действию администратора.

        :raises KeyError: если записи с таким идентификатором нет.
        """
        record = await self.errors.update_error(
            error_id,
            resolved=True,
            resolved_at=self.clock(),
            resolved_by=resolved_by,
        )
        logger.info("Системная ошибка %s закрыта пользователем %s", error_id, resolved_by)
        return record

    async def get_unresolved_errors(self, limit: int = 50) -> List[TrackedError]:
        return await self.errors.list_unresolved(limit)

    async def get_error_stats(self) -> Dict[str, Any]:
        """Сводка по последним записям: разбивки считаются только по незакрытым."""
        records = await self.errors.list_all(STATS_SAMPLE_SIZE)
        unresolved = [e for e in records if not e.resolved]
        return {
            "total": len(records),
            "unresolved": len(unresolved),
            "by_severity": dict(Counter(e.severity.value for e in unresolved)),
            "by_source": dict(Counter(e.error_source for e in unresolved)),
            "by_priority": dict(Counter(e.calculated_priority.value for e in unresolved)),
            "suppression": self.noise_filter.get_suppression_stats(),
        }
