"""
Создание тикетов для системных ошибок.

Тикет — производный побочный эффект: любой сбой здесь логируется и
превращается в ``None``, запись об ошибке от этого не страдает.
Зеркалирование тикета во внешний трекер выполняется отдельной фоновой
задачей, которую никто не ждёт; её ошибки попадают только в журнал.
"""

import asyncio
import logging
from typing import List, Set

from error_intake.clients.jira_client import IssueTracker
from error_intake.models.ticket import Ticket
from error_intake.models.tracked_error import TrackedError
from error_intake.storage.base import ErrorStore, TicketStore, UserDirectory
from error_intake.templating import render

logger = logging.getLogger(__name__)

TICKET_CATEGORY = "problema_tecnico"


class TicketDispatcher:
    """
    Создаёт автоматические тикеты и синхронизирует их с внешним трекером.

    Атрибуты:
        tickets: хранилище тикетов.
        users: справочник пользователей (поиск администратора и автора).
        errors: хранилище записей об ошибках, куда проставляется ``ticket_id``.
        issue_tracker: внешний трекер; ``None`` или неподключённый трекер
            означает, что синхронизация не выполняется.
    """

    def __init__(
        self,
        tickets: TicketStore,
        users: UserDirectory,
        errors: ErrorStore,
        issue_tracker: IssueTracker | None = None,
    ) -> None:
        self.tickets = tickets
        self.users = users
        self.errors = errors
        self.issue_tracker = issue_tracker
        self._pending_syncs: Set[asyncio.Task] = set()

    @staticmethod
    def build_description(record: TrackedError, reasoning: List[str]) -> str:
        return render("ticket_description.md", record=record, reasoning=reasoning)

    async def create_ticket_for_error(
        self,
        record: TrackedError,
        reasoning: List[str] | None = None,
        user_id: str | None = None,
    ) -> str | None:
        """
        Создаёт тикет для записи об ошибке и привязывает его к записи.

        :param record: запись об ошибке (с уже рассчитанным приоритетом).
        :param reasoning: пояснения расчёта приоритета для описания тикета.
        :param user_id: пользователь, в запросе которого произошла ошибка;
            если его нет, автором тикета становится администратор.
        :return: идентификатор тикета или ``None`` при любой ошибке.
        """
        try:
            admin = await self.users.get_admin_user()
            if admin is None:
                logger.warning("Не найден администратор для назначения тикета об ошибке %s", record.id)
                return None

            ticket = await self.tickets.create_ticket(
                user_id=user_id or admin.id,
                category=TICKET_CATEGORY,
                priority=record.calculated_priority.value,
                title=f"[Auto] Error del Sistema: {record.error_type}",
                description=self.build_description(record, reasoning or []),
            )
            ticket = await self.tickets.update_ticket(
                ticket.id,
                auto_created=True,
                error_fingerprint=record.fingerprint,
                source_component=record.error_source,
                assigned_to=admin.id,
            )
            await self.errors.update_error(record.id, ticket_id=ticket.id)

            logger.info(
                "Создан автоматический тикет %s для ошибки %s (fingerprint=%s)",
                ticket.id, record.id, record.fingerprint,
            )
            self.schedule_external_sync(ticket)
            return ticket.id
        except Exception:
            logger.exception("Не удалось создать тикет для ошибки %s", record.id)
            return None

    def schedule_external_sync(self, ticket: Ticket) -> asyncio.Task | None:
        """
        Запускает фоновое зеркалирование тикета во внешний трекер.

        Задача не ожидается вызывающим кодом; ссылка на неё хранится до
        завершения, а исход обрабатывает `_on_sync_done`.
        """
        if self.issue_tracker is None or not self.issue_tracker.is_configured():
            return None
        task = asyncio.create_task(self._sync_ticket(ticket))
        self._pending_syncs.add(task)
        task.add_done_callback(self._on_sync_done)
        return task

    async def _sync_ticket(self, ticket: Ticket) -> None:
        user = await self.users.get_user(ticket.user_id)
        issue = await self.issue_tracker.create_issue(ticket, user)
        await self.tickets.update_ticket(
            ticket.id,
            external_issue_id=issue["issue_id"],
            external_issue_key=issue["issue_key"],
        )
        logger.info("Тикет %s синхронизирован с трекером: %s", ticket.id, issue["issue_key"])

    def _on_sync_done(self, task: asyncio.Task) -> None:
        self._pending_syncs.discard(task)
        if task.cancelled():
            logger.warning("Синхронизация тикета с трекером отменена")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Ошибка синхронизации тикета с внешним трекером: %s", exc, exc_info=exc)

    @property
    def pending_syncs(self) -> int:
        return len(self._pending_syncs)

    async def drain(self) -> None:
        """Дожидается всех фоновых синхронизаций (остановка приложения, тесты)."""
        while self._pending_syncs:
            await asyncio.gather(*list(self._pending_syncs), return_exceptions=True)
