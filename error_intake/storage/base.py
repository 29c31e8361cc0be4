"""
Контракты хранилищ, с которыми работает движок учёта ошибок.

Движок не знает, где лежат данные: записи об ошибках, тикеты и
пользователи доступны ему только через эти асинхронные интерфейсы.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List

from error_intake.models.ticket import Ticket, User
from error_intake.models.tracked_error import TrackedError


class ErrorStore(ABC):
    """Хранилище записей `TrackedError`."""

    @abstractmethod
    async def find_unresolved_by_fingerprint(self, fingerprint: str, since: datetime) -> TrackedError | None:
        """Незакрытая запись с отпечатком, последнее появление которой не раньше ``since``."""

    @abstractmethod
    async def create_error(self, data: dict, since: datetime) -> TrackedError:
        """
        Создаёт запись.

        Если незакрытая запись с тем же отпечатком уже есть в окне
        (последнее появление не раньше ``since``), реализация обязана
        возбудить `FingerprintConflictError` вместо создания дубликата.
        """

    @abstractmethod
    async def update_error(self, error_id: str, **fields: Any) -> TrackedError:
        """Частичное обновление; `KeyError`, если записи нет."""

    @abstractmethod
    async def get_error(self, error_id: str) -> TrackedError | None:
        ...

    @abstractmethod
    async def list_unresolved(self, limit: int = 50) -> List[TrackedError]:
        """Незакрытые записи, самые свежие первыми."""

    @abstractmethod
    async def list_unresolved_by_group(
        self, group_key: str, since: datetime, exclude_id: str | None = None
    ) -> List[TrackedError]:
        """Незакрытые записи группы, последнее появление которых не раньше ``since``."""

    @abstractmethod
    async def list_all(self, limit: int = 1000) -> List[TrackedError]:
        ...


class TicketStore(ABC):
    @abstractmethod
    async def create_ticket(self, **fields: Any) -> Ticket:
        ...

    @abstractmethod
    async def update_ticket(self, ticket_id: str, **fields: Any) -> Ticket:
        ...

    @abstractmethod
    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ...


class UserDirectory(ABC):
    @abstractmethod
    async def get_admin_user(self) -> User | None:
        """Администратор, на которого назначаются автоматические тикеты."""

    @abstractmethod
    async def get_user(self, user_id: str) -> User | None:
        ...
