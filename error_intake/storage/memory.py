"""
Хранилища в памяти процесса.

Используются по умолчанию и в тестах. Все изменения выполняются под
`asyncio.Lock`, а правило «один незакрытый отпечаток в окне» проверяется
внутри `create_error` атомарно с вставкой. Наружу отдаются копии
объектов, как если бы они читались из базы.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List

from error_intake.errors import FingerprintConflictError
from error_intake.models.ticket import Ticket, User
from error_intake.models.tracked_error import TrackedError
from error_intake.storage.base import ErrorStore, TicketStore, UserDirectory


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryErrorStore(ErrorStore):
    def __init__(self) -> None:
        self._errors: Dict[str, TrackedError] = {}
        self._lock = asyncio.Lock()

    def _find_active(self, fingerprint: str, since: datetime) -> TrackedError | None:
        candidates = [
            e for e in self._errors.values()
            if e.fingerprint == fingerprint and not e.resolved and e.last_occurrence >= since
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda e: e.last_occurrence)

    async def find_unresolved_by_fingerprint(self, fingerprint: str, since: datetime) -> TrackedError | None:
        found = self._find_active(fingerprint, since)
        return found.model_copy(deep=True) if found else None

    async def create_error(self, data: dict, since: datetime) -> TrackedError:
        async with self._lock:
            existing = self._find_active(data["fingerprint"], since)
            if existing:
                raise FingerprintConflictError(data["fingerprint"], existing.model_copy(deep=True))
            record = TrackedError(id=_new_id(), **data)
            self._errors[record.id] = record
            return record.model_copy(deep=True)

    async def update_error(self, error_id: str, **fields: Any) -> TrackedError:
        async with self._lock:
            current = self._errors.get(error_id)
            if current is None:
                raise KeyError(error_id)
            updated = TrackedError.model_validate({**current.model_dump(), **fields})
            self._errors[error_id] = updated
            return updated.model_copy(deep=True)

    async def get_error(self, error_id: str) -> TrackedError | None:
        record = self._errors.get(error_id)
        return record.model_copy(deep=True) if record else None

    async def list_unresolved(self, limit: int = 50) -> List[TrackedError]:
        unresolved = [e for e in self._errors.values() if not e.resolved]
        unresolved.sort(key=lambda e: e.last_occurrence, reverse=True)
        return [e.model_copy(deep=True) for e in unresolved[:max(limit, 0)]]

    async def list_unresolved_by_group(
        self, group_key: str, since: datetime, exclude_id: str | None = None
    ) -> List[TrackedError]:
        return [
            e.model_copy(deep=True) for e in self._errors.values()
            if e.group_key == group_key
            and not e.resolved
            and e.last_occurrence >= since
            and e.id != exclude_id
        ]

    async def list_all(self, limit: int = 1000) -> List[TrackedError]:
        records = sorted(self._errors.values(), key=lambda e: e.last_occurrence, reverse=True)
        return [e.model_copy(deep=True) for e in records[:max(limit, 0)]]


class InMemoryTicketStore(TicketStore):
    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._tickets: Dict[str, Ticket] = {}
        self._lock = asyncio.Lock()
        self.clock = clock or _utcnow

    async def create_ticket(self, **fields: Any) -> Ticket:
        async with self._lock:
            ticket = Ticket(id=_new_id(), created_at=self.clock(), **fields)
            self._tickets[ticket.id] = ticket
            return ticket.model_copy()

    async def update_ticket(self, ticket_id: str, **fields: Any) -> Ticket:
        async with self._lock:
            current = self._tickets.get(ticket_id)
            if current is None:
                raise KeyError(ticket_id)
            updated = Ticket.model_validate({**current.model_dump(), **fields})
            self._tickets[ticket_id] = updated
            return updated.model_copy()

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        return ticket.model_copy() if ticket else None

    async def list_tickets(self) -> List[Ticket]:
        return [t.model_copy() for t in self._tickets.values()]


class InMemoryUserDirectory(UserDirectory):
    def __init__(self, users: Iterable[User] = ()) -> None:
        self._users: Dict[str, User] = {u.id: u for u in users}

    async def get_admin_user(self) -> User | None:
        for user in self._users.values():
            if user.user_type == "admin":
                return user
        return None

    async def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)
