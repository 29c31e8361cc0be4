from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from error_intake.clients.email_client import EmailClient
from error_intake.clients.jira_client import IssueTracker
from error_intake.errors import EmailDeliveryError, IssueTrackerError
from error_intake.models.ticket import User
from error_intake.services.error_tracker import ErrorTrackingService
from error_intake.services.noise_filter import NoiseFilter
from error_intake.services.notifier import HighPriorityNotifier
from error_intake.services.ticket_dispatcher import TicketDispatcher
from error_intake.storage.memory import InMemoryErrorStore, InMemoryTicketStore, InMemoryUserDirectory

ADMIN = User(id="admin-1", name="Admin", email="admin@example.com", user_type="admin")


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingEmailClient(EmailClient):
    def __init__(self, configured: bool = True, fail: bool = False) -> None:
        self.configured = configured
        self.fail = fail
        self.sent: List[dict] = []

    async def is_configured(self) -> bool:
        return self.configured

    async def send_email(self, to, subject, html, text) -> None:
        if self.fail:
            raise EmailDeliveryError("Resend API error: 500")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})


class FakeIssueTracker(IssueTracker):
    def __init__(self, configured: bool = True, fail: bool = False) -> None:
        self.configured = configured
        self.fail = fail
        self.created = []

    def is_configured(self) -> bool:
        return self.configured

    async def create_issue(self, ticket, user=None):
        if self.fail:
            raise IssueTrackerError("Jira API error: 503")
        self.created.append((ticket, user))
        return {"issue_id": "10001", "issue_key": "OPS-1"}


@dataclass
class Engine:
    tracker: ErrorTrackingService
    errors: InMemoryErrorStore
    tickets: InMemoryTicketStore
    users: InMemoryUserDirectory
    email: RecordingEmailClient
    issue_tracker: FakeIssueTracker
    clock: FakeClock


def build_engine(
    clock: FakeClock | None = None,
    errors=None,
    tickets=None,
    users: InMemoryUserDirectory | None = None,
    email: RecordingEmailClient | None = None,
    issue_tracker: FakeIssueTracker | None = None,
    cascade_detection: bool = True,
) -> Engine:
    clock = clock or FakeClock()
    errors = errors if errors is not None else InMemoryErrorStore()
    tickets = tickets if tickets is not None else InMemoryTicketStore(clock=clock)
    users = users if users is not None else InMemoryUserDirectory([ADMIN])
    email = email or RecordingEmailClient()
    issue_tracker = issue_tracker or FakeIssueTracker()

    dispatcher = TicketDispatcher(tickets=tickets, users=users, errors=errors, issue_tracker=issue_tracker)
    tracker = ErrorTrackingService(
        errors=errors,
        noise_filter=NoiseFilter(clock=clock),
        tickets=dispatcher,
        notifier=HighPriorityNotifier(email, "admin@example.com"),
        clock=clock,
        cascade_detection=cascade_detection,
    )
    return Engine(tracker, errors, tickets, users, email, issue_tracker, clock)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    return build_engine(clock=clock)
