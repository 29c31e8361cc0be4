import asyncio
from datetime import datetime, timezone

from conftest import RecordingEmailClient

from error_intake.models.tracked_error import CalculatedPriority, Severity, TrackedError
from error_intake.services.notifier import HighPriorityNotifier

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_record(priority, **overrides):
    data = {
        "id": "err-1",
        "fingerprint": "a" * 32,
        "error_type": "connection_error",
        "error_source": "database",
        "severity": Severity.CRITICAL,
        "message": "Pool <main> lost connection",
        "route": "/api/servicios",
        "first_occurrence": NOW,
        "last_occurrence": NOW,
        "calculated_priority": priority,
        "priority_score": 85,
        "ticket_id": "T-9",
    }
    data.update(overrides)
    return TrackedError(**data)


def test_urgent_error_sends_email():
    email = RecordingEmailClient()
    notifier = HighPriorityNotifier(email, "ops@example.com")

    sent = asyncio.run(notifier.notify(make_record(CalculatedPriority.URGENTE), ["Módulo crítico afectado: database"]))

    assert sent is True
    mail = email.sent[0]
    assert mail["to"] == "ops@example.com"
    assert mail["subject"] == "[URGENTE] Error del Sistema: connection_error"
    assert "#dc3545" in mail["html"]
    assert "Módulo crítico afectado: database" in mail["html"]
    assert "Ticket: #T-9" in mail["text"]


def test_html_body_escapes_message():
    email = RecordingEmailClient()
    asyncio.run(HighPriorityNotifier(email, "ops@example.com").notify(make_record(CalculatedPriority.ALTA)))

    mail = email.sent[0]
    assert mail["subject"].startswith("[ALTA]")
    assert "Pool &lt;main&gt; lost connection" in mail["html"]
    assert "Pool <main> lost connection" in mail["text"]


def test_lower_priorities_are_not_sent():
    email = RecordingEmailClient()
    notifier = HighPriorityNotifier(email, "ops@example.com")

    for priority in (CalculatedPriority.MEDIA, CalculatedPriority.BAJA):
        assert asyncio.run(notifier.notify(make_record(priority))) is False
    assert email.sent == []


def test_unconfigured_client_is_skipped(caplog):
    notifier = HighPriorityNotifier(RecordingEmailClient(configured=False), "ops@example.com")

    assert asyncio.run(notifier.notify(make_record(CalculatedPriority.URGENTE))) is False
    assert "не настроен" in caplog.text


def test_delivery_failure_is_swallowed():
    notifier = HighPriorityNotifier(RecordingEmailClient(fail=True), "ops@example.com")

    assert asyncio.run(notifier.notify(make_record(CalculatedPriority.URGENTE))) is False
