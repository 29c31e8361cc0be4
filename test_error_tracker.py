import asyncio
from datetime import timedelta

import pytest
from conftest import ADMIN, FakeIssueTracker, RecordingEmailClient, build_engine

from error_intake.errors import StorageError
from error_intake.models.classified_error import ClassifiedError, ErrorContext
from error_intake.models.tracked_error import TRUNCATION_MARKER, CalculatedPriority, Severity
from error_intake.storage.memory import InMemoryErrorStore, InMemoryTicketStore, InMemoryUserDirectory


def query_error(message="Query failed on relation orders_17", severity="medium"):
    return ClassifiedError(
        error_type="system_error",
        error_source="database",
        severity=severity,
        message=message,
    )


def payment_error(message="Payment gateway rejected charge"):
    return ClassifiedError(
        error_type="system_error",
        error_source="payment",
        severity="critical",
        message=message,
    )


ORDERS = ErrorContext(route="/api/orders", method="GET")
CHARGE = ErrorContext(route="/api/payment/charge", method="POST")


class StaleReadErrorStore(InMemoryErrorStore):
    """Никогда не находит запись при чтении, как конкурент, опоздавший к вставке."""

    async def find_unresolved_by_fingerprint(self, fingerprint, since):
        return None


class BrokenErrorStore(InMemoryErrorStore):
    async def find_unresolved_by_fingerprint(self, fingerprint, since):
        raise StorageError("connection to database lost")


class BrokenTicketStore(InMemoryTicketStore):
    async def create_ticket(self, **fields):
        raise RuntimeError("tickets table is read-only")


class NoScanErrorStore(InMemoryErrorStore):
    """Запрещает полный просмотр записей: учёт ошибок должен обходиться точечными запросами."""

    async def list_all(self, limit=1000):
        raise AssertionError("list_all вызван при учёте ошибки")


def test_new_critical_payment_error(engine):
    async def main():
        result = await engine.tracker.track_error(
            ClassifiedError(
                error_type="connection_error",
                error_source="payment",
                severity="critical",
                message="ECONNREFUSED to payment gateway",
            ),
            CHARGE,
        )
        await engine.tracker.tickets.drain()
        record = await engine.errors.get_error(result.error_id)
        ticket = await engine.tickets.get_ticket(result.ticket_id)
        return result, record, ticket

    result, record, ticket = asyncio.run(main())

    assert result.is_new is True
    assert result.filtered is False
    assert result.ticket_id
    assert record.calculated_priority == CalculatedPriority.URGENTE
    assert record.priority_score >= 80
    assert record.is_transient is True
    assert record.group_key == "payment_errors"
    assert record.ticket_id == result.ticket_id
    assert ticket.priority == "urgente"
    assert ticket.auto_created is True
    assert ticket.assigned_to == ADMIN.id
    assert ticket.error_fingerprint == record.fingerprint
    assert ticket.external_issue_key == "OPS-1"
    assert [mail["subject"] for mail in engine.email.sent] == ["[URGENTE] Error del Sistema: connection_error"]


def test_favicon_is_filtered_without_side_effects(engine):
    async def main():
        result = await engine.tracker.track_error(
            ClassifiedError(message="GET /favicon.ico 404"),
            ErrorContext(route="/favicon.ico", method="GET"),
        )
        return result, await engine.errors.list_all(), await engine.tickets.list_tickets()

    result, records, tickets = asyncio.run(main())

    assert result.filtered is True
    assert result.error_id is None
    assert records == []
    assert tickets == []


def test_low_priority_error_gets_ticket_without_notification(engine):
    async def main():
        result = await engine.tracker.track_error(
            ClassifiedError(
                error_type="validation_error",
                error_source="internal_service",
                severity="low",
                message="Invalid phone number format",
            ),
            ErrorContext(route="/api/profile", method="PUT"),
        )
        return result, await engine.errors.get_error(result.error_id)

    result, record = asyncio.run(main())

    assert record.calculated_priority == CalculatedPriority.BAJA
    assert record.priority_score < 40
    assert result.ticket_id
    assert engine.email.sent == []


def test_high_severity_alone_does_not_notify(engine):
    async def main():
        result = await engine.tracker.track_error(
            ClassifiedError(error_type="system_error", error_source="internal_service", severity="high",
                            message="Unexpected null in report builder"),
            ErrorContext(route="/api/reports"),
        )
        return await engine.errors.get_error(result.error_id)

    record = asyncio.run(main())

    assert record.severity == Severity.HIGH
    assert not record.calculated_priority.is_high
    assert engine.email.sent == []


def test_repeat_within_window_is_merged(engine):
    async def main():
        first = await engine.tracker.track_error(query_error(), ORDERS)
        engine.clock.advance(minutes=10)
        second = await engine.tracker.track_error(query_error("Query failed on relation orders_42"), ORDERS)
        return first, second, await engine.errors.list_all(), await engine.tickets.list_tickets()

    first, second, records, tickets = asyncio.run(main())

    assert first.is_new is True
    assert second.is_new is False
    assert second.error_id == first.error_id
    assert second.ticket_id == first.ticket_id
    assert len(records) == 1
    assert records[0].occurrence_count == 2
    assert records[0].last_occurrence == engine.clock.now
    assert len(tickets) == 1


def test_window_rolls_from_last_occurrence(engine):
    async def main():
        first = await engine.tracker.track_error(query_error(), ORDERS)
        engine.clock.advance(minutes=50)
        await engine.tracker.track_error(query_error(), ORDERS)
        engine.clock.advance(minutes=50)
        third = await engine.tracker.track_error(query_error(), ORDERS)
        return first, third, await engine.errors.get_error(first.error_id)

    first, third, record = asyncio.run(main())

    assert third.error_id == first.error_id
    assert record.occurrence_count == 3


def test_repeat_after_window_creates_new_record(engine):
    async def main():
        first = await engine.tracker.track_error(query_error(), ORDERS)
        engine.clock.advance(minutes=61)
        second = await engine.tracker.track_error(query_error(), ORDERS)
        return first, second, await engine.errors.get_error(second.error_id)

    first, second, record = asyncio.run(main())

    assert second.is_new is True
    assert second.error_id != first.error_id
    assert record.occurrence_count == 1


def test_severity_never_decreases(engine):
    async def main():
        first = await engine.tracker.track_error(query_error(severity="high"), ORDERS)
        await engine.tracker.track_error(query_error(severity="low"), ORDERS)
        return await engine.errors.get_error(first.error_id)

    record = asyncio.run(main())

    assert record.severity == Severity.HIGH
    assert record.occurrence_count == 2


def test_resolved_error_recurs_as_new_record(engine):
    async def main():
        first = await engine.tracker.track_error(query_error(), ORDERS)
        resolved = await engine.tracker.resolve_error(first.error_id, ADMIN.id)
        engine.clock.advance(minutes=1)
        second = await engine.tracker.track_error(query_error(), ORDERS)
        return first, resolved, second

    first, resolved, second = asyncio.run(main())

    assert resolved.resolved is True
    assert resolved.resolved_by == ADMIN.id
    assert resolved.resolved_at is not None
    assert second.is_new is True
    assert second.error_id != first.error_id


def test_resolve_unknown_error_raises(engine):
    with pytest.raises(KeyError):
        asyncio.run(engine.tracker.resolve_error("missing", ADMIN.id))


def test_every_high_priority_repeat_notifies(engine):
    async def main():
        await engine.tracker.track_error(payment_error(), CHARGE)
        await engine.tracker.track_error(payment_error(), CHARGE)

    asyncio.run(main())

    assert len(engine.email.sent) == 2
    assert engine.email.sent[0]["to"] == "admin@example.com"


def test_unconfigured_or_failing_email_is_not_fatal(clock):
    for email in (RecordingEmailClient(configured=False), RecordingEmailClient(fail=True)):
        engine = build_engine(clock=clock, email=email)
        result = asyncio.run(engine.tracker.track_error(payment_error(), CHARGE))
        assert result.is_new is True
        assert email.sent == []


def test_missing_admin_leaves_record_without_ticket(clock):
    engine = build_engine(clock=clock, users=InMemoryUserDirectory())

    async def main():
        result = await engine.tracker.track_error(query_error(), ORDERS)
        return result, await engine.errors.get_error(result.error_id)

    result, record = asyncio.run(main())

    assert result.ticket_id is None
    assert record is not None
    assert record.ticket_id is None


def test_ticket_failure_does_not_lose_record(clock):
    engine = build_engine(clock=clock, tickets=BrokenTicketStore(clock=clock))

    async def main():
        first = await engine.tracker.track_error(query_error(), ORDERS)
        second = await engine.tracker.track_error(query_error(), ORDERS)
        return first, second, await engine.errors.get_error(first.error_id)

    first, second, record = asyncio.run(main())

    assert first.is_new is True
    assert first.ticket_id is None
    assert second.error_id == first.error_id
    assert record.occurrence_count == 2


def test_repeat_creates_missing_ticket(engine):
    async def main():
        first = await engine.tracker.track_error(query_error(), ORDERS)
        await engine.errors.update_error(first.error_id, ticket_id=None)
        second = await engine.tracker.track_error(query_error(), ORDERS)
        return first, second

    first, second = asyncio.run(main())

    assert second.ticket_id
    assert second.ticket_id != first.ticket_id


def test_storage_failure_propagates(clock):
    engine = build_engine(clock=clock, errors=BrokenErrorStore())
    with pytest.raises(StorageError):
        asyncio.run(engine.tracker.track_error(query_error(), ORDERS))


def test_concurrent_first_occurrence_merges_into_existing(clock):
    engine = build_engine(clock=clock, errors=StaleReadErrorStore())

    async def main():
        first = await engine.tracker.track_error(query_error(), ORDERS)
        second = await engine.tracker.track_error(query_error(), ORDERS)
        return first, second, await engine.errors.list_all()

    first, second, records = asyncio.run(main())

    assert second.is_new is False
    assert second.error_id == first.error_id
    assert len(records) == 1
    assert records[0].occurrence_count == 2


def test_external_sync_failure_is_isolated(clock):
    engine = build_engine(clock=clock, issue_tracker=FakeIssueTracker(fail=True))

    async def main():
        result = await engine.tracker.track_error(query_error(), ORDERS)
        await engine.tracker.tickets.drain()
        return result, await engine.tickets.get_ticket(result.ticket_id)

    result, ticket = asyncio.run(main())

    assert result.ticket_id
    assert ticket.external_issue_key is None


def test_metadata_is_truncated(engine):
    engine.tracker.max_metadata_bytes = 200

    async def main():
        context = ErrorContext(route="/api/orders", metadata={"payload": "x" * 1000})
        result = await engine.tracker.track_error(query_error(), context)
        return await engine.errors.get_error(result.error_id)

    record = asyncio.run(main())

    assert record.metadata.endswith(TRUNCATION_MARKER)
    assert len(record.metadata.encode("utf-8")) <= 200


def test_related_errors_raise_priority(clock):
    def run(cascade_detection):
        engine = build_engine(clock=clock, cascade_detection=cascade_detection)

        async def main():
            await engine.tracker.track_error(
                ClassifiedError(error_type="integration_error", error_source="payment", severity="medium",
                                message="Stripe charge declined"),
                CHARGE,
            )
            result = await engine.tracker.track_error(
                ClassifiedError(error_type="integration_error", error_source="external_api", severity="medium",
                                message="Stripe webhook signature mismatch"),
                ErrorContext(route="/api/hooks", method="POST"),
            )
            return await engine.errors.get_error(result.error_id)

        return asyncio.run(main())

    with_cascade = run(True)
    without_cascade = run(False)

    assert with_cascade.group_key == "payment_errors"
    assert with_cascade.priority_score > without_cascade.priority_score


def test_error_stats(engine):
    async def main():
        first = await engine.tracker.track_error(query_error(), ORDERS)
        await engine.tracker.track_error(payment_error(), CHARGE)
        await engine.tracker.resolve_error(first.error_id, ADMIN.id)
        return await engine.tracker.get_error_stats(), await engine.tracker.get_unresolved_errors()

    stats, unresolved = asyncio.run(main())

    assert stats["total"] == 2
    assert stats["unresolved"] == 1
    assert stats["by_severity"] == {"critical": 1}
    assert stats["by_source"] == {"payment": 1}
    assert stats["by_priority"] == {"urgente": 1}
    assert stats["suppression"]["patterns"] == 12
    assert [e.error_source for e in unresolved] == ["payment"]


def test_related_errors_use_group_query(clock):
    engine = build_engine(clock=clock, errors=NoScanErrorStore())
    charge = ClassifiedError(error_type="integration_error", error_source="payment", severity="medium",
                             message="Stripe charge declined")
    webhook = ClassifiedError(error_type="integration_error", error_source="external_api", severity="medium",
                              message="Stripe webhook signature mismatch")
    hooks = ErrorContext(route="/api/hooks", method="POST")

    async def main():
        first = await engine.tracker.track_error(charge, CHARGE)
        clock.advance(minutes=1)
        second = await engine.tracker.track_error(webhook, hooks)
        clock.advance(minutes=1)
        repeat = await engine.tracker.track_error(charge, CHARGE)
        return first, second, repeat, await engine.errors.get_error(first.error_id)

    first, second, repeat, record = asyncio.run(main())

    assert first.is_new and second.is_new
    assert repeat.is_new is False
    assert repeat.error_id == first.error_id
    assert record.occurrence_count == 2
    assert record.group_key == "payment_errors"


def test_group_query_filters_by_window_and_status(clock):
    store = InMemoryErrorStore()
    now = clock()

    def data(fingerprint, group_key, last_occurrence):
        return {
            "fingerprint": fingerprint,
            "error_type": "integration_error",
            "error_source": "payment",
            "severity": Severity.MEDIUM,
            "message": fingerprint,
            "first_occurrence": last_occurrence,
            "last_occurrence": last_occurrence,
            "group_key": group_key,
        }

    async def main():
        since = now - timedelta(hours=1)
        current = await store.create_error(data("a", "payment_errors", now), since)
        fresh = await store.create_error(data("b", "payment_errors", now), since)
        await store.create_error(data("c", "payment_errors", now - timedelta(hours=2)), since)
        await store.create_error(data("d", "email_errors", now), since)
        closed = await store.create_error(data("e", "payment_errors", now), since)
        await store.update_error(closed.id, resolved=True)
        return current, fresh, await store.list_unresolved_by_group("payment_errors", since, exclude_id=current.id)

    current, fresh, related = asyncio.run(main())

    assert [e.id for e in related] == [fresh.id]


def test_negative_limit_returns_nothing(engine):
    async def main():
        await engine.tracker.track_error(query_error(), ORDERS)
        return await engine.errors.list_unresolved(-1), await engine.errors.list_all(-1)

    assert asyncio.run(main()) == ([], [])
