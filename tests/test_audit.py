"""Tests for the AuditLogger and the audit events the service emits."""

from decimal import Decimal
from uuid import uuid4

from conftest import USER
from fundledger.audit import AuditLogger, create_correlation_id
from fundledger.models import (
    AuditEventBuilder,
    FundCreate,
    ReceiptCreate,
    ValidationIssue,
)
from fundledger.services.storage import InMemoryAuditStorage


class FailingAuditStorage(InMemoryAuditStorage):
    async def append_event(self, event):
        raise OSError("disk full")


class TestAuditLogger:
    def test_persists_event(self, run, audit_storage):
        logger = AuditLogger(audit_storage)
        event = AuditEventBuilder.record_created("fund", uuid4(), USER)

        assert run(logger.log(event)) is True
        assert audit_storage.events == [event]

    def test_without_storage(self, run):
        logger = AuditLogger()
        assert logger.storage is None
        assert run(logger.log(AuditEventBuilder.record_created("fund", uuid4(), USER))) is True

    def test_storage_failure_does_not_raise(self, run):
        logger = AuditLogger(FailingAuditStorage())
        assert run(logger.log(AuditEventBuilder.record_created("fund", uuid4(), USER))) is False

    def test_validation_failed_carries_issues(self, run, audit_storage):
        logger = AuditLogger(audit_storage)
        correlation_id = create_correlation_id()
        issue = ValidationIssue(
            field="amount", issue_type="invalid_value",
            message="Amount must be greater than zero", severity="error",
        )

        run(logger.log_validation_failed("create_receipt", [issue], USER, correlation_id))

        [event] = audit_storage.events
        assert event.event_type.value == "validation_failed"
        assert event.severity.value == "warning"
        assert event.correlation_id == correlation_id
        assert event.details["issues"][0]["issue_type"] == "invalid_value"

    def test_error_event(self, run, audit_storage):
        logger = AuditLogger(audit_storage)
        run(logger.log_error("KeyError", "'fund_id'", {"operation": "create_cost"}, user_id=USER))

        [event] = audit_storage.events
        assert event.severity.value == "error"
        assert event.error_message == "'fund_id'"
        assert event.description == "System error: KeyError"


class TestServiceAuditTrail:
    def test_one_correlation_id_per_call(self, run, service, audit_storage, make_fund, make_source, make_receipt):
        reserve = make_fund("Reserve")
        dues = make_source("Dues", rules=[(reserve, "50")])
        make_receipt("100", source=dues)

        result = run(service.distribute_unallocated_funds(USER))

        events = run(audit_storage.get_events_by_correlation_id(result.correlation_id))
        assert [e.event_type.value for e in events] == ["batch_distributed"]
        assert events[0].details == {"total_amount": "50.00", "receipt_count": 1, "fund_count": 1}

    def test_rejected_input_is_audited(self, run, service, audit_storage):
        result = run(service.create_receipt(
            ReceiptCreate(
                receipt_date="2024-01-01", description="Dues", amount=Decimal("-1"),
            ),
            USER,
        ))

        assert result.error.error_type == "validation_error"
        event = audit_storage.events[-1]
        assert event.event_type.value == "validation_failed"
        assert event.details["operation"] == "create_receipt"

    def test_entity_history(self, run, service, audit_storage):
        fund = run(service.create_fund(FundCreate(name="Reserve"), USER)).unwrap()
        run(service.delete_fund(fund.id, USER)).unwrap()

        events = run(audit_storage.get_events_by_entity("fund", fund.id))

        assert [e.event_type.value for e in events] == ["record_created", "record_deleted"]
