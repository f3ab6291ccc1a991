"""
Unit tests for the resolution workflow.

Tests verdict recording, reviewer resolve/skip, idempotency and the
transactional propagation to the subscriber.
"""

import pytest

from models.audit import AuditStatus
from models.subscriber import Subscriber
from services.resolution_service import ResolutionService, get_resolution_service
from services.sequence_analyzer import analyze
from services.order_normalizer import normalize
from services.sku_resolver import SkuResolutionMap
from models.sku_mapping import SkuAlias
from exceptions import (
    AlreadyResolvedError,
    AuditRecordNotFoundError,
    InconsistentPropagationError,
    InvalidResolutionError,
)
from tests.factories import ORG_ID, AuditLogFactory, OrderFactory, SubscriberFactory


# ===================
# FIXTURES
# ===================

@pytest.fixture
def subscriber_row():
    return SubscriberFactory.create(id="sub-1", next_box_number=4)


@pytest.fixture
def service(mock_db, subscriber_row):
    """ResolutionService over one subscriber and one flagged record."""
    mock_db.set_table_data("subscribers", [subscriber_row])
    mock_db.set_table_data("audit_logs", [
        AuditLogFactory.create(id="audit-1", subscriber_id="sub-1", proposed_next_box=5),
    ])
    return ResolutionService()


def subscriber(mock_db) -> dict:
    return mock_db.rows("subscribers")[0]


def audit_row(mock_db, audit_id: str = "audit-1") -> dict:
    return next(r for r in mock_db.rows("audit_logs") if r["id"] == audit_id)


def rpc_names(mock_db) -> list[str]:
    return [name for name, _ in mock_db.rpc_calls]


def events_for(skus: list[str]):
    sku_map = SkuResolutionMap.build([
        SkuAlias(organization_id=ORG_ID, raw_sku=f"BOX-0{n}", sequence_number=n) for n in range(1, 6)
    ])
    return normalize(OrderFactory.ladder(skus), sku_map)


# ===================
# RESOLVE
# ===================

class TestResolve:
    """Reviewer accepts a next box."""

    def test_resolve_flagged(self, service, mock_db):
        """Should resolve the record and set the subscriber's next box together."""
        result = service.resolve("audit-1", ORG_ID, 7, resolved_by="reviewer-1", note="checked orders")

        assert result.status == AuditStatus.RESOLVED
        assert result.resolved_next_box == 7
        assert result.resolved_by == "reviewer-1"
        assert result.resolution_note == "checked orders"
        assert subscriber(mock_db)["next_box_number"] == 7
        assert subscriber(mock_db)["migration_status"] == "resolved"

    def test_resolve_twice_is_conflict(self, service, mock_db):
        """Should refuse a second resolve and keep the first next box."""
        service.resolve("audit-1", ORG_ID, 7, resolved_by="reviewer-1")

        with pytest.raises(AlreadyResolvedError):
            service.resolve("audit-1", ORG_ID, 9, resolved_by="reviewer-2")

        assert audit_row(mock_db)["resolved_next_box"] == 7
        assert subscriber(mock_db)["next_box_number"] == 7

    @pytest.mark.parametrize("next_box", [0, 101, -3])
    def test_out_of_range_rejected_without_write(self, service, mock_db, next_box):
        """Should reject box numbers outside 1..100 before touching the database."""
        with pytest.raises(InvalidResolutionError):
            service.resolve("audit-1", ORG_ID, next_box, resolved_by="reviewer-1")

        assert mock_db.rpc_calls == []
        assert audit_row(mock_db)["status"] == "flagged"
        assert subscriber(mock_db)["next_box_number"] == 4

    @pytest.mark.parametrize("next_box", [1, 100])
    def test_range_bounds_accepted(self, service, next_box):
        """Should accept both ends of the range."""
        result = service.resolve("audit-1", ORG_ID, next_box, resolved_by="reviewer-1")

        assert result.resolved_next_box == next_box

    def test_clean_record_cannot_be_resolved(self, service, mock_db):
        """Should only resolve flagged records."""
        audit_row(mock_db)["status"] = "clean"

        with pytest.raises(InvalidResolutionError):
            service.resolve("audit-1", ORG_ID, 6, resolved_by="reviewer-1")

        assert "resolve_audit_record" not in rpc_names(mock_db)

    def test_unknown_record(self, service):
        """Should raise not found for an unknown record."""
        with pytest.raises(AuditRecordNotFoundError):
            service.resolve("missing", ORG_ID, 6, resolved_by="reviewer-1")

    def test_other_organization_is_not_found(self, service):
        """Should hide records of another organization."""
        with pytest.raises(AuditRecordNotFoundError):
            service.resolve("audit-1", "org-other", 6, resolved_by="reviewer-1")

    def test_lost_race_is_conflict(self, service, mock_db):
        """Should report a conflict when another reviewer resolved in between."""
        def resolved_elsewhere(client, params):
            audit_row(client)["status"] = "resolved"
            return []

        mock_db.register_rpc("resolve_audit_record", resolved_elsewhere)

        with pytest.raises(AlreadyResolvedError):
            service.resolve("audit-1", ORG_ID, 6, resolved_by="reviewer-1")

    def test_transaction_failure(self, service, mock_db):
        """Should raise InconsistentPropagationError and leave the subscriber alone."""
        def broken(client, params):
            raise RuntimeError("connection reset")

        mock_db.register_rpc("resolve_audit_record", broken)

        with pytest.raises(InconsistentPropagationError):
            service.resolve("audit-1", ORG_ID, 6, resolved_by="reviewer-1")

        assert subscriber(mock_db)["next_box_number"] == 4


# ===================
# SKIP
# ===================

class TestSkip:
    """Reviewer declines a flagged subscriber."""

    def test_skip_flagged(self, service, mock_db):
        """Should skip without changing the subscriber's box number."""
        result = service.skip("audit-1", ORG_ID, resolved_by="reviewer-1", reason="cancelled")

        assert result.status == AuditStatus.SKIPPED
        assert result.resolution_note == "cancelled"
        assert subscriber(mock_db)["next_box_number"] == 4
        assert subscriber(mock_db)["migration_status"] == "skipped"

    def test_skip_resolved_is_conflict(self, service, mock_db):
        """Should refuse to skip a resolved record."""
        service.resolve("audit-1", ORG_ID, 6, resolved_by="reviewer-1")

        with pytest.raises(AlreadyResolvedError):
            service.skip("audit-1", ORG_ID, resolved_by="reviewer-2")

        assert audit_row(mock_db)["status"] == "resolved"

    def test_skip_error_record_rejected(self, service, mock_db):
        """Should only skip flagged records."""
        audit_row(mock_db)["status"] = "error"

        with pytest.raises(InvalidResolutionError):
            service.skip("audit-1", ORG_ID, resolved_by="reviewer-1")


# ===================
# VERDICTS
# ===================

class TestRecordVerdict:
    """Analyzer verdicts written by the orchestrator."""

    @pytest.fixture
    def fresh(self, mock_db):
        row = SubscriberFactory.create(id="sub-9")
        mock_db.set_table_data("subscribers", [row])
        mock_db.set_table_data("audit_logs", [])
        return ResolutionService(), Subscriber.from_row(row)

    def test_clean_verdict_propagates(self, fresh, mock_db):
        """Should mark clean and set the subscriber's next box in one step."""
        service, sub = fresh
        events = events_for(["BOX-01", "BOX-02", "BOX-03"])

        record = service.record_verdict(ORG_ID, "run-1", sub, analyze(events), events)

        assert record.status == AuditStatus.CLEAN
        assert record.proposed_next_box == 4
        assert rpc_names(mock_db) == ["accept_clean_audit"]
        assert subscriber(mock_db)["next_box_number"] == 4
        assert subscriber(mock_db)["migration_status"] == "audited"

    def test_flagged_verdict_waits_for_review(self, fresh, mock_db):
        """Should mark flagged and leave the subscriber's next box unset."""
        service, sub = fresh
        events = events_for(["BOX-01", "BOX-03"])

        record = service.record_verdict(ORG_ID, "run-1", sub, analyze(events), events)

        assert record.status == AuditStatus.FLAGGED
        assert record.flag_reasons == ["skipped_box"]
        assert subscriber(mock_db)["next_box_number"] is None
        assert subscriber(mock_db)["migration_status"] == "flagged"

    def test_events_stored_with_record(self, fresh, mock_db):
        """Should store the detected sequence and the events behind it."""
        service, sub = fresh
        events = events_for(["BOX-01", "BOX-02"])

        record = service.record_verdict(ORG_ID, "run-1", sub, analyze(events), events)

        assert record.detected_sequences == [1, 2]
        assert [e["sequence"] for e in record.sequence_events] == [1, 2]
        assert record.customer_identifier == sub.email

    def test_one_record_per_subscriber_per_run(self, fresh, mock_db):
        """Should replace an earlier record for the same run and subscriber."""
        service, sub = fresh
        events = events_for(["BOX-01"])

        service.record_error(ORG_ID, "run-1", sub, "timeout")
        service.record_verdict(ORG_ID, "run-1", sub, analyze(events), events)

        assert len(mock_db.rows("audit_logs")) == 1
        assert mock_db.rows("audit_logs")[0]["error_message"] is None

    def test_accept_failure_is_inconsistent(self, fresh, mock_db):
        """Should raise when the clean record can't be accepted."""
        service, sub = fresh
        events = events_for(["BOX-01"])
        mock_db.register_rpc("accept_clean_audit", lambda client, params: [])

        with pytest.raises(InconsistentPropagationError):
            service.record_verdict(ORG_ID, "run-1", sub, analyze(events), events)

        assert subscriber(mock_db)["next_box_number"] is None

    def test_record_error_keeps_subscriber_pending(self, fresh, mock_db):
        """Should store the error and leave the subscriber for a later run."""
        service, sub = fresh

        record = service.record_error(ORG_ID, "run-1", sub, "Shopify API error: 500")

        assert record.status == AuditStatus.ERROR
        assert record.error_message == "Shopify API error: 500"
        assert subscriber(mock_db)["migration_status"] == "pending"


# ===================
# QUERIES
# ===================

class TestQueries:
    """Queue listing and counts."""

    def test_stats(self, mock_db):
        """Should count records per status."""
        mock_db.set_table_data("audit_logs", [
            AuditLogFactory.create(status="flagged"),
            AuditLogFactory.create(status="flagged"),
            AuditLogFactory.create(status="clean"),
            AuditLogFactory.create(status="resolved"),
            AuditLogFactory.create(status="clean", organization_id="org-other"),
        ])

        stats = ResolutionService().get_stats(ORG_ID)

        assert stats.total == 4
        assert stats.flagged == 2
        assert stats.clean == 1
        assert stats.resolved == 1
        assert stats.error == 0

    def test_stats_for_run(self, mock_db):
        """Should limit counts to one run."""
        mock_db.set_table_data("audit_logs", [
            AuditLogFactory.create(migration_run_id="run-1"),
            AuditLogFactory.create(migration_run_id="run-2"),
        ])

        assert ResolutionService().get_stats(ORG_ID, "run-2").total == 1

    def test_list_flagged(self, mock_db):
        """Should list only records in the requested status."""
        mock_db.set_table_data("audit_logs", [
            AuditLogFactory.create(id="a-1", status="flagged"),
            AuditLogFactory.create(id="a-2", status="clean"),
        ])

        records = get_resolution_service().list_by_status(ORG_ID)

        assert [r.id for r in records] == ["a-1"]
