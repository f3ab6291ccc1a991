"""
Unit tests for the audit batch orchestrator.

The order source is replaced by an in-memory fake; everything else runs
against the mock Supabase client.
"""

import pytest

from config import settings
from models.audit import AuditMode, AuditStatus
from services.audit_batch_service import AuditBatchService
from exceptions import (
    BatchTooLargeError,
    EmptyBatchError,
    InvalidRunStatusError,
    MigrationRunNotFoundError,
    NoMappingsConfiguredError,
    UpstreamFetchError,
)
from tests.factories import (
    ORG_ID,
    AuditLogFactory,
    MigrationRunFactory,
    OrderFactory,
    SkuAliasFactory,
    SubscriberFactory,
)


class FakeOrderSource:
    """Order histories keyed by customer ID; an exception value is raised instead."""

    def __init__(self, histories: dict):
        self.histories = histories
        self.calls = []

    def fetch_orders(self, customer_id=None, email=None):
        self.calls.append(customer_id)
        history = self.histories.get(customer_id, [])
        if isinstance(history, Exception):
            raise history
        return history


# ===================
# FIXTURES
# ===================

@pytest.fixture
def seeded(mock_db):
    """One running run, aliases BOX-01..BOX-06 and three pending subscribers."""
    mock_db.set_table_data("migration_runs", [MigrationRunFactory.create(total_subscribers=3)])
    mock_db.set_table_data("sku_aliases", SkuAliasFactory.ladder(6))
    mock_db.set_table_data("subscribers", [
        SubscriberFactory.create(id="sub-a", shopify_customer_id="c-a"),
        SubscriberFactory.create(id="sub-b", shopify_customer_id="c-b"),
        SubscriberFactory.create(id="sub-c", shopify_customer_id="c-c"),
    ])
    return mock_db


@pytest.fixture
def source():
    return FakeOrderSource({
        "c-a": OrderFactory.ladder(["BOX-01", "BOX-02", "BOX-03"]),
        "c-b": OrderFactory.ladder(["BOX-01", "BOX-03"]),
        "c-c": UpstreamFetchError("Shopify API error: 500", status=500),
    })


@pytest.fixture
def batch_service(seeded, source, no_sleep):
    return AuditBatchService(order_source_factory=lambda organization_id: source, sleep=no_sleep)


def run_row(mock_db) -> dict:
    return mock_db.rows("migration_runs")[0]


def audit_for(mock_db, subscriber_id: str) -> dict:
    return next(r for r in mock_db.rows("audit_logs") if r["subscriber_id"] == subscriber_id)


# ===================
# BATCH PROCESSING
# ===================

class TestRunBatch:
    """A mixed batch of clean, flagged and failing subscribers."""

    def test_mixed_batch(self, batch_service):
        """Should return one outcome per subscriber in request order."""
        result = batch_service.run_batch(ORG_ID, "run-1", ["sub-a", "sub-b", "sub-c"])

        assert [r.status for r in result.results] == [
            AuditStatus.CLEAN, AuditStatus.FLAGGED, AuditStatus.ERROR,
        ]
        assert result.processed == 3
        assert (result.clean_count, result.flagged_count, result.error_count) == (1, 1, 1)

    def test_fetch_failure_recorded_and_batch_continues(self, seeded, source, no_sleep):
        """Should store an error record for a failed fetch and audit the rest."""
        service = AuditBatchService(order_source_factory=lambda organization_id: source, sleep=no_sleep)

        result = service.run_batch(ORG_ID, "run-1", ["sub-c", "sub-a"])

        assert [r.status for r in result.results] == [AuditStatus.ERROR, AuditStatus.CLEAN]
        assert result.results[0].error == "Shopify API error: 500"
        assert audit_for(seeded, "sub-c")["status"] == "error"
        assert audit_for(seeded, "sub-a")["status"] == "clean"

    def test_unexpected_exception_becomes_error_record(self, seeded, no_sleep):
        """Should record non-application exceptions the same way."""
        broken = FakeOrderSource({"c-a": KeyError("line_items")})
        service = AuditBatchService(order_source_factory=lambda organization_id: broken, sleep=no_sleep)

        result = service.run_batch(ORG_ID, "run-1", ["sub-a"])

        assert result.results[0].status == AuditStatus.ERROR
        assert result.error_count == 1

    def test_verdicts_propagate(self, batch_service, seeded):
        """Should set the next box for clean subscribers only."""
        batch_service.run_batch(ORG_ID, "run-1", ["sub-a", "sub-b", "sub-c"])

        subscribers = {row["id"]: row for row in seeded.rows("subscribers")}
        assert subscribers["sub-a"]["next_box_number"] == 4
        assert subscribers["sub-a"]["migration_status"] == "audited"
        assert subscribers["sub-b"]["next_box_number"] is None
        assert subscribers["sub-b"]["migration_status"] == "flagged"
        assert subscribers["sub-c"]["migration_status"] == "pending"

    def test_counters_incremented_once(self, batch_service, seeded):
        """Should add the batch counts to the run in a single call."""
        batch_service.run_batch(ORG_ID, "run-1", ["sub-a", "sub-b", "sub-c"])

        increments = [params for name, params in seeded.rpc_calls if name == "increment_migration_progress"]
        assert len(increments) == 1
        assert run_row(seeded)["processed_subscribers"] == 3
        assert run_row(seeded)["clean_count"] == 1
        assert run_row(seeded)["flagged_count"] == 1
        assert run_row(seeded)["error_count"] == 1

    def test_pause_between_subscribers(self, batch_service, no_sleep):
        """Should sleep the fixed delay between subscribers, not before the first."""
        batch_service.run_batch(ORG_ID, "run-1", ["sub-a", "sub-b", "sub-c"])

        assert no_sleep.calls == [settings.audit_inter_subscriber_delay_seconds] * 2

    def test_unknown_subscribers_skipped(self, batch_service):
        """Should ignore IDs that don't belong to the organization."""
        result = batch_service.run_batch(ORG_ID, "run-1", ["sub-a", "sub-missing"])

        assert [r.subscriber_id for r in result.results] == ["sub-a"]

    def test_unmapped_items_recorded(self, seeded, no_sleep):
        """Should send unmapped line items to the sink and count them on the run."""
        history = FakeOrderSource({"c-a": [
            *OrderFactory.ladder(["BOX-01"]),
            OrderFactory.create(items=[OrderFactory.item("MYSTERY", "Mystery Box")]),
        ]})
        service = AuditBatchService(order_source_factory=lambda organization_id: history, sleep=no_sleep)

        result = service.run_batch(ORG_ID, "run-1", ["sub-a"])

        items = seeded.rows("unmapped_items")
        assert len(items) == 1
        assert items[0]["sku"] == "MYSTERY"
        assert items[0]["migration_run_id"] == "run-1"
        assert result.results[0].unmapped_item_count == 1
        assert run_row(seeded)["unmapped_count"] == 1


# ===================
# AUDIT MODES
# ===================

class TestAuditModes:
    """Same-SKU subscriptions."""

    @pytest.fixture
    def same_sku(self, seeded, no_sleep):
        source = FakeOrderSource({"c-a": OrderFactory.ladder(["BOX-01", "BOX-01", "BOX-01"])})
        return AuditBatchService(order_source_factory=lambda organization_id: source, sleep=no_sleep)

    def test_sku_mapping_flags_repeats(self, same_sku):
        """Should flag the repeated SKU as duplicates by default."""
        result = same_sku.run_batch(ORG_ID, "run-1", ["sub-a"])

        assert result.results[0].status == AuditStatus.FLAGGED
        assert result.results[0].flag_reasons == ["duplicate_box"]

    @pytest.mark.parametrize("mode", [AuditMode.ORDER_COUNT, AuditMode.HYBRID])
    def test_counting_modes_set_next_box(self, same_sku, seeded, mode):
        """Should count three purchases and move the subscriber to box 4."""
        result = same_sku.run_batch(ORG_ID, "run-1", ["sub-a"], audit_mode=mode)

        outcome = result.results[0]
        assert outcome.status == AuditStatus.CLEAN
        assert outcome.proposed_next_box == 4
        subscriber = next(s for s in seeded.rows("subscribers") if s["id"] == "sub-a")
        assert subscriber["next_box_number"] == 4


# ===================
# RE-RUNS
# ===================

class TestExistingRecords:
    """Subscribers already audited in this run."""

    def test_finished_record_reused(self, batch_service, seeded, source):
        """Should not fetch or count a subscriber with a finished record."""
        seeded.set_table_data("audit_logs", [
            AuditLogFactory.create(id="audit-old", subscriber_id="sub-a", status="flagged"),
        ])

        result = batch_service.run_batch(ORG_ID, "run-1", ["sub-a", "sub-b"])

        assert result.results[0].reused is True
        assert result.results[0].audit_log_id == "audit-old"
        assert result.processed == 1
        assert source.calls == ["c-b"]

    def test_pending_record_audited_again(self, batch_service, seeded, source):
        """Should redo a record left pending by an interrupted batch."""
        seeded.set_table_data("audit_logs", [
            AuditLogFactory.create(id="audit-stuck", subscriber_id="sub-a", status="pending"),
        ])

        result = batch_service.run_batch(ORG_ID, "run-1", ["sub-a"])

        assert result.results[0].status == AuditStatus.CLEAN
        assert result.results[0].reused is False
        assert source.calls == ["c-a"]

    def test_all_reused_skips_counter_update(self, batch_service, seeded):
        """Should not touch run counters when nothing was processed."""
        seeded.set_table_data("audit_logs", [
            AuditLogFactory.create(subscriber_id="sub-a", status="clean"),
        ])

        batch_service.run_batch(ORG_ID, "run-1", ["sub-a"])

        assert "increment_migration_progress" not in [name for name, _ in seeded.rpc_calls]


# ===================
# BATCH-LEVEL FAILURES
# ===================

class TestBatchFailures:
    """Problems that stop the batch before any subscriber is touched."""

    def test_empty_batch(self, batch_service):
        """Should reject an empty batch."""
        with pytest.raises(EmptyBatchError):
            batch_service.run_batch(ORG_ID, "run-1", [])

    def test_batch_too_large(self, batch_service, source):
        """Should reject batches above the configured size."""
        ids = [f"sub-{n}" for n in range(settings.audit_max_batch_size + 1)]

        with pytest.raises(BatchTooLargeError):
            batch_service.run_batch(ORG_ID, "run-1", ids)

        assert source.calls == []

    def test_no_mappings_before_any_fetch(self, batch_service, seeded, source):
        """Should fail on missing aliases before fetching any orders."""
        seeded.set_table_data("sku_aliases", [])

        with pytest.raises(NoMappingsConfiguredError):
            batch_service.run_batch(ORG_ID, "run-1", ["sub-a"])

        assert source.calls == []
        assert seeded.rows("audit_logs") == []

    def test_finished_run_rejected(self, batch_service, seeded):
        """Should refuse to add to a completed run."""
        run_row(seeded)["status"] = "completed"

        with pytest.raises(InvalidRunStatusError):
            batch_service.run_batch(ORG_ID, "run-1", ["sub-a"])

    def test_unknown_run(self, batch_service):
        """Should raise not found for an unknown run."""
        with pytest.raises(MigrationRunNotFoundError):
            batch_service.run_batch(ORG_ID, "run-404", ["sub-a"])
