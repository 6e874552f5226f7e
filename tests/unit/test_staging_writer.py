"""
Unit tests for the staging writer and payload field filter.
"""

from unittest.mock import MagicMock

import pytest

from erpsync.core.exceptions import MissingParentError, PersistenceError
from erpsync.core.models import EntityType, ProcessingStatus
from erpsync.staging.field_filter import DEFAULT_EXCLUDED_PREFIXES, FieldFilter
from erpsync.staging.writer import StagingWriter


TENANT = "holding-1"


class TestFieldFilter:
    """Tests for FieldFilter."""

    def test_drops_noise_fields(self):
        """Test chatter, activity and e-invoicing fields are removed."""
        payload = {
            "id": 1,
            "name": "INV/1",
            "message_ids": [1, 2],
            "activity_state": "overdue",
            "edi_state": "to_send",
            "x_studio_color": "red",
        }

        assert FieldFilter().apply(payload) == {"id": 1, "name": "INV/1"}

    def test_filters_nested_values(self):
        """Test nested dicts, including dicts inside lists, are filtered too."""
        payload = {
            "id": 1,
            "partner": {"name": "Acme", "message_ids": [3]},
            "lines": [{"id": 10, "edi_state": "sent"}, 7, "x"],
            "partner_id": [100, "Acme"],
        }

        assert FieldFilter().apply(payload) == {
            "id": 1,
            "partner": {"name": "Acme"},
            "lines": [{"id": 10}, 7, "x"],
            "partner_id": [100, "Acme"],
        }

    def test_does_not_mutate_input(self):
        payload = {"message_ids": [1]}
        FieldFilter().apply(payload)

        assert payload == {"message_ids": [1]}

    def test_prefix_match_only(self):
        """Test fields that merely contain a prefix are kept."""
        assert not FieldFilter().is_excluded("has_message_")
        assert FieldFilter().is_excluded("message_follower_ids")

    def test_custom_prefixes(self):
        field_filter = FieldFilter(["internal_"])

        assert field_filter.apply({"internal_note": "x", "message_ids": []}) == {"message_ids": []}

    def test_empty_prefix_list_keeps_everything(self):
        assert FieldFilter([]).apply({"message_ids": []}) == {"message_ids": []}

    def test_default_list(self):
        assert "message_" in DEFAULT_EXCLUDED_PREFIXES
        assert len(DEFAULT_EXCLUDED_PREFIXES) == 18


class TestUpsert:
    """Tests for StagingWriter.upsert."""

    def test_insert(self, writer, sync_store):
        """Test a first write creates a processed record with a filtered payload."""
        record = writer.upsert(
            EntityType.PARTNER, 100, TENANT,
            {"id": 100, "name": "Acme", "message_follower_ids": [1]},
            "batch_1", sync_session_id="session-1",
        )

        stored = sync_store.find(EntityType.PARTNER, 100, TENANT)
        assert stored.local_id == record.local_id
        assert stored.payload == {"id": 100, "name": "Acme"}
        assert stored.processing_status == ProcessingStatus.PROCESSED
        assert stored.sync_session_id == "session-1"

    def test_second_write_updates_in_place(self, writer, sync_store):
        """Test the same key never produces a duplicate."""
        first = writer.upsert(EntityType.PARTNER, 100, TENANT, {"id": 100, "name": "Acme"}, "batch_1")
        second = writer.upsert(EntityType.PARTNER, 100, TENANT, {"id": 100, "name": "Acme Ltd"}, "batch_2")

        assert second.local_id == first.local_id
        assert sync_store.count(EntityType.PARTNER) == 1
        stored = sync_store.find(EntityType.PARTNER, 100, TENANT)
        assert stored.payload["name"] == "Acme Ltd"
        assert stored.batch_id == "batch_2"
        assert stored.updated_at >= stored.created_at

    def test_key_includes_tenant_and_entity_type(self, writer, sync_store):
        """Test the same remote id is distinct per tenant and entity type."""
        writer.upsert(EntityType.PARTNER, 100, TENANT, {"id": 100}, "b")
        writer.upsert(EntityType.PARTNER, 100, "holding-2", {"id": 100}, "b")
        writer.upsert(EntityType.INVOICE, 100, TENANT, {"id": 100}, "b")

        assert sync_store.count(EntityType.PARTNER) == 2
        assert sync_store.count(EntityType.PARTNER, TENANT) == 1
        assert sync_store.count(EntityType.INVOICE) == 1

    def test_child_requires_parent(self, writer, sync_store):
        """Test a line without a staged invoice is rejected."""
        with pytest.raises(MissingParentError) as exc_info:
            writer.upsert(
                EntityType.INVOICE_LINE, 1000, TENANT, {"id": 1000}, "b",
                parent_remote_id=500,
            )

        assert exc_info.value.remote_parent_id == 500
        assert sync_store.count(EntityType.INVOICE_LINE) == 0

    def test_child_with_parent(self, writer, sync_store):
        """Test a line is linked to its staged invoice."""
        invoice = writer.upsert(EntityType.INVOICE, 500, TENANT, {"id": 500}, "b")
        parent_local_id = writer.resolve_parent(500, TENANT)

        writer.upsert(
            EntityType.INVOICE_LINE, 1000, TENANT, {"id": 1000}, "b",
            parent_local_id=parent_local_id, parent_remote_id=500,
        )

        line = sync_store.find(EntityType.INVOICE_LINE, 1000, TENANT)
        assert parent_local_id == invoice.local_id
        assert line.parent_local_id == invoice.local_id
        assert line.parent_remote_id == 500

    def test_store_failure_is_persistence_error(self):
        """Test unexpected store errors are wrapped."""
        store = MagicMock()
        store.find.side_effect = RuntimeError("disk full")
        writer = StagingWriter(store)

        with pytest.raises(PersistenceError, match="disk full"):
            writer.upsert(EntityType.PARTNER, 1, TENANT, {"id": 1}, "b")


class TestResolveAndConfirm:
    """Tests for resolve_parent and confirm_written."""

    def test_resolve_unknown_parent(self, writer):
        assert writer.resolve_parent(999, TENANT) is None
        assert writer.resolve_parent(None, TENANT) is None

    def test_resolve_is_tenant_scoped(self, writer):
        writer.upsert(EntityType.INVOICE, 500, "holding-2", {"id": 500}, "b")

        assert writer.resolve_parent(500, TENANT) is None

    def test_confirm_written(self, writer):
        """Test confirm_written lists ids that are not readable."""
        writer.upsert(EntityType.INVOICE, 500, TENANT, {"id": 500}, "b")
        writer.upsert(EntityType.INVOICE, 501, TENANT, {"id": 501}, "b")

        assert writer.confirm_written(EntityType.INVOICE, TENANT, [500, 501]) == []
        assert writer.confirm_written(EntityType.INVOICE, TENANT, [500, 502, 502]) == [502]
        assert writer.confirm_written(EntityType.INVOICE, TENANT, []) == []
