"""
Unit tests for the manual single-page sync and the pre-flight estimate.
"""

import pytest

from erpsync.core.models import EntityType
from erpsync.fetch.remote_models import INVOICE_MODEL, LINE_MODEL
from erpsync.runner.estimate import UNNAMED, estimate
from erpsync.runner.manual_sync import DEFAULT_LIMIT, ManualSync


TENANT = "holding-1"


@pytest.fixture
def manual_sync(fetcher, writer):
    return ManualSync(fetcher, writer)


def add_invoice_without_lines(remote, invoice_id, display_name):
    remote.add_record(INVOICE_MODEL, {
        "id": invoice_id,
        "name": display_name or "/",
        "display_name": display_name,
        "move_type": "out_invoice",
        "state": "posted",
        "payment_state": "not_paid",
        "invoice_date": "2025-03-20",
        "partner_id": [100, "Partner 100"],
        "commercial_partner_id": [100, "Partner 100"],
        "line_ids": [],
    })


class TestManualSync:
    """Tests for ManualSync.sync_page."""

    def test_full_page(self, manual_sync, sync_store):
        """Test lines are staged with their invoices and partners."""
        result = manual_sync.sync_page(TENANT)

        assert result.success is True
        assert (result.partners_synced, result.invoices_synced, result.lines_synced) == (1, 2, 2)
        assert result.errors == 0
        assert result.total_processed == 2
        assert result.message == "Sync completed: 2 invoices, 2 lines and 1 partners saved"
        assert sync_store.count(EntityType.INVOICE_LINE, TENANT) == 2

    def test_default_limit_and_order(self, manual_sync, sample_remote):
        """Test the line search uses the default page size, newest invoice first."""
        manual_sync.sync_page(TENANT)

        kwargs = sample_remote.calls_for(LINE_MODEL, "search")[0][6]
        assert kwargs["limit"] == DEFAULT_LIMIT == 60
        assert kwargs["order"] == "move_id desc"

    def test_offset_pages_through_lines(self, manual_sync, sync_store):
        """Test limit and offset select the second newest line only."""
        result = manual_sync.sync_page(TENANT, limit=1, offset=1)

        assert (result.invoices_synced, result.lines_synced) == (1, 1)
        assert sync_store.find(EntityType.INVOICE, 500, TENANT) is not None
        assert sync_store.find(EntityType.INVOICE, 501, TENANT) is None

    def test_no_lines(self, manual_sync, sync_store):
        result = manual_sync.sync_page(TENANT, date_from="2030-01-01")

        assert result.success is True
        assert result.message == "No invoice lines found to sync"
        assert result.total_processed == 0
        assert sync_store.count(EntityType.PARTNER) == 0

    def test_result_dict(self, manual_sync):
        """Test the summary exposes camelCase counters and nested stats."""
        payload = manual_sync.sync_page(TENANT, sync_session_id="s-1").to_dict()

        assert payload["invoicesSynced"] == 2
        assert payload["linesSynced"] == 2
        assert payload["partnersSynced"] == 1
        assert payload["batchId"].startswith("batch_")
        assert payload["stats"] == {"saved_invoices": 2, "saved_lines": 2, "saved_partners": 1, "errors": 0}

    def test_rerun_does_not_duplicate(self, manual_sync, sync_store):
        manual_sync.sync_page(TENANT)
        manual_sync.sync_page(TENANT)

        assert sync_store.count(EntityType.INVOICE) == 2
        assert sync_store.count(EntityType.INVOICE_LINE) == 2

    @pytest.mark.parametrize("limit,offset", [(0, 0), (10, -1)])
    def test_invalid_paging(self, manual_sync, limit, offset):
        with pytest.raises(ValueError):
            manual_sync.sync_page(TENANT, limit=limit, offset=offset)


class TestEstimate:
    """Tests for the read-only estimate."""

    def test_counts(self, fetcher):
        result = estimate(fetcher)

        assert result.total_lines == 2
        assert result.total_invoices == 2
        assert result.total_partners == 1
        assert result.total_invoices_without_product_lines == 0
        assert result.lines_per_invoice == 1.0

    def test_invoices_without_product_lines(self, fetcher, sample_remote):
        """Test invoices with no product line are counted and named."""
        add_invoice_without_lines(sample_remote, 502, "INV/2025/00502")
        add_invoice_without_lines(sample_remote, 503, False)

        result = estimate(fetcher)

        assert result.total_invoices == 4
        assert result.total_invoices_without_product_lines == 2
        assert sorted(result.invoices_without_product_lines_names) == sorted(["INV/2025/00502", UNNAMED])
        assert result.lines_per_invoice == 0.5

    def test_empty_window(self, fetcher, sample_remote):
        """Test nothing beyond the two counts is fetched when there are no invoices."""
        result = estimate(fetcher, date_from="2030-01-01")

        assert result.total_invoices == 0
        assert result.lines_per_invoice == 0
        assert sample_remote.calls_for(INVOICE_MODEL, "read") == []

    def test_date_window_applies(self, fetcher, sample_remote):
        add_invoice_without_lines(sample_remote, 502, "INV/2025/00502")

        result = estimate(fetcher, date_from="2025-03-01", date_to="2025-03-16")

        assert result.total_invoices == 2
        assert result.total_invoices_without_product_lines == 0

    def test_never_writes(self, fetcher, sync_store):
        estimate(fetcher)

        assert sync_store.count(EntityType.INVOICE) == 0

    def test_to_dict(self, fetcher):
        payload = estimate(fetcher).to_dict()

        assert payload["success"] is True
        assert payload["message"] == "Counted 2 lines across 2 invoices"
        assert payload["invoices_without_product_lines_names"] == []
