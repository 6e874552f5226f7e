"""
Manual single-page sync.

Pulls one page of product lines (newest invoices first) together with
their invoices and partners, and stages them in dependency order. Runs
synchronously; no jobs are created.
"""

import logging
from typing import Any, Dict, List, Optional

from ..core.exceptions import MissingParentError, PersistenceError
from ..core.models import EntityType, SyncResult, new_batch_id
from ..fetch.entity_fetcher import EntityFetcher
from ..fetch.remote_models import (
    INVOICE_FIELDS, INVOICE_MODEL, LINE_FIELDS, LINE_MODEL,
    PARENT_REFERENCE_FIELD, PARTNER_FIELDS, PARTNER_MODEL,
    many2one_id, partner_ids_of, product_line_domain,
)
from ..staging.writer import StagingWriter


logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 60
MANUAL_LINE_ORDER = "move_id desc"


class ManualSync:
    """Stages one page of lines plus the invoices and partners they reference."""

    def __init__(self, fetcher: EntityFetcher, writer: StagingWriter):
        self.fetcher = fetcher
        self.writer = writer

    def sync_page(
        self,
        tenant_id: str,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        sync_session_id: Optional[str] = None,
    ) -> SyncResult:
        """
        Sync one page.

        Args:
            tenant_id: Tenant the records are staged for
            limit: Number of product lines in the page
            offset: Lines to skip (ordered by invoice, newest first)
            date_from: Inclusive lower bound on invoice date
            date_to: Inclusive upper bound on invoice date
            sync_session_id: Optional session id stamped on staged records

        Returns:
            SyncResult summary

        Raises:
            SyncError subclasses for authentication and remote failures
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if offset < 0:
            raise ValueError("offset cannot be negative")

        batch_id = new_batch_id()
        line_ids = self.fetcher.search(
            LINE_MODEL,
            product_line_domain(date_from, date_to),
            limit=limit,
            offset=offset,
            order=MANUAL_LINE_ORDER,
        )
        if not line_ids:
            return SyncResult(success=True, message="No invoice lines found to sync", batch_id=batch_id)

        lines = self.fetcher.read(LINE_MODEL, line_ids, LINE_FIELDS)
        invoice_ids = list(dict.fromkeys(
            invoice_id for invoice_id in (many2one_id(line.get(PARENT_REFERENCE_FIELD)) for line in lines)
            if invoice_id is not None
        ))
        if not invoice_ids:
            return SyncResult(
                success=True,
                message="No invoices found to sync",
                batch_id=batch_id,
                total_processed=len(line_ids),
            )

        invoices = self.fetcher.read(INVOICE_MODEL, invoice_ids, INVOICE_FIELDS)
        partner_ids = partner_ids_of(invoices)
        partners = self.fetcher.read(PARTNER_MODEL, partner_ids, PARTNER_FIELDS) if partner_ids else []

        errors = 0
        saved_partners, failed = self._stage(EntityType.PARTNER, partners, tenant_id, batch_id, sync_session_id)
        errors += failed
        saved_invoices, failed = self._stage(EntityType.INVOICE, invoices, tenant_id, batch_id, sync_session_id)
        errors += failed
        saved_lines, failed = self._stage(EntityType.INVOICE_LINE, lines, tenant_id, batch_id, sync_session_id)
        errors += failed

        message = (
            f"Sync completed: {saved_invoices} invoices, {saved_lines} lines "
            f"and {saved_partners} partners saved"
        )
        logger.info(f"{message} (batch {batch_id}, {errors} errors)")
        return SyncResult(
            success=True,
            message=message,
            batch_id=batch_id,
            invoices_synced=saved_invoices,
            lines_synced=saved_lines,
            partners_synced=saved_partners,
            errors=errors,
            total_processed=len(line_ids),
        )

    def _stage(
        self,
        entity_type: EntityType,
        records: List[Dict[str, Any]],
        tenant_id: str,
        batch_id: str,
        sync_session_id: Optional[str],
    ):
        saved = 0
        failed = 0
        for record in records:
            remote_id = record.get("id")
            parent_local_id = None
            parent_remote_id = None
            try:
                if entity_type.is_child:
                    parent_remote_id = many2one_id(record.get(PARENT_REFERENCE_FIELD))
                    parent_local_id = self.writer.resolve_parent(parent_remote_id, tenant_id)
                self.writer.upsert(
                    entity_type,
                    remote_id,
                    tenant_id,
                    record,
                    batch_id,
                    sync_session_id=sync_session_id,
                    parent_local_id=parent_local_id,
                    parent_remote_id=parent_remote_id,
                )
                saved += 1
            except (MissingParentError, PersistenceError) as e:
                logger.warning(f"Failed to stage {entity_type.value} {remote_id}: {e}")
                failed += 1
        return saved, failed
