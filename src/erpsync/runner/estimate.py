"""
Pre-flight estimate of a sync window. Read-only: never touches staging.
"""

import logging
from typing import Any, Dict, List, Optional

from ..core.models import EstimateResult
from ..fetch.entity_fetcher import EntityFetcher
from ..fetch.remote_models import (
    INVOICE_MODEL, INVOICE_ORDER, LINE_MODEL, PARTNER_REFERENCE_FIELDS,
    invoice_domain, invoices_without_product_lines_domain, partner_ids_of,
    product_line_domain,
)


logger = logging.getLogger(__name__)

UNNAMED = "Unnamed"


def estimate(
    fetcher: EntityFetcher,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    read_page_size: int = 500,
) -> EstimateResult:
    """
    Count what a sync of the window would pull.

    Counts product lines, invoices, distinct partners referenced by those
    invoices, and invoices that have no product line at all (with their
    display names, so they can be inspected before syncing).

    Errors from the remote are raised to the caller.
    """
    total_lines = fetcher.count(LINE_MODEL, product_line_domain(date_from, date_to))
    total_invoices = fetcher.count(INVOICE_MODEL, invoice_domain(date_from, date_to))

    total_partners = 0
    without_lines = 0
    without_lines_names: List[str] = []

    if total_invoices > 0:
        invoice_ids = fetcher.search_all(INVOICE_MODEL, invoice_domain(date_from, date_to), order=INVOICE_ORDER)
        references: List[Dict[str, Any]] = []
        for start in range(0, len(invoice_ids), read_page_size):
            references.extend(fetcher.read(
                INVOICE_MODEL, invoice_ids[start:start + read_page_size], list(PARTNER_REFERENCE_FIELDS),
            ))
        total_partners = len(partner_ids_of(references))

        empty_domain = invoices_without_product_lines_domain(date_from, date_to)
        without_lines = fetcher.count(INVOICE_MODEL, empty_domain)
        if without_lines > 0:
            empty_ids = fetcher.search_all(INVOICE_MODEL, empty_domain, order=INVOICE_ORDER)
            if empty_ids:
                rows = fetcher.read(INVOICE_MODEL, empty_ids, ["display_name"])
                without_lines_names = [row.get("display_name") or UNNAMED for row in rows]

    result = EstimateResult(
        total_lines=total_lines,
        total_invoices=total_invoices,
        total_partners=total_partners,
        total_invoices_without_product_lines=without_lines,
        invoices_without_product_lines_names=without_lines_names,
    )
    logger.info(
        f"Estimate: {total_lines} lines, {total_invoices} invoices, "
        f"{total_partners} partners, {without_lines} invoices without product lines"
    )
    return result
