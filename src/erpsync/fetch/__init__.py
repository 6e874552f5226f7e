"""
Remote entity fetching.
"""

from .entity_fetcher import EntityFetcher, default_retry_config
from .remote_models import (
    PARTNER_MODEL, INVOICE_MODEL, LINE_MODEL, MODEL_BY_ENTITY, FIELDS_BY_ENTITY,
    invoice_domain, product_line_domain, lines_of_invoices_domain,
    invoices_without_product_lines_domain, many2one_id, partner_ids_of,
)

__all__ = [
    "EntityFetcher",
    "default_retry_config",
    "PARTNER_MODEL",
    "INVOICE_MODEL",
    "LINE_MODEL",
    "MODEL_BY_ENTITY",
    "FIELDS_BY_ENTITY",
    "invoice_domain",
    "product_line_domain",
    "lines_of_invoices_domain",
    "invoices_without_product_lines_domain",
    "many2one_id",
    "partner_ids_of",
]
