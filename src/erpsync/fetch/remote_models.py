"""
Remote model names, field selections and filters for the synchronized entities.
"""

from typing import Any, Dict, Iterable, List, Optional

from ..core.models import EntityType
from ..rpc.domain import And, Domain, Not, Predicate, all_of, date_range


PARTNER_MODEL = "res.partner"
INVOICE_MODEL = "account.move"
LINE_MODEL = "account.move.line"

MODEL_BY_ENTITY: Dict[EntityType, str] = {
    EntityType.PARTNER: PARTNER_MODEL,
    EntityType.INVOICE: INVOICE_MODEL,
    EntityType.INVOICE_LINE: LINE_MODEL,
}

PARTNER_FIELDS = [
    "id", "name", "display_name", "ref", "active", "email", "phone", "mobile",
    "website", "email_normalized", "phone_sanitized", "street", "street2", "city",
    "zip", "state_id", "country_id", "contact_address_complete", "vat",
    "commercial_partner_id", "is_company", "company_type", "category_id",
    "industry_id", "function", "title", "create_date", "write_date",
    "create_uid", "write_uid",
]

INVOICE_FIELDS = [
    "id", "name", "display_name", "move_type", "state", "partner_id",
    "commercial_partner_id", "invoice_date", "invoice_date_due", "date",
    "amount_untaxed", "amount_tax", "amount_total", "amount_residual",
    "currency_id", "company_currency_id", "invoice_origin", "ref", "narration",
    "payment_reference", "invoice_line_ids", "line_ids", "journal_id",
    "company_id", "create_date", "write_date", "create_uid", "write_uid",
    "invoice_user_id", "user_id", "team_id", "invoice_payment_term_id",
    "fiscal_position_id", "payment_state",
]

LINE_FIELDS = [
    "id", "move_id", "name", "display_name", "sequence", "product_id",
    "product_uom_id", "quantity", "price_unit", "price_subtotal", "price_total",
    "discount", "tax_base_amount", "account_id", "tax_ids", "tax_line_id",
    "partner_id", "currency_id", "create_date", "write_date", "display_type",
]

FIELDS_BY_ENTITY: Dict[EntityType, List[str]] = {
    EntityType.PARTNER: PARTNER_FIELDS,
    EntityType.INVOICE: INVOICE_FIELDS,
    EntityType.INVOICE_LINE: LINE_FIELDS,
}

PARTNER_REFERENCE_FIELDS = ("partner_id", "commercial_partner_id")
PARENT_REFERENCE_FIELD = "move_id"

INVOICE_ORDER = "id desc"
LINE_ORDER = "move_id desc, id asc"


def invoice_domain(date_from: Optional[str] = None, date_to: Optional[str] = None) -> Domain:
    """Posted customer invoices, not reversed, inside the invoice date window."""
    return all_of(
        Predicate("state", "=", "posted"),
        Predicate("move_type", "in", ["out_invoice"]),
        Predicate("payment_state", "!=", "reversed"),
        date_range("invoice_date", date_from, date_to),
    )


def product_line_domain(date_from: Optional[str] = None, date_to: Optional[str] = None) -> Domain:
    """Product lines whose invoice matches ``invoice_domain``."""
    return And(
        invoice_domain(date_from, date_to).prefixed(PARENT_REFERENCE_FIELD),
        Predicate("display_type", "=", "product"),
    )


def lines_of_invoices_domain(invoice_ids: Iterable[int]) -> Domain:
    """Product lines belonging to the given invoices."""
    return And(
        Predicate(PARENT_REFERENCE_FIELD, "in", list(invoice_ids)),
        Predicate("display_type", "=", "product"),
    )


def invoices_without_product_lines_domain(
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> Domain:
    """Invoices in the window with no product line at all."""
    return And(
        invoice_domain(date_from, date_to),
        Not(Predicate("line_ids.display_type", "=", "product")),
    )


def many2one_id(value: Any) -> Optional[int]:
    """Extract the id from a many2one value (``[id, display_name]`` or False)."""
    if isinstance(value, list) and value and isinstance(value[0], int) and not isinstance(value[0], bool):
        return value[0]
    if isinstance(value, int) and not isinstance(value, bool) and value:
        return value
    return None


def partner_ids_of(invoices: Iterable[Dict[str, Any]]) -> List[int]:
    """Unique partner ids referenced by invoices, in first-seen order."""
    seen: Dict[int, None] = {}
    for invoice in invoices:
        for field in PARTNER_REFERENCE_FIELDS:
            partner_id = many2one_id(invoice.get(field))
            if partner_id is not None:
                seen.setdefault(partner_id, None)
    return list(seen)
