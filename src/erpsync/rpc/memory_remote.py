"""
In-memory remote ERP for testing and dry runs.

Serves authenticate / execute_kw over the real wire format: every call is
encoded with ``build_request``, decoded server-side, answered with a
``methodResponse`` document and parsed back with ``parse_response``.
No network access.
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.exceptions import TransportError
from .codec import (
    WireValue, build_fault, build_request, build_response,
    parse_request, parse_response,
)
from .domain import And, Domain, Not, Or, Predicate, from_wire
from .transport import RpcTransport


logger = logging.getLogger(__name__)

PARTNER_MODEL = "res.partner"
INVOICE_MODEL = "account.move"
LINE_MODEL = "account.move.line"

# field -> related model, for dotted domain paths and many2one/one2many values
DEFAULT_RELATIONS: Dict[str, Dict[str, str]] = {
    INVOICE_MODEL: {
        "partner_id": PARTNER_MODEL,
        "commercial_partner_id": PARTNER_MODEL,
        "line_ids": LINE_MODEL,
        "invoice_line_ids": LINE_MODEL,
    },
    LINE_MODEL: {
        "move_id": INVOICE_MODEL,
        "partner_id": PARTNER_MODEL,
    },
    PARTNER_MODEL: {
        "commercial_partner_id": PARTNER_MODEL,
    },
}

FAULT_ACCESS_DENIED = 3
FAULT_UNKNOWN_MODEL = 2
FAULT_UNKNOWN_METHOD = 1


class MemoryRemote(RpcTransport):
    """
    Synthetic remote system implementing the transport interface.

    Useful for:
    - Unit and end-to-end tests without network access
    - CLI dry runs against sample data
    - Injecting transport failures on specific operations
    """

    def __init__(
        self,
        database: str = "test_db",
        username: str = "sync@example.com",
        api_key: str = "test-key",
        uid: int = 2,
        records: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        relations: Optional[Dict[str, Dict[str, str]]] = None,
    ):
        self.database = database
        self.username = username
        self.api_key = api_key
        self.uid = uid
        self.relations = relations or DEFAULT_RELATIONS
        self.records: Dict[str, Dict[int, Dict[str, Any]]] = defaultdict(dict)
        for model, rows in (records or {}).items():
            for row in rows:
                self.add_record(model, row)

        self.request_history: List[Tuple[str, str, list]] = []
        self._injected: Dict[Tuple[str, str], List[Exception]] = defaultdict(list)
        self._hooks: List[Callable[[str, str, list], None]] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Fixture helpers
    # ------------------------------------------------------------------

    def add_record(self, model: str, record: Dict[str, Any]) -> None:
        if "id" not in record:
            raise ValueError("Remote records require an 'id'")
        self.records[model][int(record["id"])] = dict(record)

    def inject_error(self, model: str, operation: str, error: Exception, times: int = 1) -> None:
        """Raise ``error`` on the next ``times`` calls of model.operation."""
        self._injected[(model, operation)].extend([error] * times)

    def add_hook(self, hook: Callable[[str, str, list], None]) -> None:
        """Register a callable invoked as hook(model, operation, args) before each execute."""
        self._hooks.append(hook)

    def calls_for(self, model: str, operation: str) -> List[list]:
        return [
            params for method, _, params in self.request_history
            if method == "execute_kw" and params[3] == model and params[4] == operation
        ]

    def reset(self) -> None:
        self.request_history.clear()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def call(self, url: str, method_name: str, params: Sequence[Any]) -> WireValue:
        request_xml = build_request(method_name, params)
        method, native_params = parse_request(request_xml)

        with self._lock:
            self.request_history.append((method, url, native_params))

        if url.endswith("/common"):
            response_xml = self._serve_common(method, native_params)
        elif url.endswith("/object"):
            response_xml = self._serve_object(method, native_params)
        else:
            raise TransportError(f"XML-RPC request failed: 404 Not Found", url=url, status_code=404)

        return parse_response(response_xml)

    def _serve_common(self, method: str, params: list) -> str:
        if method == "version":
            return build_response({"server_version": "17.0", "protocol_version": 1})
        if method != "authenticate":
            return build_fault(FAULT_UNKNOWN_METHOD, f"Method not found: {method}")
        if len(params) < 3:
            return build_fault(FAULT_UNKNOWN_METHOD, "authenticate requires db, login, password")

        database, username, api_key = params[0], params[1], params[2]
        if database != self.database:
            return build_fault(FAULT_ACCESS_DENIED, f"database {database} does not exist")
        if username == self.username and api_key == self.api_key:
            return build_response(self.uid)
        return build_response(False)

    def _serve_object(self, method: str, params: list) -> str:
        if method != "execute_kw":
            return build_fault(FAULT_UNKNOWN_METHOD, f"Method not found: {method}")
        if len(params) < 6:
            return build_fault(FAULT_UNKNOWN_METHOD, "execute_kw requires 6 or 7 arguments")

        database, uid, api_key, model, operation, args = params[:6]
        kwargs = params[6] if len(params) > 6 and isinstance(params[6], dict) else {}

        if database != self.database or uid != self.uid or api_key != self.api_key:
            return build_fault(FAULT_ACCESS_DENIED, "Access Denied")

        for hook in self._hooks:
            hook(model, operation, args)

        injected = self._injected.get((model, operation))
        if injected:
            raise injected.pop(0)

        if model not in self.records and model not in self.relations:
            return build_fault(FAULT_UNKNOWN_MODEL, f"Object {model} doesn't exist")

        if operation == "search":
            return build_response(self._search(model, args, kwargs))
        if operation == "search_count":
            return build_response(len(self._search(model, args, {})))
        if operation == "read":
            return build_response(self._read(model, args, kwargs))
        if operation == "search_read":
            ids = self._search(model, args, kwargs)
            return build_response(self._read(model, [ids], kwargs))
        return build_fault(FAULT_UNKNOWN_METHOD, f"Unknown operation {model}.{operation}")

    # ------------------------------------------------------------------
    # Query evaluation
    # ------------------------------------------------------------------

    def _search(self, model: str, args: list, kwargs: Dict[str, Any]) -> List[int]:
        domain = from_wire(args[0] if args else [])
        rows = [row for row in self.records[model].values() if self._matches(model, row, domain)]

        order = kwargs.get("order") or "id asc"
        for clause in reversed([part.strip() for part in order.split(",") if part.strip()]):
            pieces = clause.split()
            field = pieces[0]
            descending = len(pieces) > 1 and pieces[1].lower() == "desc"
            rows.sort(key=lambda row: _sort_key(_scalar(row.get(field))), reverse=descending)

        ids = [row["id"] for row in rows]
        offset = kwargs.get("offset") or 0
        limit = kwargs.get("limit")
        if limit:
            return ids[offset:offset + limit]
        return ids[offset:]

    def _read(self, model: str, args: list, kwargs: Dict[str, Any]) -> List[Dict[str, Any]]:
        ids = args[0] if args else []
        fields = kwargs.get("fields") or (args[1] if len(args) > 1 else None)
        result = []
        for remote_id in ids:
            row = self.records[model].get(remote_id)
            if row is None:
                continue
            if fields:
                selected = {"id": row["id"]}
                selected.update({name: row.get(name, False) for name in fields})
                result.append(selected)
            else:
                result.append(dict(row))
        return result

    def _matches(self, model: str, row: Dict[str, Any], domain: Optional[Domain]) -> bool:
        if domain is None:
            return True
        if isinstance(domain, And):
            return all(self._matches(model, row, operand) for operand in domain.operands)
        if isinstance(domain, Or):
            return any(self._matches(model, row, operand) for operand in domain.operands)
        if isinstance(domain, Not):
            return not self._matches(model, row, domain.operand)
        return self._matches_predicate(model, row, domain)

    def _matches_predicate(self, model: str, row: Dict[str, Any], predicate: Predicate) -> bool:
        head, _, rest = predicate.field.partition(".")
        if rest:
            related_model = self.relations.get(model, {}).get(head)
            if related_model is None:
                return False
            related_rows = [
                self.records[related_model].get(related_id)
                for related_id in _ids(row.get(head))
            ]
            nested = Predicate(rest, predicate.operator, predicate.value)
            return any(
                related is not None and self._matches_predicate(related_model, related, nested)
                for related in related_rows
            )

        return _compare(_scalar(row.get(head)), predicate.operator, predicate.value)


def _ids(value: Any) -> List[int]:
    """Ids referenced by a many2one ([id, name]) or one2many ([id, ...]) value."""
    if not value:
        return []
    if isinstance(value, list):
        if len(value) == 2 and isinstance(value[0], int) and isinstance(value[1], str):
            return [value[0]]
        return [item for item in value if isinstance(item, int)]
    if isinstance(value, int):
        return [value]
    return []


def _scalar(value: Any) -> Any:
    if isinstance(value, list) and len(value) == 2 and isinstance(value[1], str):
        return value[0]
    return value


def _sort_key(value: Any):
    if value is None or value is False:
        return (0, 0)
    return (1, value)


def _compare(actual: Any, operator: str, expected: Any) -> bool:
    if operator == "=":
        return actual == expected
    if operator == "!=":
        return actual != expected
    if operator == "in":
        return actual in (expected or [])
    if operator == "not in":
        return actual not in (expected or [])
    if operator in ("like", "ilike", "not like", "not ilike"):
        haystack = str(actual or "")
        needle = str(expected or "")
        if operator.endswith("ilike"):
            haystack, needle = haystack.lower(), needle.lower()
        found = needle in haystack
        return not found if operator.startswith("not") else found
    if actual is None or actual is False:
        return False
    if operator == ">":
        return actual > expected
    if operator == ">=":
        return actual >= expected
    if operator == "<":
        return actual < expected
    if operator == "<=":
        return actual <= expected
    raise ValueError(f"Operator not supported by MemoryRemote: {operator}")


def build_sample_dataset(
    invoice_count: int = 2,
    lines_per_invoice: int = 1,
    invoice_date: str = "2025-03-15",
    shared_partner: bool = True,
) -> Dict[str, List[Dict[str, Any]]]:
    """
    Build a small consistent dataset of partners, invoices and lines.

    Each invoice also gets one non-product (tax) line so line-type
    filtering is exercised.
    """
    partners = []
    invoices = []
    lines = []
    next_line_id = 1000

    partner_count = 1 if shared_partner else invoice_count
    for index in range(partner_count):
        partner_id = 100 + index
        partners.append({
            "id": partner_id,
            "name": f"Partner {partner_id}",
            "display_name": f"Partner {partner_id}",
            "is_company": True,
            "email": f"billing{partner_id}@example.com",
            "commercial_partner_id": [partner_id, f"Partner {partner_id}"],
            "message_follower_ids": [1, 2],
        })

    for index in range(invoice_count):
        invoice_id = 500 + index
        partner = partners[0] if shared_partner else partners[index]
        partner_ref = [partner["id"], partner["name"]]
        name = f"INV/2025/{invoice_id:05d}"
        line_ids = []

        for line_index in range(lines_per_invoice):
            line_id = next_line_id
            next_line_id += 1
            line_ids.append(line_id)
            lines.append({
                "id": line_id,
                "move_id": [invoice_id, name],
                "name": f"Product line {line_index + 1}",
                "display_type": "product",
                "quantity": 1.0 + line_index,
                "price_unit": 100.0,
                "price_subtotal": 100.0 * (1.0 + line_index),
                "partner_id": partner_ref,
                "product_id": [7, "Consulting"],
            })

        tax_line_id = next_line_id
        next_line_id += 1
        line_ids.append(tax_line_id)
        lines.append({
            "id": tax_line_id,
            "move_id": [invoice_id, name],
            "name": "VAT 19%",
            "display_type": "tax",
            "quantity": 1.0,
            "price_unit": 19.0,
            "price_subtotal": 19.0,
            "partner_id": partner_ref,
            "product_id": False,
        })

        invoices.append({
            "id": invoice_id,
            "name": name,
            "display_name": name,
            "move_type": "out_invoice",
            "state": "posted",
            "payment_state": "not_paid",
            "invoice_date": invoice_date,
            "partner_id": partner_ref,
            "commercial_partner_id": partner_ref,
            "amount_total": 119.0 * lines_per_invoice,
            "line_ids": line_ids,
            "invoice_line_ids": line_ids[:-1],
            "edi_state": "to_send",
        })

    return {
        PARTNER_MODEL: partners,
        INVOICE_MODEL: invoices,
        LINE_MODEL: lines,
    }
