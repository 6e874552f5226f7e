"""
Payload noise filtering for staged records.

Remote records carry chatter, activity, e-invoicing and accounting
bookkeeping fields that are irrelevant downstream. They are stripped
before a payload is staged.
"""

from typing import Any, Iterable, Optional, Sequence


DEFAULT_EXCLUDED_PREFIXES = (
    "message_",
    "activity_",
    "rating_",
    "website_message_",
    "extract_",
    "edi_",
    "authorized_transaction_",
    "transaction_",
    "asset_",
    "depreciation_",
    "deferred_",
    "external_trade",
    "ubl_cii_",
    "string_to_hash",
    "cession_",
    "sworn_declaration",
    "sii_",
    "x_studio_",
)


class FieldFilter:
    """Drops payload keys that start with any excluded prefix."""

    def __init__(self, excluded_prefixes: Optional[Iterable[str]] = None):
        if excluded_prefixes is None:
            excluded_prefixes = DEFAULT_EXCLUDED_PREFIXES
        self.excluded_prefixes: Sequence[str] = tuple(excluded_prefixes)

    def is_excluded(self, field_name: str) -> bool:
        return field_name.startswith(tuple(self.excluded_prefixes))

    def apply(self, payload: Any) -> Any:
        """
        Return a copy of ``payload`` without excluded keys.

        Nested dicts and lists are filtered the same way; scalars are
        returned unchanged.
        """
        if isinstance(payload, dict):
            return {
                key: self.apply(value)
                for key, value in payload.items()
                if not self.is_excluded(key)
            }
        if isinstance(payload, list):
            return [self.apply(item) for item in payload]
        return payload
