"""
Staging writes.
"""

from .field_filter import DEFAULT_EXCLUDED_PREFIXES, FieldFilter
from .writer import StagingWriter

__all__ = ["DEFAULT_EXCLUDED_PREFIXES", "FieldFilter", "StagingWriter"]
