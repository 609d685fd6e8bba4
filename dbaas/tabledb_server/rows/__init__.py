"""
Row documents of TableDB tables.
"""

from .store import META_FIELD, RowStore, generate_row_id

__all__ = ["RowStore", "META_FIELD", "generate_row_id"]
