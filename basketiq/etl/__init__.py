"""Public exports for ETL helpers."""

from .contracts import ContractBreach, MalformedInput, MissingReference, validate_order_log
from .sources import BasketTables, read_tables_from_db, read_tables_from_files

__all__ = [
    "BasketTables",
    "ContractBreach",
    "MalformedInput",
    "MissingReference",
    "read_tables_from_db",
    "read_tables_from_files",
    "validate_order_log",
]
