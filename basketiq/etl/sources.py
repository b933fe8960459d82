"""Read the basket tables from a database or a directory of exported files.

Both paths return typed polars frames keyed by logical table name
(``orders``, ``order_products``, ``products``, ``aisles``, ``departments``).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import polars as pl

from basketiq.etl.cleaners import coerce_dimension, coerce_order_lines, coerce_orders, coerce_products
from basketiq.utils.config import DEFAULT_TABLES
from basketiq.utils.logger import get_logger
from basketiq.utils.sql import validate_identifier


logger = get_logger(__name__)

# Instacart export names; order lines are split across prior/train files
FILE_STEMS: Dict[str, List[str]] = {
    "orders": ["orders"],
    "order_products": ["order_products", "order_products__prior", "order_products__train"],
    "products": ["products"],
    "aisles": ["aisles"],
    "departments": ["departments"],
}


@dataclass
class BasketTables:
    orders: pl.DataFrame
    order_products: pl.DataFrame
    products: Optional[pl.DataFrame] = None
    aisles: Optional[pl.DataFrame] = None
    departments: Optional[pl.DataFrame] = None


def robust_read_csv(path: Path) -> pd.DataFrame:
    encodings = ["utf-8", "latin-1", "cp1252", "iso-8859-1"]
    last_err: Exception | None = None
    for enc in encodings:
        try:
            return pd.read_csv(path, encoding=enc, low_memory=False)
        except UnicodeDecodeError as e:
            last_err = e
            continue
    raise ValueError(f"Could not read CSV {path}: {last_err}")


def _read_file(path: Path) -> pl.DataFrame:
    if path.suffix.lower() == ".parquet":
        return pl.read_parquet(path)
    return pl.from_pandas(robust_read_csv(path))


def _find_files(data_dir: Path, logical: str) -> List[Path]:
    found: List[Path] = []
    for stem in FILE_STEMS[logical]:
        for suffix in (".parquet", ".csv"):
            candidate = data_dir / f"{stem}{suffix}"
            if candidate.exists():
                found.append(candidate)
                break
    return found


def _coerce(logical: str, df: pl.DataFrame) -> pl.DataFrame:
    if logical == "orders":
        return coerce_orders(df)
    if logical == "order_products":
        return coerce_order_lines(df)
    if logical == "products":
        return coerce_products(df)
    if logical == "aisles":
        return coerce_dimension(df, "aisle_id", "aisle")
    return coerce_dimension(df, "department_id", "department")


def read_tables_from_files(data_dir: str | Path, include_dimensions: bool = True) -> BasketTables:
    data_dir = Path(data_dir)
    wanted = list(FILE_STEMS) if include_dimensions else ["orders", "order_products", "products"]
    frames: Dict[str, Optional[pl.DataFrame]] = {}
    for logical in wanted:
        paths = _find_files(data_dir, logical)
        if not paths:
            if logical in ("orders", "order_products"):
                raise FileNotFoundError(f"No {logical} file found under {data_dir}")
            logger.warning("No %s file under %s; reference checks for it are skipped", logical, data_dir)
            frames[logical] = None
            continue
        parts = [_coerce(logical, _read_file(p)) for p in paths]
        frames[logical] = pl.concat(parts, how="diagonal_relaxed") if len(parts) > 1 else parts[0]
        logger.info("Read %s rows for %s from %s", frames[logical].height, logical, ", ".join(p.name for p in paths))
    return BasketTables(**frames)


def read_table_from_db(engine, table: str) -> pl.DataFrame:
    name = validate_identifier(table)
    df = pd.read_sql_query(f"SELECT * FROM {name}", engine)
    return pl.from_pandas(df)


def read_tables_from_db(engine, tables: Optional[Dict[str, str]] = None, include_dimensions: bool = True) -> BasketTables:
    mapping = dict(DEFAULT_TABLES)
    mapping.update(tables or {})
    wanted = list(FILE_STEMS) if include_dimensions else ["orders", "order_products", "products"]
    frames: Dict[str, Optional[pl.DataFrame]] = {}
    for logical in wanted:
        frames[logical] = _coerce(logical, read_table_from_db(engine, mapping[logical]))
        logger.info("Read %s rows for %s from table %s", frames[logical].height, logical, mapping[logical])
    return BasketTables(**frames)
