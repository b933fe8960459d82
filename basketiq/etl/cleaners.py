from __future__ import annotations

from typing import Dict, Union

import pandas as pd
import polars as pl


Frame = Union[pd.DataFrame, pl.DataFrame]

_TRUTHY = ["1", "1.0", "t", "true", "y", "yes"]


def to_polars(df: Frame) -> pl.DataFrame:
    """Accept pandas or polars input; pandas NaN becomes null."""
    if isinstance(df, pl.DataFrame):
        return df
    return pl.from_pandas(df)


def _cast_int(frame: pl.DataFrame, cols) -> pl.DataFrame:
    exprs = [pl.col(c).cast(pl.Int64, strict=False).alias(c) for c in cols if c in frame.columns]
    return frame.with_columns(exprs) if exprs else frame


def coerce_day_gap(col: str = "days_since_prior_order") -> pl.Expr:
    """Raw exports store the gap as text such as ``"15.0"``; cast through float."""
    return (
        pl.col(col)
        .cast(pl.Utf8)
        .str.strip_chars()
        .cast(pl.Float64, strict=False)
        .round(0)
        .cast(pl.Int64)
        .alias(col)
    )


def coerce_bool(col: str) -> pl.Expr:
    return (
        pl.col(col)
        .cast(pl.Utf8)
        .str.strip_chars()
        .str.to_lowercase()
        .is_in(_TRUTHY)
        .alias(col)
    )


def coerce_orders(df: Frame) -> pl.DataFrame:
    out = to_polars(df)
    out = _cast_int(out, ["order_id", "user_id", "order_number", "order_dow", "order_hour_of_day"])
    if "days_since_prior_order" in out.columns:
        out = out.with_columns(coerce_day_gap())
    if "eval_set" in out.columns:
        out = out.with_columns(pl.col("eval_set").cast(pl.Utf8))
    return out


def coerce_order_lines(df: Frame) -> pl.DataFrame:
    out = to_polars(df)
    out = _cast_int(out, ["order_id", "product_id", "add_to_cart_order"])
    if "reordered" in out.columns and out.schema["reordered"] != pl.Boolean:
        # keep nulls visible to the contracts instead of coercing them to False
        out = out.with_columns(
            pl.when(pl.col("reordered").is_null()).then(None).otherwise(coerce_bool("reordered")).alias("reordered")
        )
    return out


def coerce_products(df: Frame) -> pl.DataFrame:
    out = to_polars(df)
    out = _cast_int(out, ["product_id", "aisle_id", "department_id"])
    if "product_name" in out.columns:
        out = out.with_columns(pl.col("product_name").cast(pl.Utf8))
    return out


def coerce_dimension(df: Frame, key: str, label: str) -> pl.DataFrame:
    out = _cast_int(to_polars(df), [key])
    if label in out.columns:
        out = out.with_columns(pl.col(label).cast(pl.Utf8))
    return out


def summarise_dataframe_schema(df: pl.DataFrame) -> Dict[str, str]:
    """Return a simple mapping of column name → dtype string for auditing."""
    return {col: str(dtype) for col, dtype in df.schema.items()}
