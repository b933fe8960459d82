from __future__ import annotations

import pandas as pd
import polars as pl


LABEL_COLUMN = "label_next_order"
REPORT_COLUMNS = ["total", "positives", "prevalence", "users", "products", "first_purchase_share"]


def prevalence_report(features: pl.DataFrame) -> pd.DataFrame:
    """One-row class-balance summary of a reorder training table.

    ``first_purchase_share`` is the fraction of rows whose snapshot is the first
    time the user bought the product (no history behind the features).
    """
    if features.is_empty():
        return pd.DataFrame(columns=REPORT_COLUMNS)
    df = features.to_pandas()
    total = len(df)
    pos = int(df[LABEL_COLUMN].sum())
    prevalence = round(pos / total, 6) if total else 0.0
    first = int((df["times_seen_before"] == 0).sum())
    return pd.DataFrame([
        {
            "total": total,
            "positives": pos,
            "prevalence": prevalence,
            "users": int(df["user_id"].nunique()),
            "products": int(df["product_id"].nunique()),
            "first_purchase_share": round(first / total, 6) if total else 0.0,
        }
    ])
