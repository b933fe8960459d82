from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Dict

import pandas as pd
import polars as pl


def compute_sha256(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def column_stats(fm: pl.DataFrame) -> Dict[str, Dict[str, object]]:
    """dtype, non-null count and coverage per column."""
    total = fm.height
    out: Dict[str, Dict[str, object]] = {}
    for col, dtype in fm.schema.items():
        non_null = total - int(fm[col].null_count())
        out[col] = {
            "dtype": str(dtype),
            "non_null": non_null,
            "coverage": float(round(non_null / total, 6)) if total else 0.0,
        }
    return out


def feature_catalog(fm: pl.DataFrame) -> pd.DataFrame:
    stats = column_stats(fm)
    return pd.DataFrame(
        [{"name": col, "dtype": s["dtype"], "coverage": s["coverage"]} for col, s in stats.items()]
    )
