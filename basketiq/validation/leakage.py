"""Point-in-time audits for the reorder training table.

These checks deliberately avoid the builder's window expressions: each sampled
row is recomputed by plain pandas filtering of the raw occurrences, so a
regression in the builder cannot hide behind a shared helper.
"""

from __future__ import annotations

import math
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
import polars as pl

from basketiq.etl.cleaners import coerce_order_lines, coerce_orders
from basketiq.features.reorder import FEATURE_COLUMNS, UNSEEN_POSITION_SENTINEL, build_reorder_features
from basketiq.utils.logger import get_logger


logger = get_logger(__name__)

AGGREGATE_COLUMNS = [
    "times_seen_before",
    "times_reordered_before",
    "avg_add_to_cart_before",
    "last_seen_days_since_first",
]


def _occurrences(orders: pl.DataFrame, order_lines: pl.DataFrame) -> pd.DataFrame:
    o = orders.to_pandas().sort_values(["user_id", "order_number"])
    gaps = o["days_since_prior_order"].fillna(0)
    o["days_since_first_order"] = gaps.groupby(o["user_id"]).cumsum()
    lines = order_lines.to_pandas()
    return lines.merge(o[["order_id", "user_id", "order_number", "days_since_first_order"]], on="order_id", how="inner")


def _expected_row(occ: pd.DataFrame, orders_pd: pd.DataFrame, user_id, product_id, snapshot, sentinel: float) -> Dict[str, object]:
    pair = occ[(occ["user_id"] == user_id) & (occ["product_id"] == product_id)]
    prior = pair[pair["order_number"] < snapshot]
    seen = len(prior)
    has_next = bool(((orders_pd["user_id"] == user_id) & (orders_pd["order_number"] == snapshot + 1)).any())
    label = int(has_next and (pair["order_number"] == snapshot + 1).any())
    return {
        "times_seen_before": seen,
        "times_reordered_before": int(prior["reordered"].astype(bool).sum()),
        "avg_add_to_cart_before": float(prior["add_to_cart_order"].mean()) if seen else sentinel,
        "last_seen_days_since_first": float(prior["days_since_first_order"].max()) if seen else None,
        "label_next_order": label,
    }


def _same(a, b) -> bool:
    a_missing = a is None or (isinstance(a, float) and math.isnan(a)) or a is pd.NA
    b_missing = b is None or (isinstance(b, float) and math.isnan(b)) or b is pd.NA
    if a_missing or b_missing:
        return a_missing and b_missing
    return math.isclose(float(a), float(b), rel_tol=0.0, abs_tol=1e-9)


def audit_point_in_time(
    features: pl.DataFrame,
    orders,
    order_lines,
    sample_size: int = 1000,
    seed: int = 42,
    sentinel: float = UNSEEN_POSITION_SENTINEL,
) -> Tuple[Dict[str, object], pd.DataFrame]:
    """Recompute aggregates and label for a random sample of feature rows.

    Returns:
        (report, mismatches): report has ``checked``, ``mismatches`` and ``ok``;
        the frame lists every differing (row, column, stored, expected).
    """
    orders_pl = coerce_orders(orders)
    lines_pl = coerce_order_lines(order_lines)
    if features.is_empty():
        return {"checked": 0, "mismatches": 0, "ok": True}, pd.DataFrame(columns=["user_id", "product_id", "snapshot_order_number", "column", "stored", "expected"])

    fpd = features.select(FEATURE_COLUMNS).to_pandas()
    n = min(int(sample_size), len(fpd))
    rng = np.random.RandomState(seed)
    idx = rng.choice(len(fpd), size=n, replace=False)
    sample = fpd.iloc[np.sort(idx)]

    occ = _occurrences(orders_pl, lines_pl)
    orders_pd = orders_pl.select("user_id", "order_number").to_pandas()

    rows = []
    for rec in sample.itertuples(index=False):
        expected = _expected_row(occ, orders_pd, rec.user_id, rec.product_id, rec.snapshot_order_number, sentinel)
        for col, exp in expected.items():
            stored = getattr(rec, col)
            if not _same(stored, exp):
                rows.append({
                    "user_id": rec.user_id,
                    "product_id": rec.product_id,
                    "snapshot_order_number": rec.snapshot_order_number,
                    "column": col,
                    "stored": stored,
                    "expected": exp,
                })
    mismatches = pd.DataFrame(rows, columns=["user_id", "product_id", "snapshot_order_number", "column", "stored", "expected"])
    report = {"checked": int(n), "mismatches": int(len(mismatches)), "ok": bool(mismatches.empty)}
    if mismatches.empty:
        logger.info("Point-in-time audit passed on %s sampled rows", n)
    else:
        logger.error("Point-in-time audit found %s mismatching values across %s sampled rows", len(mismatches), n)
    return report, mismatches


def truncation_invariance(
    orders,
    order_lines,
    sample_pairs: int = 50,
    seed: int = 42,
    features: Optional[pl.DataFrame] = None,
) -> Dict[str, object]:
    """Delete each sampled snapshot's same-or-later purchases and rebuild.

    For a sampled (user, product, snapshot) the pair's purchases at
    ``order_number >= snapshot`` are removed except the snapshot row itself;
    the rebuilt snapshot row must carry identical aggregate features.
    """
    orders_pl = coerce_orders(orders)
    lines_pl = coerce_order_lines(order_lines)
    if features is None:
        features = build_reorder_features(orders_pl, lines_pl)
    if features.is_empty():
        return {"checked": 0, "failures": 0, "ok": True}

    rng = np.random.RandomState(seed)
    n = min(int(sample_pairs), features.height)
    chosen = rng.choice(features.height, size=n, replace=False).tolist()
    picks = features.with_row_index("_i").filter(pl.col("_i").cast(pl.Int64).is_in(chosen)).drop("_i")
    order_numbers = orders_pl.select("order_id", "user_id", "order_number")

    failures = 0
    for rec in picks.iter_rows(named=True):
        u, p, s = rec["user_id"], rec["product_id"], rec["snapshot_order_number"]
        later_orders = order_numbers.filter((pl.col("user_id") == u) & (pl.col("order_number") > s))["order_id"]
        trimmed = lines_pl.filter(~((pl.col("product_id") == p) & pl.col("order_id").is_in(later_orders.to_list())))
        rebuilt = build_reorder_features(orders_pl, trimmed).filter(
            (pl.col("user_id") == u) & (pl.col("product_id") == p) & (pl.col("snapshot_order_number") == s)
        )
        if rebuilt.height != 1:
            failures += 1
            continue
        if any(not _same(rebuilt[c][0], rec[c]) for c in AGGREGATE_COLUMNS):
            failures += 1
    report = {"checked": int(n), "failures": int(failures), "ok": failures == 0}
    if failures:
        logger.error("Truncation invariance failed for %s of %s sampled snapshots", failures, n)
    return report
