"""Customer value and churn-risk segmentation."""

from __future__ import annotations

from typing import Optional

import numpy as np
import polars as pl

from basketiq.etl.cleaners import coerce_order_lines, coerce_orders
from basketiq.features.reorder import compute_days_since_first_order
from basketiq.utils.logger import get_logger

logger = get_logger(__name__)


def ntile(n_rows: int, buckets: int) -> np.ndarray:
    """Bucket numbers 1..buckets for rows already in rank order (SQL NTILE)."""
    if n_rows == 0:
        return np.empty(0, dtype=np.int64)
    base, extra = divmod(n_rows, buckets)
    sizes = [base + 1] * extra + [base] * (buckets - extra)
    sizes = [s for s in sizes if s > 0]
    return np.repeat(np.arange(1, len(sizes) + 1, dtype=np.int64), sizes)


def customer_segments(
    orders,
    order_lines,
    top_n: Optional[int] = 100,
    tiles: int = 20,
    at_risk_multiplier: float = 2.0,
) -> pl.DataFrame:
    """Per-user basket metrics with value tile and retention flag.

    Only orders with at least one line count towards the basket metrics; the
    median gap between orders uses every order with a known gap.
    """
    orders_pl = coerce_orders(orders)
    lines = coerce_order_lines(order_lines)

    timeline = compute_days_since_first_order(orders_pl)
    per_order = lines.group_by("order_id").agg(
        pl.len().cast(pl.Int64).alias("items_in_order"),
        pl.col("reordered").cast(pl.Int64).sum().alias("reordered_in_order"),
    )
    user_orders = timeline.join(per_order, on="order_id", how="inner")

    summary = user_orders.group_by("user_id").agg(
        pl.len().cast(pl.Int64).alias("total_orders"),
        pl.col("items_in_order").mean().round(2).alias("avg_items_per_order"),
        pl.col("items_in_order").sum().alias("total_items"),
        pl.col("reordered_in_order").sum().alias("_reordered"),
        pl.col("days_since_first_order").max().alias("days_from_first_to_last"),
        pl.col("days_since_prior_order").sort_by("order_number").last().alias("days_since_last_order"),
    )
    medians = (
        orders_pl.filter(pl.col("days_since_prior_order").is_not_null())
        .group_by("user_id")
        .agg(pl.col("days_since_prior_order").median().alias("median_days_between_orders"))
    )

    seg = (
        summary.join(medians, on="user_id", how="left")
        .with_columns(
            pl.when(pl.col("total_items") > 0)
            .then((pl.col("_reordered") / pl.col("total_items")).round(4))
            .otherwise(None)
            .alias("overall_reorder_rate")
        )
        .sort(["total_items", "user_id"], descending=[True, False])
    )
    seg = seg.with_columns(pl.Series("decile_by_items", ntile(seg.height, tiles)))
    seg = seg.with_columns(
        pl.when(pl.col("decile_by_items") == 1).then(pl.lit("high_value")).otherwise(pl.lit("normal")).alias("value_segment"),
        pl.when(pl.col("median_days_between_orders").is_null())
        .then(pl.lit("insufficient_history"))
        .when(pl.col("days_since_last_order") > pl.col("median_days_between_orders") * at_risk_multiplier)
        .then(pl.lit("at_risk"))
        .otherwise(pl.lit("active"))
        .alias("retention_flag"),
    ).select(
        "user_id",
        "total_orders",
        "avg_items_per_order",
        "total_items",
        "overall_reorder_rate",
        "days_from_first_to_last",
        "median_days_between_orders",
        "days_since_last_order",
        "decile_by_items",
        "value_segment",
        "retention_flag",
    )
    if top_n is not None:
        seg = seg.head(int(top_n))
    logger.info("Segmented %s customers", seg.height)
    return seg
