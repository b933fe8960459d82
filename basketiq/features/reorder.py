"""Point-in-time reorder features at user x product x order granularity.

Every purchase of a product by a user is a *snapshot*. For each snapshot the
history features only look at earlier purchases of the same (user, product)
pair, and the label looks only at the user's very next order:

* ``times_seen_before`` / ``times_reordered_before``: counts over prior purchases
* ``avg_add_to_cart_before``: mean cart position over prior purchases, or the
  unseen sentinel (999) when there are none
* ``last_seen_days_since_first``: relative timestamp of the latest prior purchase
* ``label_next_order``: 1 when order ``snapshot + 1`` exists and contains the product

Each pair's purchases are scanned once in ``order_number`` order with running
count/sum/max shifted by one row, so the snapshot row itself never contributes to
its own features. Users are independent, which lets the batch be sharded on
``user_id`` and concatenated.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Union

import pandas as pd
import polars as pl

from basketiq.etl.cleaners import coerce_order_lines, coerce_orders, coerce_products
from basketiq.etl.contracts import validate_order_log
from basketiq.utils.logger import get_logger


logger = get_logger(__name__)

Frame = Union[pd.DataFrame, pl.DataFrame]

UNSEEN_POSITION_SENTINEL = 999.0
PAIR_KEYS = ["user_id", "product_id"]
FEATURE_SCHEMA = {
    "user_id": pl.Int64,
    "product_id": pl.Int64,
    "snapshot_order_number": pl.Int64,
    "times_seen_before": pl.Int64,
    "times_reordered_before": pl.Int64,
    "avg_add_to_cart_before": pl.Float64,
    "last_seen_days_since_first": pl.Int64,
    "label_next_order": pl.Int8,
}
FEATURE_COLUMNS = list(FEATURE_SCHEMA)
SORT_KEYS = ["user_id", "product_id", "snapshot_order_number"]


def empty_feature_frame() -> pl.DataFrame:
    return pl.DataFrame(schema=FEATURE_SCHEMA)


def compute_days_since_first_order(orders: pl.DataFrame) -> pl.DataFrame:
    """Attach ``days_since_first_order``: per-user running sum of the prior-order gap.

    Null gaps (a user's first order) count as 0. Rows come back sorted by
    ``(user_id, order_number)``.
    """
    return (
        orders.sort(["user_id", "order_number"])
        .with_columns(
            pl.col("days_since_prior_order")
            .cast(pl.Int64)
            .fill_null(0)
            .cum_sum()
            .over("user_id")
            .alias("days_since_first_order")
        )
    )


def _build_shard(orders: pl.DataFrame, order_lines: pl.DataFrame, sentinel: float) -> pl.DataFrame:
    if orders.is_empty() or order_lines.is_empty():
        return empty_feature_frame()

    timeline = compute_days_since_first_order(orders).select(
        "order_id", "user_id", "order_number", "days_since_first_order"
    )
    occurrences = (
        order_lines.select("order_id", "product_id", "add_to_cart_order", "reordered")
        .join(timeline, on="order_id", how="inner")
        .sort(["user_id", "product_id", "order_number"])
    )

    history = occurrences.with_columns(
        pl.int_range(0, pl.len(), dtype=pl.Int64).over(PAIR_KEYS).alias("times_seen_before"),
        pl.col("reordered").cast(pl.Int64).cum_sum().shift(1, fill_value=0).over(PAIR_KEYS).alias("times_reordered_before"),
        pl.col("add_to_cart_order").cast(pl.Int64).cum_sum().shift(1).over(PAIR_KEYS).alias("_cart_sum_before"),
        pl.col("days_since_first_order").cum_max().shift(1).over(PAIR_KEYS).alias("last_seen_days_since_first"),
        (pl.col("order_number").shift(-1).over(PAIR_KEYS) == pl.col("order_number") + 1)
        .fill_null(False)
        .cast(pl.Int8)
        .alias("label_next_order"),
    )

    return history.select(
        pl.col("user_id"),
        pl.col("product_id"),
        pl.col("order_number").alias("snapshot_order_number"),
        pl.col("times_seen_before"),
        pl.col("times_reordered_before"),
        pl.when(pl.col("times_seen_before") > 0)
        .then(pl.col("_cart_sum_before") / pl.col("times_seen_before"))
        .otherwise(None)
        .fill_null(sentinel)
        .alias("avg_add_to_cart_before"),
        pl.col("last_seen_days_since_first"),
        pl.col("label_next_order"),
    ).cast(FEATURE_SCHEMA)


def shard_by_user(orders: pl.DataFrame, order_lines: pl.DataFrame, n_shards: int) -> List[tuple[pl.DataFrame, pl.DataFrame]]:
    """Split orders and their lines into ``n_shards`` groups keyed on ``user_id``."""
    if n_shards <= 1:
        return [(orders, order_lines)]
    keyed = orders.with_columns((pl.col("user_id") % n_shards).alias("_shard"))
    lines_keyed = order_lines.join(keyed.select("order_id", "_shard"), on="order_id", how="inner")
    shards = []
    for shard in range(n_shards):
        o = keyed.filter(pl.col("_shard") == shard).drop("_shard")
        if o.is_empty():
            continue
        lines = lines_keyed.filter(pl.col("_shard") == shard).drop("_shard")
        shards.append((o, lines))
    return shards


def build_reorder_features(
    orders: Frame,
    order_lines: Frame,
    products: Optional[Frame] = None,
    row_limit: Optional[int] = None,
    n_shards: int = 1,
    max_workers: int = 1,
    sentinel: float = UNSEEN_POSITION_SENTINEL,
    fail_on_contract_breach: bool = True,
) -> pl.DataFrame:
    """Build the labelled training table, one row per (user, product) purchase.

    Args:
        orders: Order table (order_id, user_id, order_number, order_dow,
            order_hour_of_day, days_since_prior_order).
        order_lines: OrderLine table (order_id, product_id, add_to_cart_order, reordered).
        products: Optional product dimension; when given, every order line's
            product_id must resolve against it.
        row_limit: Keep only the first ``row_limit`` rows in
            (user_id, product_id, snapshot_order_number) order.
        n_shards: Number of user_id shards computed independently.
        max_workers: Thread pool size used for the shards.
        sentinel: Value written to ``avg_add_to_cart_before`` for first purchases.
        fail_on_contract_breach: When False, order_number gaps are logged instead of raised.

    Returns:
        polars.DataFrame with ``FEATURE_COLUMNS`` in order, label last.

    Raises:
        MalformedInput: duplicate/null keys or broken order_number sequences.
        MissingReference: order lines referencing unknown orders or products.
        ValueError: non-positive ``row_limit``, ``n_shards`` or ``max_workers``.
    """
    if row_limit is not None and (isinstance(row_limit, bool) or int(row_limit) <= 0):
        raise ValueError(f"row_limit must be a positive integer or None, got {row_limit!r}")
    if n_shards < 1 or max_workers < 1:
        raise ValueError("n_shards and max_workers must be >= 1")

    orders_pl = coerce_orders(orders)
    lines_pl = coerce_order_lines(order_lines)
    products_pl = coerce_products(products) if products is not None else None

    validate_order_log(orders_pl, lines_pl, products_pl, fail_on_contract_breach=fail_on_contract_breach)

    if orders_pl.is_empty():
        logger.info("Order log is empty; emitting zero feature rows")
        return empty_feature_frame()

    shards = shard_by_user(orders_pl, lines_pl, n_shards)
    logger.info(
        "Building reorder features: orders=%s, lines=%s, shards=%s, workers=%s",
        orders_pl.height,
        lines_pl.height,
        len(shards),
        max_workers,
    )
    if len(shards) == 1 or max_workers == 1:
        parts = [_build_shard(o, lines, sentinel) for o, lines in shards]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            parts = list(pool.map(lambda shard: _build_shard(shard[0], shard[1], sentinel), shards))

    features = pl.concat(parts, how="vertical") if parts else empty_feature_frame()
    features = features.sort(SORT_KEYS)
    if row_limit is not None and features.height > int(row_limit):
        logger.info("Applying row_limit=%s to %s feature rows", row_limit, features.height)
        features = features.head(int(row_limit))

    logger.info(
        "Built %s feature rows (%s positive labels)",
        features.height,
        int(features["label_next_order"].sum()) if features.height else 0,
    )
    return features
