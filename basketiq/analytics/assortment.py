"""SKU performance and per-department Pareto ranking."""

from __future__ import annotations

from typing import Optional

import polars as pl

from basketiq.etl.cleaners import coerce_order_lines, coerce_orders, coerce_products
from basketiq.utils.logger import get_logger

logger = get_logger(__name__)


def sku_pareto(orders, order_lines, products, top_n: Optional[int] = 200) -> pl.DataFrame:
    """Rank every product within its department by sales count.

    Products with no sales are kept with zero counts. ``cumulative_share`` is the
    running share of department sales down the ranking (ties broken by product_id).
    """
    orders_pl = coerce_orders(orders)
    lines = coerce_order_lines(order_lines)
    prod = coerce_products(products).select("product_id", "product_name", "aisle_id", "department_id")

    stats = (
        lines.join(orders_pl.select("order_id", "user_id"), on="order_id", how="left")
        .group_by("product_id")
        .agg(
            pl.len().cast(pl.Int64).alias("total_sales_count"),
            pl.col("order_id").n_unique().cast(pl.Int64).alias("orders_with_sku"),
            pl.col("user_id").drop_nulls().n_unique().cast(pl.Int64).alias("unique_buyers"),
            pl.col("reordered").cast(pl.Int64).sum().alias("_reordered"),
            pl.col("add_to_cart_order").mean().alias("avg_add_to_cart_position"),
        )
    )

    sku = (
        prod.join(stats, on="product_id", how="left")
        .with_columns(
            pl.col("total_sales_count").fill_null(0),
            pl.col("orders_with_sku").fill_null(0),
            pl.col("unique_buyers").fill_null(0),
        )
        .with_columns(
            pl.when(pl.col("total_sales_count") > 0)
            .then(pl.col("_reordered") / pl.col("total_sales_count"))
            .otherwise(None)
            .alias("reorder_rate"),
            pl.col("total_sales_count").sum().over("department_id").alias("dept_total_sales"),
        )
        .sort(["department_id", "total_sales_count", "product_id"], descending=[False, True, False])
        .with_columns(
            pl.when(pl.col("dept_total_sales") > 0)
            .then(pl.col("total_sales_count") / pl.col("dept_total_sales"))
            .otherwise(None)
            .alias("dept_sales_share"),
            pl.col("total_sales_count").rank(method="min", descending=True).over("department_id").cast(pl.Int64).alias("dept_rank"),
            pl.col("total_sales_count").cum_sum().over("department_id").alias("cumulative_sales"),
        )
        .with_columns(
            pl.when(pl.col("dept_total_sales") > 0)
            .then(pl.col("cumulative_sales") / pl.col("dept_total_sales"))
            .otherwise(None)
            .alias("cumulative_share")
        )
        .select(
            "product_id",
            "product_name",
            "aisle_id",
            "department_id",
            "total_sales_count",
            "orders_with_sku",
            "unique_buyers",
            "reorder_rate",
            "avg_add_to_cart_position",
            "dept_total_sales",
            "dept_sales_share",
            "dept_rank",
            "cumulative_sales",
            "cumulative_share",
        )
        .sort(["department_id", "dept_rank", "product_id"])
    )
    if top_n is not None:
        sku = sku.head(int(top_n))
    return sku
