from __future__ import annotations

import polars as pl

from basketiq.etl.cleaners import coerce_order_lines, coerce_orders, coerce_products


def hourly_order_profile(orders, order_lines, products) -> pl.DataFrame:
    """Order volume, basket size and aisle spread per (day-of-week, hour)."""
    orders_pl = coerce_orders(orders)
    lines = coerce_order_lines(order_lines)
    prod = coerce_products(products).select("product_id", "aisle_id")

    per_order = (
        lines.join(prod, on="product_id", how="inner")
        .group_by("order_id")
        .agg(
            pl.len().cast(pl.Int64).alias("items_in_order"),
            pl.col("aisle_id").n_unique().cast(pl.Int64).alias("distinct_aisles_in_order"),
        )
    )
    return (
        orders_pl.select("order_id", "order_dow", "order_hour_of_day")
        .join(per_order, on="order_id", how="inner")
        .group_by(["order_dow", "order_hour_of_day"])
        .agg(
            pl.len().cast(pl.Int64).alias("orders_count"),
            pl.col("items_in_order").mean().round(2).alias("avg_items_per_order"),
            pl.col("distinct_aisles_in_order").mean().round(2).alias("avg_distinct_aisles"),
        )
        .sort(["order_dow", "order_hour_of_day"])
    )


def product_cart_positions(order_lines) -> pl.DataFrame:
    # Low positions are picked first; used for pick-path routing
    lines = coerce_order_lines(order_lines)
    return (
        lines.group_by("product_id")
        .agg(
            pl.col("add_to_cart_order").mean().round(2).alias("avg_add_to_cart_pos"),
            pl.len().cast(pl.Int64).alias("occurrences"),
        )
        .sort(["avg_add_to_cart_pos", "product_id"])
    )
