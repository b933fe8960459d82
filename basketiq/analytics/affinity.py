"""Product-pair market-basket statistics (support, confidence, lift) for cross-sell."""

from __future__ import annotations

from typing import Optional

import polars as pl
from mlxtend.frequent_patterns import apriori

from basketiq.etl.cleaners import coerce_dimension, coerce_order_lines, coerce_products
from basketiq.utils.logger import get_logger

logger = get_logger(__name__)

PAIR_SCHEMA = {
    "prod_a": pl.Int64,
    "prod_b": pl.Int64,
    "co_orders": pl.Int64,
    "orders_a": pl.Int64,
    "orders_b": pl.Int64,
    "total_orders": pl.Int64,
    "support": pl.Float64,
    "confidence_a_to_b": pl.Float64,
    "confidence_b_to_a": pl.Float64,
    "lift": pl.Float64,
}

_DUMMY_PREFIX = "product_id_"


def _frequent_pairs(lines: pl.DataFrame, min_co_orders: int) -> pl.DataFrame:
    """Mine 2-itemsets with at least ``min_co_orders`` co-occurring orders."""
    # A product below the threshold cannot be part of a qualifying pair
    popular = (
        lines.group_by("product_id")
        .agg(pl.len().alias("n"))
        .filter(pl.col("n") >= min_co_orders)
        .select("product_id")
    )
    candidate = lines.join(popular, on="product_id", how="semi")
    multi = candidate.group_by("order_id").agg(pl.len().alias("k")).filter(pl.col("k") >= 2).select("order_id")
    candidate = candidate.join(multi, on="order_id", how="semi")
    n_baskets = candidate["order_id"].n_unique()
    if n_baskets < min_co_orders:
        return pl.DataFrame(schema={"prod_a": pl.Int64, "prod_b": pl.Int64, "co_orders": pl.Int64})

    basket = (
        candidate.sort("product_id")
        .to_dummies(columns=["product_id"])
        .group_by("order_id")
        .agg(pl.all().exclude("order_id").sum())
        .sort("order_id")
    )
    basket = basket.with_columns((pl.all().exclude("order_id") > 0).cast(pl.Boolean))

    itemsets = apriori(
        basket.drop("order_id").to_pandas().astype(bool),
        min_support=min_co_orders / n_baskets,
        use_colnames=True,
        max_len=2,
    )
    rows = []
    for support, items in zip(itemsets["support"], itemsets["itemsets"]):
        if len(items) != 2:
            continue
        a, b = sorted(int(str(i)[len(_DUMMY_PREFIX):]) for i in items)
        rows.append({"prod_a": a, "prod_b": b, "co_orders": int(round(support * n_baskets))})
    if not rows:
        return pl.DataFrame(schema={"prod_a": pl.Int64, "prod_b": pl.Int64, "co_orders": pl.Int64})
    return pl.DataFrame(rows, schema={"prod_a": pl.Int64, "prod_b": pl.Int64, "co_orders": pl.Int64}).filter(
        pl.col("co_orders") >= min_co_orders
    )


def product_pair_lift(
    order_lines,
    products=None,
    aisles=None,
    departments=None,
    min_co_orders: int = 50,
    top_n: Optional[int] = 100,
) -> pl.DataFrame:
    """Pairs of products bought together more often than chance.

    ``support`` is P(A and B) over all orders with at least one line,
    ``confidence_a_to_b`` is P(B | A) and ``lift`` is support / (P(A) * P(B)).
    When the dimensions are supplied, product, department and aisle names are
    attached for both sides. Ordered by lift then co_orders, descending.
    """
    if min_co_orders < 1:
        raise ValueError("min_co_orders must be >= 1")
    lines = coerce_order_lines(order_lines).select("order_id", "product_id").unique()
    total_orders = int(lines["order_id"].n_unique())
    logger.info("Building pair lift over %s orders (min_co_orders=%s)", total_orders, min_co_orders)
    if total_orders == 0:
        return pl.DataFrame(schema=PAIR_SCHEMA)

    pairs = _frequent_pairs(lines, min_co_orders)
    product_orders = lines.group_by("product_id").agg(pl.len().cast(pl.Int64).alias("orders_with_product"))

    stats = (
        pairs.join(product_orders.rename({"product_id": "prod_a", "orders_with_product": "orders_a"}), on="prod_a", how="left")
        .join(product_orders.rename({"product_id": "prod_b", "orders_with_product": "orders_b"}), on="prod_b", how="left")
        .with_columns(pl.lit(total_orders, dtype=pl.Int64).alias("total_orders"))
        .with_columns(
            (pl.col("co_orders") / pl.col("total_orders")).alias("support"),
            (pl.col("co_orders") / pl.col("orders_a")).alias("confidence_a_to_b"),
            (pl.col("co_orders") / pl.col("orders_b")).alias("confidence_b_to_a"),
        )
        .with_columns(
            (
                pl.col("support")
                / ((pl.col("orders_a") / pl.col("total_orders")) * (pl.col("orders_b") / pl.col("total_orders")))
            ).alias("lift")
        )
        .select(list(PAIR_SCHEMA))
        .cast(PAIR_SCHEMA)
    )

    if products is not None:
        prod = coerce_products(products).select("product_id", "product_name", "aisle_id", "department_id")
        if departments is not None:
            prod = prod.join(coerce_dimension(departments, "department_id", "department"), on="department_id", how="left")
        if aisles is not None:
            prod = prod.join(coerce_dimension(aisles, "aisle_id", "aisle"), on="aisle_id", how="left")
        for side in ("a", "b"):
            renamed = prod.rename({c: f"{c}_{side}" for c in prod.columns if c != "product_id"}).rename(
                {"product_id": f"prod_{side}"}
            )
            stats = stats.join(renamed, on=f"prod_{side}", how="left")
        stats = stats.rename({
            "product_name_a": "product_a_name",
            "product_name_b": "product_b_name",
        })
        if departments is not None:
            stats = stats.rename({"department_a": "dep_a", "department_b": "dep_b"})
        drop = [c for c in stats.columns if c.startswith(("aisle_id_", "department_id_"))]
        stats = stats.drop(drop)

    stats = stats.sort(["lift", "co_orders", "prod_a", "prod_b"], descending=[True, True, False, False])
    if top_n is not None:
        stats = stats.head(int(top_n))
    logger.info("Found %s product pairs with co_orders >= %s", stats.height, min_co_orders)
    return stats
