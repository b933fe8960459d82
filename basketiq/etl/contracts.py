"""Input contracts for the order-event log.

Checks return lists of :class:`ContractViolation` so callers can collect every
problem in a batch before deciding to abort. :func:`validate_order_log` is the
batch gate used by the feature builder: it raises :class:`MalformedInput` for
ordering/key problems and :class:`MissingReference` for dangling foreign keys.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd
import polars as pl

from basketiq.utils.logger import get_logger


logger = get_logger(__name__)

ORDER_COLUMNS = ("order_id", "user_id", "order_number", "order_dow", "order_hour_of_day", "days_since_prior_order")
ORDER_LINE_COLUMNS = ("order_id", "product_id", "add_to_cart_order", "reordered")
PRODUCT_COLUMNS = ("product_id",)

SAMPLE_KEYS = 10


@dataclass
class ContractViolation:
    table_name: str
    column_name: str
    violation_type: str
    details: str
    sample_keys: str = ""
    severity: str = "error"


class ContractBreach(ValueError):
    """Batch rejected because one or more input contracts were violated."""

    def __init__(self, violations: Sequence[ContractViolation], message: Optional[str] = None):
        self.violations = list(violations)
        if message is None:
            message = "; ".join(f"{v.table_name}.{v.column_name}: {v.details}" for v in self.violations)
        super().__init__(message)

    def report(self) -> pd.DataFrame:
        return violations_to_dataframe(self.violations)


class MalformedInput(ContractBreach):
    """Order sequence or key violations inconsistent with a total order per user."""


class MissingReference(ContractBreach):
    """Order lines pointing at orders or products that do not exist."""


def _sample(values: Iterable[object]) -> str:
    vals = list(values)
    head = ", ".join(str(v) for v in vals[:SAMPLE_KEYS])
    return head + (", ..." if len(vals) > SAMPLE_KEYS else "")


def check_required_columns(df: pl.DataFrame, table_name: str, required: Iterable[str]) -> List[ContractViolation]:
    missing = [c for c in required if c not in df.columns]
    return [
        ContractViolation(
            table_name=table_name,
            column_name=col,
            violation_type="missing_column",
            details=f"Column '{col}' not found in {table_name}",
        )
        for col in missing
    ]


def check_primary_key_not_null(df: pl.DataFrame, table_name: str, pk_cols: Tuple[str, ...]) -> List[ContractViolation]:
    violations: List[ContractViolation] = []
    for col in pk_cols:
        if col not in df.columns:
            violations.append(
                ContractViolation(
                    table_name=table_name,
                    column_name=col,
                    violation_type="missing_pk_column",
                    details=f"Primary key column '{col}' not present",
                )
            )
            continue
        null_count = int(df[col].null_count())
        if null_count > 0:
            violations.append(
                ContractViolation(
                    table_name=table_name,
                    column_name=col,
                    violation_type="null_in_pk",
                    details=f"{null_count} nulls found in PK column '{col}'",
                )
            )
    return violations


def check_not_null(df: pl.DataFrame, table_name: str, cols: Tuple[str, ...]) -> List[ContractViolation]:
    violations: List[ContractViolation] = []
    for col in cols:
        if col not in df.columns:
            continue
        null_count = int(df[col].null_count())
        if null_count > 0:
            violations.append(
                ContractViolation(
                    table_name=table_name,
                    column_name=col,
                    violation_type="null_value",
                    details=f"{null_count} nulls found in required column '{col}'",
                )
            )
    return violations


def check_no_duplicate_pk(df: pl.DataFrame, table_name: str, pk_cols: Tuple[str, ...]) -> List[ContractViolation]:
    if not pk_cols or any(c not in df.columns for c in pk_cols):
        return []
    dups = (
        df.group_by(list(pk_cols))
        .agg(pl.len().alias("_n"))
        .filter(pl.col("_n") > 1)
        .sort(list(pk_cols))
    )
    if dups.is_empty():
        return []
    dup_rows = int(dups["_n"].sum())
    keys = [tuple(r) if len(r) > 1 else r[0] for r in dups.select(list(pk_cols)).iter_rows()]
    return [
        ContractViolation(
            table_name=table_name,
            column_name="|".join(pk_cols),
            violation_type="duplicate_pk",
            details=f"{dup_rows} duplicate rows by PK {pk_cols}",
            sample_keys=_sample(keys),
        )
    ]


def check_order_sequence(orders: pl.DataFrame, table_name: str = "orders") -> List[ContractViolation]:
    """Each user's order_number values must be exactly 1..N."""
    if any(c not in orders.columns for c in ("user_id", "order_number")):
        return []
    per_user = (
        orders.drop_nulls(["user_id", "order_number"])
        .group_by("user_id")
        .agg(
            pl.len().alias("n"),
            pl.col("order_number").n_unique().alias("n_unique"),
            pl.col("order_number").min().alias("first"),
            pl.col("order_number").max().alias("last"),
        )
    )
    bad = per_user.filter(
        (pl.col("first") != 1) | (pl.col("last") != pl.col("n")) | (pl.col("n_unique") != pl.col("n"))
    ).sort("user_id")
    if bad.is_empty():
        return []
    return [
        ContractViolation(
            table_name=table_name,
            column_name="order_number",
            violation_type="sequence_gap",
            details=f"{bad.height} users have order_number sequences that are not 1..N",
            sample_keys=_sample(bad["user_id"].to_list()),
        )
    ]


def check_foreign_keys(
    child: pl.DataFrame,
    parent: pl.DataFrame,
    child_table: str,
    parent_table: str,
    key: str,
) -> List[ContractViolation]:
    if key not in child.columns or key not in parent.columns:
        return []
    dangling = (
        child.select(key)
        .drop_nulls()
        .unique()
        .join(parent.select(key).unique(), on=key, how="anti")
        .sort(key)
    )
    if dangling.is_empty():
        return []
    return [
        ContractViolation(
            table_name=child_table,
            column_name=key,
            violation_type="missing_reference",
            details=f"{dangling.height} {key} values in {child_table} not present in {parent_table}",
            sample_keys=_sample(dangling[key].to_list()),
        )
    ]


def check_prior_gap_nulls(orders: pl.DataFrame, table_name: str = "orders") -> List[ContractViolation]:
    """Soft check: days_since_prior_order is null on first orders and only there."""
    needed = ("order_number", "days_since_prior_order", "user_id")
    if any(c not in orders.columns for c in needed):
        return []
    out: List[ContractViolation] = []
    first_with_gap = orders.filter((pl.col("order_number") == 1) & pl.col("days_since_prior_order").is_not_null())
    later_without_gap = orders.filter((pl.col("order_number") > 1) & pl.col("days_since_prior_order").is_null())
    if first_with_gap.height:
        out.append(
            ContractViolation(
                table_name=table_name,
                column_name="days_since_prior_order",
                violation_type="gap_on_first_order",
                details=f"{first_with_gap.height} first orders carry a days_since_prior_order value",
                sample_keys=_sample(first_with_gap.sort("user_id")["user_id"].to_list()),
                severity="warning",
            )
        )
    if later_without_gap.height:
        out.append(
            ContractViolation(
                table_name=table_name,
                column_name="days_since_prior_order",
                violation_type="null_gap_on_later_order",
                details=f"{later_without_gap.height} non-first orders have null days_since_prior_order (treated as 0)",
                sample_keys=_sample(later_without_gap.sort("user_id")["user_id"].to_list()),
                severity="warning",
            )
        )
    return out


def violations_to_dataframe(violations: List[ContractViolation]) -> pd.DataFrame:
    if not violations:
        return pd.DataFrame(columns=["table_name", "column_name", "violation_type", "details", "sample_keys", "severity"])
    return pd.DataFrame([v.__dict__ for v in violations])


def validate_order_log(
    orders: pl.DataFrame,
    order_lines: pl.DataFrame,
    products: Optional[pl.DataFrame] = None,
    fail_on_contract_breach: bool = True,
) -> List[ContractViolation]:
    """Run every contract over the batch and raise on failure.

    Missing columns, null or duplicate keys and dangling references always abort.
    ``sequence_gap`` violations abort unless ``fail_on_contract_breach`` is False,
    in which case they are logged and returned with the soft warnings.

    Raises:
        MalformedInput: ordering or key violations in orders/order lines.
        MissingReference: order lines referencing unknown orders or products.
    """
    schema_violations = check_required_columns(orders, "orders", ORDER_COLUMNS)
    schema_violations += check_required_columns(order_lines, "order_products", ORDER_LINE_COLUMNS)
    if products is not None:
        schema_violations += check_required_columns(products, "products", PRODUCT_COLUMNS)
    if schema_violations:
        for v in schema_violations:
            logger.error("Contract violation: %s", v.details)
        raise MalformedInput(schema_violations)

    malformed: List[ContractViolation] = []
    malformed += check_primary_key_not_null(orders, "orders", ("order_id", "user_id", "order_number"))
    malformed += check_no_duplicate_pk(orders, "orders", ("order_id",))
    malformed += check_no_duplicate_pk(orders, "orders", ("user_id", "order_number"))
    malformed += check_primary_key_not_null(order_lines, "order_products", ("order_id", "product_id"))
    malformed += check_not_null(order_lines, "order_products", ("add_to_cart_order", "reordered"))
    malformed += check_no_duplicate_pk(order_lines, "order_products", ("order_id", "product_id"))

    sequence = check_order_sequence(orders)

    missing = check_foreign_keys(order_lines, orders, "order_products", "orders", "order_id")
    if products is not None:
        missing += check_foreign_keys(order_lines, products, "order_products", "products", "product_id")

    warnings = check_prior_gap_nulls(orders)
    if fail_on_contract_breach:
        malformed += sequence
    else:
        for v in sequence:
            v.severity = "warning"
        warnings += sequence

    for v in warnings:
        logger.warning("Contract warning (%s): %s [%s]", v.violation_type, v.details, v.sample_keys)
    errors = malformed + missing
    for v in errors:
        logger.error("Contract violation (%s): %s [%s]", v.violation_type, v.details, v.sample_keys)

    if malformed:
        raise MalformedInput(errors)
    if missing:
        raise MissingReference(errors)
    return warnings
