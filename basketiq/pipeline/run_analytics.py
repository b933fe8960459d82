"""CLI wrapper for the descriptive basket reports.

Writes one CSV per report into the outputs directory: customer segments,
product-pair lift, SKU Pareto ranking, and the hourly/cart-position profiles.
"""

from __future__ import annotations

from pathlib import Path

import click

from basketiq.analytics.affinity import product_pair_lift
from basketiq.analytics.assortment import sku_pareto
from basketiq.analytics.customers import customer_segments
from basketiq.analytics.operations import hourly_order_profile, product_cart_positions
from basketiq.etl.sources import BasketTables, read_tables_from_db, read_tables_from_files
from basketiq.ops.run import run_context
from basketiq.utils.config import Config, load_config
from basketiq.utils.db import get_db_connection, validate_connection
from basketiq.utils.logger import get_logger, resolve_level, set_package_level
from basketiq.utils.paths import OUTPUTS_DIR


logger = get_logger(__name__)

REPORTS = ("customers", "affinity", "assortment", "operations")


def _read_inputs(source: str, data_dir: str | None, cfg: Config) -> BasketTables:
    if source == "files":
        return read_tables_from_files(data_dir or cfg.paths.raw)
    engine = get_db_connection()
    if not validate_connection(engine):
        raise RuntimeError("Database connection for analytics is unhealthy")
    return read_tables_from_db(engine, cfg.database.tables)


def _require(tables: BasketTables, name: str, report: str):
    frame = getattr(tables, name)
    if frame is None:
        raise click.UsageError(f"Report '{report}' needs the {name} table")
    return frame


@click.command()
@click.option("--report", "reports", multiple=True, default=("all",), type=click.Choice(REPORTS + ("all",)))
@click.option("--source", default="db", type=click.Choice(["db", "files"]))
@click.option("--data-dir", default=None, help="Directory with exported CSV/Parquet tables (--source files)")
@click.option("--config", default=str((Path(__file__).parents[1] / "config.yaml").resolve()))
def main(reports: tuple[str, ...], source: str, data_dir: str | None, config: str) -> None:
    cfg = load_config(config)
    set_package_level(resolve_level(cfg.logging.level))
    OUTPUTS_DIR.mkdir(parents=True, exist_ok=True)
    selected = REPORTS if "all" in reports else tuple(dict.fromkeys(reports))
    tables = _read_inputs(source, data_dir, cfg)
    an = cfg.analytics

    artifacts: dict[str, str] = {}
    with run_context("analytics", cfg) as ctx:
        outputs = {}
        if "customers" in selected:
            outputs["customer_segments"] = customer_segments(
                tables.orders,
                tables.order_products,
                top_n=an.customer_top_n,
                tiles=an.customer_tiles,
                at_risk_multiplier=an.at_risk_multiplier,
            )
        if "affinity" in selected:
            outputs["product_pair_lift"] = product_pair_lift(
                tables.order_products,
                tables.products,
                tables.aisles,
                tables.departments,
                min_co_orders=an.pair_min_co_orders,
                top_n=an.pair_top_n,
            )
        if "assortment" in selected:
            outputs["sku_pareto"] = sku_pareto(
                tables.orders,
                tables.order_products,
                _require(tables, "products", "assortment"),
                top_n=an.sku_top_n,
            )
        if "operations" in selected:
            outputs["hourly_order_profile"] = hourly_order_profile(
                tables.orders,
                tables.order_products,
                _require(tables, "products", "operations"),
            )
            outputs["product_cart_positions"] = product_cart_positions(tables.order_products)

        for name, frame in outputs.items():
            path = OUTPUTS_DIR / f"{name}.csv"
            frame.write_csv(path)
            artifacts[path.name] = str(path)
            ctx["log"]({"level": "INFO", "event": "report_written", "report": name, "rows": frame.height})
            logger.info("Wrote %s (%s rows)", path, frame.height)

        ctx["write_manifest"](artifacts)
        ctx["append_registry"]({"phase": "analytics", "reports": list(selected), "artifact_count": len(artifacts)})


if __name__ == "__main__":
    main()
