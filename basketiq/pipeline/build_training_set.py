"""Command-line entry point for building the reorder training table.

It reads the order log from the configured database (or a directory of exported
files), wraps :func:`basketiq.features.reorder.build_reorder_features`, and writes
the parquet/csv/json artifacts into the outputs directory. Contract failures
abort the run after writing the violation report.
"""

from __future__ import annotations

import json
from pathlib import Path

import click

from basketiq.etl.contracts import ContractBreach
from basketiq.etl.sources import BasketTables, read_tables_from_db, read_tables_from_files
from basketiq.features.reorder import build_reorder_features
from basketiq.features.utils import column_stats, compute_sha256, feature_catalog
from basketiq.labels.targets import prevalence_report
from basketiq.ops.run import run_context
from basketiq.utils.config import Config, load_config
from basketiq.utils.db import get_db_connection, validate_connection
from basketiq.utils.logger import get_logger, resolve_level, set_package_level
from basketiq.utils.paths import OUTPUTS_DIR
from basketiq.validation.leakage import audit_point_in_time


logger = get_logger(__name__)

FEATURES_FILENAME = "reorder_features.parquet"


def _read_inputs(source: str, data_dir: str | None, cfg: Config) -> BasketTables:
    if source == "files":
        return read_tables_from_files(data_dir or cfg.paths.raw, include_dimensions=False)
    engine = get_db_connection()
    if not validate_connection(engine):
        raise RuntimeError("Database connection for feature building is unhealthy")
    return read_tables_from_db(engine, cfg.database.tables, include_dimensions=False)


@click.command()
@click.option("--source", default="db", type=click.Choice(["db", "files"]), help="Read tables from the database or from exported files")
@click.option("--data-dir", default=None, help="Directory with orders/order_products/products files (--source files)")
@click.option("--row-limit", default=None, type=int, help="Cap on emitted rows; defaults to features.row_limit")
@click.option("--shards", default=None, type=click.IntRange(min=1), help="Number of user_id shards; defaults to features.n_shards")
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Worker threads; defaults to features.max_workers")
@click.option("--audit-sample", default=None, type=click.IntRange(min=0), help="Re-verify this many sampled rows for look-ahead leakage; defaults to validation.leakage_audit_sample, 0 skips")
@click.option("--config", default=str((Path(__file__).parents[1] / "config.yaml").resolve()))
def main(source: str, data_dir: str | None, row_limit: int | None, shards: int | None, workers: int | None, audit_sample: int | None, config: str) -> None:
    cfg = load_config(config)
    set_package_level(resolve_level(cfg.logging.level))
    if row_limit is None:
        row_limit = cfg.features.row_limit
    elif row_limit <= 0:
        raise click.BadParameter("--row-limit must be a positive integer")
    n_shards = shards if shards is not None else cfg.features.n_shards
    max_workers = workers if workers is not None else cfg.features.max_workers
    if audit_sample is None:
        audit_sample = cfg.validation.leakage_audit_sample
    OUTPUTS_DIR.mkdir(parents=True, exist_ok=True)

    tables = _read_inputs(source, data_dir, cfg)
    artifacts: dict[str, str] = {}
    with run_context("build_training_set", cfg) as ctx:
        try:
            fm = build_reorder_features(
                tables.orders,
                tables.order_products,
                tables.products,
                row_limit=row_limit,
                n_shards=n_shards,
                max_workers=max_workers,
                sentinel=cfg.features.unseen_position_sentinel,
                fail_on_contract_breach=cfg.etl.fail_on_contract_breach,
            )
        except ContractBreach as e:
            report_path = OUTPUTS_DIR / f"contract_violations_{ctx['run_id']}.csv"
            e.report().to_csv(report_path, index=False)
            ctx["log"]({"level": "ERROR", "event": "contract_breach", "violations": len(e.violations), "report": str(report_path)})
            logger.error("Input rejected (%s); violation report written to %s", type(e).__name__, report_path)
            raise

        if fm.is_empty():
            logger.warning("Empty feature table; writing schema-only artifact")

        feat_path = OUTPUTS_DIR / FEATURES_FILENAME
        fm.write_parquet(feat_path)
        artifacts[feat_path.name] = str(feat_path)

        catalog_path = OUTPUTS_DIR / "reorder_feature_catalog.csv"
        feature_catalog(fm).to_csv(catalog_path, index=False)
        artifacts[catalog_path.name] = str(catalog_path)

        prev = prevalence_report(fm)
        prev_path = OUTPUTS_DIR / "reorder_label_prevalence.csv"
        prev.to_csv(prev_path, index=False)
        artifacts[prev_path.name] = str(prev_path)
        if not prev.empty:
            prev_rate = float(prev["prevalence"].iloc[0])
            if prev_rate < 0.005 or prev_rate > 0.5:
                logger.warning(f"Unusual label prevalence {prev_rate:.4f}; check input coverage.")

        stats = {
            "rows": int(fm.height),
            "row_limit": row_limit,
            "n_shards": int(n_shards),
            "columns": column_stats(fm),
            "checksum": compute_sha256(feat_path),
        }

        if audit_sample > 0:
            report, mismatches = audit_point_in_time(
                fm,
                tables.orders,
                tables.order_products,
                sample_size=audit_sample,
                seed=cfg.validation.seed,
                sentinel=cfg.features.unseen_position_sentinel,
            )
            stats["leakage_audit"] = report
            if not report["ok"]:
                mm_path = OUTPUTS_DIR / "reorder_leakage_mismatches.csv"
                mismatches.to_csv(mm_path, index=False)
                artifacts[mm_path.name] = str(mm_path)

        stats_path = OUTPUTS_DIR / "reorder_features_stats.json"
        with open(stats_path, "w", encoding="utf-8") as f:
            json.dump(stats, f, indent=2)
        artifacts[stats_path.name] = str(stats_path)

        ctx["write_manifest"](artifacts)
        ctx["append_registry"]({"phase": "build_training_set", "rows": int(fm.height), "artifact_count": len(artifacts)})

        if "leakage_audit" in stats and not stats["leakage_audit"]["ok"]:
            raise RuntimeError("Point-in-time audit failed; see reorder_leakage_mismatches.csv")
        logger.info(f"Wrote {fm.height} reorder feature rows to {feat_path}")


if __name__ == "__main__":
    main()
