from __future__ import annotations

import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from basketiq.utils.paths import DATA_DIR, OUTPUTS_DIR, ROOT_DIR


DEFAULT_TABLES: Dict[str, str] = {
    "orders": "orders",
    "order_products": "order_products",
    "products": "products",
    "aisles": "aisles",
    "departments": "departments",
}


@dataclass
class Paths:
    raw: Path
    # Informational: the CLIs and run registry write under utils.paths.OUTPUTS_DIR
    outputs: Path


@dataclass
class Database:
    engine: str = "sqlite"  # sqlite | postgres
    sqlite_path: Path = ROOT_DIR.parent / "basketiq.db"
    # Fail instead of falling back to SQLite when postgres credentials are missing
    strict_db: bool = False
    # Logical table name -> concrete table in the source database
    tables: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TABLES))


@dataclass
class ETL:
    # When False, order-sequence violations are logged instead of aborting the batch.
    # Dangling references always abort.
    fail_on_contract_breach: bool = True


@dataclass
class Logging:
    level: str = "INFO"
    jsonl: bool = True


@dataclass
class Features:
    # Cap on emitted training rows (sampling); None emits everything
    row_limit: Optional[int] = None
    # Shards are keyed on user_id; 1 disables sharding
    n_shards: int = 1
    max_workers: int = 1
    unseen_position_sentinel: float = 999.0


@dataclass
class Analytics:
    customer_top_n: Optional[int] = 100
    customer_tiles: int = 20
    at_risk_multiplier: float = 2.0
    pair_min_co_orders: int = 50
    pair_top_n: Optional[int] = 100
    sku_top_n: Optional[int] = 200


@dataclass
class ValidationConfig:
    leakage_audit_sample: int = 1000
    seed: int = 42


@dataclass
class Config:
    paths: Paths
    database: Database = field(default_factory=Database)
    etl: ETL = field(default_factory=ETL)
    logging: Logging = field(default_factory=Logging)
    features: Features = field(default_factory=Features)
    analytics: Analytics = field(default_factory=Analytics)
    validation: ValidationConfig = field(default_factory=ValidationConfig)

    def to_dict(self) -> Dict[str, Any]:
        def _convert(obj: Any) -> Any:
            if isinstance(obj, Path):
                return str(obj)
            if isinstance(obj, dict):
                return {k: _convert(v) for k, v in obj.items()}
            if hasattr(obj, '__dataclass_fields__'):
                d = asdict(obj)
                return {k: _convert(v) for k, v in d.items()}
            return obj

        return {
            "paths": _convert(self.paths),
            "database": _convert(self.database),
            "etl": _convert(self.etl),
            "logging": _convert(self.logging),
            "features": _convert(self.features),
            "analytics": _convert(self.analytics),
            "validation": _convert(self.validation),
        }


def _load_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _merge_overrides(base: Dict[str, Any], overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not overrides:
        return base

    def deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(a)
        for k, v in (b or {}).items():
            if isinstance(v, dict) and isinstance(out.get(k), dict):
                out[k] = deep_merge(out[k], v)
            else:
                out[k] = v
        return out

    return deep_merge(base, overrides)


def _paths_from_dict(d: Dict[str, Any]) -> Paths:
    return Paths(
        raw=Path(d["raw"]).resolve(),
        outputs=Path(d["outputs"]).resolve(),
    )


def _optional_positive_int(value: Any, key: str) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        out = int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{key} must be a positive integer or null") from e
    if out <= 0:
        raise ValueError(f"{key} must be a positive integer or null, got {out}")
    return out


def load_config(config_path: Optional[str | Path] = None, cli_overrides: Optional[Dict[str, Any]] = None) -> Config:
    if config_path is None:
        config_path = ROOT_DIR / "config.yaml"

    cfg_path_obj = Path(config_path)
    cfg_dict = _load_yaml(cfg_path_obj) if cfg_path_obj.exists() else {}

    allowed_top = {"paths", "database", "etl", "logging", "features", "analytics", "validation"}
    unknown_top = set(cfg_dict.keys()) - allowed_top
    if unknown_top:
        raise ValueError(f"Unknown top-level config keys: {sorted(unknown_top)}. Allowed: {sorted(allowed_top)}")

    env_db_engine = os.getenv("BASKETIQ_DB_ENGINE")
    env_sqlite_path = os.getenv("BASKETIQ_SQLITE_PATH")
    env_row_limit = os.getenv("BASKETIQ_ROW_LIMIT")
    if env_db_engine:
        cfg_dict.setdefault("database", {})["engine"] = env_db_engine
    if env_sqlite_path:
        cfg_dict.setdefault("database", {})["sqlite_path"] = env_sqlite_path
    if env_row_limit is not None:
        cfg_dict.setdefault("features", {})["row_limit"] = env_row_limit

    cfg_dict = _merge_overrides(cfg_dict, cli_overrides)

    paths_dict = cfg_dict.get("paths") or {
        "raw": str(DATA_DIR / "raw"),
        "outputs": str(OUTPUTS_DIR),
    }

    database = cfg_dict.get("database", {})
    etl_cfg = cfg_dict.get("etl", {})
    log_cfg = cfg_dict.get("logging", {})
    feat_cfg = cfg_dict.get("features", {})
    an_cfg = cfg_dict.get("analytics", {})
    val_cfg = cfg_dict.get("validation", {})

    tables = dict(DEFAULT_TABLES)
    raw_tables = database.get("tables") or {}
    if not isinstance(raw_tables, dict):
        raise ValueError("database.tables must be a mapping of logical -> concrete table names")
    unknown_tables = set(raw_tables) - set(DEFAULT_TABLES)
    if unknown_tables:
        raise ValueError(f"Unknown database.tables keys: {sorted(unknown_tables)}")
    tables.update({str(k): str(v) for k, v in raw_tables.items()})

    cfg = Config(
        paths=_paths_from_dict(paths_dict),
        database=Database(
            engine=str(database.get("engine", "sqlite")).lower(),
            sqlite_path=Path(database.get("sqlite_path", ROOT_DIR.parent / "basketiq.db")).resolve(),
            strict_db=bool(database.get("strict_db", False)),
            tables=tables,
        ),
        etl=ETL(
            fail_on_contract_breach=bool(etl_cfg.get("fail_on_contract_breach", True)),
        ),
        logging=Logging(
            level=str(log_cfg.get("level", "INFO")),
            jsonl=bool(log_cfg.get("jsonl", True)),
        ),
        features=Features(
            row_limit=_optional_positive_int(feat_cfg.get("row_limit"), "features.row_limit"),
            n_shards=int(feat_cfg.get("n_shards", 1) or 1),
            max_workers=int(feat_cfg.get("max_workers", 1) or 1),
            unseen_position_sentinel=float(feat_cfg.get("unseen_position_sentinel", 999.0)),
        ),
        analytics=Analytics(
            customer_top_n=_optional_positive_int(an_cfg.get("customer_top_n", 100), "analytics.customer_top_n"),
            customer_tiles=int(an_cfg.get("customer_tiles", 20)),
            at_risk_multiplier=float(an_cfg.get("at_risk_multiplier", 2.0)),
            pair_min_co_orders=int(an_cfg.get("pair_min_co_orders", 50)),
            pair_top_n=_optional_positive_int(an_cfg.get("pair_top_n", 100), "analytics.pair_top_n"),
            sku_top_n=_optional_positive_int(an_cfg.get("sku_top_n", 200), "analytics.sku_top_n"),
        ),
        validation=ValidationConfig(
            leakage_audit_sample=int(val_cfg.get("leakage_audit_sample", 1000)),
            seed=int(val_cfg.get("seed", 42)),
        ),
    )

    if cfg.database.engine not in {"sqlite", "postgres"}:
        raise ValueError("database.engine must be 'sqlite' or 'postgres'")
    if cfg.features.n_shards < 1 or cfg.features.max_workers < 1:
        raise ValueError("features.n_shards and features.max_workers must be >= 1")
    if cfg.analytics.customer_tiles < 1:
        raise ValueError("analytics.customer_tiles must be >= 1")
    if cfg.analytics.pair_min_co_orders < 1:
        raise ValueError("analytics.pair_min_co_orders must be >= 1")
    if cfg.validation.leakage_audit_sample < 0:
        raise ValueError("validation.leakage_audit_sample must be >= 0")

    for p in [cfg.paths.raw, cfg.paths.outputs]:
        Path(p).mkdir(parents=True, exist_ok=True)

    return cfg
