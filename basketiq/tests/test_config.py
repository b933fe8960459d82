from pathlib import Path

import pytest
import yaml

from basketiq.utils.config import DEFAULT_TABLES, load_config


def _write(tmp_path: Path, payload: dict) -> Path:
    payload = {"paths": {"raw": str(tmp_path / "raw"), "outputs": str(tmp_path / "out")}, **payload}
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(payload), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    for var in ["BASKETIQ_DB_ENGINE", "BASKETIQ_SQLITE_PATH", "BASKETIQ_ROW_LIMIT"]:
        monkeypatch.delenv(var, raising=False)


def test_defaults_and_directories(tmp_path):
    cfg = load_config(_write(tmp_path, {}))
    assert cfg.database.engine == "sqlite"
    assert cfg.database.tables == DEFAULT_TABLES
    assert cfg.features.row_limit is None
    assert cfg.features.unseen_position_sentinel == 999.0
    assert cfg.etl.fail_on_contract_breach is True
    assert (tmp_path / "raw").is_dir()
    assert (tmp_path / "out").is_dir()


def test_yaml_values_and_cli_overrides(tmp_path):
    path = _write(tmp_path, {"features": {"row_limit": 500, "n_shards": 8}})
    cfg = load_config(path, cli_overrides={"features": {"max_workers": 3}, "etl": {"fail_on_contract_breach": False}})
    assert cfg.features.row_limit == 500
    assert cfg.features.n_shards == 8
    assert cfg.features.max_workers == 3
    assert cfg.etl.fail_on_contract_breach is False


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("BASKETIQ_ROW_LIMIT", "25")
    monkeypatch.setenv("BASKETIQ_DB_ENGINE", "Postgres")
    cfg = load_config(_write(tmp_path, {}))
    assert cfg.features.row_limit == 25
    assert cfg.database.engine == "postgres"


def test_table_mapping_override(tmp_path):
    cfg = load_config(_write(tmp_path, {"database": {"tables": {"order_products": "order_products__prior"}}}))
    assert cfg.database.tables["order_products"] == "order_products__prior"
    assert cfg.database.tables["orders"] == "orders"


@pytest.mark.parametrize(
    "payload",
    [
        {"modeling": {}},
        {"features": {"row_limit": 0}},
        {"features": {"n_shards": -2}},
        {"database": {"engine": "oracle"}},
        {"database": {"tables": {"baskets": "x"}}},
        {"analytics": {"pair_min_co_orders": 0}},
        {"validation": {"leakage_audit_sample": -1}},
    ],
)
def test_invalid_config_rejected(tmp_path, payload):
    with pytest.raises(ValueError):
        load_config(_write(tmp_path, payload))


def test_to_dict_is_yaml_serialisable(tmp_path):
    cfg = load_config(_write(tmp_path, {}))
    dumped = yaml.safe_dump(cfg.to_dict())
    assert "unseen_position_sentinel" in dumped
