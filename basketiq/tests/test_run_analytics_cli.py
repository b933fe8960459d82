import pandas as pd
import yaml
from click.testing import CliRunner

from basketiq.pipeline.run_analytics import main


def _write_export(data_dir):
    data_dir.mkdir()
    pd.DataFrame(
        {
            "order_id": [1, 2, 3, 4],
            "user_id": [1, 1, 2, 2],
            "eval_set": ["prior"] * 4,
            "order_number": [1, 2, 1, 2],
            "order_dow": [0, 1, 0, 1],
            "order_hour_of_day": [9, 9, 9, 18],
            "days_since_prior_order": [None, 7.0, None, 3.0],
        }
    ).to_csv(data_dir / "orders.csv", index=False)
    pd.DataFrame(
        {
            "order_id": [1, 1, 2, 2, 3, 3, 4],
            "product_id": [1, 2, 1, 2, 1, 2, 3],
            "add_to_cart_order": [1, 2, 1, 2, 2, 1, 1],
            "reordered": [0, 0, 1, 1, 0, 0, 0],
        }
    ).to_csv(data_dir / "order_products__prior.csv", index=False)
    pd.DataFrame(
        {"product_id": [1, 2, 3], "product_name": ["Banana", "Milk", "Eggs"], "aisle_id": [1, 2, 2], "department_id": [1, 2, 2]}
    ).to_csv(data_dir / "products.csv", index=False)
    pd.DataFrame({"aisle_id": [1, 2], "aisle": ["fruit", "dairy"]}).to_csv(data_dir / "aisles.csv", index=False)
    pd.DataFrame({"department_id": [1, 2], "department": ["produce", "dairy eggs"]}).to_csv(
        data_dir / "departments.csv", index=False
    )


def _setup(tmp_path, monkeypatch):
    out_dir = tmp_path / "outputs"
    out_dir.mkdir()
    monkeypatch.setattr("basketiq.pipeline.run_analytics.OUTPUTS_DIR", out_dir)
    monkeypatch.setattr("basketiq.ops.run.OUTPUTS_DIR", out_dir)
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        yaml.safe_dump(
            {
                "paths": {"raw": str(tmp_path / "raw"), "outputs": str(out_dir)},
                "analytics": {"pair_min_co_orders": 2, "customer_tiles": 2},
            }
        ),
        encoding="utf-8",
    )
    return out_dir, cfg_path


def test_run_all_reports(tmp_path, monkeypatch):
    out_dir, cfg_path = _setup(tmp_path, monkeypatch)
    data_dir = tmp_path / "export"
    _write_export(data_dir)

    result = CliRunner().invoke(main, ["--source", "files", "--data-dir", str(data_dir), "--config", str(cfg_path)])
    assert result.exit_code == 0, result.output

    for name in [
        "customer_segments",
        "product_pair_lift",
        "sku_pareto",
        "hourly_order_profile",
        "product_cart_positions",
    ]:
        assert (out_dir / f"{name}.csv").exists(), name

    pairs = pd.read_csv(out_dir / "product_pair_lift.csv")
    assert pairs.loc[0, "co_orders"] == 3
    assert pairs.loc[0, "product_a_name"] == "Banana"
    assert pairs.loc[0, "dep_b"] == "dairy eggs"


def test_run_single_report(tmp_path, monkeypatch):
    out_dir, cfg_path = _setup(tmp_path, monkeypatch)
    data_dir = tmp_path / "export"
    _write_export(data_dir)

    result = CliRunner().invoke(
        main, ["--report", "customers", "--source", "files", "--data-dir", str(data_dir), "--config", str(cfg_path)]
    )
    assert result.exit_code == 0, result.output
    seg = pd.read_csv(out_dir / "customer_segments.csv")
    assert list(seg["user_id"]) == [1, 2]
    assert not (out_dir / "sku_pareto.csv").exists()
