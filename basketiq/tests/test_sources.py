import pandas as pd
import polars as pl
import pytest
from sqlalchemy import create_engine

from basketiq.etl.sources import read_tables_from_db, read_tables_from_files, robust_read_csv
from basketiq.utils.sql import validate_identifier


def _orders():
    return pd.DataFrame(
        {
            "order_id": [1, 2, 3],
            "user_id": [1, 1, 2],
            "eval_set": ["prior", "train", "prior"],
            "order_number": [1, 2, 1],
            "order_dow": [0, 1, 2],
            "order_hour_of_day": [8, 9, 10],
            "days_since_prior_order": [None, 6.0, None],
        }
    )


def _lines(order_ids):
    return pd.DataFrame(
        {
            "order_id": order_ids,
            "product_id": [10] * len(order_ids),
            "add_to_cart_order": [1] * len(order_ids),
            "reordered": [0] * len(order_ids),
        }
    )


def test_read_files_concatenates_prior_and_train(tmp_path):
    _orders().to_csv(tmp_path / "orders.csv", index=False)
    _lines([1, 3]).to_csv(tmp_path / "order_products__prior.csv", index=False)
    _lines([2]).to_csv(tmp_path / "order_products__train.csv", index=False)
    pd.DataFrame({"product_id": [10], "product_name": ["Milk"], "aisle_id": [1], "department_id": [2]}).to_csv(
        tmp_path / "products.csv", index=False
    )

    tables = read_tables_from_files(tmp_path)

    assert tables.orders.height == 3
    assert sorted(tables.order_products["order_id"].to_list()) == [1, 2, 3]
    assert tables.order_products["reordered"].dtype == pl.Boolean
    assert tables.orders["days_since_prior_order"].to_list() == [None, 6, None]
    assert tables.products is not None
    assert tables.aisles is None
    assert tables.departments is None


def test_read_files_prefers_parquet(tmp_path):
    pl.from_pandas(_orders()).write_parquet(tmp_path / "orders.parquet")
    _orders().head(1).to_csv(tmp_path / "orders.csv", index=False)
    _lines([1]).to_csv(tmp_path / "order_products.csv", index=False)

    tables = read_tables_from_files(tmp_path, include_dimensions=False)
    assert tables.orders.height == 3


def test_read_files_requires_orders(tmp_path):
    _lines([1]).to_csv(tmp_path / "order_products.csv", index=False)
    with pytest.raises(FileNotFoundError):
        read_tables_from_files(tmp_path)


def test_robust_read_csv_falls_back_to_latin1(tmp_path):
    path = tmp_path / "products.csv"
    path.write_bytes("product_id,product_name\n1,Cr\xe8me fra\xeeche\n".encode("latin-1"))
    df = robust_read_csv(path)
    assert df.loc[0, "product_name"] == "Crème fraîche"


def test_read_tables_from_db(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path}/basket.db")
    _orders().to_sql("orders", engine, if_exists="replace", index=False)
    _lines([1, 2, 3]).to_sql("order_products_all", engine, if_exists="replace", index=False)
    pd.DataFrame({"product_id": [10], "product_name": ["Milk"], "aisle_id": [1], "department_id": [2]}).to_sql(
        "products", engine, if_exists="replace", index=False
    )

    tables = read_tables_from_db(engine, {"order_products": "order_products_all"}, include_dimensions=False)

    assert tables.orders["order_number"].to_list() == [1, 2, 1]
    assert tables.order_products.height == 3
    assert tables.products["product_name"].to_list() == ["Milk"]


@pytest.mark.parametrize("name", ["orders; DROP TABLE x", "1orders", "", "a.b.c"])
def test_validate_identifier_rejects(name):
    with pytest.raises(ValueError):
        validate_identifier(name)


def test_validate_identifier_accepts_schema_qualified():
    assert validate_identifier(" public.orders ") == "public.orders"
