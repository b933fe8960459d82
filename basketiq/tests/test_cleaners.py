import pandas as pd
import polars as pl

from basketiq.etl.cleaners import (
    coerce_bool,
    coerce_day_gap,
    coerce_order_lines,
    coerce_orders,
    summarise_dataframe_schema,
)


def test_coerce_day_gap_parses_text_and_blanks():
    df = pl.DataFrame({"days_since_prior_order": ["15.0", " 3 ", "", None, "abc"]})
    out = df.select(coerce_day_gap())
    assert out["days_since_prior_order"].to_list() == [15, 3, None, None, None]
    assert out.schema["days_since_prior_order"] == pl.Int64


def test_coerce_bool_accepts_common_spellings():
    df = pl.DataFrame({"flag": ["1", "0", "True", "no", "Y", "1.0"]})
    assert df.select(coerce_bool("flag"))["flag"].to_list() == [True, False, True, False, True, True]


def test_coerce_orders_from_pandas():
    df = pd.DataFrame(
        {
            "order_id": ["1", "2"],
            "user_id": [5, 5],
            "eval_set": ["prior", "train"],
            "order_number": [1.0, 2.0],
            "order_dow": [0, 1],
            "order_hour_of_day": [9, 22],
            "days_since_prior_order": [None, 8.0],
        }
    )
    out = coerce_orders(df)
    assert isinstance(out, pl.DataFrame)
    assert out["order_id"].to_list() == [1, 2]
    assert out["order_number"].dtype == pl.Int64
    assert out["days_since_prior_order"].to_list() == [None, 8]


def test_coerce_order_lines_keeps_null_reordered():
    df = pl.DataFrame(
        {"order_id": [1, 1, 2], "product_id": [10, 11, 10], "add_to_cart_order": [1, 2, 1], "reordered": [1, None, 0]}
    )
    out = coerce_order_lines(df)
    assert out["reordered"].to_list() == [True, None, False]


def test_summarise_dataframe_schema():
    df = pl.DataFrame({"a": [1], "b": ["x"]})
    assert summarise_dataframe_schema(df) == {"a": "Int64", "b": "String"}
