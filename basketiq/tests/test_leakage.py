import warnings

import polars as pl

from basketiq.features.reorder import build_reorder_features
from basketiq.labels.targets import prevalence_report
from basketiq.validation.leakage import audit_point_in_time, truncation_invariance


def _log():
    orders = pl.DataFrame(
        {
            "order_id": list(range(1, 9)),
            "user_id": [1, 1, 1, 1, 2, 2, 2, 3],
            "order_number": [1, 2, 3, 4, 1, 2, 3, 1],
            "order_dow": [0, 1, 2, 3, 4, 5, 6, 0],
            "order_hour_of_day": [10] * 8,
            "days_since_prior_order": [None, 3, 9, 1, None, 14, 7, None],
        }
    )
    lines = pl.DataFrame(
        {
            "order_id": [1, 1, 2, 2, 3, 4, 4, 5, 6, 6, 7, 8],
            "product_id": [10, 20, 10, 30, 20, 10, 20, 10, 10, 20, 20, 30],
            "add_to_cart_order": [1, 2, 2, 1, 1, 3, 1, 1, 1, 2, 1, 1],
            "reordered": [0, 0, 1, 0, 1, 1, 1, 0, 1, 0, 1, 0],
        }
    )
    return orders, lines


def test_audit_passes_on_builder_output():
    orders, lines = _log()
    fm = build_reorder_features(orders, lines)
    report, mismatches = audit_point_in_time(fm, orders, lines, sample_size=100)
    assert report == {"checked": fm.height, "mismatches": 0, "ok": True}
    assert mismatches.empty


def test_audit_flags_tampered_rows():
    orders, lines = _log()
    fm = build_reorder_features(orders, lines)
    # count the snapshot itself, as a leaky implementation would
    leaky = fm.with_columns((pl.col("times_seen_before") + 1).alias("times_seen_before"))
    report, mismatches = audit_point_in_time(leaky, orders, lines, sample_size=100)
    assert not report["ok"]
    assert set(mismatches["column"]) == {"times_seen_before"}
    assert report["mismatches"] == fm.height


def test_audit_empty_features():
    orders, lines = _log()
    empty = build_reorder_features(orders, lines).clear()
    report, mismatches = audit_point_in_time(empty, orders, lines)
    assert report["checked"] == 0 and report["ok"]
    assert mismatches.empty


def test_truncation_invariance_holds():
    orders, lines = _log()
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        report = truncation_invariance(orders, lines, sample_pairs=20, seed=7)
    assert not [w for w in caught if "is_in" in str(w.message)]
    assert report["checked"] == 12
    assert report["ok"]
    assert report["failures"] == 0


def test_prevalence_report():
    orders, lines = _log()
    fm = build_reorder_features(orders, lines)
    prev = prevalence_report(fm)
    row = prev.iloc[0]
    assert row["total"] == fm.height
    assert row["positives"] == int(fm["label_next_order"].sum())
    assert row["users"] == 3
    assert row["products"] == 3
    assert 0.0 < row["first_purchase_share"] <= 1.0


def test_prevalence_report_empty_keeps_columns():
    orders, lines = _log()
    empty = build_reorder_features(orders, lines).clear()
    prev = prevalence_report(empty)
    assert prev.empty
    assert list(prev.columns) == ["total", "positives", "prevalence", "users", "products", "first_purchase_share"]
