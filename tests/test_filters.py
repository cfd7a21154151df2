from datetime import date

import pytest

from pharmpos.filters import FilterExpression, Operator
from pharmpos.services.query_service import (
    build_delete,
    build_select,
    build_update,
    normalize_timestamp,
    parse_filters,
    parse_order,
    validate_table_name,
)
from pharmpos.services.table_registry import get_table


# --- Wire grammar ---

@pytest.mark.parametrize("operator", ["eq", "neq", "gt", "gte", "lt", "lte", "like", "ilike"])
def test_scalar_filter_survives_the_wire(operator):
    expr = FilterExpression.build("name", operator, "Amoxil.250")
    column, raw = expr.to_param()
    assert raw == f"{operator}.Amoxil.250"
    assert FilterExpression.from_param(column, raw) == expr


def test_in_filter_survives_the_wire():
    expr = FilterExpression.build("id", Operator.IN, ["a1", "b2", "c3"])
    assert expr.to_param() == ("id", "in.(a1,b2,c3)")
    assert FilterExpression.from_param("id", "in.(a1,b2,c3)") == expr


def test_in_rejects_values_that_cannot_be_encoded():
    with pytest.raises(ValueError):
        FilterExpression.build("name", "in", ["plain", "with,comma"])
    with pytest.raises(ValueError):
        FilterExpression.build("name", "in", ["(paren)"])


def test_values_are_stringified_on_the_wire():
    assert FilterExpression.build("is_wholesale", "eq", True).to_param() == ("is_wholesale", "eq.true")
    assert FilterExpression.build("expiry_date", "lt", date(2026, 3, 1)).to_param() == ("expiry_date", "lt.2026-03-01")
    assert FilterExpression.build("quantity", "gte", 5).to_param() == ("quantity", "gte.5")


def test_unknown_operator_is_read_as_equality_over_the_raw_value():
    expr = FilterExpression.from_param("name", "approx.5")
    assert expr.operator is Operator.EQ
    assert expr.value == "approx.5"


def test_unknown_operator_rejected_in_strict_mode():
    with pytest.raises(ValueError):
        FilterExpression.from_param("name", "approx.5", strict=True)


def test_value_without_operator_is_not_a_filter():
    assert FilterExpression.from_param("name", "Paracetamol") is None


# --- Query string parsing ---

def test_parse_filters_skips_reserved_and_keeps_repeated_columns():
    params = [
        ("created_at", "gte.2026-01-01"),
        ("created_at", "lt.2026-02-01"),
        ("order", "created_at.desc"),
        ("limit", "5"),
        ("include_expired", "true"),
        ("note", "plain"),
    ]
    filters = parse_filters(params, reserved={"include_expired"}, strict=False)
    assert [(f.column, f.operator) for f in filters] == [
        ("created_at", Operator.GTE),
        ("created_at", Operator.LT),
    ]


def test_parse_order():
    assert parse_order("name.desc") == ("name", False)
    assert parse_order("name") == ("name", True)
    assert parse_order(None) is None


@pytest.mark.parametrize("name", ["inventory", "Sales_Items", "t2"])
def test_valid_table_names(name):
    assert validate_table_name(name) == name.lower()


@pytest.mark.parametrize("name", ["", "inventory;drop", "sales items", "x-y", "../etc"])
def test_invalid_table_names(name):
    with pytest.raises(ValueError):
        validate_table_name(name)


def test_iso_timestamps_are_normalized():
    assert normalize_timestamp("2026-01-05T15:12:54.307Z") == "2026-01-05 15:12:54"
    assert normalize_timestamp("2026-01-05T15:12:54+01:00") == "2026-01-05 15:12:54"
    assert normalize_timestamp("2026-01-05") == "2026-01-05"
    assert normalize_timestamp("Paracetamol") == "Paracetamol"


# --- SQL translation ---

def test_select_binds_every_value():
    spec = get_table("sales")
    filters = parse_filters(
        [("payment_method", "eq.Cash'; DROP TABLE sales;--"), ("total", "gt.10")], strict=False
    )
    stmt = build_select(spec, filters, limit=20)
    assert "DROP" not in stmt.sql
    assert stmt.sql == "SELECT * FROM sales WHERE payment_method = :p0 AND total > :p1 LIMIT :p2"
    assert stmt.params == {"p0": "Cash'; DROP TABLE sales;--", "p1": 10.0, "p2": 20}


def test_select_in_uses_one_placeholder_per_value():
    spec = get_table("sales")
    stmt = build_select(spec, [FilterExpression.build("id", "in", ["a", "b", "c"])])
    assert "id IN (:p0, :p1, :p2)" in stmt.sql


def test_select_empty_in_matches_nothing():
    spec = get_table("sales")
    stmt = build_select(spec, [FilterExpression("id", Operator.IN, ())])
    assert "1 = 0" in stmt.sql


def test_like_and_ilike_wrap_value():
    spec = get_table("sales")
    stmt = build_select(spec, [FilterExpression.build("customer_name", "ilike", "ada")])
    assert "LOWER(customer_name) LIKE LOWER(:p0)" in stmt.sql
    assert stmt.params["p0"] == "%ada%"


def test_inventory_defaults_hide_expired_and_sort_by_name():
    spec = get_table("inventory")
    stmt = build_select(spec, [], options={})
    assert "expiry_date IS NULL OR expiry_date > CURRENT_DATE" in stmt.sql
    assert stmt.sql.endswith("ORDER BY name ASC")

    stmt = build_select(spec, [], order=("quantity", False), options={"include_expired": "true"})
    assert "expiry_date" not in stmt.sql
    assert stmt.sql.endswith("ORDER BY quantity DESC")


@pytest.mark.parametrize(
    "dialect, paging",
    [
        ("sqlite", " LIMIT -1 OFFSET :p0"),
        ("mysql", " LIMIT 18446744073709551615 OFFSET :p0"),
        ("postgresql", " OFFSET :p0"),
    ],
)
def test_offset_without_limit_per_dialect(dialect, paging):
    stmt = build_select(get_table("sales"), [], offset=30, dialect=dialect)
    assert stmt.sql == "SELECT * FROM sales" + paging
    assert stmt.params == {"p0": 30}


def test_limit_and_offset():
    stmt = build_select(get_table("sales"), [], limit=10, offset=30, dialect="postgresql")
    assert stmt.sql.endswith(" LIMIT :p0 OFFSET :p1")
    assert stmt.params == {"p0": 10, "p1": 30}


def test_date_values_are_validated():
    spec = get_table("inventory")
    stmt = build_select(
        spec, [FilterExpression.build("expiry_date", "lt", "2027-03-01T08:00:00Z")], options={"include_expired": "true"}
    )
    assert stmt.params == {"p0": "2027-03-01"}

    stmt = build_update(spec, "row-1", {"expiry_date": ""})
    assert stmt.params["v0"] is None

    with pytest.raises(ValueError, match="Invalid date for column 'expiry_date'"):
        build_update(spec, "row-1", {"expiry_date": "next month"})

    stmt = build_select(get_table("sales"), [FilterExpression.build("created_at", "gte", "2026-01-05T15:12:54.307Z")])
    assert stmt.params == {"p0": "2026-01-05 15:12:54"}


def test_unknown_column_is_rejected():
    spec = get_table("inventory")
    with pytest.raises(ValueError, match="Unknown column"):
        build_select(spec, [FilterExpression.build("password", "eq", "x")])
    with pytest.raises(ValueError, match="Unknown column"):
        build_select(spec, [], columns=["name", "secret"])


def test_update_skips_id_and_touches_updated_at():
    spec = get_table("inventory")
    stmt = build_update(spec, "row-1", {"id": "other", "quantity": "4"})
    assert stmt.sql == (
        "UPDATE inventory SET quantity = :v0, updated_at = CURRENT_TIMESTAMP WHERE id = :v1"
    )
    assert stmt.params == {"v0": 4, "v1": "row-1"}


def test_update_with_nothing_to_set():
    with pytest.raises(ValueError, match="Nothing to update"):
        build_update(get_table("inventory"), "row-1", {"id": "row-1"})


def test_delete_requires_a_condition():
    with pytest.raises(ValueError, match="No delete condition"):
        build_delete(get_table("inventory"), [])
