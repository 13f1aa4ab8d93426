# tests/test_commit_gate.py
import pytest

from po_drafter.data_models import DraftItem, DraftOrder
from po_drafter.drafting.commit_gate import (
    MissingField,
    can_commit,
    compute_line_total,
    find_missing_fields,
    prepare_commit,
)
from po_drafter.errors import IncompleteDraftError


def _item(**overrides):
    values = dict(
        sku="HYDRO-301",
        product_name="HydroLoc Grey Herringbone",
        unit_type="pallet",
        quantity=50,
        unit_price=17.50,
        confidence=0.95,
    )
    values.update(overrides)
    return DraftItem(**values)


def _draft(*items, supplier="EverFloor Supplies"):
    return DraftOrder(supplier_name=supplier, items=list(items))


def test_missing_unit_price_blocks_commit(catalog):
    draft = _draft(_item(), _item(sku="OAK-110", unit_price=None))

    assert can_commit(draft) is False
    with pytest.raises(IncompleteDraftError) as exc_info:
        prepare_commit(draft, catalog)

    details = exc_info.value.details
    assert exc_info.value.status_code == 422
    assert details["itemIndexes"] == [1]
    assert {"item_index": 1, "field": "unit_price", "reason": "missing"} in details["missing"]


@pytest.mark.parametrize(
    "draft, expected",
    [
        (_draft(_item(), supplier="  "), MissingField(None, "supplier_name", "missing")),
        (_draft(), MissingField(None, "items", "missing")),
        (_draft(_item(sku="   ")), MissingField(0, "sku", "missing")),
        (_draft(_item(quantity=0)), MissingField(0, "quantity", "not_positive")),
        (_draft(_item(unit_price=0.0)), MissingField(0, "unit_price", "not_positive")),
        (_draft(_item(unit_price=float("nan"))), MissingField(0, "unit_price", "not_positive")),
    ],
)
def test_each_gate_condition(draft, expected):
    assert expected in find_missing_fields(draft)
    assert can_commit(draft) is False


def test_line_totals_recomputed_at_commit(catalog):
    # сохранённый line_total неверный — при коммите он пересчитывается
    draft = _draft(_item(line_total=1.0), _item(quantity=3, unit_price=0.125, line_total=None))

    ready = prepare_commit(draft, catalog)

    assert [item.line_total for item in ready.items] == [875.00, 0.38]
    assert draft.items[0].line_total == 1.0


@pytest.mark.parametrize(
    "quantity, unit_price, expected",
    [(3, 0.125, 0.38), (7, 18.99, 132.93), (50, 17.5, 875.0), (1, 0.005, 0.01)],
)
def test_round_half_up(quantity, unit_price, expected):
    assert compute_line_total(quantity, unit_price) == expected


def test_closed_world_sku_with_catalog(catalog):
    draft = _draft(_item(), _item(sku="HYDRO-999"))

    assert can_commit(draft) is True
    missing = find_missing_fields(draft, catalog)

    assert missing == [MissingField(1, "sku", "not_in_price_list")]
    with pytest.raises(IncompleteDraftError):
        prepare_commit(draft, catalog)


def test_unknown_supplier_with_catalog(catalog):
    missing = find_missing_fields(_draft(_item(), supplier="Nobody Ltd"), catalog)

    assert missing == [MissingField(None, "supplier_name", "unknown_supplier")]
