# tests/test_csv_parser.py
import pytest

from po_drafter.errors import ValidationError
from po_drafter.ingestion.csv_parser import match_columns, parse_price_list_csv


def test_parse_price_list_with_common_headers():
    content = (
        "Product Code,Product Name,Unit Type,Unit Price,Currency,Min Qty,Max Qty,Notes\n"
        "HYDRO-301,HydroLoc Grey Herringbone,Box,£18.99,gbp,1,49,Box tier\n"
        "HYDRO-301,HydroLoc Grey Herringbone,Pallet,17.50,GBP,50,,Pallet tier\n"
    ).encode("utf-8")

    document = parse_price_list_csv(content, file_name="everfloor.csv")

    assert document.file_name == "everfloor.csv"
    assert document.file_type == "csv"
    box, pallet = document.items
    assert (box.sku, box.unit_type, box.unit_price, box.currency) == ("HYDRO-301", "box", 18.99, "GBP")
    assert (box.min_qty, box.max_qty) == (1, 49)
    assert (pallet.min_qty, pallet.max_qty) == (50, None)
    assert pallet.notes == "Pallet tier"
    assert document.avg_confidence == 1.0


def test_header_matching_handles_unicode_hyphens_and_order():
    mapping = match_columns(["Description", "Price‑GBP", "SKU", "UoM"])

    assert mapping == {
        "sku": "SKU",
        "unit_price": "Price‑GBP",
        "unit_type": "UoM",
        "product_name": "Description",
    }


def test_defaulted_fields_lower_confidence():
    content = b"Name,Price\nMetro Tile,24.00\n"

    item = parse_price_list_csv(content).items[0]

    assert item.unit_type == "box"
    assert item.uncertain_fields == {"sku", "unit_type"}
    assert item.confidence == 0.5


def test_invalid_rows_dropped():
    content = b"SKU,Name,Price\nA-1,Good,5\nA-2,,5\nA-3,Free,0\n"

    document = parse_price_list_csv(content)

    assert [item.sku for item in document.items] == ["A-1"]


@pytest.mark.parametrize("content", [b"", b"SKU,Name,Price\n", b"SKU,Name,Price\nA-1,,0\n"])
def test_empty_or_invalid_file(content):
    with pytest.raises(ValidationError):
        parse_price_list_csv(content)
