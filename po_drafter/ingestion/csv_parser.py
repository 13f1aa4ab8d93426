# po_drafter/ingestion/csv_parser.py
from __future__ import annotations

import io
import logging
import os
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from po_drafter.data_models import ExtractedRow, ParsedDocument
from po_drafter.drafting.answers import parse_number
from po_drafter.errors import ValidationError


logger = logging.getLogger(__name__)

# Порядок важен: "Unit Price" должен уйти в цену раньше, чем "unit" заберёт unit_type,
# а "Product Code" — в sku раньше, чем "product" заберёт название.
HEADER_VARIANTS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("sku", ("sku", "code")),
    ("unit_price", ("price", "cost")),
    ("currency", ("currency", "curr")),
    ("min_qty", ("min",)),
    ("max_qty", ("max",)),
    ("unit_type", ("unit", "uom", "type")),
    ("product_name", ("product", "name", "description")),
    ("notes", ("notes", "note", "comment")),
)

DEFAULT_UNIT_TYPE = "box"
MISSING_SKU_PENALTY = 0.3
DEFAULT_UNIT_PENALTY = 0.2


def _normalize_column_name(name: str) -> str:
    """Unicode-дефисы и неразрывные пробелы из Excel -> обычные."""
    for char in ("\u2011", "\u2010", "\u2212", "\uFE58", "\u2013"):
        name = name.replace(char, "-")
    return name.replace("\u00a0", " ").strip().lower()


def match_columns(columns: Sequence[str]) -> Dict[str, str]:
    """Поле ExtractedRow -> исходная колонка. Каждая колонка используется один раз."""
    normalized = {col: _normalize_column_name(str(col)) for col in columns}
    used: set = set()
    mapping: Dict[str, str] = {}
    for field_name, variants in HEADER_VARIANTS:
        for col in columns:
            if col in used:
                continue
            if any(v in normalized[col] for v in variants):
                mapping[field_name] = col
                used.add(col)
                break
    return mapping


def _cell(record: Dict[str, str], mapping: Dict[str, str], field_name: str) -> str:
    col = mapping.get(field_name)
    if col is None:
        return ""
    value = record.get(col)
    return str(value).strip() if value is not None else ""


def _as_qty(text: str) -> Optional[int]:
    value = parse_number(text) if text else None
    if value is None or value <= 0:
        return None
    return int(value)


def _read_frame(source: Union[str, bytes, os.PathLike]) -> pd.DataFrame:
    handle = io.BytesIO(source) if isinstance(source, bytes) else source
    try:
        return pd.read_csv(handle, dtype=str, keep_default_na=False, skip_blank_lines=True)
    except pd.errors.EmptyDataError as exc:
        raise ValidationError("CSV file is empty or has no data rows") from exc
    except (pd.errors.ParserError, UnicodeDecodeError) as exc:
        raise ValidationError(
            "Failed to parse CSV file. Please ensure it's a valid CSV with headers.",
            {"originalError": str(exc)},
        ) from exc


def parse_price_list_csv(
    source: Union[str, bytes, os.PathLike],
    file_name: Optional[str] = None,
) -> ParsedDocument:
    """
    CSV прайса -> строки для подтверждения пользователем.

    - заголовки ищутся без учёта регистра по подстрокам (HEADER_VARIANTS);
    - строки без названия или с неположительной ценой отбрасываются;
    - если SKU нет или тип единицы подставлен по умолчанию, confidence
      снижается, а поле попадает в uncertain_fields.
    """
    df = _read_frame(source)
    if df.empty:
        raise ValidationError("CSV file is empty or has no data rows")

    mapping = match_columns(list(df.columns))
    logger.debug("CSV column mapping: %s", mapping)

    items: List[ExtractedRow] = []
    dropped = 0
    for record in df.to_dict(orient="records"):
        product_name = _cell(record, mapping, "product_name")
        unit_price = parse_number(_cell(record, mapping, "unit_price"))
        if not product_name or unit_price is None or unit_price <= 0:
            dropped += 1
            continue

        confidence = 1.0
        uncertain = set()
        sku = _cell(record, mapping, "sku")
        if not sku:
            confidence -= MISSING_SKU_PENALTY
            uncertain.add("sku")
        unit_type = _cell(record, mapping, "unit_type").lower()
        if not unit_type:
            unit_type = DEFAULT_UNIT_TYPE
            confidence -= DEFAULT_UNIT_PENALTY
            uncertain.add("unit_type")

        items.append(
            ExtractedRow(
                sku=sku,
                product_name=product_name,
                unit_type=unit_type,
                unit_price=unit_price,
                currency=(_cell(record, mapping, "currency") or "GBP").upper(),
                min_qty=_as_qty(_cell(record, mapping, "min_qty")) or 1,
                max_qty=_as_qty(_cell(record, mapping, "max_qty")),
                notes=_cell(record, mapping, "notes"),
                confidence=round(confidence, 2),
                uncertain_fields=uncertain,
            )
        )

    if not items:
        raise ValidationError(
            "Could not extract any valid price list items from CSV. "
            "Please ensure the file has columns for product name and price.",
            {"columns": [str(c) for c in df.columns]},
        )
    if dropped:
        logger.info("Dropped %s CSV rows without product name or positive price", dropped)

    name = file_name or (os.path.basename(str(source)) if not isinstance(source, bytes) else "upload.csv")
    return ParsedDocument(items=items, file_name=name, file_type="csv")
