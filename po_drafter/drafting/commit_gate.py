# po_drafter/drafting/commit_gate.py
from __future__ import annotations

import copy
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from po_drafter.data_models import CatalogSnapshot, DraftOrder
from po_drafter.errors import IncompleteDraftError


_CENT = Decimal("0.01")


def compute_line_total(quantity: int, unit_price: float) -> float:
    """round2(quantity * unit_price): half-up до копеек, через Decimal без артефактов float."""
    return float((Decimal(str(quantity)) * Decimal(str(unit_price))).quantize(_CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class MissingField:
    item_index: Optional[int]  # None — поле заголовка заказа
    field: str
    reason: str

    def to_dict(self) -> dict:
        return {"item_index": self.item_index, "field": self.field, "reason": self.reason}


def find_missing_fields(draft: DraftOrder, catalog: Optional[CatalogSnapshot] = None) -> List[MissingField]:
    """
    Список того, что мешает закоммитить черновик.

    Без каталога — только структурная полнота (то, что проверяет can_commit).
    С каталогом — дополнительно «закрытый мир»: поставщик существует и
    каждый SKU есть в его прайсе.
    """
    missing: List[MissingField] = []

    if not draft.supplier_name.strip():
        missing.append(MissingField(None, "supplier_name", "missing"))
    if not draft.items:
        missing.append(MissingField(None, "items", "missing"))

    for index, item in enumerate(draft.items):
        if not (item.sku or "").strip():
            missing.append(MissingField(index, "sku", "missing"))
        if item.quantity <= 0:
            missing.append(MissingField(index, "quantity", "not_positive"))
        if item.unit_price is None:
            missing.append(MissingField(index, "unit_price", "missing"))
        elif not item.unit_price > 0:
            missing.append(MissingField(index, "unit_price", "not_positive"))

    if catalog is not None and draft.supplier_name.strip():
        supplier = catalog.supplier_by_name(draft.supplier_name)
        if supplier is None:
            missing.append(MissingField(None, "supplier_name", "unknown_supplier"))
        else:
            for index, item in enumerate(draft.items):
                if (item.sku or "").strip() and not catalog.rows_for_sku(item.sku, supplier):
                    missing.append(MissingField(index, "sku", "not_in_price_list"))

    return missing


def can_commit(draft: DraftOrder) -> bool:
    return not find_missing_fields(draft)


def prepare_commit(draft: DraftOrder, catalog: CatalogSnapshot) -> DraftOrder:
    """
    Проверяет черновик (включая «закрытый мир» по каталогу) и возвращает копию
    с пересчитанными line_total.

    Сохранённый в черновике line_total игнорируется: при коммите он всегда
    равен round2(quantity * unit_price).
    """
    missing = find_missing_fields(draft, catalog)
    if missing:
        raise IncompleteDraftError(
            "Draft is not complete enough to be saved as a purchase order.",
            {
                "missing": [m.to_dict() for m in missing],
                "itemIndexes": sorted({m.item_index for m in missing if m.item_index is not None}),
            },
        )

    ready = copy.deepcopy(draft)
    for item in ready.items:
        item.sku = item.sku.strip()
        item.line_total = compute_line_total(item.quantity, item.unit_price)
    return ready
