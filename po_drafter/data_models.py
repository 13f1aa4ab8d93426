# po_drafter/data_models.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple, Union


# Поля позиции, от которых зависит цена: неуверенность в них обязана быть покрыта вопросом
PRICE_BEARING_FIELDS = frozenset({"sku", "unit_price", "price"})


def _as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def _as_opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _as_float(value: Any) -> Optional[float]:
    # NaN и бесконечность от модели считаем отсутствующим значением
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _as_int(value: Any, default: int = 0) -> int:
    number = _as_float(value)
    if number is None:
        return default
    try:
        return int(round(number))
    except OverflowError:
        return default


def _as_index_list(value: Any) -> List[int]:
    if not isinstance(value, (list, tuple)):
        return []
    out: List[int] = []
    for v in value:
        if isinstance(v, bool):
            continue
        if isinstance(v, int) or (isinstance(v, float) and v.is_integer()):
            out.append(int(v))
    return out


def _as_str_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v) for v in value if v is not None]


def clamp_confidence(value: Any) -> float:
    """Приводим confidence к float в диапазоне [0.0, 1.0]; мусор считаем нулём."""
    conf = _as_float(value)
    if conf is None:
        return 0.0
    return max(0.0, min(conf, 1.0))


# ---------- Каталог ----------

@dataclass(frozen=True)
class Supplier:
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email,
                "phone": self.phone, "address": self.address}


@dataclass(frozen=True)
class PriceRow:
    """
    Строка прайс-листа. Один SKU может иметь несколько строк
    (разные unit_type и/или ценовые пороги min_qty/max_qty).
    """
    id: str
    supplier_id: str
    sku: str
    product_name: str
    unit_type: str
    unit_price: float
    currency: str = "GBP"
    min_qty: Optional[int] = None
    max_qty: Optional[int] = None
    notes: Optional[str] = None

    def covers_quantity(self, quantity: int) -> bool:
        if self.min_qty is not None and quantity < self.min_qty:
            return False
        if self.max_qty is not None and quantity > self.max_qty:
            return False
        return True

    def quantity_range_label(self) -> str:
        if self.min_qty is None and self.max_qty is None:
            return "any qty"
        if self.max_qty is None:
            return f"{self.min_qty}+"
        return f"{self.min_qty or 0}-{self.max_qty}"

    def option_label(self) -> str:
        """Текст варианта для suggested_options: однозначно указывает на строку прайса."""
        return (
            f"{self.sku} {self.unit_type} @ {self.unit_price:.2f} {self.currency} "
            f"({self.quantity_range_label()})"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "supplierId": self.supplier_id,
            "sku": self.sku,
            "productName": self.product_name,
            "unitType": self.unit_type,
            "minQty": self.min_qty,
            "maxQty": self.max_qty,
            "unitPrice": self.unit_price,
            "currency": self.currency,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class BusinessRule:
    key: str
    value: str
    description: Optional[str] = None


@dataclass(frozen=True)
class CatalogSnapshot:
    """
    Неизменяемый срез каталога на один вызов generate/merge.
    Все три коллекции читаются одной сессией (см. CatalogStore.snapshot).
    """
    suppliers: Tuple[Supplier, ...] = ()
    price_rows: Tuple[PriceRow, ...] = ()
    business_rules: Tuple[BusinessRule, ...] = ()

    def business_rules_dict(self) -> Dict[str, str]:
        return {rule.key: rule.value for rule in self.business_rules}

    def supplier_by_name(self, name: Optional[str]) -> Optional[Supplier]:
        if not name:
            return None
        norm = name.strip().lower()
        for supplier in self.suppliers:
            if supplier.name.strip().lower() == norm:
                return supplier
        return None

    def rows_for_supplier(self, supplier: Optional[Supplier]) -> List[PriceRow]:
        """Строки поставщика; если поставщик не определён — весь прайс."""
        if supplier is None:
            return list(self.price_rows)
        return [row for row in self.price_rows if row.supplier_id == supplier.id]

    def rows_for_sku(self, sku: Optional[str], supplier: Optional[Supplier] = None) -> List[PriceRow]:
        if not sku:
            return []
        norm = sku.strip().lower()
        return [row for row in self.rows_for_supplier(supplier) if row.sku.strip().lower() == norm]


# ---------- Черновик заказа ----------

class QuestionKind(str, Enum):
    """Семантический тип уточняющего вопроса — определяет, куда применять ответ."""
    SKU = "sku"
    PRICE = "price"
    QUANTITY = "quantity"
    SELECTION = "selection"
    FREE_TEXT = "text"


@dataclass
class DraftItem:
    product_name: str = ""
    unit_type: str = ""
    requested_quantity_raw: str = ""
    quantity: int = 0
    sku: Optional[str] = None
    unit_price: Optional[float] = None
    currency: str = "GBP"
    line_total: Optional[float] = None  # производное, до коммита не авторитетно
    price_source: str = ""
    confidence: float = 0.0
    uncertain_fields: Set[str] = field(default_factory=set)
    notes: str = ""
    # Поля, значения которых подтвердил пользователь ответом; модель их больше не трогает
    confirmed_fields: Set[str] = field(default_factory=set)

    @classmethod
    def from_dict(cls, raw: Any, default_currency: str = "GBP") -> "DraftItem":
        if not isinstance(raw, dict):
            raw = {}
        quantity = max(0, _as_int(raw.get("quantity"), 0))
        return cls(
            sku=_as_opt_str(raw.get("sku")),
            product_name=_as_str(raw.get("product_name")),
            unit_type=_as_str(raw.get("unit_type")),
            requested_quantity_raw=_as_str(raw.get("requested_quantity_raw")),
            quantity=quantity,
            unit_price=_as_float(raw.get("unit_price")),
            currency=_as_str(raw.get("currency")) or default_currency,
            line_total=_as_float(raw.get("line_total")),
            price_source=_as_str(raw.get("price_source")),
            confidence=clamp_confidence(raw.get("ai_confidence", raw.get("confidence"))),
            uncertain_fields=set(_as_str_list(raw.get("ai_uncertain_fields", raw.get("uncertain_fields")))),
            notes=_as_str(raw.get("notes")),
            confirmed_fields=set(_as_str_list(raw.get("user_confirmed_fields"))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku": self.sku,
            "product_name": self.product_name,
            "unit_type": self.unit_type,
            "requested_quantity_raw": self.requested_quantity_raw,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "currency": self.currency,
            "line_total": self.line_total,
            "price_source": self.price_source,
            "ai_confidence": self.confidence,
            "ai_uncertain_fields": sorted(self.uncertain_fields),
            "notes": self.notes,
            "user_confirmed_fields": sorted(self.confirmed_fields),
        }


@dataclass
class ProfitabilityHint:
    message: str
    estimated_savings: Optional[float] = None
    applies_to_item_indexes: List[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["ProfitabilityHint"]:
        if not isinstance(raw, dict) or not raw.get("message"):
            return None
        return cls(
            message=str(raw["message"]),
            estimated_savings=_as_float(raw.get("estimated_savings")),
            applies_to_item_indexes=_as_index_list(raw.get("applies_to_item_indexes")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "estimated_savings": self.estimated_savings,
            "applies_to_item_indexes": list(self.applies_to_item_indexes),
        }


@dataclass
class DraftOrder:
    supplier_name: str = ""
    status: str = "draft"
    items: List[DraftItem] = field(default_factory=list)
    extra_notes_for_supplier: str = ""
    delivery_instructions: str = ""
    profitability_hints: List[ProfitabilityHint] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any, default_currency: str = "GBP") -> "DraftOrder":
        if not isinstance(raw, dict):
            raw = {}
        items_raw = raw.get("items") if isinstance(raw.get("items"), list) else []
        hints_raw = raw.get("business_profitability_hints")
        hints = [ProfitabilityHint.from_dict(h) for h in (hints_raw if isinstance(hints_raw, list) else [])]
        return cls(
            supplier_name=_as_str(raw.get("supplier_name")).strip(),
            # статус до коммита всегда draft, что бы ни прислала модель
            status="draft",
            items=[DraftItem.from_dict(item, default_currency) for item in items_raw],
            extra_notes_for_supplier=_as_str(raw.get("extra_notes_for_supplier")),
            delivery_instructions=_as_str(raw.get("delivery_instructions")),
            profitability_hints=[h for h in hints if h is not None],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "supplier_name": self.supplier_name,
            "status": self.status,
            "items": [item.to_dict() for item in self.items],
            "extra_notes_for_supplier": self.extra_notes_for_supplier,
            "delivery_instructions": self.delivery_instructions,
            "business_profitability_hints": [h.to_dict() for h in self.profitability_hints],
        }


@dataclass
class ClarificationQuestion:
    id: str
    question: str
    reason: str = ""
    related_item_indexes: List[int] = field(default_factory=list)
    suggested_options: List[str] = field(default_factory=list)  # пусто — ожидается свободный ответ
    kind: QuestionKind = QuestionKind.FREE_TEXT

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["ClarificationQuestion"]:
        if not isinstance(raw, dict):
            return None
        text = _as_str(raw.get("question")).strip()
        if not text:
            return None
        kind_raw = raw.get("kind")
        try:
            kind = QuestionKind(kind_raw) if kind_raw else QuestionKind.FREE_TEXT
        except ValueError:
            kind = QuestionKind.FREE_TEXT
        return cls(
            id=_as_str(raw.get("id")).strip(),
            question=text,
            reason=_as_str(raw.get("reason")),
            related_item_indexes=_as_index_list(raw.get("related_item_indexes")),
            suggested_options=_as_str_list(raw.get("suggested_options")),
            kind=kind,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "reason": self.reason,
            "related_item_indexes": list(self.related_item_indexes),
            "suggested_options": list(self.suggested_options),
            "kind": self.kind.value,
        }


@dataclass
class ReasoningSummary:
    """Справочная информация от модели. В логике принятия решений не участвует."""
    overall_decision: str = ""
    considerations: List[str] = field(default_factory=list)
    alternatives: List[str] = field(default_factory=list)
    global_confidence: float = 0.0

    @classmethod
    def from_dict(cls, raw: Any) -> "ReasoningSummary":
        if not isinstance(raw, dict):
            raw = {}
        return cls(
            overall_decision=_as_str(raw.get("overall_decision")),
            considerations=_as_str_list(raw.get("considerations")),
            alternatives=_as_str_list(raw.get("alternatives")),
            global_confidence=clamp_confidence(raw.get("global_confidence")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_decision": self.overall_decision,
            "considerations": list(self.considerations),
            "alternatives": list(self.alternatives),
            "global_confidence": self.global_confidence,
        }


@dataclass
class DraftResult:
    """Результат одного раунда (generate или merge): черновик, открытые вопросы, пояснения."""
    draft: DraftOrder
    questions: List[ClarificationQuestion] = field(default_factory=list)
    reasoning: ReasoningSummary = field(default_factory=ReasoningSummary)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "draft_po": self.draft.to_dict(),
            "questions_for_user": [q.to_dict() for q in self.questions],
            "reasoning_summary": self.reasoning.to_dict(),
        }


# ---------- Ответы пользователя ----------

@dataclass(frozen=True)
class TextAnswer:
    text: str


@dataclass(frozen=True)
class NumberAnswer:
    value: float


@dataclass(frozen=True)
class ChoiceAnswer:
    choice: str


AnswerValue = Union[TextAnswer, NumberAnswer, ChoiceAnswer]


# ---------- Сессия и результаты ----------

@dataclass
class DraftSession:
    """
    Всё состояние одного черновика. Хранится у вызывающего кода и целиком
    передаётся в каждый раунд — серверного хранилища сессий нет.
    """
    request: str
    draft: DraftOrder
    open_questions: List[ClarificationQuestion] = field(default_factory=list)
    reasoning: ReasoningSummary = field(default_factory=ReasoningSummary)
    answered_question_ids: Set[str] = field(default_factory=set)
    round: int = 0


@dataclass
class PoItem:
    id: str
    po_id: str
    sku: str
    product_name: str
    unit_type: str
    quantity: int
    unit_price: float
    line_total: float
    currency: str = "GBP"
    requested_quantity_raw: Optional[str] = None
    price_source: Optional[str] = None
    ai_confidence: Optional[float] = None
    notes: Optional[str] = None


@dataclass
class PersistedOrder:
    id: str
    supplier_name: str
    status: str
    created_at: datetime
    items: List[PoItem] = field(default_factory=list)
    extra_notes_for_supplier: Optional[str] = None
    delivery_instructions: Optional[str] = None
    user_request: Optional[str] = None

    @property
    def total(self) -> float:
        return round(sum(item.line_total for item in self.items), 2)


# ---------- Извлечение прайса из документов ----------

@dataclass
class ExtractedRow:
    """Строка прайса, извлечённая из файла; проверяется пользователем до записи в каталог."""
    sku: str
    product_name: str
    unit_type: str
    unit_price: float
    currency: str = "GBP"
    min_qty: Optional[int] = None
    max_qty: Optional[int] = None
    notes: str = ""
    confidence: float = 1.0
    uncertain_fields: Set[str] = field(default_factory=set)


@dataclass
class ParsedDocument:
    items: List[ExtractedRow]
    file_name: str
    file_type: str

    @property
    def avg_confidence(self) -> float:
        if not self.items:
            return 0.0
        return sum(item.confidence for item in self.items) / len(self.items)
