# po_drafter/drafting/question_kinds.py
from __future__ import annotations

from typing import FrozenSet, Tuple

from po_drafter.data_models import QuestionKind


# Порядок важен: первое совпадение побеждает ("Which price tier..." — это PRICE)
_KEYWORD_RULES: Tuple[Tuple[QuestionKind, Tuple[str, ...]], ...] = (
    (QuestionKind.SKU, ("sku", "product code")),
    (QuestionKind.PRICE, ("price", "cost")),
    (QuestionKind.QUANTITY, ("quantity", "how many")),
    (QuestionKind.SELECTION, ("which", "select", "choose")),
)

# Какие поля позиции закрывает ответ на вопрос данного типа
KIND_TARGET_FIELDS = {
    QuestionKind.SKU: frozenset({"sku"}),
    QuestionKind.PRICE: frozenset({"unit_price", "price", "line_total"}),
    QuestionKind.QUANTITY: frozenset({"quantity"}),
    QuestionKind.SELECTION: frozenset({"sku", "unit_price", "price", "unit_type", "product_name"}),
    QuestionKind.FREE_TEXT: frozenset(),
}


def classify_question(text: str) -> QuestionKind:
    """
    Определяет тип вопроса по ключевым словам в тексте.
    Вызывается один раз при нормализации; дальше тип едет вместе с вопросом.
    """
    lowered = (text or "").lower()
    for kind, keywords in _KEYWORD_RULES:
        if any(keyword in lowered for keyword in keywords):
            return kind
    return QuestionKind.FREE_TEXT


def target_fields(kind: QuestionKind) -> FrozenSet[str]:
    return KIND_TARGET_FIELDS[kind]


def kind_for_field(field_name: str) -> QuestionKind:
    """Тип синтезируемого вопроса для неуверенного поля позиции."""
    if field_name == "sku":
        return QuestionKind.SKU
    if field_name in ("unit_price", "price", "line_total"):
        return QuestionKind.PRICE
    if field_name == "quantity":
        return QuestionKind.QUANTITY
    if field_name in ("unit_type", "product_name"):
        return QuestionKind.SELECTION
    return QuestionKind.FREE_TEXT
