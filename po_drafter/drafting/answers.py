# po_drafter/drafting/answers.py
from __future__ import annotations

import math
import re
from typing import Any

from po_drafter.data_models import (
    AnswerValue,
    ChoiceAnswer,
    ClarificationQuestion,
    NumberAnswer,
    QuestionKind,
    TextAnswer,
)
from po_drafter.errors import ValidationError


# "£17.50", "17,50", "GBP 1,234.00", "50 boxes" -> число
_NUMBER_RE = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")
_PLAIN_NUMBER_RE = re.compile(r"[£$€]?\s*\d[\d,]*(?:\.\d+)?")

# Какие уже типизированные ответы принимаются вопросом данного типа без перекодирования
_COMPATIBLE = {
    QuestionKind.SKU: (TextAnswer, ChoiceAnswer),
    QuestionKind.PRICE: (NumberAnswer, ChoiceAnswer),
    QuestionKind.QUANTITY: (NumberAnswer,),
    QuestionKind.SELECTION: (ChoiceAnswer, NumberAnswer),
    QuestionKind.FREE_TEXT: (TextAnswer, ChoiceAnswer),
}


def parse_number(raw: Any) -> float | None:
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float)):
        try:
            value = float(raw)
        except OverflowError:
            return None
        return value if math.isfinite(value) else None
    match = _NUMBER_RE.search(str(raw))
    if not match:
        return None
    token = match.group(0)
    # "17,50" без точки — десятичная запятая; "1,234.00" — разделитель тысяч
    if "," in token and "." not in token and re.fullmatch(r"-?\d+,\d{1,2}", token):
        token = token.replace(",", ".")
    else:
        token = token.replace(",", "")
    try:
        value = float(token)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def is_plain_number(text: str) -> bool:
    """'17.50', '£17.50' — да; 'HYDRO-301 pallet' — нет."""
    return bool(_PLAIN_NUMBER_RE.fullmatch((text or "").strip()))


def answer_text(answer: AnswerValue) -> str:
    return _to_text(_unwrap(answer))


def coerce_answer(question: ClarificationQuestion, raw: Any) -> AnswerValue:
    """
    Приводит «сырое» значение ответа к AnswerValue по типу вопроса.
    Полная функция по QuestionKind: для каждого типа ровно одна ветка.
    """
    kind = question.kind
    if isinstance(raw, (TextAnswer, NumberAnswer, ChoiceAnswer)):
        if isinstance(raw, _COMPATIBLE[kind]) and not isinstance(raw, NumberAnswer):
            return raw
        # числа всё равно проходят проверку на положительность ниже
        raw = _unwrap(raw)

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise ValidationError(
            f"Answer for question '{question.id}' is empty.",
            {"questionId": question.id},
        )

    # Выбор одного из предложенных вариантов — это Choice при любом типе вопроса
    # ("HYDRO-301 pallet @ 17.50 GBP (50+)" нельзя разбирать как число)
    if isinstance(raw, str) and kind is not QuestionKind.QUANTITY:
        normalized = raw.strip().lower()
        for option in question.suggested_options:
            if option.strip().lower() == normalized and not is_plain_number(normalized):
                return ChoiceAnswer(choice=option)

    if kind in (QuestionKind.PRICE, QuestionKind.QUANTITY):
        value = parse_number(raw)
        if value is None:
            raise ValidationError(
                f"Answer for question '{question.id}' must be a number.",
                {"questionId": question.id, "value": str(raw)},
            )
        if kind is QuestionKind.QUANTITY and value <= 0:
            raise ValidationError(
                f"Quantity for question '{question.id}' must be positive.",
                {"questionId": question.id, "value": value},
            )
        if kind is QuestionKind.PRICE and value <= 0:
            raise ValidationError(
                f"Price for question '{question.id}' must be positive.",
                {"questionId": question.id, "value": value},
            )
        return NumberAnswer(value=value)

    if kind is QuestionKind.SELECTION:
        return ChoiceAnswer(choice=_to_text(raw))

    # SKU и свободный текст
    return TextAnswer(text=_to_text(raw))


def _unwrap(answer: AnswerValue) -> Any:
    if isinstance(answer, NumberAnswer):
        return answer.value
    if isinstance(answer, ChoiceAnswer):
        return answer.choice
    return answer.text


def _to_text(raw: Any) -> str:
    if isinstance(raw, bool):
        return "yes" if raw else "no"
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw).strip()
