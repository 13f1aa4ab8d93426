# po_drafter/conversation/router.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from po_drafter.errors import ValidationError


class Route(str, Enum):
    GENERATE = "generate"
    MERGE = "merge"
    CATALOG_ACTION = "catalog_action"
    DISCARD = "discard"


@dataclass(frozen=True)
class CreateProductAction:
    """
    Пользователь добавил товар в прайс прямо из вопроса
    («такого SKU нет — создать?»). question_id — вопрос, который это закрывает.
    """
    question_id: str
    sku: str
    product_name: str
    unit_type: str
    unit_price: float
    supplier_name: str = ""  # пусто — поставщик текущего черновика
    currency: str = "GBP"
    min_qty: Optional[int] = None
    max_qty: Optional[int] = None


@dataclass
class UserMessage:
    text: str = ""
    answers: Dict[str, Any] = field(default_factory=dict)
    catalog_action: Optional[CreateProductAction] = None


_DISCARD_RE = re.compile(r"^\s*(discard( (the )?draft)?|start over|cancel)\s*[.!]*\s*$", re.IGNORECASE)


def is_discard_intent(text: str) -> bool:
    return bool(_DISCARD_RE.match(text or ""))


def route_message(has_pending_draft: bool, message: UserMessage) -> Route:
    """Чистая функция: куда отправить сообщение при текущем состоянии сессии."""
    if message.catalog_action is not None:
        if not has_pending_draft:
            raise ValidationError(
                "A catalog action needs a pending draft with an open question.",
                {"questionId": message.catalog_action.question_id},
            )
        return Route.CATALOG_ACTION
    if has_pending_draft and message.answers:
        return Route.MERGE
    if has_pending_draft and is_discard_intent(message.text):
        return Route.DISCARD
    return Route.GENERATE
