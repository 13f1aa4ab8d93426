# po_drafter/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class PODraftError(Exception):
    """
    Базовая ошибка приложения.

    Каждая ошибка несёт:
    - error_type — стабильная машинная категория (для фронта/логов);
    - status_code — HTTP-эквивалент, если ядро выставлено наружу через API;
    - details — структурированные подробности (какие поля, какие ключи и т.п.).
    """

    error_type: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "details": {"errorType": self.error_type, **self.details},
        }


class ValidationError(PODraftError):
    """Некорректный запрос: пустой текст, неизвестные ключи ответов, битые поля."""

    error_type = "validation"
    status_code = 400


class NotFoundError(PODraftError):
    """Поставщик / строка прайса / заказ не найдены."""

    error_type = "not_found"
    status_code = 404


class IncompleteDraftError(PODraftError):
    """
    Черновик не прошёл commit gate.
    В details["missing"] — список {item_index, field, reason}, чтобы вызывающий
    код мог вернуть пользователя в уточнения, а не просто показать ошибку.
    """

    error_type = "incomplete_draft"
    status_code = 422
