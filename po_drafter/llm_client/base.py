# po_drafter/llm_client/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List

from po_drafter.errors import PODraftError


class LLMError(PODraftError):
    """Базовая ошибка LLM-клиента (неизвестный сбой апстрима)."""

    error_type = "unknown"
    status_code = 500


class ConfigurationError(LLMError):
    """Нет ключа/адреса LLM-провайдера. Фатально для запроса, без повторов."""

    error_type = "configuration"
    status_code = 503


class UpstreamAuthError(LLMError):
    """401/403 от провайдера — ключ неверный или отозван."""

    error_type = "authentication"
    status_code = 503


class LLMRetryableError(LLMError):
    """
    Ошибки, после которых пользователю можно предложить повторить позже
    (429, 5xx, сеть). Сам клиент ничего не повторяет.
    """

    status_code = 503


class UpstreamRateLimited(LLMRetryableError):
    error_type = "rate_limit"


class UpstreamUnavailable(LLMRetryableError):
    error_type = "service_unavailable"


class UpstreamNetworkError(LLMRetryableError):
    error_type = "network"


class EmptyUpstreamResponse(LLMError):
    """Модель вернула пустой ответ — нарушение контракта, а не недоступность."""

    error_type = "empty_response"
    status_code = 502


class UnparsableUpstreamResponse(LLMError):
    """Ответ модели не удалось превратить в JSON-объект."""

    error_type = "json_parse_error"
    status_code = 502


class LLMClient(ABC):
    """
    Абстракция LLM-клиента.

    Задачи:
    - принять список chat-сообщений;
    - сходить к модели одним запросом;
    - вернуть «сырой» текст ответа (разбор JSON — задача response_parser).
    """

    @abstractmethod
    async def complete(self, messages: List[Dict[str, str]]) -> str:
        """
        Один вызов модели без ретраев.

        Здесь должны обрабатываться:
        - таймауты и сетевые сбои;
        - маппинг HTTP-статусов в таксономию ошибок (auth / 429 / 5xx);
        - пустой ответ (EmptyUpstreamResponse).
        """
        raise NotImplementedError
