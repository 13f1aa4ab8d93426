# po_drafter/llm_client/provider_client.py
from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

import httpx

from po_drafter.config import config
from po_drafter.llm_client.base import (
    ConfigurationError,
    EmptyUpstreamResponse,
    LLMClient,
    LLMError,
    UnparsableUpstreamResponse,
    UpstreamAuthError,
    UpstreamNetworkError,
    UpstreamRateLimited,
    UpstreamUnavailable,
)


logger = logging.getLogger(__name__)


class ProviderLLMClient(LLMClient):
    """
    Реализация LLMClient через HTTP API провайдера (OpenAI-совместимый протокол).
    """

    def __init__(self) -> None:
        self._base_url = config.llm.base_url
        self._api_key = os.getenv(config.llm.api_key_env_var, "")
        if not self._api_key:
            # Важно: не падаем молча, а даём явную ошибку конфигурации
            raise ConfigurationError(
                "LLM API key is not configured. Please set up your LLM integration.",
                {"missingCredential": config.llm.api_key_env_var},
            )
        if not self._base_url:
            raise ConfigurationError(
                "LLM base URL is not configured. Please set up your LLM integration.",
                {"missingCredential": "PO_LLM_BASE_URL"},
            )

        self._timeout = config.llm.timeout_seconds

    async def _post(self, endpoint: str, json: Dict[str, Any]) -> httpx.Response:
        """
        Один POST без повторов. Сетевые сбои сразу переводим в UpstreamNetworkError.
        """
        url = f"{self._base_url.rstrip('/')}/{endpoint.lstrip('/')}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.post(url, json=json, headers=self._build_headers())
        except httpx.TimeoutException as exc:
            logger.error("LLM request to %s timed out", url)
            raise UpstreamNetworkError(
                "The AI service did not respond in time. Please try again later.",
                {"originalError": str(exc), "timeout": True},
            ) from exc
        except httpx.TransportError as exc:
            logger.error("LLM request to %s failed: %s", url, exc)
            raise UpstreamNetworkError(
                "Unable to connect to the AI service. Please check your network connection.",
                {"originalError": str(exc)},
            ) from exc

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        """
        Маппинг HTTP-статусов в таксономию ошибок.
        Каждая категория — отдельный класс, чтобы вызывающий код мог показать
        пользователю своё сообщение (а не общий 500).
        """
        status = response.status_code
        if status < 400:
            return

        details = {"upstreamStatus": status, "originalError": response.text[:500]}
        logger.error("LLM API returned HTTP %s", status)

        if status in (401, 403):
            raise UpstreamAuthError(
                "AI service authentication failed. Please check your API key configuration.",
                details,
            )
        if status == 429:
            raise UpstreamRateLimited(
                "AI service rate limit exceeded. Please try again in a few moments.",
                details,
            )
        if status in (500, 502, 503, 504):
            raise UpstreamUnavailable(
                "AI service is temporarily unavailable. Please try again later.",
                details,
            )
        raise LLMError(
            "Failed to generate purchase order draft. Please try again.",
            details,
        )

    async def complete(self, messages: List[Dict[str, str]]) -> str:
        payload: Dict[str, Any] = {
            "model": config.llm.model,
            "messages": messages,
            "temperature": config.llm.temperature,
            "stream": False,
            "response_format": {"type": "json_object"},
        }

        response = await self._post(endpoint=config.llm.endpoint, json=payload)
        self._raise_for_status(response)

        try:
            data = response.json()
        except ValueError as exc:
            raise UnparsableUpstreamResponse(
                "Failed to parse AI response. The AI service returned an unexpected format.",
                {"originalError": str(exc)},
            ) from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise UnparsableUpstreamResponse(
                "Failed to parse AI response. The AI service returned an unexpected format.",
                {"originalError": f"missing choices[0].message.content: {exc!r}"},
            ) from exc

        if not content or not str(content).strip():
            logger.error("LLM returned empty response")
            raise EmptyUpstreamResponse("AI service returned an empty response. Please try again.")

        return str(content)
