# po_drafter/drafting/generation_service.py
from __future__ import annotations

import logging
from typing import Iterable, Optional

from po_drafter.config import config
from po_drafter.data_models import CatalogSnapshot, DraftResult
from po_drafter.drafting.normalizer import DraftNormalizer
from po_drafter.drafting.prompt_builder import PromptBuilder
from po_drafter.errors import ValidationError
from po_drafter.llm_client.base import LLMClient, LLMError
from po_drafter.llm_client.response_parser import extract_json_object


logger = logging.getLogger(__name__)


def validate_request_text(request: str) -> str:
    """Текст запроса проверяется до похода в модель."""
    text = (request or "").strip()
    if len(text) < config.draft.min_request_length:
        raise ValidationError("userRequest is required and cannot be empty", {"field": "userRequest"})
    if len(text) > config.draft.max_request_length:
        raise ValidationError(
            "Request is too long",
            {"field": "userRequest", "maxLength": config.draft.max_request_length},
        )
    return text


class DraftGenerationService:
    """
    Первый раунд: свободный текст + снимок каталога -> черновик заказа.

    Отвечает за:
    - один вызов модели (без ретраев — это решение вызывающего кода);
    - разбор ответа (строгий JSON -> внешний {...} -> ошибка);
    - нормализацию через DraftNormalizer (бизнес-правила не доверяем модели).
    """

    def __init__(self, llm_client: LLMClient, prompt_builder: Optional[PromptBuilder] = None) -> None:
        self._llm_client = llm_client
        self._prompt_builder = prompt_builder or PromptBuilder()

    async def generate(
        self,
        request: str,
        catalog: CatalogSnapshot,
        answered_history: Iterable[str] = (),
    ) -> DraftResult:
        text = validate_request_text(request)
        messages = self._prompt_builder.build_generation_messages(text, catalog)

        try:
            raw_text = await self._llm_client.complete(messages)
            raw = extract_json_object(raw_text)
        except LLMError as exc:
            logger.error("Draft generation failed (%s): %s", exc.error_type, exc.message)
            raise

        normalizer = DraftNormalizer(catalog, answered_ids=answered_history)
        result = normalizer.normalize(raw)

        logger.info(
            "Generated draft: supplier=%r items=%s questions=%s",
            result.draft.supplier_name,
            len(result.draft.items),
            len(result.questions),
        )
        return result
