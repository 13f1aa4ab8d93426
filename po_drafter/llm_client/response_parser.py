# po_drafter/llm_client/response_parser.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict

from po_drafter.llm_client.base import EmptyUpstreamResponse, UnparsableUpstreamResponse


logger = logging.getLogger(__name__)


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Достаёт JSON-объект из ответа модели.

    Строго ограниченный fallback:
    1) json.loads всего текста;
    2) json.loads самого внешнего отрезка {...} (модель обернула ответ в прозу или ```);
    3) иначе UnparsableUpstreamResponse.

    Никакого «частичного» восстановления полей: лишняя терпимость спрячет
    нарушение контракта, которое ловит нормализатор.
    """
    if text is None or not text.strip():
        raise EmptyUpstreamResponse("AI service returned an empty response. Please try again.")

    text = text.strip()
    parsed: Any = None

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            try:
                parsed = json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                parsed = None

    if not isinstance(parsed, dict):
        logger.debug("Unparsable LLM output: %r", text[:2000])
        raise UnparsableUpstreamResponse(
            "Failed to parse AI response. The AI service returned an unexpected format.",
            {"originalError": "Could not parse a JSON object from model output."},
        )

    return parsed
