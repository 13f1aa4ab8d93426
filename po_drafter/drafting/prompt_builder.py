# po_drafter/drafting/prompt_builder.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, List, Mapping, Sequence

from po_drafter.data_models import (
    AnswerValue,
    CatalogSnapshot,
    ChoiceAnswer,
    ClarificationQuestion,
    DraftOrder,
    NumberAnswer,
)


PROMPT_SYSTEM_INSTRUCTIONS = """
You are a purchase-order assistant for a trade/retail business.
Your job is to:
1) Interpret the user's free-text request for a purchase order.
2) Use the known supplier price lists and business rules to propose a DRAFT purchase order.
3) ALWAYS surface uncertainty and ask clarifying questions instead of guessing.
4) Think about profitability: suggest more profitable or more consistent alternatives when appropriate.

You MUST follow these rules:
- If you are not at least 0.8 confident about a field (like SKU, quantity, or price), add that field name to ai_uncertain_fields and create an entry in questions_for_user.
- NEVER invent a SKU or product that does not appear in PRICE_LIST_ROWS.
- If multiple SKUs or price breaks could apply, present them as suggested_options in questions_for_user and do NOT silently choose the lower-priced option.
- If there is not enough information to build a draft, still return a valid JSON structure with empty or null fields and helpful questions_for_user.
- Always include a short reasoning_summary with decision, considerations, alternatives, and a global confidence score.
""".strip()


PROMPT_OUTPUT_FORMAT = r"""
Return ONLY a JSON object (no markdown, no comments, no trailing commas) with this shape:
{
  "draft_po": {
    "supplier_name": "string",
    "status": "draft",
    "items": [
      {
        "sku": "string or null",
        "product_name": "string",
        "unit_type": "string",
        "requested_quantity_raw": "string",
        "quantity": 0,
        "unit_price": null,
        "currency": "string",
        "line_total": null,
        "price_source": "string",
        "ai_confidence": 0.0,
        "ai_uncertain_fields": ["string"],
        "notes": "string"
      }
    ],
    "extra_notes_for_supplier": "string",
    "delivery_instructions": "string",
    "business_profitability_hints": [
      {"message": "string", "estimated_savings": null, "applies_to_item_indexes": [0]}
    ]
  },
  "questions_for_user": [
    {
      "id": "string",
      "question": "string",
      "reason": "string",
      "related_item_indexes": [0],
      "suggested_options": ["string"]
    }
  ],
  "reasoning_summary": {
    "overall_decision": "string",
    "considerations": ["string"],
    "alternatives": ["string"],
    "global_confidence": 0.0
  }
}
""".strip()


@dataclass
class PromptBuilder:
    """
    Строитель сообщений для модели: контекст каталога + запрос пользователя
    (+ предыдущий черновик и ответы для раунда уточнений).
    """

    def build_catalog_block(self, catalog: CatalogSnapshot) -> str:
        """Каталог целиком в JSON; один и тот же снимок на весь вызов."""
        return "\n\n".join([
            "BUSINESS_RULES:\n" + json.dumps(catalog.business_rules_dict(), indent=2, ensure_ascii=False),
            "EXISTING_SUPPLIERS:\n" + json.dumps([s.to_dict() for s in catalog.suppliers], indent=2, ensure_ascii=False),
            "PRICE_LIST_ROWS:\n" + json.dumps([r.to_dict() for r in catalog.price_rows], indent=2, ensure_ascii=False),
        ])

    def build_system_message(self, catalog: CatalogSnapshot) -> str:
        return "\n\n".join([
            PROMPT_SYSTEM_INSTRUCTIONS,
            PROMPT_OUTPUT_FORMAT,
            "CONTEXT YOU KNOW:",
            self.build_catalog_block(catalog),
            "Use PRICE_LIST_ROWS to find matching SKUs, unit types (box/pallet/m2) and price breaks. "
            "Use BUSINESS_RULES only as high-level guidance, not to invent new products.",
        ])

    def build_generation_messages(self, request: str, catalog: CatalogSnapshot) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.build_system_message(catalog)},
            {"role": "user", "content": f'User request: "{request}"'},
        ]

    def build_clarification_message(
        self,
        prior_draft: DraftOrder,
        prior_questions: Sequence[ClarificationQuestion],
        answers: Mapping[str, AnswerValue],
    ) -> str:
        mapping = [
            {
                "question_id": q.id,
                "question_text": q.question,
                "user_answer": _answer_to_json(answers[q.id]) if q.id in answers else "NOT ANSWERED",
                "affects_items": list(q.related_item_indexes),
            }
            for q in prior_questions
        ]
        answered_ids = sorted(answers)

        return f"""
CLARIFICATION UPDATE REQUIRED.

QUESTION-ANSWER MAPPING:
{json.dumps(mapping, indent=2, ensure_ascii=False)}

PREVIOUS DRAFT (answers already applied):
{json.dumps(prior_draft.to_dict(), indent=2, ensure_ascii=False)}

Instructions:
1. Keep every value the user confirmed (user_confirmed_fields) exactly as given.
2. Raise ai_confidence for items whose fields were clarified; never lower it.
3. DO NOT include questions with IDs: {json.dumps(answered_ids)}.
4. Keep unanswered questions with the same id if they are still open; add new questions only for genuine new uncertainty.
5. If all uncertainties are resolved, return an EMPTY questions_for_user array.

Return ONLY valid JSON matching the schema.
""".strip()

    def build_merge_messages(
        self,
        request: str,
        catalog: CatalogSnapshot,
        prior_draft: DraftOrder,
        prior_questions: Sequence[ClarificationQuestion],
        answers: Mapping[str, AnswerValue],
    ) -> List[Dict[str, str]]:
        previous = {
            "draft_po": prior_draft.to_dict(),
            "questions_for_user": [q.to_dict() for q in prior_questions],
        }
        return [
            {"role": "system", "content": self.build_system_message(catalog)},
            {"role": "user", "content": f'User request: "{request}"'},
            {"role": "assistant", "content": json.dumps(previous, ensure_ascii=False)},
            {"role": "user", "content": self.build_clarification_message(prior_draft, prior_questions, answers)},
        ]


def _answer_to_json(answer: AnswerValue):
    if isinstance(answer, NumberAnswer):
        return answer.value
    if isinstance(answer, ChoiceAnswer):
        return answer.choice
    return answer.text
