# po_drafter/drafting/merge_engine.py
from __future__ import annotations

import copy
import logging
from statistics import mean
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from po_drafter.config import config
from po_drafter.data_models import (
    AnswerValue,
    CatalogSnapshot,
    ChoiceAnswer,
    ClarificationQuestion,
    DraftItem,
    DraftOrder,
    DraftResult,
    NumberAnswer,
    PriceRow,
    QuestionKind,
    ReasoningSummary,
    Supplier,
)
from po_drafter.drafting.answers import answer_text, coerce_answer, is_plain_number, parse_number
from po_drafter.drafting.commit_gate import compute_line_total
from po_drafter.drafting.normalizer import PRICE_FIELDS, DraftNormalizer, PruneFn, uncovered_price_fields
from po_drafter.drafting.prompt_builder import PromptBuilder
from po_drafter.drafting.question_kinds import kind_for_field, target_fields
from po_drafter.errors import ValidationError
from po_drafter.llm_client.base import LLMClient, LLMError
from po_drafter.llm_client.response_parser import extract_json_object


logger = logging.getLogger(__name__)

ROW_FIELDS = frozenset({"sku", "product_name", "unit_type"}) | PRICE_FIELDS

# Поле неуверенности -> атрибуты позиции, которые его несут
_FIELD_ATTRS = {
    "sku": ("sku",),
    "product_name": ("product_name",),
    "unit_type": ("unit_type",),
    "quantity": ("quantity",),
    "unit_price": ("unit_price",),
    "price": ("unit_price",),
    "line_total": (),
}


class ClarificationMergeEngine:
    """
    Раунд уточнений: применяет ответы пользователя к предыдущему черновику.

    Ответы применяются детерминированно (модель не нужна, чтобы поставить
    количество 50). Если передан llm_client, модель дополнительно получает
    черновик с уже применёнными ответами и может уточнить только то, что
    осталось неуверенным; подтверждённые пользователем поля она не меняет.

    Гарантии:
    - отвеченные вопросы (в этом и прошлых раундах) больше не возвращаются;
    - уверенность позиций только растёт;
    - вопрос, закрытый ответом на другой вопрос, снимается;
    - одинаковый вход даёт одинаковый выход (без модели).
    """

    def __init__(self, llm_client: Optional[LLMClient] = None, prompt_builder: Optional[PromptBuilder] = None) -> None:
        self._llm_client = llm_client
        self._prompt_builder = prompt_builder or PromptBuilder()

    async def merge(
        self,
        prior_draft: DraftOrder,
        prior_questions: Sequence[ClarificationQuestion],
        answers: Mapping[str, Any],
        request: str,
        catalog: CatalogSnapshot,
        answered_history: Iterable[str] = (),
    ) -> DraftResult:
        questions_by_id = self._validate(prior_questions, answers)
        coerced: Dict[str, AnswerValue] = {
            qid: coerce_answer(questions_by_id[qid], raw) for qid, raw in answers.items()
        }
        history: Set[str] = set(answered_history) | set(coerced)

        applied = self.apply_answers(prior_draft, prior_questions, coerced, catalog)
        carried = [q for q in prior_questions if q.id not in coerced]

        reasoning: Optional[ReasoningSummary] = None
        extra: List[ClarificationQuestion] = []
        if self._llm_client is not None:
            messages = self._prompt_builder.build_merge_messages(request, catalog, applied, prior_questions, coerced)
            try:
                raw = extract_json_object(await self._llm_client.complete(messages))
            except LLMError as exc:
                logger.error("Clarification merge failed (%s): %s", exc.error_type, exc.message)
                raise
            refined = DraftNormalizer(catalog, answered_ids=history).parse(raw)
            applied = reconcile(applied, refined.draft)
            extra = refined.questions
            reasoning = refined.reasoning

        normalizer = DraftNormalizer(catalog, answered_ids=history)
        draft, questions = normalizer.enforce(
            applied,
            carried,
            extra_questions=extra,
            prune=_incidental_resolution(prior_draft),
        )
        questions = [q for q in questions if q.id not in history]

        violations = uncovered_price_fields(draft, questions)
        if violations:
            logger.error("Uncertain price fields without a question after merge: %s", violations)

        if reasoning is None:
            reasoning = _summarize(draft, questions, coerced)

        logger.info(
            "Merged %s answer(s): items=%s open_questions=%s",
            len(coerced),
            len(draft.items),
            len(questions),
        )
        return DraftResult(draft=draft, questions=questions, reasoning=reasoning)

    async def resolve_out_of_band(
        self,
        prior_draft: DraftOrder,
        prior_questions: Sequence[ClarificationQuestion],
        question_id: str,
        value: Any,
        request: str,
        catalog: CatalogSnapshot,
        answered_history: Iterable[str] = (),
    ) -> DraftResult:
        """
        Вопрос закрыт действием вне чата (например, в прайс добавили строку).
        Идёт тем же путём, что и обычный ответ, — без отдельной логики.
        """
        return await self.merge(
            prior_draft,
            prior_questions,
            {question_id: value},
            request,
            catalog,
            answered_history,
        )

    # ---------- Проверка ----------

    @staticmethod
    def _validate(
        prior_questions: Sequence[ClarificationQuestion],
        answers: Mapping[str, Any],
    ) -> Dict[str, ClarificationQuestion]:
        questions_by_id = {q.id: q for q in prior_questions}
        if not answers:
            raise ValidationError("No clarification answers provided", {"field": "answers"})

        invalid = sorted(key for key in answers if key not in questions_by_id)
        if invalid:
            raise ValidationError(
                "Invalid answer keys provided. All answers must correspond to current questions.",
                {"invalidKeys": invalid, "validQuestionIds": list(questions_by_id)},
            )
        return questions_by_id

    # ---------- Применение ответов ----------

    def apply_answers(
        self,
        prior_draft: DraftOrder,
        prior_questions: Sequence[ClarificationQuestion],
        answers: Mapping[str, AnswerValue],
        catalog: CatalogSnapshot,
    ) -> DraftOrder:
        """Чистая функция: prior_draft не меняется."""
        draft = copy.deepcopy(prior_draft)
        ordered = [q for q in prior_questions if q.id in answers]
        # вопросы без позиций (поставщик) первыми: от поставщика зависит выбор строк прайса
        ordered.sort(key=lambda q: 0 if not q.related_item_indexes else 1)
        for question in ordered:
            self._apply_one(draft, question, answers[question.id], catalog)
        return draft

    def _apply_one(
        self,
        draft: DraftOrder,
        question: ClarificationQuestion,
        answer: AnswerValue,
        catalog: CatalogSnapshot,
    ) -> None:
        if question.kind in (QuestionKind.SELECTION, QuestionKind.FREE_TEXT) and not isinstance(answer, NumberAnswer):
            chosen = catalog.supplier_by_name(answer_text(answer))
            if chosen is not None:
                draft.supplier_name = chosen.name
                return

        if not question.related_item_indexes:
            _apply_to_header(draft, question, answer)
            return

        supplier = catalog.supplier_by_name(draft.supplier_name)
        for index in question.related_item_indexes:
            if not 0 <= index < len(draft.items):
                logger.warning("Question %r refers to missing item %s", question.id, index)
                continue
            item = draft.items[index]
            resolved = self._apply_to_item(item, question, answer, catalog, supplier)
            _mark_resolved(item, resolved)

    def _apply_to_item(
        self,
        item: DraftItem,
        question: ClarificationQuestion,
        answer: AnswerValue,
        catalog: CatalogSnapshot,
        supplier: Optional[Supplier],
    ) -> Set[str]:
        """Одно значение на все связанные позиции. Возвращает закрытые поля."""
        if isinstance(answer, ChoiceAnswer):
            return self._apply_choice(item, question, answer.choice, catalog, supplier)
        if isinstance(answer, NumberAnswer):
            if question.kind is QuestionKind.QUANTITY:
                return _apply_quantity(item, answer.value)
            return _apply_price(item, answer.value, catalog, supplier)
        if question.kind is QuestionKind.SKU:
            return _apply_sku(item, answer.text, catalog, supplier)
        return _apply_note(item, answer.text)

    def _apply_choice(
        self,
        item: DraftItem,
        question: ClarificationQuestion,
        choice: str,
        catalog: CatalogSnapshot,
        supplier: Optional[Supplier],
    ) -> Set[str]:
        normalized = choice.strip().lower()
        for row in catalog.rows_for_supplier(supplier):
            if row.option_label().lower() == normalized:
                return _apply_row(item, row)

        if catalog.rows_for_sku(choice, supplier):
            return _apply_sku(item, choice, catalog, supplier)

        if is_plain_number(choice):
            value = parse_number(choice)
            if value is not None and value > 0:
                return _apply_price(item, value, catalog, supplier)

        if question.kind is QuestionKind.SKU:
            return _apply_sku(item, choice, catalog, supplier)
        return _apply_note(item, choice)


def _apply_to_header(draft: DraftOrder, question: ClarificationQuestion, answer: AnswerValue) -> None:
    text = answer_text(answer)
    lowered = question.question.lower()
    if "supplier" in lowered:
        # неизвестный поставщик: нормализатор снова спросит
        draft.supplier_name = text
    elif "deliver" in lowered:
        draft.delivery_instructions = _append(draft.delivery_instructions, text)
    else:
        draft.extra_notes_for_supplier = _append(draft.extra_notes_for_supplier, text)


def _apply_row(item: DraftItem, row: PriceRow) -> Set[str]:
    item.sku = row.sku
    item.product_name = row.product_name
    item.unit_type = row.unit_type
    item.unit_price = row.unit_price
    item.currency = row.currency
    item.price_source = f"price list row {row.id}"
    return set(ROW_FIELDS)


def _apply_price(
    item: DraftItem,
    value: float,
    catalog: CatalogSnapshot,
    supplier: Optional[Supplier],
) -> Set[str]:
    item.unit_price = value
    matches = [r for r in catalog.rows_for_sku(item.sku, supplier) if abs(r.unit_price - value) < 0.005]
    item.price_source = f"price list row {matches[0].id}" if len(matches) == 1 else "clarification answer"
    return set(PRICE_FIELDS)


def _apply_quantity(item: DraftItem, value: float) -> Set[str]:
    item.quantity = max(1, int(round(value)))
    return {"quantity"}


def _apply_sku(
    item: DraftItem,
    text: str,
    catalog: CatalogSnapshot,
    supplier: Optional[Supplier],
) -> Set[str]:
    sku = text.strip()
    rows = catalog.rows_for_sku(sku, supplier)
    if not rows:
        # SKU не из прайса не подтверждаем: нормализатор задаст новый вопрос
        item.sku = sku
        item.confirmed_fields.discard("sku")
        item.uncertain_fields.add("sku")
        item.notes = _append(item.notes, f"SKU '{sku}' is not in the price list.")
        return set()

    if (item.sku or "").lower() != rows[0].sku.lower():
        # другой товар: прежняя подтверждённая цена к нему не относится
        item.confirmed_fields -= PRICE_FIELDS
    item.sku = rows[0].sku
    item.product_name = rows[0].product_name
    resolved = {"sku", "product_name"}

    unit_types = sorted({r.unit_type for r in rows})
    if len(unit_types) == 1:
        item.unit_type = unit_types[0]
        resolved.add("unit_type")

    if item.confirmed_fields & PRICE_FIELDS:
        return resolved
    if len(rows) == 1:
        _fill_price_from_row(item, rows[0])
        resolved |= PRICE_FIELDS
    elif item.unit_price is None:
        pool = [r for r in rows if r.unit_type.lower() == item.unit_type.strip().lower()] or rows
        applicable = [r for r in pool if item.quantity > 0 and r.covers_quantity(item.quantity)]
        if len(applicable) == 1:
            # не подтверждаем: границу порога ещё проверит нормализатор
            _fill_price_from_row(item, applicable[0])
            item.uncertain_fields -= PRICE_FIELDS
    return resolved


def _fill_price_from_row(item: DraftItem, row: PriceRow) -> None:
    item.unit_price = row.unit_price
    item.currency = row.currency
    item.price_source = f"price list row {row.id}"


def _apply_note(item: DraftItem, text: str) -> Set[str]:
    item.notes = _append(item.notes, text)
    return {f for f in item.uncertain_fields if kind_for_field(f) is QuestionKind.FREE_TEXT}


def _mark_resolved(item: DraftItem, resolved: Set[str]) -> None:
    if not resolved:
        return
    item.uncertain_fields -= resolved
    item.confirmed_fields |= resolved
    item.confidence = max(item.confidence, config.draft.resolved_confidence)
    if item.quantity > 0 and item.unit_price is not None:
        item.line_total = compute_line_total(item.quantity, item.unit_price)


def _append(existing: str, text: str) -> str:
    text = text.strip()
    if not text:
        return existing
    return f"{existing}\n{text}" if existing else text


def reconcile(applied: DraftOrder, refined: DraftOrder) -> DraftOrder:
    """
    Сводит черновик с применёнными ответами и черновик от модели.
    Модель может заполнить только поля, которые остались неуверенными.
    """
    merged = copy.deepcopy(applied)
    if not merged.supplier_name and refined.supplier_name:
        merged.supplier_name = refined.supplier_name
    if not merged.extra_notes_for_supplier:
        merged.extra_notes_for_supplier = refined.extra_notes_for_supplier
    if not merged.delivery_instructions:
        merged.delivery_instructions = refined.delivery_instructions
    if refined.profitability_hints:
        merged.profitability_hints = copy.deepcopy(refined.profitability_hints)

    if len(refined.items) != len(merged.items):
        logger.warning(
            "Model returned %s items instead of %s, keeping applied items",
            len(refined.items),
            len(merged.items),
        )
        return merged

    for mine, theirs in zip(merged.items, refined.items):
        for field_name in sorted(mine.uncertain_fields - mine.confirmed_fields):
            attrs = _FIELD_ATTRS.get(field_name, ())
            for attr in attrs:
                value = getattr(theirs, attr)
                if value in (None, "") or (attr == "quantity" and value <= 0):
                    continue
                setattr(mine, attr, value)
            if attrs and field_name not in theirs.uncertain_fields:
                mine.uncertain_fields.discard(field_name)
        mine.confidence = max(mine.confidence, theirs.confidence)
        if not mine.notes and theirs.notes:
            mine.notes = theirs.notes
    return merged


def _incidental_resolution(prior_draft: DraftOrder) -> PruneFn:
    """
    Вопрос снимается, если его поля были неуверенными до раунда,
    а после применения ответов (на другие вопросы) неуверенных не осталось.
    """

    def prune(question: ClarificationQuestion, draft: DraftOrder, supplier: Optional[Supplier]) -> bool:
        if not question.related_item_indexes:
            return "supplier" in question.question.lower() and supplier is not None

        targets = target_fields(question.kind)
        if not targets:
            return False
        before: Set[str] = set()
        after: Set[str] = set()
        for index in question.related_item_indexes:
            if index < len(prior_draft.items):
                before |= prior_draft.items[index].uncertain_fields & targets
            if index < len(draft.items):
                after |= draft.items[index].uncertain_fields & targets
        if before and not after:
            logger.info("Question %r was resolved by another answer", question.id)
            return True
        return False

    return prune


def _summarize(
    draft: DraftOrder,
    questions: Sequence[ClarificationQuestion],
    answers: Mapping[str, AnswerValue],
) -> ReasoningSummary:
    confidences = [item.confidence for item in draft.items]
    return ReasoningSummary(
        overall_decision=(
            f"Applied {len(answers)} clarification answer(s); {len(questions)} question(s) remain open."
        ),
        considerations=[f"{qid}: {answer_text(value)}" for qid, value in sorted(answers.items())],
        alternatives=[],
        global_confidence=round(mean(confidences), 2) if confidences else 0.0,
    )
