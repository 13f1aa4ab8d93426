# po_drafter/drafting/normalizer.py
from __future__ import annotations

import copy
import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from po_drafter.config import config
from po_drafter.data_models import (
    PRICE_BEARING_FIELDS,
    CatalogSnapshot,
    ClarificationQuestion,
    DraftItem,
    DraftOrder,
    DraftResult,
    PriceRow,
    QuestionKind,
    ReasoningSummary,
    Supplier,
)
from po_drafter.drafting.commit_gate import compute_line_total
from po_drafter.drafting.question_kinds import classify_question, kind_for_field, target_fields


logger = logging.getLogger(__name__)

PRICE_FIELDS = frozenset({"unit_price", "price", "line_total"})

# Вопрос, который можно снять как «решённый вне очереди» (см. ClarificationMergeEngine)
PruneFn = Callable[[ClarificationQuestion, DraftOrder, Optional[Supplier]], bool]


class DraftNormalizer:
    """
    Защитный слой поверх ответа модели.

    Модели нельзя доверять соблюдение бизнес-правил, поэтому после каждого
    вызова (generate и merge) здесь:
    - ответ приводится к валидной форме (пустые/неверные поля -> дефолты);
    - SKU проверяются по прайсу поставщика («закрытый мир»);
    - неоднозначные ценовые пороги превращаются в вопрос с вариантами,
      а не в молчаливый выбор самой дешёвой цены;
    - каждое неуверенное поле покрывается вопросом (недостающие синтезируются);
    - id вопросов уникальны и не повторяют уже отвеченные.
    """

    def __init__(
        self,
        catalog: CatalogSnapshot,
        answered_ids: Iterable[str] = (),
        confidence_threshold: Optional[float] = None,
    ) -> None:
        self._catalog = catalog
        self._answered_ids: Set[str] = set(answered_ids)
        self._threshold = (
            confidence_threshold if confidence_threshold is not None else config.draft.confidence_threshold
        )
        rules = catalog.business_rules_dict()
        self._default_currency = rules.get("default_currency") or config.draft.default_currency

    # ---------- Разбор ----------

    def parse(self, raw: dict) -> DraftResult:
        """Только форма: dict от модели -> доменные объекты, без бизнес-проверок."""
        draft = DraftOrder.from_dict(raw.get("draft_po"), self._default_currency)

        questions_raw = raw.get("questions_for_user")
        questions: List[ClarificationQuestion] = []
        for item in questions_raw if isinstance(questions_raw, list) else []:
            question = ClarificationQuestion.from_dict(item)
            if question is None:
                continue
            # тип вопроса определяется один раз здесь и дальше едет вместе с вопросом
            question.kind = classify_question(question.question)
            questions.append(question)

        reasoning = ReasoningSummary.from_dict(raw.get("reasoning_summary"))
        return DraftResult(draft=draft, questions=questions, reasoning=reasoning)

    def normalize(self, raw: dict) -> DraftResult:
        parsed = self.parse(raw)
        draft, questions = self.enforce(parsed.draft, parsed.questions)
        return DraftResult(draft=draft, questions=questions, reasoning=parsed.reasoning)

    # ---------- Бизнес-правила ----------

    def enforce(
        self,
        draft: DraftOrder,
        questions: Sequence[ClarificationQuestion],
        extra_questions: Sequence[ClarificationQuestion] = (),
        prune: Optional[PruneFn] = None,
    ) -> Tuple[DraftOrder, List[ClarificationQuestion]]:
        """
        Применяет все правила к копии черновика и возвращает (черновик, вопросы).

        questions — вопросы, которые сохраняются как есть (с тем же id);
        extra_questions — кандидаты, принимаемые только если не дублируют уже открытые;
        prune — решает, какие из questions закрылись сами (после проверки позиций).
        """
        draft = copy.deepcopy(draft)
        draft.status = "draft"

        supplier = self._resolve_supplier(draft)
        tiers: Dict[int, List[PriceRow]] = {}
        for index, item in enumerate(draft.items):
            tier_rows = self._check_item(item, supplier)
            if tier_rows:
                tiers[index] = tier_rows

        kept = self._sanitize(questions, len(draft.items))
        if prune is not None:
            kept = [q for q in kept if not prune(q, draft, supplier)]
        for candidate in self._sanitize(extra_questions, len(draft.items)):
            if not self._duplicates(candidate, kept):
                kept.append(candidate)

        self._assign_ids(kept)
        self._attach_tier_options(draft, kept, tiers)
        self._ensure_supplier_question(draft, kept, supplier)
        self._ensure_coverage(draft, kept, supplier)

        for item in draft.items:
            if item.quantity > 0 and item.unit_price is not None:
                item.line_total = compute_line_total(item.quantity, item.unit_price)
            else:
                item.line_total = None

        item_count = len(draft.items)
        for hint in draft.profitability_hints:
            hint.applies_to_item_indexes = [i for i in hint.applies_to_item_indexes if 0 <= i < item_count]

        return draft, kept

    def _resolve_supplier(self, draft: DraftOrder) -> Optional[Supplier]:
        supplier = self._catalog.supplier_by_name(draft.supplier_name)
        if supplier is not None:
            draft.supplier_name = supplier.name
        elif draft.supplier_name:
            logger.warning("Supplier %r is not in the catalog", draft.supplier_name)
        return supplier

    def _check_item(self, item: DraftItem, supplier: Optional[Supplier]) -> List[PriceRow]:
        """Флаги неуверенности для одной позиции. Возвращает ценовые пороги, если выбор неоднозначен."""
        confirmed = item.confirmed_fields
        item.uncertain_fields -= confirmed

        # Закрытый мир: SKU должен быть в прайсе (поставщика, если он определён)
        if item.sku:
            rows = self._catalog.rows_for_sku(item.sku, supplier)
            if rows:
                item.sku = rows[0].sku
            else:
                logger.warning("SKU %r is not in the price list, flagging as uncertain", item.sku)
                confirmed.discard("sku")
                item.uncertain_fields.add("sku")
        elif "sku" not in confirmed:
            item.uncertain_fields.add("sku")

        if item.unit_price is None and not confirmed & PRICE_FIELDS:
            item.uncertain_fields.add("unit_price")
        if item.quantity <= 0 and "quantity" not in confirmed:
            item.uncertain_fields.add("quantity")

        tier_rows: List[PriceRow] = []
        if not confirmed & PRICE_FIELDS:
            tier_rows = self._ambiguous_tiers(item, supplier)
            if tier_rows:
                item.uncertain_fields.add("price")

        if item.confidence < self._threshold and not item.uncertain_fields:
            for field_name, group in (("price", PRICE_FIELDS), ("quantity", {"quantity"}), ("sku", {"sku"})):
                if not confirmed & group:
                    item.uncertain_fields.add(field_name)
                    break

        return tier_rows

    def _candidate_rows(self, item: DraftItem, supplier: Optional[Supplier]) -> List[PriceRow]:
        if item.sku:
            rows = self._catalog.rows_for_sku(item.sku, supplier)
        else:
            name = item.product_name.strip().lower()
            rows = [
                row for row in self._catalog.rows_for_supplier(supplier)
                if name and row.product_name.strip().lower() == name
            ]
        # разные строки с одинаковыми условиями не считаются разными порогами
        unique: Dict[tuple, PriceRow] = {}
        for row in rows:
            unique.setdefault((row.sku, row.unit_type.lower(), row.min_qty, row.max_qty, row.unit_price), row)
        return sorted(unique.values(), key=lambda r: (r.sku, r.min_qty or 0, r.unit_type, r.unit_price))

    def _ambiguous_tiers(self, item: DraftItem, supplier: Optional[Supplier]) -> List[PriceRow]:
        """
        Несколько строк прайса на один товар: цену нельзя выбрать молча, если
        - подходит не ровно один порог;
        - количество лежит ровно на границе порога (50 при "1-49" / "50+");
        - цена в черновике не совпадает с единственным подходящим порогом.
        """
        rows = self._candidate_rows(item, supplier)
        if len(rows) < 2:
            return []

        unit = item.unit_type.strip().lower()
        pool = [r for r in rows if r.unit_type.lower() == unit] or rows
        quantity = item.quantity
        applicable = [r for r in pool if r.covers_quantity(quantity)] if quantity > 0 else pool

        # граница — первое количество следующего порога; верхний край порога однозначен
        on_boundary = quantity > 0 and any(
            r.min_qty is not None and r.min_qty > 1 and r.min_qty == quantity for r in rows
        )
        price_mismatch = (
            len(applicable) == 1
            and item.unit_price is not None
            and abs(item.unit_price - applicable[0].unit_price) > 0.005
        )
        if len(applicable) != 1 or on_boundary or price_mismatch:
            return rows
        return []

    # ---------- Вопросы ----------

    def _sanitize(self, questions: Sequence[ClarificationQuestion], item_count: int) -> List[ClarificationQuestion]:
        out: List[ClarificationQuestion] = []
        for question in questions:
            if question.id and question.id in self._answered_ids:
                logger.warning("Dropping question %r: it has already been answered", question.id)
                continue
            q = copy.deepcopy(question)
            q.related_item_indexes = sorted({i for i in q.related_item_indexes if 0 <= i < item_count})
            out.append(q)
        return out

    @staticmethod
    def _duplicates(candidate: ClarificationQuestion, existing: Sequence[ClarificationQuestion]) -> bool:
        for q in existing:
            if candidate.id and candidate.id == q.id:
                return True
            if candidate.kind is not q.kind:
                continue
            if set(candidate.related_item_indexes) & set(q.related_item_indexes):
                return True
            if not candidate.related_item_indexes and not q.related_item_indexes \
                    and candidate.question.strip().lower() == q.question.strip().lower():
                return True
        return False

    def _fresh_id(self, base: str, taken: Set[str]) -> str:
        candidate = base
        n = 2
        while candidate in taken or candidate in self._answered_ids:
            candidate = f"{base}-{n}"
            n += 1
        taken.add(candidate)
        return candidate

    def _assign_ids(self, questions: List[ClarificationQuestion]) -> None:
        taken: Set[str] = set()
        for position, q in enumerate(questions, start=1):
            if not q.id or q.id in taken:
                q.id = self._fresh_id(f"q-{position}", taken)
            else:
                taken.add(q.id)

    def _synthesize(
        self,
        questions: List[ClarificationQuestion],
        base_id: str,
        text: str,
        reason: str,
        kind: QuestionKind,
        related: List[int],
        options: List[str],
    ) -> ClarificationQuestion:
        taken = {q.id for q in questions}
        question = ClarificationQuestion(
            id=self._fresh_id(base_id, taken),
            question=text,
            reason=reason,
            related_item_indexes=related,
            suggested_options=options,
            kind=kind,
        )
        logger.warning("Synthesized clarification question %r (%s)", question.id, kind.value)
        questions.append(question)
        return question

    def _attach_tier_options(
        self,
        draft: DraftOrder,
        questions: List[ClarificationQuestion],
        tiers: Dict[int, List[PriceRow]],
    ) -> None:
        for index in sorted(tiers):
            labels = [row.option_label() for row in tiers[index]]
            existing = next(
                (
                    q for q in questions
                    if index in q.related_item_indexes and q.kind in (QuestionKind.PRICE, QuestionKind.SELECTION)
                ),
                None,
            )
            if existing is not None:
                for label in labels:
                    if label not in existing.suggested_options:
                        existing.suggested_options.append(label)
                continue

            item = draft.items[index]
            quantity_text = item.requested_quantity_raw or f"{item.quantity} {item.unit_type}".strip()
            self._synthesize(
                questions,
                base_id=f"q-item{index}-price-tier",
                text=f"Which price tier applies to {_item_label(item, index)} ({quantity_text})?",
                reason=(
                    f"The price list has {len(labels)} price breaks for this product and the requested "
                    f"quantity does not select exactly one of them."
                ),
                kind=QuestionKind.PRICE,
                related=[index],
                options=labels,
            )

    def _ensure_supplier_question(
        self,
        draft: DraftOrder,
        questions: List[ClarificationQuestion],
        supplier: Optional[Supplier],
    ) -> None:
        if supplier is not None or not draft.items or not self._catalog.suppliers:
            return
        if any("supplier" in q.question.lower() for q in questions):
            return
        if draft.supplier_name:
            reason = f"Supplier '{draft.supplier_name}' is not in the supplier list."
        else:
            reason = "No supplier was identified in the request."
        self._synthesize(
            questions,
            base_id="q-supplier",
            text="Which supplier should this order be placed with?",
            reason=reason,
            kind=QuestionKind.SELECTION,
            related=[],
            options=sorted(s.name for s in self._catalog.suppliers),
        )

    def _ensure_coverage(
        self,
        draft: DraftOrder,
        questions: List[ClarificationQuestion],
        supplier: Optional[Supplier],
    ) -> None:
        """Каждое неуверенное поле позиции должно быть покрыто вопросом про эту позицию."""
        for index, item in enumerate(draft.items):
            uncovered: Dict[QuestionKind, List[str]] = {}
            for field_name in sorted(item.uncertain_fields):
                kind = kind_for_field(field_name)
                if _is_covered(index, field_name, kind, questions):
                    continue
                uncovered.setdefault(kind, []).append(field_name)

            for kind in QuestionKind:
                fields = uncovered.get(kind)
                if not fields:
                    continue
                text, options = self._coverage_text(kind, item, index, fields, supplier)
                self._synthesize(
                    questions,
                    base_id=f"q-item{index}-{kind.value}",
                    text=text,
                    reason=f"Not confident about {', '.join(fields)} (confidence {item.confidence:.2f}).",
                    kind=kind,
                    related=[index],
                    options=options,
                )

    def _coverage_text(
        self,
        kind: QuestionKind,
        item: DraftItem,
        index: int,
        fields: List[str],
        supplier: Optional[Supplier],
    ) -> Tuple[str, List[str]]:
        label = _item_label(item, index)
        if kind is QuestionKind.SKU:
            name = item.product_name.strip().lower()
            skus = sorted({
                row.sku for row in self._catalog.rows_for_supplier(supplier)
                if name and (name in row.product_name.lower() or row.product_name.lower() in name)
            })
            return f"What is the SKU / product code for {label}?", skus[:10]
        if kind is QuestionKind.PRICE:
            rows = self._candidate_rows(item, supplier)
            return f"What unit price should be used for {label}?", [r.option_label() for r in rows]
        if kind is QuestionKind.QUANTITY:
            return f"How many {item.unit_type or 'units'} of {label} do you need?", []
        if kind is QuestionKind.SELECTION:
            rows = self._candidate_rows(item, supplier)
            return f"Which product and unit type did you mean for {label}?", [r.option_label() for r in rows]
        return f"Please clarify {', '.join(fields)} for {label}.", []


def _item_label(item: DraftItem, index: int) -> str:
    if item.product_name:
        return f"'{item.product_name}'"
    if item.requested_quantity_raw:
        return f"'{item.requested_quantity_raw}'"
    return f"item {index + 1}"


def _is_covered(index: int, field_name: str, kind: QuestionKind, questions: Sequence[ClarificationQuestion]) -> bool:
    for q in questions:
        if index not in q.related_item_indexes:
            continue
        if field_name in target_fields(q.kind):
            return True
        # непредметные поля (notes и т.п.) покрывает любой вопрос по позиции
        if kind is QuestionKind.FREE_TEXT:
            return True
    return False


def uncovered_price_fields(draft: DraftOrder, questions: Sequence[ClarificationQuestion]) -> List[Tuple[int, str]]:
    """Пары (позиция, поле), нарушающие I1: ценовое поле неуверенно, а вопроса по позиции нет."""
    out: List[Tuple[int, str]] = []
    for index, item in enumerate(draft.items):
        for field_name in sorted(item.uncertain_fields & PRICE_BEARING_FIELDS):
            if not any(index in q.related_item_indexes for q in questions):
                out.append((index, field_name))
    return out
