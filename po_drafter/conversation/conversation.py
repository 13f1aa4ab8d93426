# po_drafter/conversation/conversation.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from po_drafter.catalog.catalog_store import CatalogStore
from po_drafter.conversation.router import CreateProductAction, Route, UserMessage, route_message
from po_drafter.data_models import (
    AnswerValue,
    ChoiceAnswer,
    DraftSession,
    PersistedOrder,
    QuestionKind,
    TextAnswer,
)
from po_drafter.drafting.commit_gate import can_commit
from po_drafter.drafting.generation_service import DraftGenerationService
from po_drafter.drafting.merge_engine import ClarificationMergeEngine
from po_drafter.errors import NotFoundError, PODraftError, ValidationError
from po_drafter.orders.order_store import OrderStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Turn:
    role: str  # "user" / "assistant" / "system"
    text: str
    route: Optional[Route] = None


class Conversation:
    """
    Чат поверх ядра: держит текущий DraftSession и историю реплик.

    Ошибка любого шага (модель недоступна, неверные ключи ответов, черновик
    не прошёл проверку) попадает в историю и пробрасывается дальше;
    текущая сессия при этом не меняется.
    """

    def __init__(
        self,
        generator: DraftGenerationService,
        merger: ClarificationMergeEngine,
        catalog_store: CatalogStore,
        order_store: OrderStore,
        session: Optional[DraftSession] = None,
    ) -> None:
        self._generator = generator
        self._merger = merger
        self._catalog_store = catalog_store
        self._order_store = order_store
        self._session = session
        self._transcript: List[Turn] = []

    @property
    def session(self) -> Optional[DraftSession]:
        return self._session

    @property
    def transcript(self) -> List[Turn]:
        return list(self._transcript)

    async def handle(self, message: UserMessage) -> Optional[DraftSession]:
        route = route_message(self._session is not None, message)
        self._transcript.append(Turn("user", _describe(message), route))

        if route is Route.DISCARD:
            self.discard()
            return None

        try:
            if route is Route.GENERATE:
                session = await self._generate(message.text)
            elif route is Route.MERGE:
                session = await self._merge(message.answers)
            else:
                session = await self._apply_catalog_action(message.catalog_action)
        except PODraftError as exc:
            logger.warning("Conversation step %s failed: %s", route.value, exc.message)
            self._transcript.append(Turn("system", f"{exc.error_type}: {exc.message}", route))
            raise

        self._session = session
        self._transcript.append(Turn("assistant", _summarize(session), route))
        return session

    def commit(self) -> PersistedOrder:
        if self._session is None:
            raise ValidationError("There is no draft to commit.", {"field": "draft"})
        try:
            order = self._order_store.commit_order(self._session.draft, self._session.request)
        except PODraftError as exc:
            self._transcript.append(Turn("system", f"{exc.error_type}: {exc.message}"))
            raise

        self._session = None
        self._transcript.append(
            Turn("assistant", f"Saved purchase order {order.id} ({len(order.items)} items, total {order.total:.2f}).")
        )
        return order

    def discard(self) -> None:
        self._session = None
        self._transcript.append(Turn("assistant", "Draft discarded.", Route.DISCARD))

    # ---------- Шаги ----------

    async def _generate(self, text: str) -> DraftSession:
        catalog = self._catalog_store.snapshot()
        result = await self._generator.generate(text, catalog)
        return DraftSession(
            request=text.strip(),
            draft=result.draft,
            open_questions=result.questions,
            reasoning=result.reasoning,
        )

    async def _merge(self, answers: Dict[str, Any]) -> DraftSession:
        current = self._session
        catalog = self._catalog_store.snapshot()
        result = await self._merger.merge(
            current.draft,
            current.open_questions,
            answers,
            current.request,
            catalog,
            current.answered_question_ids,
        )
        return DraftSession(
            request=current.request,
            draft=result.draft,
            open_questions=result.questions,
            reasoning=result.reasoning,
            answered_question_ids=set(current.answered_question_ids) | set(answers),
            round=current.round + 1,
        )

    async def _apply_catalog_action(self, action: CreateProductAction) -> DraftSession:
        current = self._session
        question = next((q for q in current.open_questions if q.id == action.question_id), None)
        if question is None:
            raise ValidationError(
                f"Question '{action.question_id}' is not open.",
                {"questionId": action.question_id, "validQuestionIds": [q.id for q in current.open_questions]},
            )
        if question.kind is QuestionKind.QUANTITY:
            raise ValidationError(
                "A new price list row cannot answer a quantity question.",
                {"questionId": question.id},
            )

        supplier_name = action.supplier_name or current.draft.supplier_name
        supplier = self._catalog_store.get_supplier_by_name(supplier_name)
        if supplier is None:
            raise NotFoundError(f"Supplier '{supplier_name}' not found", {"supplierName": supplier_name})

        row = self._catalog_store.create_price_row(
            supplier.id,
            action.sku,
            action.product_name,
            action.unit_type,
            action.unit_price,
            action.currency,
            action.min_qty,
            action.max_qty,
        )

        value: AnswerValue
        if question.kind is QuestionKind.SKU:
            value = TextAnswer(text=row.sku)
        else:
            value = ChoiceAnswer(choice=row.option_label())

        # свежий снимок: новая строка прайса должна пройти проверку «закрытого мира»
        catalog = self._catalog_store.snapshot()
        result = await self._merger.resolve_out_of_band(
            current.draft,
            current.open_questions,
            question.id,
            value,
            current.request,
            catalog,
            current.answered_question_ids,
        )
        return DraftSession(
            request=current.request,
            draft=result.draft,
            open_questions=result.questions,
            reasoning=result.reasoning,
            answered_question_ids=set(current.answered_question_ids) | {question.id},
            round=current.round + 1,
        )


def _describe(message: UserMessage) -> str:
    if message.catalog_action is not None:
        action = message.catalog_action
        return f"[catalog] add {action.sku} {action.unit_type} @ {action.unit_price:.2f} for {action.question_id}"
    if message.answers:
        return "; ".join(f"{qid}: {value}" for qid, value in message.answers.items())
    return message.text


def _summarize(session: DraftSession) -> str:
    draft = session.draft
    lines = [f"Draft for {draft.supplier_name or 'unknown supplier'}: {len(draft.items)} item(s)."]
    for question in session.open_questions:
        lines.append(f"[{question.id}] {question.question}")
    if not session.open_questions:
        lines.append("Ready to commit." if can_commit(draft) else "No open questions, but the draft is still incomplete.")
    return "\n".join(lines)
