# tests/test_conversation.py
import asyncio

import pytest

from po_drafter.catalog.catalog_store import CatalogStore
from po_drafter.conversation.conversation import Conversation
from po_drafter.conversation.router import CreateProductAction, Route, UserMessage, route_message
from po_drafter.drafting.generation_service import DraftGenerationService
from po_drafter.drafting.merge_engine import ClarificationMergeEngine
from po_drafter.errors import IncompleteDraftError, ValidationError
from po_drafter.llm_client.base import UpstreamRateLimited
from po_drafter.orders.order_store import OrderStore


ACTION = CreateProductAction(
    question_id="q-item0-sku",
    sku="HYDRO-777",
    product_name="HydroLoc Charcoal",
    unit_type="box",
    unit_price=21.00,
)


@pytest.mark.parametrize(
    "pending, message, route",
    [
        (False, UserMessage(text="Order 50 boxes"), Route.GENERATE),
        (True, UserMessage(text="Order 10 more boxes"), Route.GENERATE),
        (True, UserMessage(answers={"q-1": "12"}), Route.MERGE),
        (True, UserMessage(text="Start over!"), Route.DISCARD),
        (False, UserMessage(text="cancel"), Route.GENERATE),
        (True, UserMessage(catalog_action=ACTION), Route.CATALOG_ACTION),
    ],
)
def test_route_message(pending, message, route):
    assert route_message(pending, message) is route


def test_catalog_action_without_draft_is_rejected():
    with pytest.raises(ValidationError):
        route_message(False, UserMessage(catalog_action=ACTION))


def _charcoal_payload():
    return {
        "draft_po": {
            "supplier_name": "EverFloor Supplies",
            "items": [
                {
                    "sku": "HYDRO-777",
                    "product_name": "HydroLoc Charcoal",
                    "unit_type": "box",
                    "requested_quantity_raw": "10 boxes",
                    "quantity": 10,
                    "unit_price": None,
                    "ai_confidence": 0.6,
                    "ai_uncertain_fields": ["unit_price"],
                }
            ],
        },
        "questions_for_user": [],
        "reasoning_summary": {"overall_decision": "Charcoal is not in the price list."},
    }


@pytest.fixture
def conversation_factory(session_factory, fake_llm):
    def build(*payloads):
        catalog_store = CatalogStore(session_factory)
        catalog_store.seed_sample_catalog()
        return Conversation(
            generator=DraftGenerationService(fake_llm(*payloads)),
            merger=ClarificationMergeEngine(),
            catalog_store=catalog_store,
            order_store=OrderStore(session_factory),
        )

    return build


def test_catalog_action_resolves_question_and_commits(conversation_factory):
    conversation = conversation_factory(_charcoal_payload())

    session = asyncio.run(conversation.handle(UserMessage(text="Order 10 boxes of HydroLoc Charcoal")))
    assert [q.id for q in session.open_questions] == ["q-item0-sku", "q-item0-price"]

    with pytest.raises(IncompleteDraftError):
        conversation.commit()
    assert conversation.session is session

    session = asyncio.run(conversation.handle(UserMessage(catalog_action=ACTION)))

    item = session.draft.items[0]
    assert item.sku == "HYDRO-777"
    assert item.unit_price == 21.00
    assert session.open_questions == []
    assert session.answered_question_ids == {"q-item0-sku"}
    assert session.round == 1

    order = conversation.commit()
    assert order.total == 210.00
    assert conversation.session is None


def test_failed_step_leaves_session_unchanged(conversation_factory, hydro_payload):
    conversation = conversation_factory(hydro_payload(), UpstreamRateLimited("rate limited"))
    session = asyncio.run(conversation.handle(UserMessage(text="Order 50 boxes of HydroLoc")))

    with pytest.raises(ValidationError):
        asyncio.run(conversation.handle(UserMessage(answers={"q-unknown": "1"})))
    assert conversation.session is session

    with pytest.raises(UpstreamRateLimited):
        asyncio.run(conversation.handle(UserMessage(text="Actually, order 60 boxes")))
    assert conversation.session is session

    roles = [turn.role for turn in conversation.transcript]
    assert roles == ["user", "assistant", "user", "system", "user", "system"]


def test_merge_then_discard(conversation_factory, hydro_payload):
    conversation = conversation_factory(hydro_payload())
    asyncio.run(conversation.handle(UserMessage(text="Order 50 boxes of HydroLoc")))

    session = asyncio.run(conversation.handle(UserMessage(answers={"q-item0-price-tier": "17.50"})))
    assert session.open_questions == []
    assert session.answered_question_ids == {"q-item0-price-tier"}

    assert asyncio.run(conversation.handle(UserMessage(text="discard"))) is None
    assert conversation.session is None
    assert conversation.transcript[-1].route is Route.DISCARD


def test_catalog_action_cannot_answer_quantity_question(conversation_factory, hydro_payload):
    payload = hydro_payload(quantity=0, unit_price=18.99)
    conversation = conversation_factory(payload)
    session = asyncio.run(conversation.handle(UserMessage(text="Some HydroLoc please")))
    quantity_question = next(q for q in session.open_questions if q.id.endswith("quantity"))

    action = CreateProductAction(
        question_id=quantity_question.id,
        sku="HYDRO-302",
        product_name="HydroLoc Oak",
        unit_type="box",
        unit_price=19.0,
    )

    with pytest.raises(ValidationError):
        asyncio.run(conversation.handle(UserMessage(catalog_action=action)))
    assert conversation.session is session
