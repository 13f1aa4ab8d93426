# tests/test_merge_engine.py
import asyncio
import copy

import pytest

from po_drafter.data_models import ClarificationQuestion, DraftItem, DraftOrder, QuestionKind
from po_drafter.drafting.merge_engine import ClarificationMergeEngine
from po_drafter.drafting.normalizer import DraftNormalizer, uncovered_price_fields
from po_drafter.errors import ValidationError


REQUEST = "Order 50 boxes of HydroLoc Grey Herringbone from EverFloor Supplies"
PALLET_OPTION = "HYDRO-301 pallet @ 17.50 GBP (50+)"


def _merge(engine, result, answers, catalog, history=()):
    return asyncio.run(
        engine.merge(result.draft, result.questions, answers, REQUEST, catalog, answered_history=history)
    )


@pytest.fixture
def first_round(catalog, hydro_payload):
    return DraftNormalizer(catalog).normalize(hydro_payload())


@pytest.fixture
def two_item_round(catalog, hydro_payload):
    raw = hydro_payload()
    raw["draft_po"]["items"].append(
        {
            "sku": "OAK-110",
            "product_name": "Classic Oak Plank",
            "unit_type": "box",
            "requested_quantity_raw": "some boxes",
            "quantity": 0,
            "unit_price": 32.0,
            "ai_confidence": 0.85,
        }
    )
    return DraftNormalizer(catalog).normalize(raw)


def test_pallet_price_answer_resolves_tier_question(catalog, first_round):
    result = _merge(ClarificationMergeEngine(), first_round, {"q-item0-price-tier": 17.50}, catalog)

    item = result.draft.items[0]
    assert item.unit_price == 17.50
    assert "price" not in item.uncertain_fields
    assert item.line_total == 875.00
    assert item.price_source == "price list row row-pallet"
    assert "q-item0-price-tier" not in [q.id for q in result.questions]
    assert result.questions == []


def test_choosing_tier_option_applies_the_row(catalog, first_round):
    result = _merge(ClarificationMergeEngine(), first_round, {"q-item0-price-tier": PALLET_OPTION}, catalog)

    item = result.draft.items[0]
    assert (item.sku, item.unit_type, item.unit_price) == ("HYDRO-301", "pallet", 17.50)
    assert {"sku", "unit_type", "unit_price", "price"} <= item.confirmed_fields
    assert result.questions == []


def test_partial_answers_keep_other_question(catalog, two_item_round):
    ids_before = [q.id for q in two_item_round.questions]
    assert ids_before == ["q-item0-price-tier", "q-item1-quantity"]

    result = _merge(ClarificationMergeEngine(), two_item_round, {"q-item1-quantity": "12"}, catalog)

    assert result.draft.items[1].quantity == 12
    assert result.draft.items[1].line_total == 384.00
    assert [q.id for q in result.questions] == ["q-item0-price-tier"]
    # варианты порогов не дублируются
    assert result.questions[0].suggested_options == two_item_round.questions[0].suggested_options


def test_merge_is_idempotent(catalog, two_item_round):
    engine = ClarificationMergeEngine()
    answers = {"q-item0-price-tier": PALLET_OPTION}

    first = _merge(engine, two_item_round, answers, catalog)
    second = _merge(engine, two_item_round, answers, catalog)

    assert first.to_dict() == second.to_dict()


def test_merge_does_not_mutate_prior_draft(catalog, first_round):
    snapshot = copy.deepcopy(first_round.draft)

    _merge(ClarificationMergeEngine(), first_round, {"q-item0-price-tier": 17.50}, catalog)

    assert first_round.draft == snapshot


def test_answered_ids_never_return(catalog):
    raw = {
        "draft_po": {
            "supplier_name": "EverFloor Supplies",
            "items": [
                {"sku": "HYDRO-999", "product_name": "HydroLoc Grey Herringbone", "unit_type": "box",
                 "quantity": 10, "unit_price": 18.99, "ai_confidence": 0.95},
            ],
        },
    }
    first = DraftNormalizer(catalog).normalize(raw)
    assert [q.id for q in first.questions] == ["q-item0-sku"]

    second = _merge(ClarificationMergeEngine(), first, {"q-item0-sku": "HYDRO-998"}, catalog)

    # неизвестный SKU остаётся под вопросом, но с новым id
    assert second.draft.items[0].uncertain_fields == {"sku"}
    assert "HYDRO-998" in second.draft.items[0].notes
    assert [q.id for q in second.questions] == ["q-item0-sku-2"]

    third = _merge(
        ClarificationMergeEngine(), second, {"q-item0-sku-2": "HYDRO-997"}, catalog, history={"q-item0-sku"}
    )
    ids = [q.id for q in third.questions]
    assert "q-item0-sku" not in ids
    assert "q-item0-sku-2" not in ids
    assert ids == ["q-item0-sku-3"]


def test_confidence_never_goes_down(catalog, two_item_round):
    before = [item.confidence for item in two_item_round.draft.items]

    result = _merge(ClarificationMergeEngine(), two_item_round, {"q-item1-quantity": 12}, catalog)

    after = [item.confidence for item in result.draft.items]
    assert after[1] >= max(before[1], 0.9)
    assert after[0] == before[0]


def test_incidentally_resolved_question_is_pruned(catalog):
    prior = DraftOrder(
        supplier_name="EverFloor Supplies",
        items=[
            DraftItem(
                product_name="grey herringbone",
                unit_type="",
                quantity=50,
                confidence=0.5,
                uncertain_fields={"sku", "unit_type", "unit_price"},
            )
        ],
    )
    questions = [
        ClarificationQuestion(id="q-a", question="What is the SKU?", related_item_indexes=[0], kind=QuestionKind.SKU),
        ClarificationQuestion(
            id="q-b",
            question="Which product did you mean?",
            related_item_indexes=[0],
            suggested_options=[PALLET_OPTION],
            kind=QuestionKind.SELECTION,
        ),
    ]

    result = asyncio.run(
        ClarificationMergeEngine().merge(prior, questions, {"q-b": PALLET_OPTION}, REQUEST, catalog)
    )

    assert result.draft.items[0].sku == "HYDRO-301"
    assert result.questions == []


def test_shared_answer_applies_same_value_to_every_related_item(catalog):
    # Известное поведение: один ответ на вопрос по двум разным товарам
    # проставляет один и тот же SKU обоим.
    prior = DraftOrder(
        supplier_name="EverFloor Supplies",
        items=[
            DraftItem(product_name="oak plank", quantity=5, confidence=0.5, uncertain_fields={"sku"}),
            DraftItem(product_name="grey herringbone", quantity=10, confidence=0.5, uncertain_fields={"sku"}),
        ],
    )
    questions = [
        ClarificationQuestion(
            id="q-sku",
            question="What SKU should be used for these items?",
            related_item_indexes=[0, 1],
            kind=QuestionKind.SKU,
        )
    ]

    result = asyncio.run(ClarificationMergeEngine().merge(prior, questions, {"q-sku": "OAK-110"}, REQUEST, catalog))

    assert [item.sku for item in result.draft.items] == ["OAK-110", "OAK-110"]
    assert [item.unit_price for item in result.draft.items] == [32.0, 32.0]


def test_supplier_answer_sets_canonical_supplier(catalog):
    prior = DraftOrder(
        supplier_name="",
        items=[
            DraftItem(sku="OAK-110", product_name="Classic Oak Plank", unit_type="box",
                      quantity=5, unit_price=32.0, confidence=0.95),
        ],
    )
    first = DraftNormalizer(catalog).enforce(prior, [])
    assert [q.id for q in first[1]] == ["q-supplier"]

    result = asyncio.run(
        ClarificationMergeEngine().merge(first[0], first[1], {"q-supplier": "everfloor supplies"}, REQUEST, catalog)
    )

    assert result.draft.supplier_name == "EverFloor Supplies"
    assert result.questions == []


def test_out_of_range_indexes_are_ignored(catalog, first_round):
    questions = first_round.questions + [
        ClarificationQuestion(id="q-ghost", question="How many?", related_item_indexes=[7], kind=QuestionKind.QUANTITY)
    ]

    result = asyncio.run(
        ClarificationMergeEngine().merge(first_round.draft, questions, {"q-ghost": 3}, REQUEST, catalog)
    )

    assert result.draft.items[0].quantity == 50


@pytest.mark.parametrize("answers", [{}, {"q-nope": "1"}])
def test_invalid_answer_keys(catalog, first_round, answers):
    with pytest.raises(ValidationError) as exc_info:
        _merge(ClarificationMergeEngine(), first_round, answers, catalog)

    if answers:
        assert exc_info.value.details["invalidKeys"] == ["q-nope"]
        assert exc_info.value.details["validQuestionIds"] == ["q-item0-price-tier"]


def test_engine_refinement_cannot_override_confirmed_fields(fake_llm, catalog, two_item_round, hydro_payload):
    refined = hydro_payload(quantity=40, unit_price=18.99)
    refined["draft_po"]["items"].append(
        {"sku": "OAK-110", "product_name": "Classic Oak Plank", "unit_type": "box",
         "quantity": 99, "unit_price": 1.0, "ai_confidence": 0.99}
    )
    refined["questions_for_user"] = [
        {"id": "q-item1-quantity", "question": "How many boxes of oak?", "related_item_indexes": [1]},
        {"id": "q-new", "question": "Any delivery instructions?", "related_item_indexes": []},
    ]
    client = fake_llm(refined)

    result = _merge(ClarificationMergeEngine(llm_client=client), two_item_round, {"q-item1-quantity": 12}, catalog)

    oak = result.draft.items[1]
    assert oak.quantity == 12
    assert oak.unit_price == 32.0
    assert oak.confidence == 0.99
    # количество HYDRO-301 было уверенным и не меняется
    assert result.draft.items[0].quantity == 50
    ids = [q.id for q in result.questions]
    assert "q-item1-quantity" not in ids
    assert ids == ["q-item0-price-tier", "q-new"]
    assert uncovered_price_fields(result.draft, result.questions) == []
    # контекст уточнения уходит в модель последним сообщением
    assert client.calls[0][-1]["content"].startswith("CLARIFICATION UPDATE REQUIRED.")
