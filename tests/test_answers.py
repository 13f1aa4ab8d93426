# tests/test_answers.py
import pytest

from po_drafter.data_models import ChoiceAnswer, ClarificationQuestion, NumberAnswer, QuestionKind, TextAnswer
from po_drafter.drafting.answers import coerce_answer, parse_number
from po_drafter.drafting.question_kinds import classify_question, kind_for_field, target_fields
from po_drafter.errors import ValidationError


@pytest.mark.parametrize(
    "text, kind",
    [
        ("What is the SKU for the oak plank?", QuestionKind.SKU),
        ("Which product code did you mean?", QuestionKind.SKU),
        ("Which price tier applies to 'HydroLoc' (50 boxes)?", QuestionKind.PRICE),
        ("What should the unit cost be?", QuestionKind.PRICE),
        ("How many boxes do you need?", QuestionKind.QUANTITY),
        ("Please confirm the quantity", QuestionKind.QUANTITY),
        ("Which supplier should this order be placed with?", QuestionKind.SELECTION),
        ("Any delivery instructions?", QuestionKind.FREE_TEXT),
    ],
)
def test_classify_question(text, kind):
    assert classify_question(text) is kind
    # повторная классификация даёт тот же результат
    assert classify_question(text) is classify_question(text)


def test_field_to_kind_roundtrip():
    for field_name in ("sku", "unit_price", "price", "quantity", "unit_type"):
        assert field_name in target_fields(kind_for_field(field_name))
    assert kind_for_field("notes") is QuestionKind.FREE_TEXT


@pytest.mark.parametrize(
    "raw, expected",
    [
        (17.5, 17.5),
        ("17.50", 17.5),
        ("£17.50", 17.5),
        ("17,50", 17.5),
        ("GBP 1,234.00", 1234.0),
        ("50 boxes", 50.0),
        (True, None),
        ("no idea", None),
    ],
)
def test_parse_number(raw, expected):
    assert parse_number(raw) == expected


def _question(kind, options=()):
    return ClarificationQuestion(id="q-1", question="?", kind=kind, suggested_options=list(options))


def test_price_answer_becomes_number():
    assert coerce_answer(_question(QuestionKind.PRICE), "£17.50") == NumberAnswer(17.5)


def test_price_answer_rejects_garbage_and_booleans():
    with pytest.raises(ValidationError):
        coerce_answer(_question(QuestionKind.PRICE), "cheap please")
    with pytest.raises(ValidationError):
        coerce_answer(_question(QuestionKind.PRICE), True)


def test_quantity_must_be_positive():
    with pytest.raises(ValidationError) as exc_info:
        coerce_answer(_question(QuestionKind.QUANTITY), "0")

    assert exc_info.value.details["questionId"] == "q-1"
    # уже типизированное число тоже проверяется
    with pytest.raises(ValidationError):
        coerce_answer(_question(QuestionKind.QUANTITY), NumberAnswer(-3))


def test_suggested_option_becomes_choice_for_price_question():
    option = "HYDRO-301 pallet @ 17.50 GBP (50+)"

    answer = coerce_answer(_question(QuestionKind.PRICE, [option]), option.lower())

    assert answer == ChoiceAnswer(option)


def test_selection_and_text_answers():
    assert coerce_answer(_question(QuestionKind.SELECTION), "EverFloor Supplies") == ChoiceAnswer("EverFloor Supplies")
    assert coerce_answer(_question(QuestionKind.SKU), " OAK-110 ") == TextAnswer("OAK-110")
    assert coerce_answer(_question(QuestionKind.FREE_TEXT), False) == TextAnswer("no")


def test_empty_answer_rejected():
    with pytest.raises(ValidationError):
        coerce_answer(_question(QuestionKind.SKU), "   ")
