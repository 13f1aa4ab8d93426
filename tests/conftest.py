# tests/conftest.py
import json

import pytest

from po_drafter.data_models import BusinessRule, CatalogSnapshot, PriceRow, Supplier
from po_drafter.io.db_io import init_db, make_session_factory
from po_drafter.llm_client.base import LLMClient


EVERFLOOR = Supplier(id="sup-1", name="EverFloor Supplies", email="orders@everfloor.example")
BOX_TIER = PriceRow(
    id="row-box",
    supplier_id="sup-1",
    sku="HYDRO-301",
    product_name="HydroLoc Grey Herringbone",
    unit_type="box",
    unit_price=18.99,
    min_qty=1,
    max_qty=49,
)
PALLET_TIER = PriceRow(
    id="row-pallet",
    supplier_id="sup-1",
    sku="HYDRO-301",
    product_name="HydroLoc Grey Herringbone",
    unit_type="pallet",
    unit_price=17.50,
    min_qty=50,
)
OAK_ROW = PriceRow(
    id="row-oak",
    supplier_id="sup-1",
    sku="OAK-110",
    product_name="Classic Oak Plank",
    unit_type="box",
    unit_price=32.00,
)


class FakeLLMClient(LLMClient):
    """Отдаёт заранее заготовленные ответы по очереди и запоминает запросы."""

    def __init__(self, *payloads):
        self._payloads = list(payloads)
        self.calls = []

    async def complete(self, messages):
        self.calls.append(messages)
        payload = self._payloads.pop(0)
        if isinstance(payload, Exception):
            raise payload
        return payload if isinstance(payload, str) else json.dumps(payload)


@pytest.fixture(autouse=True)
def set_dummy_env(monkeypatch):
    # Подставляем фейковый API-ключ, чтобы не зависеть от реального окружения
    monkeypatch.setenv("PO_LLM_API_KEY", "test-key")


@pytest.fixture
def catalog():
    return CatalogSnapshot(
        suppliers=(EVERFLOOR,),
        price_rows=(BOX_TIER, PALLET_TIER, OAK_ROW),
        business_rules=(BusinessRule(key="default_currency", value="GBP"),),
    )


@pytest.fixture
def fake_llm():
    return FakeLLMClient


@pytest.fixture
def session_factory():
    factory = make_session_factory("sqlite:///:memory:")
    init_db(factory)
    return factory


def _hydro_payload(quantity=50, unit_price=17.50, unit_type="box", confidence=0.92, supplier="everfloor supplies"):
    """Ответ модели для «Order 50 boxes of HydroLoc Grey Herringbone from EverFloor Supplies»."""
    return {
        "draft_po": {
            "supplier_name": supplier,
            "status": "draft",
            "items": [
                {
                    "sku": "HYDRO-301",
                    "product_name": "HydroLoc Grey Herringbone",
                    "unit_type": unit_type,
                    "requested_quantity_raw": f"{quantity} boxes",
                    "quantity": quantity,
                    "unit_price": unit_price,
                    "currency": "GBP",
                    "line_total": None,
                    "price_source": "pallet tier",
                    "ai_confidence": confidence,
                    "ai_uncertain_fields": [],
                    "notes": "",
                }
            ],
            "extra_notes_for_supplier": "",
            "delivery_instructions": "",
            "business_profitability_hints": [],
        },
        "questions_for_user": [],
        "reasoning_summary": {
            "overall_decision": "Pallet tier applies at 50 boxes.",
            "considerations": ["50 boxes meets the pallet threshold"],
            "alternatives": [],
            "global_confidence": confidence,
        },
    }


@pytest.fixture
def hydro_payload():
    return _hydro_payload
