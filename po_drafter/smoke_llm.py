# po_drafter/smoke_llm.py
import asyncio
import json

from po_drafter.catalog.catalog_store import CatalogStore
from po_drafter.config import configure_logging
from po_drafter.drafting.generation_service import DraftGenerationService
from po_drafter.io.db_io import init_db
from po_drafter.llm_client.provider_client import ProviderLLMClient


async def main():
    configure_logging()
    init_db()
    # Демо-каталог, чтобы было по чему сверять SKU
    catalog = CatalogStore().seed_sample_catalog()

    service = DraftGenerationService(ProviderLLMClient())
    result = await service.generate("Order 50 boxes of HydroLoc Grey Herringbone from EverFloor Supplies", catalog)
    print("DRAFT RESULT:", json.dumps(result.to_dict(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    asyncio.run(main())
