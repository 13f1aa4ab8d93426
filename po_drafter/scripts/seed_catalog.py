# po_drafter/scripts/seed_catalog.py
from __future__ import annotations

import logging

from po_drafter.catalog.catalog_store import CatalogStore
from po_drafter.config import config, configure_logging
from po_drafter.io.db_io import init_db


logger = logging.getLogger(__name__)


def seed() -> None:
    """Создаёт таблицы и кладёт демо-каталог (EverFloor Supplies, HYDRO-301)."""
    configure_logging()
    init_db()

    snapshot = CatalogStore().seed_sample_catalog()

    logger.info("Database: %s", config.database.url)
    logger.info("Suppliers: %s", len(snapshot.suppliers))
    logger.info("Price list rows: %s", len(snapshot.price_rows))
    for row in snapshot.price_rows:
        logger.info("  %s", row.option_label())
    logger.info("Business rules: %s", snapshot.business_rules_dict())


def main() -> int:
    seed()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
