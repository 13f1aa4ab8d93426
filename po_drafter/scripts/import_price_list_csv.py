# po_drafter/scripts/import_price_list_csv.py
from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from po_drafter.catalog.catalog_store import CatalogStore
from po_drafter.config import configure_logging
from po_drafter.data_models import ExtractedRow
from po_drafter.errors import PODraftError, ValidationError
from po_drafter.ingestion.csv_parser import parse_price_list_csv
from po_drafter.io.db_io import init_db


logger = logging.getLogger(__name__)


def import_csv(
    supplier_id: str,
    csv_path: str,
    dry_run: bool = False,
    store: Optional[CatalogStore] = None,
) -> int:
    """
    Разбирает CSV и пишет строки в прайс поставщика одной транзакцией.
    Строки с пониженной уверенностью выводятся в лог, чтобы их можно было проверить.
    Строки без SKU в прайс не попадают: их нужно дополнить и загрузить заново.
    """
    document = parse_price_list_csv(csv_path)
    logger.info(
        "Parsed %s: %s rows, avg confidence %.2f",
        document.file_name,
        len(document.items),
        document.avg_confidence,
    )

    confirmable: List[ExtractedRow] = []
    for index, row in enumerate(document.items):
        if not row.sku.strip():
            logger.warning("Row %s (%s) skipped: no SKU", index, row.product_name)
            continue
        if row.uncertain_fields:
            logger.warning(
                "Row %s (%s) needs review: uncertain %s",
                index,
                row.product_name,
                ", ".join(sorted(row.uncertain_fields)),
            )
        confirmable.append(row)

    skipped = len(document.items) - len(confirmable)
    if not confirmable:
        raise ValidationError(
            "No rows with a SKU to import.",
            {"fileName": document.file_name, "skippedRows": skipped},
        )

    if dry_run:
        logger.info("Dry run, nothing written (%s rows would be imported, %s skipped)", len(confirmable), skipped)
        return 0

    store = store or CatalogStore()
    created = store.confirm_extracted_rows(supplier_id, confirmable)
    logger.info("Imported %s price rows for supplier %s, skipped %s", len(created), supplier_id, skipped)
    return len(created)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Import a supplier price list from CSV")
    parser.add_argument("supplier_id")
    parser.add_argument("csv_path")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args(argv)

    configure_logging()
    init_db()
    try:
        import_csv(args.supplier_id, args.csv_path, dry_run=args.dry_run)
    except PODraftError as e:
        logger.error("Import failed (%s): %s %s", e.error_type, e.message, e.details)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
