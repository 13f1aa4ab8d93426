# po_drafter/catalog/catalog_store.py
from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from po_drafter.data_models import BusinessRule, CatalogSnapshot, ExtractedRow, PriceRow, Supplier
from po_drafter.errors import NotFoundError, ValidationError
from po_drafter.io.db_io import (
    BusinessRuleDB,
    PriceListRowDB,
    SupplierDB,
    business_rule_db_to_domain,
    get_session,
    price_row_db_to_domain,
    supplier_db_to_domain,
)


logger = logging.getLogger(__name__)


class CatalogStore:
    """
    Поставщики, строки прайса и бизнес-правила.

    Читающие методы возвращают доменные объекты (не ORM), так что снимок
    каталога можно держать дольше сессии. Все изменения — одна транзакция
    на вызов.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self._session_factory = session_factory

    def _session(self):
        return get_session(self._session_factory)

    # ---------- Чтение ----------

    def list_suppliers(self) -> List[Supplier]:
        with self._session() as session:
            return _list_suppliers(session)

    def list_price_rows(self, supplier_id: Optional[str] = None) -> List[PriceRow]:
        with self._session() as session:
            return _list_price_rows(session, supplier_id)

    def list_business_rules(self) -> Dict[str, str]:
        with self._session() as session:
            return {rule.key: rule.value for rule in _list_business_rules(session)}

    def snapshot(self) -> CatalogSnapshot:
        """Все три коллекции из одной сессии: генерация и merge видят согласованный каталог."""
        with self._session() as session:
            return load_snapshot(session)

    def get_supplier(self, supplier_id: str) -> Supplier:
        with self._session() as session:
            row = session.get(SupplierDB, supplier_id)
            if row is None:
                raise NotFoundError(f"Supplier {supplier_id} not found", {"supplierId": supplier_id})
            return supplier_db_to_domain(row)

    def get_supplier_by_name(self, name: str) -> Optional[Supplier]:
        with self._session() as session:
            row = (
                session.query(SupplierDB)
                .filter(func.lower(SupplierDB.name) == (name or "").strip().lower())
                .first()
            )
            return supplier_db_to_domain(row) if row is not None else None

    # ---------- Поставщики ----------

    def create_supplier(
        self,
        name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
    ) -> Supplier:
        if not (name or "").strip():
            raise ValidationError("Supplier name is required", {"field": "name"})
        with self._session() as session:
            row = SupplierDB(name=name.strip(), email=email, phone=phone, address=address)
            session.add(row)
            session.flush()
            logger.info("Created supplier %r (%s)", row.name, row.id)
            return supplier_db_to_domain(row)

    def delete_supplier(self, supplier_id: str) -> None:
        """Удаляет поставщика вместе с его прайсом."""
        with self._session() as session:
            row = session.get(SupplierDB, supplier_id)
            if row is None:
                raise NotFoundError(f"Supplier {supplier_id} not found", {"supplierId": supplier_id})
            session.delete(row)
            logger.info("Deleted supplier %s", supplier_id)

    # ---------- Прайс ----------

    def create_price_row(
        self,
        supplier_id: str,
        sku: str,
        product_name: str,
        unit_type: str,
        unit_price: float,
        currency: str = "GBP",
        min_qty: Optional[int] = None,
        max_qty: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> PriceRow:
        with self._session() as session:
            if session.get(SupplierDB, supplier_id) is None:
                raise NotFoundError(f"Supplier {supplier_id} not found", {"supplierId": supplier_id})
            row = _build_price_row(
                supplier_id, sku, product_name, unit_type, unit_price, currency, min_qty, max_qty, notes
            )
            session.add(row)
            session.flush()
            logger.info("Created price row %s for SKU %r", row.id, row.sku)
            return price_row_db_to_domain(row)

    def delete_price_row(self, row_id: str) -> None:
        with self._session() as session:
            row = session.get(PriceListRowDB, row_id)
            if row is None:
                raise NotFoundError(f"Price list row {row_id} not found", {"priceRowId": row_id})
            session.delete(row)

    def confirm_extracted_rows(self, supplier_id: str, rows: Sequence[ExtractedRow]) -> List[PriceRow]:
        """
        Массовая запись подтверждённых пользователем строк из загруженного прайса.
        Всё или ничего: ошибка в любой строке откатывает всю пачку.
        """
        if not rows:
            raise ValidationError("At least one row is required", {"field": "rows"})
        with self._session() as session:
            if session.get(SupplierDB, supplier_id) is None:
                raise NotFoundError(f"Supplier {supplier_id} not found", {"supplierId": supplier_id})
            created = []
            for index, extracted in enumerate(rows):
                try:
                    row = _build_price_row(
                        supplier_id,
                        extracted.sku,
                        extracted.product_name,
                        extracted.unit_type,
                        extracted.unit_price,
                        extracted.currency,
                        extracted.min_qty,
                        extracted.max_qty,
                        extracted.notes or None,
                    )
                except ValidationError as exc:
                    exc.details["rowIndex"] = index
                    raise
                session.add(row)
                created.append(row)
            session.flush()
            logger.info("Imported %s price rows for supplier %s", len(created), supplier_id)
            return [price_row_db_to_domain(row) for row in created]

    # ---------- Бизнес-правила ----------

    def set_business_rule(self, key: str, value: str, description: Optional[str] = None) -> BusinessRule:
        self.set_business_rules({key: value}, {key: description} if description else None)
        return BusinessRule(key=key.strip(), value=str(value).strip(), description=description)

    def set_business_rules(
        self,
        rules: Mapping[str, str],
        descriptions: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, str]:
        """Upsert пачкой; пустое значение у любого правила — ничего не пишем."""
        empty = sorted(key for key, value in rules.items() if not str(value if value is not None else "").strip())
        if not rules or empty:
            raise ValidationError("Business rule values cannot be empty", {"emptyKeys": empty})

        descriptions = descriptions or {}
        with self._session() as session:
            for key, value in rules.items():
                key = key.strip()
                row = session.get(BusinessRuleDB, key)
                if row is None:
                    row = BusinessRuleDB(key=key, value=str(value).strip())
                    session.add(row)
                else:
                    row.value = str(value).strip()
                if descriptions.get(key):
                    row.description = descriptions[key]
            return {rule.key: rule.value for rule in _list_business_rules(session)}

    # ---------- Демо-данные ----------

    def seed_sample_catalog(self) -> CatalogSnapshot:
        """Тестовый поставщик с двумя ценовыми порогами и базовые правила. Повторный вызов ничего не дублирует."""
        supplier = self.get_supplier_by_name("EverFloor Supplies")
        if supplier is None:
            supplier = self.create_supplier(
                "EverFloor Supplies",
                email="orders@everfloor.example",
                phone="+44 20 7946 0000",
                address="Unit 4, Riverside Trade Park, London",
            )
            self.create_price_row(
                supplier.id, "HYDRO-301", "HydroLoc Grey Herringbone", "box", 18.99, "GBP", 1, 49,
                "Box tier",
            )
            self.create_price_row(
                supplier.id, "HYDRO-301", "HydroLoc Grey Herringbone", "pallet", 17.50, "GBP", 50, None,
                "Pallet tier (50+ boxes)",
            )
        self.set_business_rules(
            {"default_currency": "GBP", "default_tax_rate": "20", "fitting_rate_per_m2": "15"},
            {
                "default_currency": "Currency for new orders",
                "default_tax_rate": "VAT, percent",
                "fitting_rate_per_m2": "Fitting labour, GBP per m2",
            },
        )
        return self.snapshot()


def _build_price_row(
    supplier_id: str,
    sku: str,
    product_name: str,
    unit_type: str,
    unit_price: float,
    currency: Optional[str],
    min_qty: Optional[int],
    max_qty: Optional[int],
    notes: Optional[str],
) -> PriceListRowDB:
    if not (sku or "").strip():
        raise ValidationError("SKU is required", {"field": "sku"})
    if not (product_name or "").strip():
        raise ValidationError("Product name is required", {"field": "productName"})
    if unit_price is None or unit_price <= 0:
        raise ValidationError("Unit price must be positive", {"field": "unitPrice"})
    if min_qty is not None and max_qty is not None and max_qty < min_qty:
        raise ValidationError("max_qty cannot be less than min_qty", {"field": "maxQty"})
    return PriceListRowDB(
        supplier_id=supplier_id,
        sku=sku.strip(),
        product_name=product_name.strip(),
        unit_type=(unit_type or "unit").strip(),
        unit_price=float(unit_price),
        currency=(currency or "GBP").strip().upper(),
        min_qty=min_qty,
        max_qty=max_qty,
        notes=notes,
    )


def load_snapshot(session: Session) -> CatalogSnapshot:
    return CatalogSnapshot(
        suppliers=tuple(_list_suppliers(session)),
        price_rows=tuple(_list_price_rows(session)),
        business_rules=tuple(_list_business_rules(session)),
    )


def _list_suppliers(session: Session) -> List[Supplier]:
    return [supplier_db_to_domain(s) for s in session.query(SupplierDB).order_by(SupplierDB.name).all()]


def _list_price_rows(session: Session, supplier_id: Optional[str] = None) -> List[PriceRow]:
    query = session.query(PriceListRowDB)
    if supplier_id is not None:
        query = query.filter(PriceListRowDB.supplier_id == supplier_id)
    rows = query.order_by(PriceListRowDB.sku, PriceListRowDB.min_qty, PriceListRowDB.unit_type).all()
    return [price_row_db_to_domain(r) for r in rows]


def _list_business_rules(session: Session) -> List[BusinessRule]:
    return [business_rule_db_to_domain(r) for r in session.query(BusinessRuleDB).order_by(BusinessRuleDB.key).all()]
