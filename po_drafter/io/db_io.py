# po_drafter/io/db_io.py
from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from po_drafter.config import config
from po_drafter.data_models import BusinessRule, PersistedOrder, PoItem, PriceRow, Supplier


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_session_factory(url: str, echo: bool = False) -> sessionmaker:
    """
    Фабрика сессий для произвольного URL.
    Для sqlite в памяти (тесты) нужен StaticPool, иначе каждое соединение видит пустую БД.
    """
    kwargs = {"echo": echo, "future": True}
    if url.startswith("sqlite") and ":memory:" in url:
        kwargs["connect_args"] = {"check_same_thread": False}
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


SessionLocal = make_session_factory(config.database.url, echo=config.database.echo)

Base = declarative_base()


class SupplierDB(Base):
    __tablename__ = "suppliers"

    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False, index=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    price_rows = relationship("PriceListRowDB", back_populates="supplier", cascade="all, delete-orphan")


class PriceListRowDB(Base):
    __tablename__ = "price_list_rows"

    id = Column(String, primary_key=True, default=_new_id)
    supplier_id = Column(String, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String, nullable=False, index=True)
    product_name = Column(String, nullable=False)
    unit_type = Column(String, nullable=False)  # box / pallet / m2 ...
    unit_price = Column(Float, nullable=False)
    currency = Column(String, nullable=False, default="GBP")
    min_qty = Column(Integer, nullable=True)
    max_qty = Column(Integer, nullable=True)  # None — без верхней границы
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    supplier = relationship("SupplierDB", back_populates="price_rows")


class BusinessRuleDB(Base):
    __tablename__ = "business_rules"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    description = Column(Text, nullable=True)


class PurchaseOrderDB(Base):
    __tablename__ = "purchase_orders"

    id = Column(String, primary_key=True, default=_new_id)
    supplier_name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="draft")
    user_request = Column(Text, nullable=True)
    extra_notes_for_supplier = Column(Text, nullable=True)
    delivery_instructions = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    items = relationship(
        "PoItemDB",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PoItemDB.position",
    )


class PoItemDB(Base):
    __tablename__ = "po_items"

    id = Column(String, primary_key=True, default=_new_id)
    po_id = Column(String, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    sku = Column(String, nullable=False)
    product_name = Column(String, nullable=False)
    unit_type = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    line_total = Column(Float, nullable=False)
    currency = Column(String, nullable=False, default="GBP")
    requested_quantity_raw = Column(String, nullable=True)
    price_source = Column(String, nullable=True)
    ai_confidence = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)

    order = relationship("PurchaseOrderDB", back_populates="items")


def init_db(session_factory: Optional[sessionmaker] = None) -> None:
    """Создаёт таблицы, если их ещё нет."""
    factory = session_factory or SessionLocal
    Base.metadata.create_all(bind=factory.kw["bind"])


@contextmanager
def get_session(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    session: Session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------- ORM -> домен ----------

def supplier_db_to_domain(row: SupplierDB) -> Supplier:
    return Supplier(id=row.id, name=row.name, email=row.email, phone=row.phone, address=row.address)


def price_row_db_to_domain(row: PriceListRowDB) -> PriceRow:
    return PriceRow(
        id=row.id,
        supplier_id=row.supplier_id,
        sku=row.sku,
        product_name=row.product_name,
        unit_type=row.unit_type,
        unit_price=float(row.unit_price),
        currency=row.currency or "GBP",
        min_qty=row.min_qty,
        max_qty=row.max_qty,
        notes=row.notes,
    )


def business_rule_db_to_domain(row: BusinessRuleDB) -> BusinessRule:
    return BusinessRule(key=row.key, value=row.value, description=row.description)


def order_db_to_domain(order: PurchaseOrderDB) -> PersistedOrder:
    """
    Маппит заказ вместе с позициями.
    created_at из sqlite приходит без tzinfo — считаем его UTC.
    """
    created_at = order.created_at
    if created_at is not None and created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)

    return PersistedOrder(
        id=order.id,
        supplier_name=order.supplier_name,
        status=order.status,
        created_at=created_at,
        items=[
            PoItem(
                id=item.id,
                po_id=item.po_id,
                sku=item.sku,
                product_name=item.product_name,
                unit_type=item.unit_type,
                quantity=item.quantity,
                unit_price=float(item.unit_price),
                line_total=float(item.line_total),
                currency=item.currency or "GBP",
                requested_quantity_raw=item.requested_quantity_raw,
                price_source=item.price_source,
                ai_confidence=item.ai_confidence,
                notes=item.notes,
            )
            for item in order.items
        ],
        extra_notes_for_supplier=order.extra_notes_for_supplier,
        delivery_instructions=order.delivery_instructions,
        user_request=order.user_request,
    )
