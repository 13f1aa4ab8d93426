# po_drafter/orders/order_store.py
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.orm import selectinload, sessionmaker

from po_drafter.catalog.catalog_store import load_snapshot
from po_drafter.data_models import DraftOrder, PersistedOrder
from po_drafter.drafting.commit_gate import prepare_commit
from po_drafter.errors import NotFoundError
from po_drafter.io.db_io import PoItemDB, PurchaseOrderDB, get_session, order_db_to_domain


logger = logging.getLogger(__name__)


class OrderStore:
    """Сохранённые заказы. Черновик попадает сюда только через commit gate."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self._session_factory = session_factory

    def commit_order(self, draft: DraftOrder, user_request: Optional[str] = None) -> PersistedOrder:
        """
        Одна транзакция: каталог читается в той же сессии, что и запись,
        затем проверка (IncompleteDraftError) и заголовок + все позиции.
        Если упала проверка или запись любой позиции, не сохраняется ничего.
        """
        with get_session(self._session_factory) as session:
            ready = prepare_commit(draft, load_snapshot(session))
            order = PurchaseOrderDB(
                supplier_name=ready.supplier_name.strip(),
                status="draft",
                user_request=user_request,
                extra_notes_for_supplier=ready.extra_notes_for_supplier or None,
                delivery_instructions=ready.delivery_instructions or None,
            )
            for position, item in enumerate(ready.items):
                order.items.append(
                    PoItemDB(
                        position=position,
                        sku=item.sku,
                        product_name=item.product_name,
                        unit_type=item.unit_type,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        line_total=item.line_total,
                        currency=item.currency,
                        requested_quantity_raw=item.requested_quantity_raw or None,
                        price_source=item.price_source or None,
                        ai_confidence=item.confidence,
                        notes=item.notes or None,
                    )
                )
            session.add(order)
            session.flush()
            persisted = order_db_to_domain(order)

        logger.info(
            "Committed order %s: supplier=%r items=%s total=%.2f",
            persisted.id,
            persisted.supplier_name,
            len(persisted.items),
            persisted.total,
        )
        return persisted

    def get_order(self, order_id: str) -> PersistedOrder:
        with get_session(self._session_factory) as session:
            order = (
                session.query(PurchaseOrderDB)
                .options(selectinload(PurchaseOrderDB.items))
                .filter(PurchaseOrderDB.id == order_id)
                .first()
            )
            if order is None:
                raise NotFoundError(f"Purchase order {order_id} not found", {"orderId": order_id})
            return order_db_to_domain(order)

    def list_orders(self, limit: int = 100) -> List[PersistedOrder]:
        """Новые сверху."""
        with get_session(self._session_factory) as session:
            orders = (
                session.query(PurchaseOrderDB)
                .options(selectinload(PurchaseOrderDB.items))
                .order_by(PurchaseOrderDB.created_at.desc(), PurchaseOrderDB.id)
                .limit(limit)
                .all()
            )
            return [order_db_to_domain(o) for o in orders]

    def delete_order(self, order_id: str) -> None:
        with get_session(self._session_factory) as session:
            order = session.get(PurchaseOrderDB, order_id)
            if order is None:
                raise NotFoundError(f"Purchase order {order_id} not found", {"orderId": order_id})
            session.delete(order)
            logger.info("Deleted purchase order %s", order_id)
