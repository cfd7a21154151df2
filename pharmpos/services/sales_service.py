import json
import logging
import time
import uuid
from collections import OrderedDict
from datetime import date, datetime, timezone

from sqlalchemy import case, func, insert, select, update
from sqlalchemy.orm import Session

from pharmpos.models.inventory import InventoryItem
from pharmpos.models.sale import Receipt, Sale, SaleItem
from pharmpos.schemas.sale import SaleCreate, SaleResult

logger = logging.getLogger(__name__)

TOTAL_TOLERANCE = 0.01


def _generate_transaction_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    short = uuid.uuid4().hex[:6].upper()
    return f"TR-{ts}-{short}"


def _demand_by_item(data: SaleCreate) -> "OrderedDict[str, int]":
    """Total requested quantity per inventory id, in ascending id order."""
    demand: dict[str, int] = {}
    for item in data.items:
        demand[item.inventory_id] = demand.get(item.inventory_id, 0) + item.quantity
    return OrderedDict(sorted(demand.items()))


def _prefetch_stock(db: Session, ids: list[str]) -> dict[str, InventoryItem]:
    rows = db.execute(
        select(
            InventoryItem.id,
            InventoryItem.name,
            InventoryItem.quantity,
            InventoryItem.cost_price,
            InventoryItem.expiry_date,
        )
        .where(InventoryItem.id.in_(ids))
        .order_by(InventoryItem.id)
        .with_for_update()
    ).all()
    return {row.id: row for row in rows}


def _check_stock(data: SaleCreate, demand: dict[str, int], stock: dict) -> None:
    today = date.today()
    for inventory_id, requested in demand.items():
        product = stock.get(inventory_id)
        if product is None:
            raise ValueError(f"Product not found: {inventory_id}")
        if product.expiry_date and product.expiry_date < today:
            raise ValueError(f"Cannot sell EXPIRED item: {product.name} (Exp: {product.expiry_date.isoformat()})")
        if product.quantity < requested:
            raise ValueError(
                f"Insufficient stock for {product.name}. Available: {product.quantity}, Requested: {requested}"
            )


def _decrement_stock(db: Session, demand: "OrderedDict[str, int]") -> None:
    """One UPDATE ... SET quantity = CASE id WHEN ... END for every line of the sale."""
    stmt = (
        update(InventoryItem)
        .where(InventoryItem.id.in_(list(demand)))
        .values(
            quantity=case(
                {inventory_id: InventoryItem.quantity - qty for inventory_id, qty in demand.items()},
                value=InventoryItem.id,
                else_=InventoryItem.quantity,
            ),
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    if result.rowcount != len(demand):
        raise ValueError(
            f"Stock update touched {result.rowcount} of {len(demand)} inventory rows; sale aborted"
        )


def complete_sale(db: Session, data: SaleCreate, snapshot: dict) -> SaleResult:
    """Record a sale atomically: header, line items, stock decrement, receipt.

    ``snapshot`` is the payload exactly as received; it is stored on the
    receipt for reprints.
    Any failure rolls the whole sale back and re-raises.
    """
    sale_id = data.id or str(uuid.uuid4())
    transaction_id = data.transaction_id or _generate_transaction_id()
    receipt_id = str(uuid.uuid4())
    start = time.monotonic()

    logger.info("SALE START: %s items=%d", transaction_id, len(data.items))
    if abs(data.expected_total - data.total) > TOTAL_TOLERANCE:
        logger.warning(
            "Sale %s total %.2f differs from computed %.2f; storing the submitted total",
            transaction_id, data.total, data.expected_total,
        )

    try:
        sale = Sale(
            id=sale_id,
            user_id=data.user_id or data.cashier_id,
            total=data.total,
            discount=data.discount,
            manual_discount=data.manual_discount,
            tax_amount=data.tax_amount,
            payment_method=data.payment_method,
            customer_name=data.customer_name,
            customer_phone=data.customer_phone,
            business_name=data.business_name,
            business_address=data.business_address,
            sale_type=data.sale_type.value,
            transaction_id=transaction_id,
            cashier_id=data.cashier_id,
            cashier_name=data.cashier_name or "Admin",
            cashier_email=data.cashier_email,
        )
        db.add(sale)
        db.flush()

        if data.items:
            demand = _demand_by_item(data)
            stock = _prefetch_stock(db, list(demand))
            _check_stock(data, demand, stock)

            db.execute(
                insert(SaleItem).values([
                    {
                        "id": str(uuid.uuid4()),
                        "sale_id": sale_id,
                        "inventory_id": item.inventory_id,
                        "product_name": item.name or stock[item.inventory_id].name,
                        "quantity": item.quantity,
                        "unit_price": item.price,
                        "total": item.line_total,
                        "is_wholesale": item.is_wholesale,
                        "cost_price": stock[item.inventory_id].cost_price or 0.0,
                    }
                    for item in data.items
                ])
            )
            _decrement_stock(db, demand)

        db.add(Receipt(
            id=receipt_id,
            sale_id=sale_id,
            receipt_number=transaction_id,
            receipt_data=json.dumps(snapshot, default=str),
        ))
        db.commit()
    except Exception:
        db.rollback()
        logger.error("SALE FAILED: %s rolled back", transaction_id)
        raise

    logger.info("SALE SUCCESS: %s in %.0fms", transaction_id, (time.monotonic() - start) * 1000)
    return SaleResult(
        sale_id=sale_id,
        transaction_id=transaction_id,
        receipt_id=receipt_id,
        subtotal=data.subtotal,
    )
