import logging
import random
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from pharmpos.config import settings
from pharmpos.models.inventory import InventoryItem

logger = logging.getLogger(__name__)

SKU_ATTEMPTS = 20


def _sku_prefix(value: str | None, length: int, fallback: str) -> str:
    cleaned = "".join(ch for ch in (value or "") if ch.isalnum())
    return (cleaned or fallback)[:length].upper()


def generate_sku(db: Session, category: str | None, name: str | None) -> str:
    """Build a PH-<CAT2>-<NAME3>-<RAND4> SKU that is not taken yet."""
    prefix = f"PH-{_sku_prefix(category, 2, 'GEN')}-{_sku_prefix(name, 3, 'PRD')}"
    for _ in range(SKU_ATTEMPTS):
        sku = f"{prefix}-{random.randint(1000, 9999)}"
        taken = db.scalar(select(func.count()).select_from(InventoryItem).where(InventoryItem.sku == sku))
        if not taken:
            return sku
    raise ValueError(f"Could not allocate a free SKU for prefix {prefix}")


def prepare_insert(db: Session, data: dict[str, Any]) -> None:
    if not (data.get("sku") or "").strip():
        data["sku"] = generate_sku(db, data.get("category"), data.get("name"))


def read_predicate(options: dict[str, str]) -> str | None:
    """Hide expired stock unless the caller asks for it."""
    if options.get("include_expired", "").lower() == "true":
        return None
    return "(expiry_date IS NULL OR expiry_date > CURRENT_DATE)"


def _number(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def shape_row(row: dict[str, Any]) -> dict[str, Any]:
    if "unit_price" in row:
        row["unit_price"] = _number(row["unit_price"])
        row["price"] = row["unit_price"]
    for key in ("cost_price", "wholesale_price"):
        if key in row:
            row[key] = _number(row[key])
    if "low_stock_threshold" in row:
        row["low_stock_threshold"] = row["low_stock_threshold"] or settings.DEFAULT_LOW_STOCK_THRESHOLD
        row["reorder_level"] = row["low_stock_threshold"]
    if "sku" in row and not row["sku"] and row.get("id"):
        row["sku"] = f"SKU-{str(row['id'])[:8].upper()}"
    if "unit" in row:
        row["unit"] = row["unit"] or "pcs"
    return row


def increment_stock(db: Session, inventory_id: str, quantity: int) -> bool:
    """Add ``quantity`` to one inventory row with a covering UPDATE. Returns False if the row is missing."""
    result = db.execute(
        update(InventoryItem)
        .where(InventoryItem.id == inventory_id)
        .values(quantity=InventoryItem.quantity + quantity, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0