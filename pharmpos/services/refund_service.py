import json
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from pharmpos.models.refund import Refund, RefundStatus
from pharmpos.services import inventory_service

logger = logging.getLogger(__name__)


@dataclass
class RestorationResult:
    refund_id: str
    restored: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)


def transition_guard(values: dict[str, Any]) -> dict[str, Any] | None:
    """Status changes only leave ``pending``; the UPDATE carries this as an extra predicate."""
    status = values.get("status")
    if status in (RefundStatus.APPROVED.value, RefundStatus.REJECTED.value):
        return {"status": RefundStatus.PENDING.value}
    return None


def load_items(raw: Any) -> list[dict]:
    if not raw:
        return []
    items = json.loads(raw) if isinstance(raw, str) else raw
    return items if isinstance(items, list) else []


def restore_on_approval(db: Session, refund_id: str, values: dict[str, Any]) -> RestorationResult | None:
    """Return approved refund quantities to stock inside the caller's transaction.

    Each item is restored in its own SAVEPOINT: a failing item is logged and
    skipped while the status change and the other items still commit.
    """
    if values.get("status") != RefundStatus.APPROVED.value:
        return None

    refund = db.get(Refund, refund_id)
    result = RestorationResult(refund_id=refund_id)
    if refund is None:
        return result

    try:
        items = load_items(refund.items)
    except json.JSONDecodeError as e:
        logger.error("Refund %s has unreadable items, nothing restored: %s", refund_id, e)
        return result

    for item in items:
        inventory_id = item.get("inventory_id") or item.get("product_id") or item.get("id")
        try:
            quantity = int(item.get("quantity") or 0)
        except (TypeError, ValueError):
            quantity = 0
        if not inventory_id or quantity <= 0:
            continue
        try:
            with db.begin_nested():
                found = inventory_service.increment_stock(db, inventory_id, quantity)
        except Exception as e:
            logger.error("Refund %s: restoring %d to inventory %s failed: %s", refund_id, quantity, inventory_id, e)
            result.failed.append({"inventory_id": inventory_id, "quantity": quantity, "error": str(e)})
            continue
        if not found:
            logger.warning("Refund %s: inventory %s not found, %d not restored", refund_id, inventory_id, quantity)
            result.failed.append({"inventory_id": inventory_id, "quantity": quantity, "error": "not found"})
            continue
        logger.info("Refund %s: restored %d to inventory %s", refund_id, quantity, inventory_id)
        result.restored.append({"inventory_id": inventory_id, "quantity": quantity})

    return result


def audit_event(action: str, values: dict[str, Any]) -> str:
    if action == "insert":
        return "REFUND_INITIATED"
    if action == "update":
        status = values.get("status")
        if status == RefundStatus.APPROVED.value:
            return "REFUND_APPROVED"
        if status == RefundStatus.REJECTED.value:
            return "REFUND_REJECTED"
        return "REFUND_UPDATED"
    return "REFUND_DELETED"
