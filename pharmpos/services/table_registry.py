"""Closed registry of tables reachable through the generic /api/<table> routes."""

import json
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Callable

from sqlalchemy import Column
from sqlalchemy.orm import Session

from pharmpos.database import Base
from pharmpos.models.audit_log import AuditLog
from pharmpos.models.inventory import InventoryItem
from pharmpos.models.refund import Refund
from pharmpos.models.sale import Receipt, Sale, SaleItem
from pharmpos.models.user import User
from pharmpos.services import inventory_service, refund_service


@dataclass
class TableSpec:
    name: str
    model: type[Base]
    label: str
    # camelCase payload keys accepted on writes
    aliases: dict[str, str] = field(default_factory=dict)
    post_process: Callable[[dict], dict] | None = None
    default_order: tuple[str, bool] | None = None
    extra_reserved: frozenset[str] = frozenset()
    default_predicate: Callable[[dict[str, str]], str | None] | None = None
    prepare_insert: Callable[[Session, dict], None] | None = None
    update_guard: Callable[[dict], dict | None] | None = None
    after_update: Callable[[Session, str, dict], Any] | None = None
    append_only: bool = False
    # Prefix for <NAME>_CREATED / _UPDATED / _DELETED audit events; None disables auditing
    audit_name: str | None = None
    audit_event: Callable[[str, dict], str] | None = None

    @cached_property
    def columns(self) -> dict[str, Column]:
        return {c.name: c for c in self.model.__table__.columns}

    def map_keys(self, data: dict[str, Any]) -> dict[str, Any]:
        mapped = {}
        for key, value in data.items():
            mapped[self.aliases.get(key, key)] = value
        return mapped

    def shape(self, row: dict[str, Any]) -> dict[str, Any]:
        return self.post_process(row) if self.post_process else row

    def event_type(self, action: str, values: dict[str, Any]) -> str | None:
        if self.audit_event:
            return self.audit_event(action, values)
        if not self.audit_name:
            return None
        suffix = {"insert": "CREATED", "update": "UPDATED", "delete": "DELETED"}[action]
        return f"{self.audit_name}_{suffix}"


def _as_float(row: dict, *columns: str) -> dict:
    for column in columns:
        if column in row:
            try:
                row[column] = float(row[column]) if row[column] is not None else 0.0
            except (TypeError, ValueError):
                row[column] = 0.0
    return row


def _shape_sale(row: dict) -> dict:
    return _as_float(row, "total", "discount", "manual_discount", "tax_amount")


def _shape_sale_item(row: dict) -> dict:
    _as_float(row, "unit_price", "total", "cost_price")
    if "unit_price" in row:
        row["price"] = row["unit_price"]
    return row


def _shape_refund(row: dict) -> dict:
    _as_float(row, "amount")
    if "items" in row:
        try:
            row["items"] = refund_service.load_items(row["items"])
        except json.JSONDecodeError:
            row["items"] = []
    return row


INVENTORY_ALIASES = {
    "price": "unit_price",
    "costPrice": "cost_price",
    "wholesalePrice": "wholesale_price",
    "minWholesaleQuantity": "min_wholesale_quantity",
    "reorderLevel": "low_stock_threshold",
    "reorder_level": "low_stock_threshold",
    "batchNumber": "batch_number",
    "expiryDate": "expiry_date",
}

SALE_ALIASES = {
    "manualDiscount": "manual_discount",
    "taxAmount": "tax_amount",
    "paymentMethod": "payment_method",
    "customerName": "customer_name",
    "customerPhone": "customer_phone",
    "businessName": "business_name",
    "businessAddress": "business_address",
    "transactionId": "transaction_id",
    "saleType": "sale_type",
    "cashierId": "cashier_id",
    "cashierName": "cashier_name",
    "cashierEmail": "cashier_email",
}

USER_ALIASES = {
    "userEmail": "email",
    "firstName": "first_name",
    "lastName": "last_name",
}

REFUND_ALIASES = {
    "saleId": "sale_id",
    "refundType": "refund_type",
    "type": "refund_type",
    "initiatedBy": "initiated_by",
}


_TABLES = [
    TableSpec(
        name="inventory",
        model=InventoryItem,
        label="Inventory item",
        aliases=INVENTORY_ALIASES,
        post_process=inventory_service.shape_row,
        default_order=("name", True),
        extra_reserved=frozenset({"include_expired"}),
        default_predicate=inventory_service.read_predicate,
        prepare_insert=inventory_service.prepare_insert,
        audit_name="INVENTORY",
    ),
    TableSpec(
        name="sales",
        model=Sale,
        label="Sale",
        aliases=SALE_ALIASES,
        post_process=_shape_sale,
        audit_name="SALE",
    ),
    TableSpec(
        name="sales_items",
        model=SaleItem,
        label="Sale item",
        aliases={"isWholesale": "is_wholesale", "price": "unit_price"},
        post_process=_shape_sale_item,
        audit_name="SALE_ITEM",
    ),
    TableSpec(
        name="receipts",
        model=Receipt,
        label="Receipt",
        default_order=("created_at", False),
        audit_name="RECEIPT",
    ),
    TableSpec(
        name="refunds",
        model=Refund,
        label="Refund",
        aliases=REFUND_ALIASES,
        post_process=_shape_refund,
        update_guard=refund_service.transition_guard,
        after_update=refund_service.restore_on_approval,
        audit_event=refund_service.audit_event,
    ),
    TableSpec(
        name="users",
        model=User,
        label="User",
        aliases=USER_ALIASES,
        audit_name="USER",
    ),
    TableSpec(
        name="audit_logs",
        model=AuditLog,
        label="Audit log entry",
        default_order=("created_at", False),
        append_only=True,
    ),
]

REGISTRY: dict[str, TableSpec] = {spec.name: spec for spec in _TABLES}


def get_table(name: str) -> TableSpec | None:
    return REGISTRY.get(name)
