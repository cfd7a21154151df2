import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, false, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pharmpos.database import Base


class SaleType(str, PyEnum):
    RETAIL = "retail"
    WHOLESALE = "wholesale"


class Sale(Base):
    __tablename__ = "sales"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    # Pricing, as computed by the till
    total: Mapped[float] = mapped_column(Float, server_default="0")
    discount: Mapped[float] = mapped_column(Float, server_default="0")  # percent
    manual_discount: Mapped[float] = mapped_column(Float, server_default="0")  # absolute amount
    tax_amount: Mapped[float] = mapped_column(Float, server_default="0")
    payment_method: Mapped[str] = mapped_column(String, server_default="Cash")

    # Customer / business
    customer_name: Mapped[str] = mapped_column(String, server_default="Walk-in Customer")
    customer_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    business_name: Mapped[str | None] = mapped_column(String, nullable=True)
    business_address: Mapped[str | None] = mapped_column(String, nullable=True)

    sale_type: Mapped[str] = mapped_column(String, server_default=SaleType.RETAIL.value)
    transaction_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)

    # Cashier
    cashier_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    cashier_name: Mapped[str | None] = mapped_column(String, nullable=True)
    cashier_email: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), index=True)

    items: Mapped[list["SaleItem"]] = relationship(
        "SaleItem", back_populates="sale", cascade="all, delete-orphan", passive_deletes=True
    )
    receipts: Mapped[list["Receipt"]] = relationship(
        "Receipt", back_populates="sale", cascade="all, delete-orphan", passive_deletes=True
    )


class SaleItem(Base):
    __tablename__ = "sales_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    sale_id: Mapped[str] = mapped_column(String, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    # Weak reference: deleting a sold inventory row must fail
    inventory_id: Mapped[str] = mapped_column(String, ForeignKey("inventory.id"), nullable=False, index=True)
    product_name: Mapped[str] = mapped_column(String, server_default="")
    quantity: Mapped[int] = mapped_column(Integer, server_default="1")
    unit_price: Mapped[float] = mapped_column(Float, server_default="0")
    total: Mapped[float] = mapped_column(Float, server_default="0")
    is_wholesale: Mapped[bool] = mapped_column(Boolean, server_default=false())
    # Inventory cost at the time of sale, for profit reporting
    cost_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    sale: Mapped["Sale"] = relationship("Sale", back_populates="items")


class Receipt(Base):
    __tablename__ = "receipts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    sale_id: Mapped[str] = mapped_column(String, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    receipt_number: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    receipt_data: Mapped[str] = mapped_column(Text, nullable=False)  # JSON snapshot of the sale payload
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    sale: Mapped["Sale"] = relationship("Sale", back_populates="receipts")
