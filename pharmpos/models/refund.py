import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Float, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from pharmpos.database import Base


class RefundStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RefundType(str, PyEnum):
    FULL = "full"
    PARTIAL = "partial"


class Refund(Base):
    __tablename__ = "refunds"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    sale_id: Mapped[str] = mapped_column(String, ForeignKey("sales.id"), nullable=False, index=True)
    amount: Mapped[float] = mapped_column(Float, server_default="0")
    reason: Mapped[str] = mapped_column(Text, server_default="")
    refund_type: Mapped[str] = mapped_column(String, server_default=RefundType.FULL.value)
    status: Mapped[str] = mapped_column(String, server_default=RefundStatus.PENDING.value, index=True)
    # JSON list of {inventory_id, quantity, unit_price}
    items: Mapped[str] = mapped_column(Text, server_default="[]")
    initiated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
