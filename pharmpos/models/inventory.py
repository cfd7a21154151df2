import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from pharmpos.database import Base


class InventoryItem(Base):
    __tablename__ = "inventory"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    # PH-<CAT2>-<NAME3>-<RAND4> when not supplied
    sku: Mapped[str | None] = mapped_column(String, unique=True, index=True, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    unit: Mapped[str] = mapped_column(String, server_default="pcs")

    quantity: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    unit_price: Mapped[float] = mapped_column(Float, server_default="0")
    cost_price: Mapped[float] = mapped_column(Float, server_default="0")
    wholesale_price: Mapped[float] = mapped_column(Float, server_default="0")
    min_wholesale_quantity: Mapped[int] = mapped_column(Integer, server_default="5")
    low_stock_threshold: Mapped[int] = mapped_column(Integer, server_default="10")

    batch_number: Mapped[str | None] = mapped_column(String, nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
