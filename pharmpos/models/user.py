import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from pharmpos.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String, server_default="")
    last_name: Mapped[str] = mapped_column(String, server_default="")
    role: Mapped[str] = mapped_column(String, server_default="DISPENSER")  # SUPER_ADMIN, ADMIN, PHARMACIST, DISPENSER
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
