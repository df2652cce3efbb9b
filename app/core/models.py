import uuid
from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey
from datetime import datetime
from app.core.db import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255))
    # customer | vendor | admin
    type = Column(String(20), nullable=False, default="customer")
    # active | suspended | banned
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True, default=_new_id)
    customer_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    vendor_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    # pending -> confirmed -> preparing -> ready -> completed, or cancelled
    status = Column(String(20), nullable=False, default="pending", index=True)
    item_name = Column(String(255), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
