from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, ForeignKey, DateTime, Text
from typing import Optional

from parcelops.time_utils import utcnow
from .authz import Base


class Payment(Base):
    """Payment recorded by accounting staff against an order's invoice."""
    __tablename__ = 'payments'
    METHOD_CARD = 'card'
    METHOD_BANK_TRANSFER = 'bank_transfer'
    METHOD_CASH = 'cash'
    METHOD_CHECK = 'check'
    METHOD_OTHER = 'other'
    ALL_METHODS = (METHOD_CARD, METHOD_BANK_TRANSFER, METHOD_CASH, METHOD_CHECK, METHOD_OTHER)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id'), nullable=False, index=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False, default=METHOD_CARD)
    payment_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    reference: Mapped[Optional[str]] = mapped_column(String(64))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

__all__ = ["Payment"]
