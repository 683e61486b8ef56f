from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, ForeignKey, DateTime, JSON, Text
from typing import Optional, List, Dict, Any

from parcelops.time_utils import utcnow
from .authz import Base


class Order(Base):
    __tablename__ = 'orders'
    # Lifecycle status constants
    STATUS_PENDING = 'pending'
    STATUS_PROCESSING = 'processing'
    STATUS_SHIPPED = 'shipped'
    STATUS_DELIVERED = 'delivered'
    STATUS_CANCELLED = 'cancelled'
    STATUS_RETURNED = 'returned'
    ALL_STATUSES = (
        STATUS_PENDING,
        STATUS_PROCESSING,
        STATUS_SHIPPED,
        STATUS_DELIVERED,
        STATUS_CANCELLED,
        STATUS_RETURNED,
    )
    PAYMENT_COD = 'cod'
    PAYMENT_PREPAID = 'prepaid'
    PAYMENT_CREDIT = 'credit'
    ALL_PAYMENT_METHODS = (PAYMENT_COD, PAYMENT_PREPAID, PAYMENT_CREDIT)
    ALL_PRIORITIES = ('low', 'medium', 'high', 'urgent')

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[Optional[str]] = mapped_column(String(32), unique=True, index=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(32), index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id'), nullable=False, index=True)
    # list of {name, description, quantity, weight, value_cents, category}
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default='medium')
    payment_method: Mapped[str] = mapped_column(String(16), nullable=False, default=PAYMENT_PREPAID)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delivery_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tax_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    customer = relationship('Customer', back_populates='orders')

__all__ = ["Order"]
