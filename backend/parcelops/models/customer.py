from __future__ import annotations
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, DateTime
from typing import Optional

from parcelops.time_utils import utcnow
from .authz import Base


class Customer(Base):
    __tablename__ = 'customers'
    TIER_BRONZE = 'bronze'
    TIER_SILVER = 'silver'
    TIER_GOLD = 'gold'
    TIER_PLATINUM = 'platinum'
    ALL_TIERS = (TIER_BRONZE, TIER_SILVER, TIER_GOLD, TIER_PLATINUM)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(128), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    company: Mapped[Optional[str]] = mapped_column(String(128))
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default=TIER_BRONZE)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    orders = relationship('Order', back_populates='customer')

__all__ = ["Customer"]
