"""Hotel and hotel group models."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String, func, true
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from hotelmarket_api.db.base import Base


class HotelGroup(Base):
    """Hotels that share a single loyalty pool."""

    __tablename__ = "hotel_groups"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    hotels = relationship("Hotel", back_populates="group")


class Hotel(Base):
    """Hotel selling in-house services with a markup on provider prices."""

    __tablename__ = "hotels"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    hotel_group_id = Column(UUID(as_uuid=True), ForeignKey("hotel_groups.id", ondelete="SET NULL"), nullable=True)
    markup_percentage = Column(Numeric(5, 2), nullable=False, default=0, server_default="0")
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0, server_default="0")
    currency = Column(String(3), nullable=False, default="EGP", server_default="EGP")
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    group = relationship("HotelGroup", back_populates="hotels")

    @property
    def loyalty_scope_id(self):
        """Ledger scope: the shared group pool when grouped, otherwise the hotel."""

        return self.hotel_group_id or self.id
