# sourcing_service/models/rfq.py
import uuid
from sqlalchemy import (
    Column, String, Text, Integer, DateTime, Numeric, ForeignKey, Index, text
)
from sqlalchemy.orm import relationship
from sourcing_service.db.base_class import Base
from sourcing_service.utils.datetime_utils import utcnow


class RFQ(Base):
    __tablename__ = "rfqs"

    id = Column(
        String, primary_key=True, default=lambda: f"rfq_{uuid.uuid4().hex[:12]}"
    )
    buyer_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category_id = Column(String, nullable=False)
    quantity = Column(Integer, nullable=True)
    budget_min = Column(Numeric(12, 2), nullable=True)
    budget_max = Column(Numeric(12, 2), nullable=True)
    delivery_timeline = Column(String(100), nullable=True)
    delivery_location = Column(Text, nullable=True)

    # active, completed, expired, cancelled
    status = Column(String, nullable=False, server_default=text("'active'"))
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # Relationships
    buyer = relationship("User")
    quotes = relationship("Quote", back_populates="rfq")

    __table_args__ = (
        Index("ix_rfqs_status_expires_at", "status", "expires_at"),
    )
