# sourcing_service/models/quote.py
import uuid
from sqlalchemy import (
    Column, String, Text, Integer, DateTime, Numeric, ForeignKey, Index,
    UniqueConstraint, text
)
from sqlalchemy.orm import relationship
from sourcing_service.db.base_class import Base
from sourcing_service.utils.datetime_utils import utcnow


class Quote(Base):
    __tablename__ = "quotes"

    id = Column(
        String, primary_key=True, default=lambda: f"quo_{uuid.uuid4().hex[:12]}"
    )
    rfq_id = Column(
        String, ForeignKey("rfqs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    seller_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Pricing
    total_price = Column(Numeric(12, 2), nullable=False)
    original_price = Column(Numeric(12, 2), nullable=False)  # price before negotiation

    delivery_timeline = Column(String(100), nullable=True)
    terms_conditions = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)

    # pending, negotiating, accepted, rejected, expired, withdrawn
    status = Column(String, nullable=False, server_default=text("'pending'"))

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # Relationships
    rfq = relationship("RFQ", back_populates="quotes")
    seller = relationship("User")
    items = relationship(
        "QuoteItem",
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="QuoteItem.product_id",
    )
    negotiation_entries = relationship(
        "NegotiationEntry",
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="NegotiationEntry.round_number",
    )
    order_intent = relationship("OrderIntent", back_populates="quote", uselist=False)

    @property
    def order_id(self):
        return self.order_intent.id if self.order_intent else None

    __table_args__ = (
        UniqueConstraint("rfq_id", "seller_id", name="uq_quote_rfq_seller"),
        Index("ix_quotes_status_valid_until", "status", "valid_until"),
    )


class QuoteItem(Base):
    __tablename__ = "quote_items"

    id = Column(
        String, primary_key=True, default=lambda: f"qit_{uuid.uuid4().hex[:12]}"
    )
    quote_id = Column(
        String, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = Column(
        String, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    # Relationships
    quote = relationship("Quote", back_populates="items")
    product = relationship("Product")
