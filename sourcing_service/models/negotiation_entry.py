# sourcing_service/models/negotiation_entry.py
import uuid
from sqlalchemy import (
    Column, String, Text, Integer, DateTime, Numeric, ForeignKey, Index,
    UniqueConstraint, text
)
from sqlalchemy.orm import relationship
from sourcing_service.db.base_class import Base
from sourcing_service.utils.datetime_utils import utcnow


class NegotiationEntry(Base):
    """
    One offer exchanged on a quote. Price and terms never change after
    insert; only ``status`` moves (pending -> accepted | rejected | expired).
    """

    __tablename__ = "negotiation_entries"

    id = Column(
        String, primary_key=True, default=lambda: f"neg_{uuid.uuid4().hex[:12]}"
    )
    quote_id = Column(
        String, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False
    )
    round_number = Column(Integer, nullable=False)  # 1-based, per quote
    from_user_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    to_user_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    offer_type = Column(String(20), nullable=False)  # original, counter, final
    price = Column(Numeric(12, 2), nullable=False)
    terms = Column(Text, nullable=True)
    message = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, server_default=text("'pending'"))
    valid_until = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    quote = relationship("Quote", back_populates="negotiation_entries")
    from_user = relationship("User", foreign_keys=[from_user_id])
    to_user = relationship("User", foreign_keys=[to_user_id])

    __table_args__ = (
        UniqueConstraint("quote_id", "round_number", name="uq_negotiation_quote_round"),
        Index("ix_negotiation_entries_quote_created", "quote_id", "created_at"),
        Index("ix_negotiation_entries_from_status", "from_user_id", "status"),
        Index("ix_negotiation_entries_to_status", "to_user_id", "status"),
        Index("ix_negotiation_entries_status_valid_until", "status", "valid_until"),
    )
