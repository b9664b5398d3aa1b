# sourcing_service/models/order_intent.py
import uuid
from sqlalchemy import Column, String, Text, DateTime, Numeric, ForeignKey, text
from sqlalchemy.orm import relationship
from sourcing_service.db.base_class import Base
from sourcing_service.utils.datetime_utils import utcnow


class OrderIntent(Base):
    """Accepted deal waiting to be materialized by the order service."""

    __tablename__ = "order_intents"

    id = Column(
        String, primary_key=True, default=lambda: f"ord_{uuid.uuid4().hex[:12]}"
    )
    rfq_id = Column(
        String, ForeignKey("rfqs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quote_id = Column(
        String,
        ForeignKey("quotes.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    buyer_id = Column(String, nullable=False, index=True)
    seller_id = Column(String, nullable=False, index=True)
    final_price = Column(Numeric(12, 2), nullable=False)
    terms = Column(Text, nullable=True)
    status = Column(String, nullable=False, server_default=text("'pending'"))

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    quote = relationship("Quote", back_populates="order_intent")
