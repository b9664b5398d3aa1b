# sourcing_service/models/product.py
import uuid
from sqlalchemy import (
    Column, String, Text, Boolean, Integer, DateTime, Numeric, ForeignKey, Index, text
)
from sqlalchemy.sql import func
from sourcing_service.db.base_class import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(
        String, primary_key=True, default=lambda: f"prd_{uuid.uuid4().hex[:12]}"
    )
    seller_id = Column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    stock_quantity = Column(Integer, nullable=False, server_default=text("0"))
    is_service = Column(Boolean, nullable=False, server_default=text("false"))
    status = Column(String, nullable=False, server_default=text("'active'"))

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_products_seller_status", "seller_id", "status"),
    )
