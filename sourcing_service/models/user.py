# sourcing_service/models/user.py
import uuid
from sqlalchemy import Column, String, DateTime, text
from sqlalchemy.sql import func
from sourcing_service.db.base_class import Base


class User(Base):
    """Marketplace participant; a buyer, a seller, or both."""

    __tablename__ = "users"

    id = Column(
        String, primary_key=True, default=lambda: f"usr_{uuid.uuid4().hex[:12]}"
    )
    email = Column(String, nullable=True, unique=True)
    phone = Column(String, nullable=True)
    business_name = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    # basic, standard, enhanced, premium
    verification_tier = Column(String, nullable=False, server_default=text("'basic'"))

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
