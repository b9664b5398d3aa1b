# sourcing_service/models/__init__.py
# Import all models so SQLAlchemy can resolve relationships.
# Order matters for dependencies - import base models first

from sourcing_service.db.base_class import Base
from sourcing_service.models.user import User
from sourcing_service.models.product import Product
from sourcing_service.models.rfq import RFQ
from sourcing_service.models.quote import Quote, QuoteItem
from sourcing_service.models.negotiation_entry import NegotiationEntry
from sourcing_service.models.order_intent import OrderIntent
