# sourcing_service/crud/crud_product.py
from typing import List
from sqlalchemy.orm import Session

from sourcing_service.models.product import Product


def get_active_for_seller(db: Session, *, seller_id: str, product_ids: List[str]) -> List[Product]:
    """Products among ``product_ids`` that are active and owned by the seller."""
    if not product_ids:
        return []
    return (
        db.query(Product)
        .filter(
            Product.id.in_(product_ids),
            Product.seller_id == seller_id,
            Product.status == "active",
        )
        .all()
    )
