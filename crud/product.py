# crud/product.py

from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

import models


def get_product(db: Session, product_id: str) -> Optional[models.Product]:
    return db.query(models.Product).filter(models.Product.id == product_id).first()


def get_products_by_ids(db: Session, product_ids: Iterable[str]) -> Dict[str, models.Product]:
    """Loads the given products keyed by id; unknown ids are simply absent."""
    ids = list(dict.fromkeys(product_ids))
    if not ids:
        return {}
    rows = db.query(models.Product).filter(models.Product.id.in_(ids)).all()
    return {p.id: p for p in rows}


def get_product_by_square_variation(db: Session, variation_id: str) -> Optional[models.Product]:
    return db.query(models.Product).filter(models.Product.square_variation_id == variation_id).first()


def get_active_products(db: Session) -> List[models.Product]:
    return db.query(models.Product).filter(models.Product.is_active == True).order_by(models.Product.created_at.asc()).all()


def get_monthly_drop_products(db: Session) -> List[models.Product]:
    return db.query(models.Product).filter(
        models.Product.is_monthly_price_drop == True,
        models.Product.is_active == True,
    ).all()


def get_barn_burner_products(db: Session) -> List[models.Product]:
    return db.query(models.Product).filter(
        models.Product.category == "barn-burner",
        models.Product.is_active == True,
    ).all()
