"""
Product and category catalog.
"""
from typing import List, Optional

import structlog
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from database import Database, categories, products, row_to_dict
from errors import CategoryNotFound, ProductNotFound, ValidationError
from schemas import Category, CategoryIn, Product, ProductIn

logger = structlog.get_logger(__name__)

BEST_SELLER_LIMIT = 10

UNKNOWN_CATEGORY = "Category does not exist"


def _product(row) -> Product:
    d = row_to_dict(row)
    return Product(
        id=d["id"],
        title=d["title"],
        price=d["price"],
        description=d["description"],
        category_id=d["category_id"],
        image=d["image"],
        sell_number=d["sell_number"] or 0,
    )


class ProductStore:
    def __init__(self, db: Database):
        self.db = db

    def create(self, items: List[ProductIn], conn: Optional[Connection] = None) -> List[Product]:
        created = []
        try:
            with self.db.transaction(conn) as c:
                for item in items:
                    result = c.execute(insert(products).values(**item.model_dump(), sell_number=0))
                    created.append(Product(id=result.inserted_primary_key[0], sell_number=0, **item.model_dump()))
        except IntegrityError as exc:
            # the only foreign key on products is the category
            raise ValidationError(UNKNOWN_CATEGORY) from exc
        logger.info("products.created", count=len(created))
        return created

    def list(self, conn: Optional[Connection] = None) -> List[Product]:
        with self.db.transaction(conn) as c:
            rows = c.execute(select(products).order_by(products.c.id)).fetchall()
        return [_product(r) for r in rows]

    def get_by_id(self, product_id: int, conn: Optional[Connection] = None) -> Product:
        with self.db.transaction(conn) as c:
            row = c.execute(select(products).where(products.c.id == product_id)).first()
        if row is None:
            raise ProductNotFound()
        return _product(row)

    def get_by_category(self, category_id: int, conn: Optional[Connection] = None) -> List[Product]:
        with self.db.transaction(conn) as c:
            rows = c.execute(
                select(products).where(products.c.category_id == category_id).order_by(products.c.id)
            ).fetchall()
        return [_product(r) for r in rows]

    def best_sellers(self, limit: int = BEST_SELLER_LIMIT, conn: Optional[Connection] = None) -> List[Product]:
        with self.db.transaction(conn) as c:
            rows = c.execute(
                select(products).order_by(products.c.sell_number.desc(), products.c.id).limit(limit)
            ).fetchall()
        return [_product(r) for r in rows]

    def update(self, product_id: int, item: ProductIn, conn: Optional[Connection] = None) -> Product:
        try:
            with self.db.transaction(conn) as c:
                result = c.execute(update(products).where(products.c.id == product_id).values(**item.model_dump()))
                if result.rowcount == 0:
                    raise ProductNotFound()
                row = c.execute(select(products).where(products.c.id == product_id)).first()
        except IntegrityError as exc:
            raise ValidationError(UNKNOWN_CATEGORY) from exc
        return _product(row)

    def delete(self, product_id: int, conn: Optional[Connection] = None) -> None:
        with self.db.transaction(conn) as c:
            result = c.execute(delete(products).where(products.c.id == product_id))
        if result.rowcount == 0:
            raise ProductNotFound()
        logger.info("products.deleted", product_id=product_id)

    def increment_sell_count(self, product_id: int, quantity: int, conn: Optional[Connection] = None) -> None:
        # no existence check: a vanished product simply updates nothing
        with self.db.transaction(conn) as c:
            c.execute(
                update(products)
                .where(products.c.id == product_id)
                .values(sell_number=products.c.sell_number + quantity)
            )


class CategoryStore:
    def __init__(self, db: Database):
        self.db = db

    def create(self, items: List[CategoryIn], conn: Optional[Connection] = None) -> List[Category]:
        created = []
        with self.db.transaction(conn) as c:
            for item in items:
                result = c.execute(insert(categories).values(**item.model_dump()))
                created.append(Category(id=result.inserted_primary_key[0], **item.model_dump()))
        return created

    def list(self, conn: Optional[Connection] = None) -> List[Category]:
        with self.db.transaction(conn) as c:
            rows = c.execute(select(categories).order_by(categories.c.id)).fetchall()
        return [Category(**row_to_dict(r)) for r in rows]

    def get_by_id(self, category_id: int, conn: Optional[Connection] = None) -> Category:
        with self.db.transaction(conn) as c:
            row = c.execute(select(categories).where(categories.c.id == category_id)).first()
        if row is None:
            raise CategoryNotFound()
        return Category(**row_to_dict(row))

    def update(self, category_id: int, item: CategoryIn, conn: Optional[Connection] = None) -> Category:
        with self.db.transaction(conn) as c:
            result = c.execute(
                update(categories).where(categories.c.id == category_id).values(**item.model_dump())
            )
        if result.rowcount == 0:
            raise CategoryNotFound()
        return Category(id=category_id, **item.model_dump())

    def delete(self, category_id: int, conn: Optional[Connection] = None) -> None:
        with self.db.transaction(conn) as c:
            result = c.execute(delete(categories).where(categories.c.id == category_id))
        if result.rowcount == 0:
            raise CategoryNotFound()
