"""
Per-user shopping cart.

One row per (user, product). Adding a product that is already in the cart merges
the quantities with a single INSERT ... ON CONFLICT DO UPDATE, so two concurrent
add-to-cart calls can never lose an increment.
"""
from typing import List, Optional

import structlog
from sqlalchemy import delete, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from catalog import ProductStore
from database import Database, cart, products, utcnow
from errors import CartItemNotFound, UserNotFound, ValidationError
from schemas import CartItemResponse

logger = structlog.get_logger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _line_query():
    return (
        select(
            cart.c.id,
            cart.c.product_id,
            cart.c.user_id,
            cart.c.quantity,
            products.c.title.label("product_name"),
            products.c.price,
            products.c.image.label("image_url"),
        )
        .select_from(cart.join(products, cart.c.product_id == products.c.id))
        .order_by(cart.c.id)
    )


def _line(row) -> CartItemResponse:
    return CartItemResponse(**dict(row._mapping))


def _check_quantity(quantity: int) -> None:
    if quantity is None or quantity < 1:
        raise ValidationError("Quantity must be at least 1")


class CartStore:
    def __init__(self, db: Database, product_store: ProductStore):
        self.db = db
        self.product_store = product_store

    def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> CartItemResponse:
        _check_quantity(quantity)
        try:
            with self.db.transaction() as c:
                product = self.product_store.get_by_id(product_id, conn=c)
                line_id, total_quantity = self._merge_line(c, user_id, product_id, quantity)
        except IntegrityError as exc:
            # product existence is checked above, so the remaining foreign key is the user
            raise UserNotFound() from exc

        logger.info("cart.item_added", user_id=user_id, product_id=product_id, quantity=total_quantity)
        return CartItemResponse(
            id=line_id,
            product_id=product_id,
            user_id=user_id,
            product_name=product.title,
            quantity=total_quantity,
            price=product.price,
            image_url=product.image,
        )

    def _merge_line(self, c: Connection, user_id: int, product_id: int, quantity: int):
        dialect_insert = _UPSERT_DIALECTS.get(self.db.backend)
        if dialect_insert is not None:
            stmt = dialect_insert(cart).values(
                user_id=user_id, product_id=product_id, quantity=quantity, created_at=utcnow()
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[cart.c.user_id, cart.c.product_id],
                set_={"quantity": cart.c.quantity + stmt.excluded.quantity},
            ).returning(cart.c.id, cart.c.quantity)
            row = c.execute(stmt).one()
            return row.id, row.quantity

        # backends without ON CONFLICT: lock the existing row inside the transaction
        existing = c.execute(
            select(cart.c.id, cart.c.quantity)
            .where(cart.c.user_id == user_id, cart.c.product_id == product_id)
            .with_for_update()
        ).first()
        if existing is None:
            result = c.execute(
                insert(cart).values(user_id=user_id, product_id=product_id, quantity=quantity)
            )
            return result.inserted_primary_key[0], quantity
        c.execute(update(cart).where(cart.c.id == existing.id).values(quantity=cart.c.quantity + quantity))
        return existing.id, existing.quantity + quantity

    def get_cart(self, user_id: int, conn: Optional[Connection] = None) -> List[CartItemResponse]:
        with self.db.transaction(conn) as c:
            rows = c.execute(_line_query().where(cart.c.user_id == user_id)).fetchall()
        return [_line(r) for r in rows]

    def _get_line(self, c: Connection, user_id: int, line_id: int) -> CartItemResponse:
        row = c.execute(_line_query().where(cart.c.id == line_id, cart.c.user_id == user_id)).first()
        if row is None:
            raise CartItemNotFound()
        return _line(row)

    def update_quantity(self, user_id: int, line_id: int, quantity: int) -> CartItemResponse:
        _check_quantity(quantity)
        with self.db.transaction() as c:
            result = c.execute(
                update(cart).where(cart.c.id == line_id, cart.c.user_id == user_id).values(quantity=quantity)
            )
            if result.rowcount == 0:
                raise CartItemNotFound()
            return self._get_line(c, user_id, line_id)

    def delete_item(self, user_id: int, line_id: int) -> CartItemResponse:
        with self.db.transaction() as c:
            line = self._get_line(c, user_id, line_id)
            result = c.execute(delete(cart).where(cart.c.id == line_id, cart.c.user_id == user_id))
            if result.rowcount == 0:
                raise CartItemNotFound()
        logger.info("cart.item_removed", user_id=user_id, line_id=line_id)
        return line

    def consume_lines(self, user_id: int, lines: List[CartItemResponse], conn: Optional[Connection] = None) -> int:
        """
        Delete exactly the given lines, each only if its quantity is still the one read.

        Returns how many of them matched. Lines added or merged after the read are
        left in the cart.
        """
        consumed = 0
        with self.db.transaction(conn) as c:
            for line in lines:
                result = c.execute(
                    delete(cart).where(
                        cart.c.id == line.id,
                        cart.c.user_id == user_id,
                        cart.c.quantity == line.quantity,
                    )
                )
                consumed += result.rowcount
        return consumed

    def clear_cart(self, user_id: int, conn: Optional[Connection] = None) -> int:
        """Remove every line of the user's cart; returns how many rows went away."""
        with self.db.transaction(conn) as c:
            result = c.execute(delete(cart).where(cart.c.user_id == user_id))
        return result.rowcount
