"""
Checkout and order placement.

placeOrder reads the cart and prices it outside any transaction, then writes the
order header, its address, the line items, the sell counters and the removal of
the lines it read in ONE transaction. A line whose quantity moved in between
aborts the whole order. The confirmation email is sent after that commit, so a
mail failure is logged and never takes the order back.
"""
from typing import Dict, List

import structlog
from sqlalchemy import insert, select
from sqlalchemy.engine import Connection

from cart import CartStore
from catalog import ProductStore
from database import Database, addresses, order_items, orders, row_to_dict, utcnow
from errors import CartChangedError, EmptyCartError, ShopError, UnexpectedError
from pricing import calculate_pricing
from schemas import Address, CartItemResponse, CheckoutSummary, Order, OrderItem, PricingSummary
from users import UserDirectory

logger = structlog.get_logger(__name__)

ORDER_STATUS_PENDING = "PENDING"

EMPTY_ADDRESS = Address(address_line="", city="", state="", postal_code="", country="")


class OrderWorkflow:
    def __init__(self, db: Database, cart_store: CartStore, product_store: ProductStore,
                 user_directory: UserDirectory, notifier):
        self.db = db
        self.cart_store = cart_store
        self.product_store = product_store
        self.user_directory = user_directory
        self.notifier = notifier

    def get_checkout_summary(self, user_id: int) -> CheckoutSummary:
        items = self.cart_store.get_cart(user_id)
        pricing = calculate_pricing(items)
        return CheckoutSummary(**pricing.model_dump(), items=items)

    def place_order(self, user_id: int, address: Address) -> int:
        items = self.cart_store.get_cart(user_id)
        if not items:
            raise EmptyCartError()
        # priced again here, never reused from an earlier preview
        pricing = calculate_pricing(items)

        log = logger.bind(user_id=user_id)
        try:
            with self.db.transaction() as c:
                order_id = self._insert_order(c, user_id, pricing)
                self._insert_address(c, order_id, address)
                for item in items:
                    self._insert_item(c, order_id, item)
                    self.product_store.increment_sell_count(item.product_id, item.quantity, conn=c)
                consumed = self.cart_store.consume_lines(user_id, items, conn=c)
                if consumed < len(items):
                    if not self.cart_store.get_cart(user_id, conn=c):
                        # a concurrent checkout consumed these lines first
                        raise EmptyCartError()
                    raise CartChangedError()
        except ShopError:
            raise
        except Exception as exc:
            log.exception("orders.place_failed")
            raise UnexpectedError("Failed to place order") from exc

        log.info("orders.placed", order_id=order_id, total=pricing.total, items=len(items))
        self._send_confirmation(user_id, order_id, address, items, pricing)
        return order_id

    def _insert_order(self, c: Connection, user_id: int, pricing: PricingSummary) -> int:
        result = c.execute(
            insert(orders).values(
                user_id=user_id,
                status=ORDER_STATUS_PENDING,
                subtotal=pricing.subtotal,
                shipping=pricing.shipping,
                tax=pricing.tax,
                discount=pricing.discount,
                total_amount=pricing.total,
                order_date=utcnow(),
            )
        )
        return result.inserted_primary_key[0]

    def _insert_address(self, c: Connection, order_id: int, address: Address) -> None:
        c.execute(insert(addresses).values(order_id=order_id, **address.model_dump()))

    def _insert_item(self, c: Connection, order_id: int, item: CartItemResponse) -> None:
        c.execute(
            insert(order_items).values(
                order_id=order_id,
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.price,
                product_name=item.product_name,
            )
        )

    def _send_confirmation(self, user_id: int, order_id: int, address: Address,
                           items: List[CartItemResponse], pricing: PricingSummary) -> None:
        try:
            contact = self.user_directory.find_email_and_name(user_id)
            self.notifier.send_order_confirmation(
                contact.email,
                contact.name,
                order_id,
                address,
                items,
                pricing.subtotal,
                pricing.shipping,
                pricing.tax,
                pricing.discount,
                pricing.total,
            )
        except ShopError as exc:
            logger.warning("orders.confirmation_not_sent", order_id=order_id, user_id=user_id, error=exc.message)

    def get_orders_by_user_id(self, user_id: int) -> List[Order]:
        with self.db.transaction() as c:
            order_rows = c.execute(
                select(orders)
                .where(orders.c.user_id == user_id)
                .order_by(orders.c.order_date.desc(), orders.c.id.desc())
            ).fetchall()
            order_ids = [r.id for r in order_rows]
            if not order_ids:
                return []
            address_rows = c.execute(select(addresses).where(addresses.c.order_id.in_(order_ids))).fetchall()
            item_rows = c.execute(
                select(order_items).where(order_items.c.order_id.in_(order_ids)).order_by(order_items.c.id)
            ).fetchall()

        by_order: Dict[int, Address] = {}
        for row in address_rows:
            d = row_to_dict(row)
            by_order.setdefault(d["order_id"], Address(**{k: d[k] for k in Address.model_fields}))

        items: Dict[int, List[OrderItem]] = {}
        for row in item_rows:
            item = OrderItem(**row_to_dict(row))
            items.setdefault(item.order_id, []).append(item)

        result = []
        for row in order_rows:
            d = row_to_dict(row)
            result.append(
                Order(
                    id=d["id"],
                    user_id=d["user_id"],
                    status=d["status"],
                    order_date=d["order_date"],
                    subtotal=d["subtotal"],
                    shipping=d["shipping"],
                    tax=d["tax"],
                    discount=d["discount"],
                    total_amount=d["total_amount"],
                    address=by_order.get(d["id"], EMPTY_ADDRESS),
                    items=items.get(d["id"], []),
                )
            )
        return result
