"""
Relational storage for the shop.

Tables are declared with SQLAlchemy Core and every statement the stores issue is
a parameterized Core construct. ``Database.transaction`` is the only way stores
obtain a connection, so every connection is released on both success and error.
"""
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    inspect,
)
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.pool import StaticPool

logger = structlog.get_logger(__name__)

metadata = MetaData()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("username", String(255), unique=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("password_hash", String(255), nullable=False),
    Column("name", String(255), nullable=False),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(255), nullable=False),
    Column("image", String(255)),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(255), nullable=False),
    Column("price", Float, nullable=False),
    Column("description", Text),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="SET NULL")),
    Column("image", String(255)),
    Column("sell_number", Integer, nullable=False, default=0),
)

cart = Table(
    "cart",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("product_id", Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), default=utcnow),
    UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("status", String(50), nullable=False, default="PENDING"),
    Column("subtotal", Float, nullable=False),
    Column("shipping", Float, nullable=False),
    Column("tax", Float, nullable=False),
    Column("discount", Float, nullable=False),
    Column("total_amount", Float, nullable=False),
    Column("order_date", DateTime(timezone=True), nullable=False, default=utcnow),
)

addresses = Table(
    "addresses",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_id", Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("address_line", Text, nullable=False),
    Column("city", String(255), nullable=False),
    Column("state", String(255), nullable=False),
    Column("postal_code", String(20), nullable=False),
    Column("country", String(255), nullable=False),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_id", Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("product_id", Integer, ForeignKey("products.id", ondelete="SET NULL")),
    Column("quantity", Integer, nullable=False),
    Column("price", Float, nullable=False),
    Column("product_name", String(255), nullable=False),
)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, timeout: float = 10.0) -> Engine:
    """Create an engine whose statements and pool checkouts are bounded by ``timeout`` seconds."""
    url = make_url(database_url)
    backend = url.get_backend_name()

    if backend == "sqlite":
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": timeout}}
        if url.database in (None, "", ":memory:"):
            # one shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    connect_args = {}
    if backend == "postgresql":
        connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    return create_engine(url, pool_pre_ping=True, pool_timeout=timeout, connect_args=connect_args)


class Database:
    def __init__(self, database_url: str, timeout: float = 10.0):
        self.engine = build_engine(database_url, timeout)
        self.backend = self.engine.dialect.name

    def create_all(self) -> None:
        metadata.create_all(self.engine)
        logger.info("database.tables_ready", backend=self.backend, tables=sorted(metadata.tables))

    @contextmanager
    def transaction(self, conn: Optional[Connection] = None):
        """
        Yield a connection inside a transaction.

        Commits when the block exits cleanly and rolls back when it raises. When
        ``conn`` is given the caller already owns a transaction, so the block
        simply joins it and leaves commit/rollback to the outer scope.
        """
        if conn is not None:
            yield conn
            return
        with self.engine.begin() as connection:
            yield connection

    def table_names(self):
        return inspect(self.engine).get_table_names()

    def dispose(self) -> None:
        self.engine.dispose()


def row_to_dict(row) -> Optional[dict]:
    if row is None:
        return None
    return dict(row._mapping)
