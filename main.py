import os
import time
from contextlib import asynccontextmanager
from typing import List, Optional, Union

import structlog
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cart import CartStore
from catalog import CategoryStore, ProductStore
from config import Settings, get_settings
from database import Database
from errors import ShopError
from logging_setup import configure_logging
from notifications import LoggingGateway, MailerSendGateway
from orders import OrderWorkflow
from schemas import (
    Address,
    CartItemRequest,
    CartQuantityRequest,
    CategoryIn,
    ForgotPasswordRequest,
    LoginRequest,
    OrderCreated,
    ProductIn,
    RegisterRequest,
)
from users import UserDirectory

logger = structlog.get_logger(__name__)

router = APIRouter()


# Helpers

def envelope(msg: str, data=None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"msg": msg, "data": jsonable_encoder(data)})


def error_envelope(status_code: int, msg: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": status_code, "msg": msg})


def as_list(payload):
    return payload if isinstance(payload, list) else [payload]


# Dependencies: everything is built once in create_app and hung off app.state

def get_db(request: Request) -> Database:
    return request.app.state.db


def get_users(request: Request) -> UserDirectory:
    return request.app.state.users


def get_products(request: Request) -> ProductStore:
    return request.app.state.products


def get_categories(request: Request) -> CategoryStore:
    return request.app.state.categories


def get_cart(request: Request) -> CartStore:
    return request.app.state.cart


def get_orders(request: Request) -> OrderWorkflow:
    return request.app.state.orders


@router.get("/")
def read_root():
    return {"message": "JetECommerce API running"}


@router.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "backend_name": db.backend,
        "connection_status": "Not Connected",
        "tables": [],
    }
    try:
        response["tables"] = db.table_names()[:10]
        response["connection_status"] = "Connected"
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        logger.warning("database.probe_failed", error=str(e))
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth endpoints
@router.post("/auth/register")
def register(payload: RegisterRequest, users: UserDirectory = Depends(get_users)):
    user = users.register(payload)
    return envelope("User registered successfully", user, status_code=201)


@router.post("/auth/login")
def login(payload: LoginRequest, users: UserDirectory = Depends(get_users)):
    return envelope("Login successful", users.login(payload.email, payload.password))


@router.post("/auth/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, users: UserDirectory = Depends(get_users)):
    users.reset_password(payload.email)
    return envelope("A new password has been sent to your email")


# Categories
@router.post("/categories")
def create_categories(payload: Union[List[CategoryIn], CategoryIn], store: CategoryStore = Depends(get_categories)):
    return envelope("Categories created successfully", store.create(as_list(payload)), status_code=201)


@router.get("/categories")
def list_categories(store: CategoryStore = Depends(get_categories)):
    return envelope("List categories", store.list())


@router.get("/categories/{category_id}")
def get_category(category_id: int, store: CategoryStore = Depends(get_categories)):
    return envelope("Category found", store.get_by_id(category_id))


@router.put("/categories/{category_id}")
def update_category(category_id: int, payload: CategoryIn, store: CategoryStore = Depends(get_categories)):
    return envelope("Category updated successfully", store.update(category_id, payload))


@router.delete("/categories/{category_id}")
def delete_category(category_id: int, store: CategoryStore = Depends(get_categories)):
    store.delete(category_id)
    return envelope("Category deleted successfully")


# Products
@router.post("/products")
def create_products(payload: Union[List[ProductIn], ProductIn], store: ProductStore = Depends(get_products)):
    return envelope("Products created successfully", store.create(as_list(payload)), status_code=201)


@router.get("/products")
def list_products(store: ProductStore = Depends(get_products)):
    return envelope("List products", store.list())


@router.get("/products/best-sellers")
def best_sellers(limit: Optional[int] = None, store: ProductStore = Depends(get_products)):
    items = store.best_sellers(limit) if limit else store.best_sellers()
    return envelope("Best sellers", items)


@router.get("/products/category/{category_id}")
def products_by_category(category_id: int, store: ProductStore = Depends(get_products)):
    return envelope("List products", store.get_by_category(category_id))


@router.get("/products/{product_id}")
def get_product(product_id: int, store: ProductStore = Depends(get_products)):
    return envelope("Product found", store.get_by_id(product_id))


@router.put("/products/{product_id}")
def update_product(product_id: int, payload: ProductIn, store: ProductStore = Depends(get_products)):
    return envelope("Product updated successfully", store.update(product_id, payload))


@router.delete("/products/{product_id}")
def delete_product(product_id: int, store: ProductStore = Depends(get_products)):
    store.delete(product_id)
    return envelope("Product deleted successfully")


# Cart
@router.post("/cart/{user_id}")
def add_to_cart(user_id: int, payload: CartItemRequest, store: CartStore = Depends(get_cart)):
    line = store.add_to_cart(user_id, payload.product_id, payload.quantity)
    return envelope("Item added to cart successfully", line)


@router.get("/cart/{user_id}")
def get_user_cart(user_id: int, store: CartStore = Depends(get_cart)):
    return envelope("Cart items retrieved successfully", store.get_cart(user_id))


@router.put("/cart/{user_id}/{cart_id}")
def update_cart_item(user_id: int, cart_id: int, payload: CartQuantityRequest, store: CartStore = Depends(get_cart)):
    line = store.update_quantity(user_id, cart_id, payload.quantity)
    return envelope("Cart item quantity updated successfully", line)


@router.delete("/cart/{user_id}/{cart_id}")
def delete_cart_item(user_id: int, cart_id: int, store: CartStore = Depends(get_cart)):
    return envelope("Item removed from cart successfully", store.delete_item(user_id, cart_id))


# Orders
@router.get("/orders/checkout/{user_id}")
def checkout_summary(user_id: int, workflow: OrderWorkflow = Depends(get_orders)):
    return envelope("Checkout summary", workflow.get_checkout_summary(user_id))


@router.post("/orders/{user_id}")
def place_order(user_id: int, address: Address, workflow: OrderWorkflow = Depends(get_orders)):
    order_id = workflow.place_order(user_id, address)
    return envelope("Place order successfully", OrderCreated(id=order_id))


@router.get("/orders/{user_id}")
def list_orders(user_id: int, workflow: OrderWorkflow = Depends(get_orders)):
    return envelope("List order", workflow.get_orders_by_user_id(user_id))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        if exc.status_code >= 500:
            logger.error("request.failed", path=request.url.path, error=exc.message, cause=repr(exc.__cause__))
        return error_envelope(exc.status_code, exc.public_message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            msg = f"{field}: {first.get('msg')}" if field else first.get("msg")
        else:
            msg = "Invalid request"
        return error_envelope(400, msg)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return error_envelope(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("request.unhandled", path=request.url.path)
        return error_envelope(500, "An unexpected error occurred")


def create_app(settings: Optional[Settings] = None, notifier=None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)

    db = Database(settings.database_url, settings.db_timeout_seconds)
    if notifier is None:
        if settings.mailersend_api_key:
            notifier = MailerSendGateway(
                settings.mailersend_api_key,
                settings.mailersend_sender,
                settings.mailersend_base_url,
                timeout=settings.db_timeout_seconds,
            )
        else:
            logger.warning("email.disabled", reason="MAILERSEND_API_KEY not set")
            notifier = LoggingGateway()

    products = ProductStore(db)
    users = UserDirectory(db, notifier)
    cart = CartStore(db, products)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.create_all()
        yield
        notifier.close()
        db.dispose()

    app = FastAPI(title="JetECommerce API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "request.completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response

    app.state.settings = settings
    app.state.db = db
    app.state.notifier = notifier
    app.state.products = products
    app.state.categories = CategoryStore(db)
    app.state.users = users
    app.state.cart = cart
    app.state.orders = OrderWorkflow(db, cart, products, users, notifier)

    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
