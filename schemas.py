"""
API Schemas for the JetECommerce backend

Each Pydantic model is either a request body or a row shape returned by one of
the stores. Attributes are snake_case in Python and camelCase on the wire
(e.g. product_id <-> "productId"), which is what the mobile client sends.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Users

class RegisterRequest(ApiModel):
    username: Optional[str] = Field(None, description="Login handle, defaults to name")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., description="Plain password, hashed before storage")
    name: str = Field(..., description="Full name")


class LoginRequest(ApiModel):
    email: EmailStr
    password: str


class ForgotPasswordRequest(ApiModel):
    email: EmailStr


class UserResponse(ApiModel):
    id: int
    username: str
    email: EmailStr
    name: str


class AuthResponse(UserResponse):
    token: str


class Contact(ApiModel):
    """Who to notify about an order."""
    email: str
    name: str


# Catalog

class CategoryIn(ApiModel):
    title: str = Field(..., min_length=1, description="Category title")
    image: Optional[str] = Field(None, description="Cover image URL")


class Category(CategoryIn):
    id: int


class ProductIn(ApiModel):
    title: str = Field(..., min_length=1, description="Product title")
    price: float = Field(..., ge=0, description="Unit price")
    description: Optional[str] = Field(None, description="Product description")
    category_id: Optional[int] = Field(None, description="Owning category id")
    image: Optional[str] = Field(None, description="Image URL")


class Product(ProductIn):
    id: int
    sell_number: int = Field(0, ge=0, description="Units sold across all orders")


# Cart

class CartItemRequest(ApiModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class CartQuantityRequest(ApiModel):
    quantity: int = Field(..., ge=1)


class CartItemResponse(ApiModel):
    id: int
    product_id: int
    user_id: int
    product_name: str
    quantity: int
    price: float
    image_url: Optional[str] = None


# Orders

class Address(ApiModel):
    address_line: str
    city: str
    state: str
    postal_code: str
    country: str


class OrderItem(ApiModel):
    id: int
    order_id: int
    product_id: Optional[int] = None
    quantity: int
    price: float
    product_name: str


class PricingSummary(ApiModel):
    subtotal: float = 0.0
    tax: float = 0.0
    shipping: float = 0.0
    discount: float = 0.0
    total: float = 0.0


class CheckoutSummary(PricingSummary):
    items: List[CartItemResponse] = Field(default_factory=list)


class Order(ApiModel):
    id: int
    user_id: int
    status: str = Field("PENDING", description="Order status")
    order_date: datetime
    subtotal: float
    shipping: float
    tax: float
    discount: float
    total_amount: float
    address: Address
    items: List[OrderItem] = Field(default_factory=list)


class OrderCreated(ApiModel):
    id: int
