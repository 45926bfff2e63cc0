"""
Database Schemas for the Cake Shop

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase of the class name.

Example: class SpongeType -> collection "spongetype"

Request bodies live at the bottom of the module.
"""
import re
from datetime import datetime
from typing import Annotated, List, Optional, Literal

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, EmailStr, Field, field_validator


def _check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise ValueError("Invalid ObjectId")
    return value


ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]

Role = Literal["user", "admin"]
DiscountType = Literal["percentage", "fixed"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
ImageMimeType = Literal["image/jpeg", "image/png", "image/gif"]

PHONE_RE = r"^[0-9]{10}$"
ZIP_RE = r"^[0-9]{6}$"
COUPON_CODE_RE = re.compile(r"^[A-Z0-9]+$")


def normalize_coupon_code(value: str) -> str:
    code = (value or "").strip().upper()
    if not code:
        raise ValueError("Coupon code is required")
    if not COUPON_CODE_RE.match(code):
        raise ValueError("Coupon code must contain only letters and numbers")
    return code


# Core domain models

class Address(BaseModel):
    id: str = Field(default_factory=lambda: str(ObjectId()))
    street: str
    city: str
    state: str
    zip: str
    is_default: bool = False


class User(BaseModel):
    email: EmailStr
    hashed_password: str
    role: Role = "user"


class Profile(BaseModel):
    user_id: str
    name: str
    phone: str
    email: EmailStr
    preferences: List[str] = Field(default_factory=list)
    addresses: List[Address] = Field(default_factory=list)


class Customization(BaseModel):
    sponge_type_id: ObjectIdStr
    shape_id: ObjectIdStr
    size_id: ObjectIdStr
    flavor_id: ObjectIdStr
    inscription: str = Field("", max_length=100)

    @field_validator("inscription", mode="before")
    @classmethod
    def strip_inscription(cls, v):
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v


class CartItem(BaseModel):
    cake_id: ObjectIdStr
    quantity: int = Field(1, ge=1)
    customization: Customization


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class Category(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)


class Flavor(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)


class Size(BaseModel):
    name: str = Field(..., max_length=20, pattern=r"^[\d.]+kg$|^Custom$")


class Tag(BaseModel):
    name: str = Field(..., min_length=1)


class SpongeType(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class Shape(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class Availability(BaseModel):
    name: str = Field(..., min_length=1)


class DeliveryOption(BaseModel):
    name: str = Field(..., min_length=1)


class DietaryPreference(BaseModel):
    name: str = Field(..., min_length=1)


class Cake(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    price: float = Field(..., gt=0, le=100000)
    # None means stock is not tracked
    stock: Optional[int] = Field(None, ge=0, le=10000)
    category_id: ObjectIdStr
    image_ids: List[ObjectIdStr] = Field(..., min_length=1)
    tag_ids: List[ObjectIdStr] = Field(default_factory=list)
    flavor_ids: List[ObjectIdStr] = Field(..., min_length=1)
    size_ids: List[ObjectIdStr] = Field(..., min_length=1)
    sponge_type_id: ObjectIdStr
    shape_id: ObjectIdStr
    dietary_preference_ids: List[ObjectIdStr] = Field(default_factory=list)
    availability_id: ObjectIdStr
    delivery_option_ids: List[ObjectIdStr] = Field(..., min_length=1)

    @field_validator("name", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class Image(BaseModel):
    data: bytes
    filename: str
    mime_type: ImageMimeType
    size: int = Field(..., ge=0)


class Coupon(BaseModel):
    code: str
    discount_type: DiscountType
    discount_value: float = Field(..., gt=0)
    min_order_amount: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=1)
    used_count: int = 0
    used_by: List[str] = Field(default_factory=list)

    @field_validator("code", mode="before")
    @classmethod
    def check_code(cls, v):
        return normalize_coupon_code(v)


class ShippingAddress(BaseModel):
    street: str
    city: str
    state: str
    zip: str
    is_default: bool = False


class OrderCustomization(BaseModel):
    sponge_type_id: str
    shape_id: str
    size_id: str
    flavor_id: str
    sponge_type: str = "Unknown"
    shape: str = "Unknown"
    size: str = "Unknown"
    flavor: str = "Unknown"
    inscription: str = ""


class OrderItem(BaseModel):
    cake_id: str
    name: str
    price: float = Field(..., ge=0)
    image: str
    quantity: int = Field(..., ge=1)
    customization: OrderCustomization


class AppliedCoupon(BaseModel):
    code: str
    discount_amount: float = Field(..., ge=0)


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    total_amount: float
    final_amount: float = Field(..., ge=0)
    coupon: Optional[AppliedCoupon] = None
    shipping_address: ShippingAddress
    status: OrderStatus = "pending"


# Request bodies

class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: str = Field(..., pattern=PHONE_RE)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, pattern=PHONE_RE)
    preferences: Optional[List[str]] = None


class PasswordChange(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class AddressIn(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip: str = Field(..., pattern=ZIP_RE)
    is_default: bool = False


class AddressUpdate(BaseModel):
    street: Optional[str] = Field(None, min_length=1)
    city: Optional[str] = Field(None, min_length=1)
    state: Optional[str] = Field(None, min_length=1)
    zip: Optional[str] = Field(None, pattern=ZIP_RE)
    is_default: Optional[bool] = None


class RoleUpdate(BaseModel):
    role: Role


class StockUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


class CartItemIn(CartItem):
    pass


class CartLineRef(BaseModel):
    """Identifies one cart line of a cake: its full customization."""
    customization: Customization


class CartLineUpdate(CartLineRef):
    quantity: int = Field(..., ge=1)


class ApplyCouponRequest(BaseModel):
    coupon_code: str

    @field_validator("coupon_code", mode="before")
    @classmethod
    def check_code(cls, v):
        return normalize_coupon_code(v)


class CouponIn(BaseModel):
    code: str
    discount_type: DiscountType
    discount_value: float = Field(..., gt=0)
    min_order_amount: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, gt=0)
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=1)

    @field_validator("code", mode="before")
    @classmethod
    def check_code(cls, v):
        return normalize_coupon_code(v)


class InlineAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    is_default: bool = False


class PlaceOrderRequest(BaseModel):
    address_id: Optional[str] = None
    shipping_address: Optional[InlineAddress] = None
    coupon_code: Optional[str] = None

    @field_validator("coupon_code", mode="before")
    @classmethod
    def check_code(cls, v):
        if v is None:
            return None
        return normalize_coupon_code(v)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
