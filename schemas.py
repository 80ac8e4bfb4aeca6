"""
Database Schemas for FreshWash Laundry

Each Pydantic model corresponds to a MongoDB collection. Collection name is the
lowercase class name. Embedded structures are plain models without a collection.
"""
from datetime import datetime
from typing import Optional, List, Dict, Literal, get_args

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, EmailStr

ServiceCategory = Literal["Shirts", "Pants", "Dresses", "Bedding", "Jackets", "Accessories", "Others"]
SubServiceType = Literal["wash", "iron", "dryClean", "washAndIron"]
PaymentMethod = Literal["stripe", "cod", "razorpay", "card"]
OrderStatus = Literal["pending", "confirmed", "in-progress", "completed", "cancelled", "refunded"]
ContactCategory = Literal["general", "complaint", "suggestion", "pickup-request", "pricing", "technical"]
ContactPriority = Literal["low", "medium", "high", "urgent"]
ContactStatus = Literal["new", "in-progress", "resolved", "closed"]

SUB_SERVICE_TYPES = list(get_args(SubServiceType))
ORDER_STATUSES = list(get_args(OrderStatus))

PHONE_PATTERN = r"^[6-9]\d{9}$"


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "India"


class User(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address: Address = Field(default_factory=Address)
    is_admin: bool = False
    is_active: bool = True
    last_login: Optional[datetime] = None


class SubService(BaseModel):
    available: bool = False
    price: float = Field(0, ge=0)


def default_sub_services() -> Dict[str, SubService]:
    return {key: SubService() for key in SUB_SERVICE_TYPES}


class Service(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    category: ServiceCategory = "Others"
    services: Dict[SubServiceType, SubService] = Field(default_factory=default_sub_services)
    image: str = "/images/default-service.jpg"
    is_active: bool = True
    min_quantity: int = Field(1, ge=1)
    max_quantity: int = Field(50, ge=1)
    estimated_time: str = "24-48 hours"
    special_instructions: Optional[str] = Field(None, max_length=200)


class OrderItem(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    service: ObjectId
    service_type: str = Field(..., min_length=1, description="Sub-service key, e.g. wash")
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    subtotal: float = Field(..., ge=0)


class ShippingAddress(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = "India"
    instructions: Optional[str] = None


class PaymentResult(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None
    card_last4: Optional[str] = None
    is_demo_mode: bool = False


class StatusHistoryEntry(BaseModel):
    status: OrderStatus
    timestamp: datetime
    note: str


class Order(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId
    order_items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = "card"
    payment_result: Optional[PaymentResult] = None
    items_price: float = Field(0, ge=0)
    shipping_price: float = Field(0, ge=0)
    tax_price: float = Field(0, ge=0)
    total_price: float = Field(0, ge=0)
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    status: OrderStatus = "pending"
    status_history: List[StatusHistoryEntry] = []
    pickup_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    special_instructions: Optional[str] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None
    version: int = 0


class Response(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    message: str
    responded_at: datetime
    responded_by: ObjectId


class Feedback(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId
    order: Optional[ObjectId] = None
    service: Optional[ObjectId] = None
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=500)
    service_quality: Optional[int] = Field(None, ge=1, le=5)
    delivery_speed: Optional[int] = Field(None, ge=1, le=5)
    value_for_money: Optional[int] = Field(None, ge=1, le=5)
    would_recommend: bool = True
    is_approved: bool = True
    is_public: bool = True
    admin_response: Optional[Response] = None


class Contact(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    subject: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=1000)
    category: ContactCategory = "general"
    priority: ContactPriority = "medium"
    status: ContactStatus = "new"
    is_read: bool = False
    read_at: Optional[datetime] = None
    read_by: Optional[ObjectId] = None
    response: Optional[Response] = None
    user: Optional[ObjectId] = None
