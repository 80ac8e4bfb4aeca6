import logging
import os
import re
import secrets
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Literal, Optional

from bson import ObjectId
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import lifecycle
import reports
from database import (
    create_document,
    db,
    ensure_indexes,
    get_db,
    get_document_by_id,
    paginate,
    serialize_doc,
    to_object_id,
    update_document,
    utcnow,
)
from errors import (
    ConflictError,
    DatabaseUnavailableError,
    ForbiddenError,
    InvalidStateError,
    LaundryError,
    NotFoundError,
    ValidationFailedError,
)
from notifications import ContactReceived, ContactResponded, Dispatcher, UserRegistered, get_dispatcher
from schemas import (
    Address,
    Contact,
    ContactCategory,
    ContactPriority,
    ContactStatus,
    Feedback,
    OrderStatus,
    PaymentMethod,
    PHONE_PATTERN,
    Response,
    Service,
    ServiceCategory,
    ShippingAddress,
    SubService,
    SubServiceType,
    User,
    default_sub_services,
)

logger = logging.getLogger(__name__)

# Environment / Auth settings
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))
SUPER_ADMIN_EMAIL = os.getenv("SUPER_ADMIN_EMAIL")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes(db)
    yield


app = FastAPI(title="FreshWash Laundry API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error envelope
ERROR_STATUS_CODES: Dict[type, int] = {
    NotFoundError: 404,
    ForbiddenError: 403,
    InvalidStateError: 400,
    ValidationFailedError: 400,
    ConflictError: 409,
    DatabaseUnavailableError: 503,
}


@app.exception_handler(LaundryError)
async def laundry_error_handler(request: Request, exc: LaundryError) -> JSONResponse:
    """Map LaundryError subclasses to HTTP responses."""
    content = {"message": str(exc)}
    if isinstance(exc, ValidationFailedError) and exc.errors:
        content["errors"] = exc.errors
    return JSONResponse(status_code=ERROR_STATUS_CODES.get(type(exc), 500), content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"message": "Validation errors", "errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)


def ok(**payload) -> dict:
    return {"success": True, **serialize_doc(payload)}


def search_regex(text: str) -> dict:
    return {"$regex": re.escape(text), "$options": "i"}


class Page:
    """page / limit query parameters."""

    def __init__(self, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
        self.page = page
        self.limit = limit


# Auth helpers
class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    address: Optional[Address] = None
    password: Optional[str] = Field(None, min_length=6)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def _user_from_token(database, token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
    except JWTError:
        return None
    if user_id is None or not ObjectId.is_valid(user_id):
        return None
    return database["user"].find_one({"_id": ObjectId(user_id)})


def get_current_user(token: str = Depends(oauth2_scheme), database=Depends(get_db)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    user = _user_from_token(database, token)
    if not user:
        raise credentials_exception
    if not user.get("is_active", True):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is deactivated")
    return user


def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme), database=Depends(get_db)):
    if not token:
        return None
    user = _user_from_token(database, token)
    if user and user.get("is_active", True):
        return user
    return None


# Admin guard
def require_admin(user=Depends(get_current_user)):
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Not authorized as an admin")
    return user


def public_user(user: dict) -> dict:
    return {k: v for k, v in user.items() if k != "password_hash"}


# Diagnostics
@app.get("/")
def root():
    return {"message": "FreshWash Laundry API is running"}


@app.get("/api/health")
def health():
    return {"message": "FreshWash API is running!", "timestamp": utcnow().isoformat()}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"

    return response


# Auth endpoints
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterPayload, background_tasks: BackgroundTasks,
             database=Depends(get_db), dispatcher: Dispatcher = Depends(get_dispatcher)):
    email = payload.email.lower()
    if database["user"].find_one({"email": email}):
        raise ConflictError("User already exists")

    user = User(
        name=payload.name.strip(),
        email=email,
        password_hash=get_password_hash(payload.password),
        phone=payload.phone,
    )
    try:
        doc = create_document(database, "user", user)
    except DuplicateKeyError:
        raise ConflictError("User already exists")
    dispatcher.outbox(background_tasks)(UserRegistered(name=doc["name"], email=doc["email"]))
    token = create_access_token({"sub": str(doc["_id"])})
    return ok(access_token=token, token_type="bearer", user=public_user(doc))


@app.post("/api/auth/login")
def login(payload: LoginPayload, database=Depends(get_db)):
    user = database["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account is deactivated")

    user = update_document(database, "user", user["_id"], {"last_login": utcnow()})
    access_token = create_access_token({"sub": str(user["_id"])})
    return ok(access_token=access_token, token_type="bearer", user=public_user(user))


@app.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return ok(user=public_user(user))


@app.put("/api/auth/profile")
def update_profile(payload: ProfileUpdate, user=Depends(get_current_user), database=Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True, exclude={"password"})
    if payload.password:
        changes["password_hash"] = get_password_hash(payload.password)
    updated = update_document(database, "user", user["_id"], changes)
    return ok(user=public_user(updated))


# Service endpoints
class ServiceIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    category: ServiceCategory = "Others"
    services: Optional[Dict[SubServiceType, SubService]] = None
    image: Optional[str] = None
    min_quantity: int = Field(1, ge=1)
    max_quantity: int = Field(50, ge=1)
    estimated_time: Optional[str] = None
    special_instructions: Optional[str] = Field(None, max_length=200)


class ServiceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    category: Optional[ServiceCategory] = None
    services: Optional[Dict[SubServiceType, SubService]] = None
    image: Optional[str] = None
    min_quantity: Optional[int] = Field(None, ge=1)
    max_quantity: Optional[int] = Field(None, ge=1)
    estimated_time: Optional[str] = None
    special_instructions: Optional[str] = Field(None, max_length=200)
    is_active: Optional[bool] = None


def _merge_sub_services(given: Optional[dict]) -> dict:
    merged = default_sub_services()
    merged.update(given or {})
    return merged


@app.get("/api/services")
def list_services(
    category: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "name",
    order: Literal["asc", "desc"] = "asc",
    database=Depends(get_db),
):
    filter_q = {"is_active": True}
    if category and category != "all":
        filter_q["category"] = category
    if search:
        filter_q["$or"] = [
            {"name": search_regex(search)},
            {"description": search_regex(search)},
            {"category": search_regex(search)},
        ]

    direction = -1 if order == "desc" else 1
    if sort_by in ("name", "category"):
        sort = [(sort_by, direction)]
    elif sort_by == "price":
        # No single price to sort on, fall back to creation order
        sort = [("created_at", direction)]
    else:
        sort = [("created_at", -1)]

    services = list(database["service"].find(filter_q).sort(sort))
    return ok(count=len(services), services=services)


@app.get("/api/services/categories")
def list_service_categories(database=Depends(get_db)):
    return ok(categories=sorted(database["service"].distinct("category", {"is_active": True})))


@app.get("/api/services/category/{category}")
def list_services_by_category(category: str, database=Depends(get_db)):
    services = list(database["service"].find({
        "category": {"$regex": f"^{re.escape(category)}$", "$options": "i"},
        "is_active": True,
    }).sort("name", 1))
    return ok(count=len(services), category=category, services=services)


@app.get("/api/services/{service_id}")
def get_service(service_id: str, database=Depends(get_db)):
    service = get_document_by_id(database, "service", service_id)
    if not service or not service.get("is_active", True):
        raise NotFoundError("Service")
    return ok(service=service)


@app.post("/api/services", status_code=201, dependencies=[Depends(require_admin)])
def create_service(payload: ServiceIn, database=Depends(get_db)):
    if database["service"].find_one({"name": payload.name}):
        raise ConflictError("Service with this name already exists")
    data = payload.model_dump(exclude_none=True)
    data["services"] = _merge_sub_services(payload.services)
    try:
        service = create_document(database, "service", Service(**data))
    except DuplicateKeyError:
        raise ConflictError("Service with this name already exists")
    return ok(service=service)


@app.put("/api/services/{service_id}", dependencies=[Depends(require_admin)])
def update_service(service_id: str, payload: ServiceUpdate, database=Depends(get_db)):
    service = database["service"].find_one({"_id": to_object_id(service_id, "Service")})
    if not service:
        raise NotFoundError("Service")

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in changes and database["service"].find_one({"name": changes["name"], "_id": {"$ne": service["_id"]}}):
        raise ConflictError("Service with this name already exists")
    if "services" in changes:
        changes["services"] = _merge_sub_services(payload.services)

    current = {k: v for k, v in service.items() if k in Service.model_fields}
    merged = Service(**{**current, **changes})
    try:
        updated = update_document(database, "service", service["_id"], merged)
    except DuplicateKeyError:
        raise ConflictError("Service with this name already exists")
    return ok(service=updated)


@app.delete("/api/services/{service_id}", dependencies=[Depends(require_admin)])
def delete_service(service_id: str, database=Depends(get_db)):
    if not update_document(database, "service", service_id, {"is_active": False}):
        raise NotFoundError("Service")
    return ok(message="Service removed")


# Order endpoints
class OrderItemIn(BaseModel):
    service: str
    service_type: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    subtotal: Optional[float] = Field(None, ge=0)


class PaymentResultIn(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None
    card_last4: Optional[str] = None
    is_demo_mode: bool = False


class OrderCreate(BaseModel):
    order_items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = "card"
    items_price: float = Field(0, ge=0)
    shipping_price: float = Field(0, ge=0)
    tax_price: float = Field(0, ge=0)
    total_price: float = Field(..., gt=0)
    special_instructions: Optional[str] = None
    pickup_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    payment_result: Optional[PaymentResultIn] = None


class Payer(BaseModel):
    email_address: Optional[str] = None


class PayPayload(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None
    payer: Optional[Payer] = None


class StatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = None
    version: Optional[int] = None


class VersionPayload(BaseModel):
    version: Optional[int] = None


def _list_orders(database, page: Page, status_filter=None, search=None, start_date=None, end_date=None):
    query = {}
    if status_filter and status_filter != "all":
        query["status"] = status_filter
    if search:
        query["$or"] = [
            {"shipping_address.name": search_regex(search)},
            {"shipping_address.phone": search_regex(search)},
        ]
    created = {}
    if start_date:
        created["$gte"] = start_date
    if end_date:
        created["$lte"] = end_date
    if created:
        query["created_at"] = created

    orders, meta = paginate(database, "order", query, page.page, page.limit, sort=[("created_at", -1)])
    return ok(orders=[lifecycle.populate_order(database, o) for o in orders], **meta)


@app.post("/api/orders", status_code=201)
def create_order(payload: OrderCreate, background_tasks: BackgroundTasks,
                 user=Depends(get_current_user), database=Depends(get_db),
                 dispatcher: Dispatcher = Depends(get_dispatcher)):
    order = lifecycle.create_order(
        database, user, payload.model_dump(), emit=dispatcher.outbox(background_tasks)
    )
    return ok(order=order)


@app.get("/api/orders/myorders")
def my_orders(status: Optional[str] = None, page: Page = Depends(),
              user=Depends(get_current_user), database=Depends(get_db)):
    query = {"user": user["_id"]}
    if status and status != "all":
        query["status"] = status
    orders, meta = paginate(database, "order", query, page.page, page.limit, sort=[("created_at", -1)])
    return ok(orders=[lifecycle.populate_order(database, o) for o in orders], **meta)


@app.get("/api/orders", dependencies=[Depends(require_admin)])
def list_orders(
    status: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: Page = Depends(),
    database=Depends(get_db),
):
    return _list_orders(database, page, status, search, start_date, end_date)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    order = lifecycle.load_order_for(database, order_id, user, action="view")
    return ok(order=lifecycle.populate_order(database, order))


@app.put("/api/orders/{order_id}/pay")
def pay_order(order_id: str, background_tasks: BackgroundTasks, payload: Optional[PayPayload] = None,
              user=Depends(get_current_user), database=Depends(get_db),
              dispatcher: Dispatcher = Depends(get_dispatcher)):
    payload = payload or PayPayload()
    payment_result = {
        "id": payload.id,
        "status": payload.status,
        "update_time": payload.update_time,
        "email_address": payload.email_address or (payload.payer.email_address if payload.payer else None),
    }
    order = lifecycle.reconcile_payment(
        database, order_id, user, payment_result, emit=dispatcher.outbox(background_tasks)
    )
    return ok(order=order)


@app.put("/api/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def update_order_status(order_id: str, payload: StatusUpdate, background_tasks: BackgroundTasks,
                        database=Depends(get_db), dispatcher: Dispatcher = Depends(get_dispatcher)):
    order = lifecycle.update_status(
        database, order_id, payload.status, note=payload.note,
        expected_version=payload.version, emit=dispatcher.outbox(background_tasks),
    )
    return ok(order=order)


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, background_tasks: BackgroundTasks, payload: Optional[VersionPayload] = None,
                 user=Depends(get_current_user), database=Depends(get_db),
                 dispatcher: Dispatcher = Depends(get_dispatcher)):
    order = lifecycle.cancel_order(
        database, order_id, user,
        expected_version=payload.version if payload else None,
        emit=dispatcher.outbox(background_tasks),
    )
    return ok(message="Order cancelled successfully", order=order)


# Payment endpoints (demo mode)
class PaymentIntentIn(BaseModel):
    amount: float = Field(..., gt=0)
    currency: Literal["inr", "usd", "INR", "USD"] = "inr"
    order_id: Optional[str] = None
    metadata: dict = {}


class ConfirmPaymentIn(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)
    order_id: Optional[str] = None


class CardDetails(BaseModel):
    card_number: Optional[str] = None
    expiry: Optional[str] = None
    cvc: Optional[str] = None
    name: Optional[str] = None


class ProcessDemoIn(BaseModel):
    order_id: str
    card_details: Optional[CardDetails] = None


class RefundIn(BaseModel):
    payment_intent_id: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)
    reason: str = "requested_by_customer"
    order_id: Optional[str] = None


def _demo_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def _payment_summary(order: dict) -> dict:
    return {
        "_id": order["_id"],
        "is_paid": order["is_paid"],
        "paid_at": order.get("paid_at"),
        "status": order["status"],
        "total_price": order["total_price"],
    }


@app.post("/api/payments/create-payment-intent")
def create_payment_intent(payload: PaymentIntentIn, user=Depends(get_current_user)):
    intent_id = _demo_id("pi_demo")
    amount = round(payload.amount * 100)
    logger.info(
        "Demo payment intent %s created: amount=%s %s user=%s order=%s",
        intent_id, amount, payload.currency.lower(), user["_id"], payload.order_id or "none",
    )
    return ok(
        client_secret=f"{intent_id}_secret_{secrets.token_hex(5)}",
        payment_intent_id=intent_id,
        amount=amount,
        currency=payload.currency.lower(),
        is_demo_mode=True,
    )


@app.post("/api/payments/confirm")
def confirm_payment(payload: ConfirmPaymentIn, background_tasks: BackgroundTasks,
                    user=Depends(get_current_user), database=Depends(get_db),
                    dispatcher: Dispatcher = Depends(get_dispatcher)):
    intent = {
        "id": payload.payment_intent_id,
        "status": "succeeded",
        "amount": 0,
        "currency": "inr",
        "is_demo_mode": True,
    }
    logger.info("Demo payment confirmed: %s", payload.payment_intent_id)

    if not payload.order_id:
        return ok(message="Demo payment confirmed", payment_intent=intent)

    order = lifecycle.reconcile_payment(
        database, payload.order_id, user,
        {
            "id": payload.payment_intent_id,
            "status": "succeeded",
            "update_time": utcnow().isoformat(),
            "email_address": user["email"],
            "is_demo_mode": True,
        },
        emit=dispatcher.outbox(background_tasks),
    )
    return ok(
        message="Demo payment confirmed and order updated",
        order=_payment_summary(order),
        payment_intent=intent,
    )


@app.post("/api/payments/process-demo")
def process_demo_payment(payload: ProcessDemoIn, background_tasks: BackgroundTasks,
                         user=Depends(get_current_user), database=Depends(get_db),
                         dispatcher: Dispatcher = Depends(get_dispatcher)):
    payment_id = _demo_id("demo")
    card_number = payload.card_details.card_number if payload.card_details else None
    order = lifecycle.reconcile_payment(
        database, payload.order_id, user,
        {
            "id": payment_id,
            "status": "succeeded",
            "update_time": utcnow().isoformat(),
            "email_address": user["email"],
            "card_last4": card_number[-4:] if card_number else "XXXX",
            "is_demo_mode": True,
        },
        emit=dispatcher.outbox(background_tasks),
    )
    logger.info("Demo payment %s processed for order %s, amount %s", payment_id, order["_id"], order["total_price"])
    return ok(
        message="Payment processed successfully (Demo Mode)",
        order=_payment_summary(order),
        is_demo_mode=True,
    )


@app.post("/api/payments/refund", dependencies=[Depends(require_admin)])
def refund_payment(payload: RefundIn, background_tasks: BackgroundTasks,
                   database=Depends(get_db), dispatcher: Dispatcher = Depends(get_dispatcher)):
    refund_id = _demo_id("re_demo")
    logger.info(
        "Demo refund %s created: intent=%s amount=%s reason=%s",
        refund_id, payload.payment_intent_id, payload.amount, payload.reason,
    )
    if payload.order_id:
        lifecycle.refund_order(
            database, payload.order_id, payload.reason, emit=dispatcher.outbox(background_tasks)
        )
    return ok(
        message="Demo refund processed successfully",
        refund={
            "id": refund_id,
            "amount": payload.amount or 0,
            "status": "succeeded",
            "reason": payload.reason,
            "is_demo_mode": True,
        },
    )


@app.get("/api/payments/history")
def payment_history(page: Page = Depends(), user=Depends(get_current_user), database=Depends(get_db)):
    query = {"user": user["_id"], "is_paid": True}
    payments, meta = paginate(
        database, "order", query, page.page, page.limit, sort=[("paid_at", -1)],
        projection={"total_price": 1, "paid_at": 1, "payment_result": 1, "status": 1, "created_at": 1},
    )
    return ok(payments=payments, stats=reports.payment_stats(database, user["_id"]), is_demo_mode=True, **meta)


@app.post("/api/payments/webhook")
def payment_webhook():
    logger.info("Demo webhook received (ignored in demo mode)")
    return {"received": True, "is_demo_mode": True, "message": "Webhook processing disabled in demo mode"}


# Feedback endpoints
class FeedbackIn(BaseModel):
    order: Optional[str] = None
    service: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=500)
    service_quality: Optional[int] = Field(None, ge=1, le=5)
    delivery_speed: Optional[int] = Field(None, ge=1, le=5)
    value_for_money: Optional[int] = Field(None, ge=1, le=5)
    would_recommend: bool = True


class FeedbackUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, min_length=1, max_length=500)
    service_quality: Optional[int] = Field(None, ge=1, le=5)
    delivery_speed: Optional[int] = Field(None, ge=1, le=5)
    value_for_money: Optional[int] = Field(None, ge=1, le=5)
    would_recommend: Optional[bool] = None
    is_approved: Optional[bool] = None
    is_public: Optional[bool] = None


class RespondIn(BaseModel):
    message: str = Field(..., min_length=1)


def _populate_feedback(database, feedback: dict) -> dict:
    feedback = dict(feedback)
    user = database["user"].find_one({"_id": feedback["user"]}, {"name": 1, "email": 1})
    if user:
        feedback["user"] = user
    if feedback.get("service"):
        service = database["service"].find_one({"_id": feedback["service"]}, {"name": 1, "category": 1})
        if service:
            feedback["service"] = service
    return feedback


def _rating_stats(database, match: dict) -> dict:
    rows = {
        r["_id"]: r["count"]
        for r in database["feedback"].aggregate([
            {"$match": match},
            {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
        ])
    }
    total = sum(rows.values())
    return {
        "average_rating": sum(r * c for r, c in rows.items()) / total if total else 0,
        "total_reviews": total,
        "five_stars": rows.get(5, 0),
        "four_stars": rows.get(4, 0),
        "three_stars": rows.get(3, 0),
        "two_stars": rows.get(2, 0),
        "one_star": rows.get(1, 0),
    }


def _load_feedback_for(database, feedback_id: str, user: dict, action: str) -> dict:
    feedback = database["feedback"].find_one({"_id": to_object_id(feedback_id, "Feedback")})
    if not feedback:
        raise NotFoundError("Feedback")
    if feedback["user"] != user["_id"] and not user.get("is_admin"):
        raise ForbiddenError(f"Not authorized to {action} this feedback")
    return feedback


@app.post("/api/feedback", status_code=201)
def create_feedback(payload: FeedbackIn, user=Depends(get_current_user), database=Depends(get_db)):
    data = payload.model_dump(exclude_none=True)

    if payload.order:
        order = lifecycle.load_order(database, payload.order)
        if not lifecycle.is_owner(order, user):
            raise ForbiddenError("Not authorized to give feedback for this order")
        if database["feedback"].find_one({"user": user["_id"], "order": order["_id"]}):
            raise ConflictError("Feedback already submitted for this order")
        data["order"] = order["_id"]

    if payload.service:
        service_id = to_object_id(payload.service, "Service")
        if not database["service"].find_one({"_id": service_id}):
            raise NotFoundError("Service")
        data["service"] = service_id

    feedback = Feedback(user=user["_id"], **data)
    try:
        doc = create_document(database, "feedback", feedback.model_dump(exclude_none=True))
    except DuplicateKeyError:
        raise ConflictError("Feedback already submitted for this order")
    return ok(feedback=_populate_feedback(database, doc))


@app.get("/api/feedback")
def list_feedback(
    rating: Optional[str] = None,
    service: Optional[str] = None,
    approved: str = "true",
    page: Page = Depends(),
    user=Depends(get_optional_user),
    database=Depends(get_db),
):
    query = {"is_public": True}
    if not user or not user.get("is_admin"):
        query["is_approved"] = True
    elif approved != "all":
        query["is_approved"] = approved == "true"

    if rating and rating != "all":
        if rating == "4+":
            query["rating"] = {"$gte": 4}
        elif rating.isdigit():
            query["rating"] = int(rating)
        else:
            raise ValidationFailedError(errors=[{"field": "rating", "message": "Rating must be 1-5, 4+ or all"}])

    if service and service != "all":
        query["service"] = to_object_id(service, "Service")

    items, meta = paginate(database, "feedback", query, page.page, page.limit, sort=[("created_at", -1)])
    return ok(
        feedback=[_populate_feedback(database, f) for f in items],
        stats=_rating_stats(database, {"is_approved": True, "is_public": True}),
        **meta,
    )


@app.get("/api/feedback/service/{service_id}")
def list_service_feedback(service_id: str, page: Page = Depends(), database=Depends(get_db)):
    query = {"service": to_object_id(service_id, "Service"), "is_approved": True, "is_public": True}
    items, meta = paginate(database, "feedback", query, page.page, page.limit, sort=[("created_at", -1)])
    stats = _rating_stats(database, query)
    return ok(
        feedback=[_populate_feedback(database, f) for f in items],
        service_stats={"average_rating": stats["average_rating"], "total_reviews": stats["total_reviews"]},
        **meta,
    )


@app.put("/api/feedback/{feedback_id}")
def update_feedback(feedback_id: str, payload: FeedbackUpdate,
                    user=Depends(get_current_user), database=Depends(get_db)):
    feedback = _load_feedback_for(database, feedback_id, user, "update")
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    # Only admins moderate visibility
    if not user.get("is_admin"):
        changes.pop("is_approved", None)
        changes.pop("is_public", None)
    updated = update_document(database, "feedback", feedback["_id"], changes)
    return ok(feedback=_populate_feedback(database, updated))


@app.delete("/api/feedback/{feedback_id}")
def delete_feedback(feedback_id: str, user=Depends(get_current_user), database=Depends(get_db)):
    feedback = _load_feedback_for(database, feedback_id, user, "delete")
    database["feedback"].delete_one({"_id": feedback["_id"]})
    return ok(message="Feedback removed")


@app.put("/api/feedback/{feedback_id}/respond")
def respond_to_feedback(feedback_id: str, payload: RespondIn,
                        admin=Depends(require_admin), database=Depends(get_db)):
    response = Response(message=payload.message, responded_at=utcnow(), responded_by=admin["_id"])
    updated = update_document(database, "feedback", to_object_id(feedback_id, "Feedback"),
                              {"admin_response": response.model_dump()})
    if not updated:
        raise NotFoundError("Feedback")
    return ok(feedback=_populate_feedback(database, updated))


# Contact endpoints
class ContactIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    subject: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=1000)
    category: ContactCategory = "general"
    priority: ContactPriority = "medium"


class ContactUpdate(BaseModel):
    status: Optional[ContactStatus] = None
    priority: Optional[ContactPriority] = None


def _mark_read(database, contact: dict, admin: dict) -> dict:
    if contact.get("is_read"):
        return contact
    return update_document(database, "contact", contact["_id"],
                           {"is_read": True, "read_at": utcnow(), "read_by": admin["_id"]})


def _load_contact(database, contact_id: str) -> dict:
    contact = database["contact"].find_one({"_id": to_object_id(contact_id, "Contact message")})
    if not contact:
        raise NotFoundError("Contact message")
    return contact


@app.post("/api/contact", status_code=201)
def create_contact(payload: ContactIn, background_tasks: BackgroundTasks,
                   user=Depends(get_optional_user), database=Depends(get_db),
                   dispatcher: Dispatcher = Depends(get_dispatcher)):
    contact = Contact(
        **payload.model_dump(),
        user=user["_id"] if user else None,
    )
    doc = create_document(database, "contact", contact)
    dispatcher.outbox(background_tasks)(ContactReceived(
        contact_id=str(doc["_id"]),
        name=doc["name"],
        email=doc["email"],
        subject=doc["subject"],
        message=doc["message"],
        category=doc["category"],
        priority=doc["priority"],
    ))
    return ok(
        message="Contact message sent successfully",
        contact={k: doc[k] for k in ("_id", "name", "email", "subject", "status", "created_at")},
    )


@app.get("/api/contact", dependencies=[Depends(require_admin)])
def list_contacts(
    status: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: Page = Depends(),
    database=Depends(get_db),
):
    query = {}
    if status and status != "all":
        query["status"] = status
    if category and category != "all":
        query["category"] = category
    if search:
        query["$or"] = [
            {"name": search_regex(search)},
            {"email": search_regex(search)},
            {"subject": search_regex(search)},
        ]
    contacts, meta = paginate(database, "contact", query, page.page, page.limit, sort=[("created_at", -1)])

    by_status = {
        r["_id"]: r["count"]
        for r in database["contact"].aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])
    }
    stats = {
        "total": sum(by_status.values()),
        "new": by_status.get("new", 0),
        "in_progress": by_status.get("in-progress", 0),
        "resolved": by_status.get("resolved", 0),
        "unread": database["contact"].count_documents({"is_read": False}),
    }
    return ok(contacts=contacts, stats=stats, **meta)


@app.get("/api/contact/{contact_id}")
def get_contact(contact_id: str, admin=Depends(require_admin), database=Depends(get_db)):
    contact = _mark_read(database, _load_contact(database, contact_id), admin)
    return ok(contact=contact)


@app.put("/api/contact/{contact_id}/read")
def mark_contact_read(contact_id: str, admin=Depends(require_admin), database=Depends(get_db)):
    contact = _mark_read(database, _load_contact(database, contact_id), admin)
    return ok(contact=contact)


@app.put("/api/contact/{contact_id}/respond")
def respond_to_contact(contact_id: str, payload: RespondIn, background_tasks: BackgroundTasks,
                       admin=Depends(require_admin), database=Depends(get_db),
                       dispatcher: Dispatcher = Depends(get_dispatcher)):
    contact = _load_contact(database, contact_id)
    response = Response(message=payload.message, responded_at=utcnow(), responded_by=admin["_id"])
    updated = update_document(database, "contact", contact["_id"],
                              {"response": response.model_dump(), "status": "resolved"})
    dispatcher.outbox(background_tasks)(ContactResponded(
        name=contact["name"],
        email=contact["email"],
        subject=contact["subject"],
        original_message=contact["message"],
        response=payload.message,
    ))
    return ok(contact=updated)


@app.put("/api/contact/{contact_id}", dependencies=[Depends(require_admin)])
def update_contact(contact_id: str, payload: ContactUpdate, database=Depends(get_db)):
    contact = _load_contact(database, contact_id)
    changes = payload.model_dump(exclude_none=True)
    updated = update_document(database, "contact", contact["_id"], changes) if changes else contact
    return ok(contact=updated)


@app.delete("/api/contact/{contact_id}", dependencies=[Depends(require_admin)])
def delete_contact(contact_id: str, database=Depends(get_db)):
    contact = _load_contact(database, contact_id)
    database["contact"].delete_one({"_id": contact["_id"]})
    return ok(message="Contact message removed")


# Admin endpoints
class AdminUserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    is_active: Optional[bool] = None
    is_admin: Optional[bool] = None


class AdminOrderUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = None
    version: Optional[int] = None


@app.get("/api/admin/stats", dependencies=[Depends(require_admin)])
def admin_stats(period: int = Query(30, ge=1, le=3650), database=Depends(get_db)):
    return ok(stats=reports.dashboard_stats(database, period))


@app.get("/api/admin/revenue", dependencies=[Depends(require_admin)])
def admin_revenue(period: Literal["week", "month", "quarter", "year"] = "month", database=Depends(get_db)):
    return ok(**reports.revenue_report(database, period))


@app.get("/api/admin/users", dependencies=[Depends(require_admin)])
def admin_users(search: Optional[str] = None, is_active: Optional[bool] = None,
                page: Page = Depends(), database=Depends(get_db)):
    query = {"is_admin": False}
    if search:
        query["$or"] = [{"name": search_regex(search)}, {"email": search_regex(search)}]
    if is_active is not None:
        query["is_active"] = is_active
    users, meta = paginate(database, "user", query, page.page, page.limit,
                           sort=[("created_at", -1)], projection={"password_hash": 0})
    return ok(users=users, **meta)


@app.get("/api/admin/users/{user_id}", dependencies=[Depends(require_admin)])
def admin_get_user(user_id: str, database=Depends(get_db)):
    user = database["user"].find_one({"_id": to_object_id(user_id, "User")}, {"password_hash": 0})
    if not user:
        raise NotFoundError("User")
    recent = database["order"].find({"user": user["_id"]}).sort("created_at", -1).limit(5)
    return ok(
        user=user,
        stats=reports.user_order_stats(database, user["_id"]),
        recent_orders=[lifecycle.populate_order(database, o) for o in recent],
    )


@app.put("/api/admin/users/{user_id}")
def admin_update_user(user_id: str, payload: AdminUserUpdate,
                      admin=Depends(require_admin), database=Depends(get_db)):
    user = database["user"].find_one({"_id": to_object_id(user_id, "User")})
    if not user:
        raise NotFoundError("User")

    changes = payload.model_dump(exclude_none=True, exclude={"is_admin"})
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        if database["user"].find_one({"email": changes["email"], "_id": {"$ne": user["_id"]}}):
            raise ConflictError("Email already in use")
    # Only the super admin may grant or revoke admin rights
    if payload.is_admin is not None and SUPER_ADMIN_EMAIL and admin["email"] == SUPER_ADMIN_EMAIL.lower():
        changes["is_admin"] = payload.is_admin

    try:
        updated = update_document(database, "user", user["_id"], changes)
    except DuplicateKeyError:
        raise ConflictError("Email already in use")
    return ok(user={k: updated.get(k) for k in ("_id", "name", "email", "phone", "is_admin", "is_active")})


@app.delete("/api/admin/users/{user_id}", dependencies=[Depends(require_admin)])
def admin_delete_user(user_id: str, database=Depends(get_db)):
    user = database["user"].find_one({"_id": to_object_id(user_id, "User")})
    if not user:
        raise NotFoundError("User")
    if user.get("is_admin"):
        raise InvalidStateError("Cannot delete admin user")
    update_document(database, "user", user["_id"], {"is_active": False})
    return ok(message="User deactivated")


@app.get("/api/admin/orders", dependencies=[Depends(require_admin)])
def admin_orders(
    status: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: Page = Depends(),
    database=Depends(get_db),
):
    return _list_orders(database, page, status, search, start_date, end_date)


@app.put("/api/admin/orders/{order_id}", dependencies=[Depends(require_admin)])
def admin_update_order(order_id: str, payload: AdminOrderUpdate, background_tasks: BackgroundTasks,
                       database=Depends(get_db), dispatcher: Dispatcher = Depends(get_dispatcher)):
    order = lifecycle.update_status(
        database, order_id, payload.status, note=payload.note,
        expected_version=payload.version, emit=dispatcher.outbox(background_tasks),
    )
    return ok(order=order)


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
