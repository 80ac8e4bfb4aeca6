"""
Order lifecycle.

Owns order creation, status transitions, and the simulated payment and refund
reconciliation. Legal transitions are listed in TRANSITIONS; every applied
transition appends one status_history entry and bumps the order's version.
Writes are compare-and-swap on that version, so a concurrent writer gets a
ConflictError instead of silently overwriting.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, FrozenSet, Optional

from pymongo import ReturnDocument

from database import create_document, to_object_id, utcnow
from errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationFailedError
from notifications import OrderCreated, OrderStatusChanged
from schemas import ORDER_STATUSES, Order

logger = logging.getLogger(__name__)

ESTIMATED_DELIVERY = timedelta(hours=48)

ALL_STATUSES = frozenset(ORDER_STATUSES)
ADMIN_TARGETS = frozenset({"pending", "confirmed", "in-progress", "completed", "cancelled"})
CANCELLABLE = frozenset({"pending", "confirmed"})


@dataclass(frozen=True)
class Transition:
    sources: FrozenSet[str]
    targets: FrozenSet[str]
    rejection: str = "Order cannot be updated at this stage"


# Admin status updates stay permissive: any status may be set from any status.
TRANSITIONS: Dict[str, Transition] = {
    "set_status": Transition(ALL_STATUSES, ADMIN_TARGETS),
    "cancel": Transition(CANCELLABLE, frozenset({"cancelled"}), "Order cannot be cancelled at this stage"),
    "pay": Transition(ALL_STATUSES, frozenset({"confirmed"})),
    "refund": Transition(ALL_STATUSES, frozenset({"refunded"})),
}


def next_status(current: str, event: str, target: Optional[str] = None) -> str:
    """Resolve (current status, event) to the next status or raise."""
    try:
        transition = TRANSITIONS[event]
    except KeyError:
        raise ValueError(f"Unknown lifecycle event: {event}")
    if current not in transition.sources:
        raise InvalidStateError(transition.rejection, current=current)
    if target is None:
        if len(transition.targets) != 1:
            raise ValidationFailedError(errors=[{"field": "status", "message": "Status is required"}])
        (target,) = transition.targets
    if target not in transition.targets:
        raise ValidationFailedError(errors=[{"field": "status", "message": f"Invalid status: {target}"}])
    return target


# Access
def is_owner(order: dict, user: dict) -> bool:
    return order["user"] == user["_id"]


def load_order(db, order_id) -> dict:
    order = db["order"].find_one({"_id": to_object_id(order_id, "Order")})
    if order is None:
        raise NotFoundError("Order")
    return order


def load_order_for(db, order_id, user: dict, action: str = "view") -> dict:
    """Load an order the caller owns, or any order for an admin."""
    order = load_order(db, order_id)
    if not is_owner(order, user) and not user.get("is_admin"):
        raise ForbiddenError(f"Not authorized to {action} this order")
    return order


def populate_order(db, order: dict) -> dict:
    """Replace user and service references with their display fields."""
    order = dict(order)
    user = db["user"].find_one({"_id": order["user"]}, {"name": 1, "email": 1, "phone": 1})
    if user is not None:
        order["user"] = user
    service_ids = [item["service"] for item in order.get("order_items", [])]
    services = {
        s["_id"]: s
        for s in db["service"].find({"_id": {"$in": service_ids}}, {"name": 1, "category": 1, "image": 1})
    }
    order["order_items"] = [
        {**item, "service": services.get(item["service"], item["service"])}
        for item in order.get("order_items", [])
    ]
    return order


# Creation
def _check_catalog_price(service: dict, item: dict) -> None:
    sub = (service.get("services") or {}).get(item["service_type"])
    if sub and sub.get("available") and sub.get("price") != item["price"]:
        logger.warning(
            "Price mismatch for %s - %s: expected %s, got %s",
            service["name"], item["service_type"], sub.get("price"), item["price"],
        )


def create_order(db, user: dict, data: dict, emit: Optional[Callable] = None) -> dict:
    """Persist a new order after checking every referenced service exists.

    Client prices are trusted; catalog mismatches are only logged, and the check
    is skipped for demo payments.
    """
    items = data.get("order_items") or []
    if not items:
        raise ValidationFailedError("No order items", [{"field": "order_items", "message": "Order items are required"}])

    payment_result = data.get("payment_result")
    demo = bool(payment_result and payment_result.get("is_demo_mode"))

    order_items = []
    for item in items:
        service_id = to_object_id(item["service"], "Service")
        service = db["service"].find_one({"_id": service_id})
        if service is None:
            raise NotFoundError("Service", str(item["service"]))
        if not service.get("is_active", True):
            logger.warning("Service %s is inactive but order allowed", service["name"])
        if demo:
            logger.info("Demo payment detected - skipping price validation")
        else:
            _check_catalog_price(service, item)
        order_items.append({
            "service": service_id,
            "service_type": item["service_type"],
            "quantity": item["quantity"],
            "price": item["price"],
            "subtotal": item.get("subtotal") or item["quantity"] * item["price"],
        })

    now = utcnow()
    is_paid = bool(data.get("is_paid"))
    order = Order(
        user=user["_id"],
        order_items=order_items,
        shipping_address=data["shipping_address"],
        payment_method=data.get("payment_method") or "card",
        payment_result=payment_result,
        items_price=data.get("items_price") or 0,
        shipping_price=data.get("shipping_price") or 0,
        tax_price=data.get("tax_price") or 0,
        total_price=data.get("total_price") or 0,
        is_paid=is_paid,
        paid_at=(data.get("paid_at") or now) if is_paid else None,
        status="confirmed" if is_paid else "pending",
        pickup_date=data.get("pickup_date"),
        delivery_date=data.get("delivery_date"),
        estimated_delivery=data.get("estimated_delivery") or now + ESTIMATED_DELIVERY,
        special_instructions=data.get("special_instructions"),
    )
    created = create_document(db, "order", order)
    logger.info("Order %s created for user %s with status %s", created["_id"], user["_id"], created["status"])

    populated = populate_order(db, created)
    if emit is not None:
        emit(OrderCreated(
            order_id=str(created["_id"]),
            customer_name=user.get("name", ""),
            email=user["email"],
            items=[
                {
                    "name": i["service"].get("name") if isinstance(i["service"], dict) else str(i["service"]),
                    "service_type": i["service_type"],
                    "quantity": i["quantity"],
                    "subtotal": i["subtotal"],
                }
                for i in populated["order_items"]
            ],
            total_price=float(created["total_price"]),
            shipping_address=created["shipping_address"],
        ))
    return populated


# Transitions
def _version_filter(order: dict) -> dict:
    if "version" in order:
        return {"_id": order["_id"], "version": order["version"]}
    return {"_id": order["_id"], "version": {"$exists": False}}


def _check_version(order: dict, expected_version: Optional[int]) -> None:
    if expected_version is not None and expected_version != order.get("version", 0):
        raise ConflictError("Order has been modified since it was read, reload it and try again")


def _commit(db, order: dict, changes: dict, entry: Optional[dict] = None) -> dict:
    changes = dict(changes, updated_at=utcnow())
    update = {"$set": changes, "$inc": {"version": 1}}
    if entry is not None:
        update["$push"] = {"status_history": entry}
    updated = db["order"].find_one_and_update(
        _version_filter(order), update, return_document=ReturnDocument.AFTER
    )
    if updated is None:
        raise ConflictError("Order was modified by another request, reload it and try again")
    return updated


def _notify_status(db, order: dict, old: str, new: str, emit: Optional[Callable]) -> None:
    if emit is None:
        return
    owner = db["user"].find_one({"_id": order["user"]}, {"name": 1, "email": 1})
    if owner is None:
        logger.warning("Order %s has no owner record, skipping notification", order["_id"])
        return
    emit(OrderStatusChanged(
        order_id=str(order["_id"]),
        customer_name=owner.get("name", ""),
        email=owner["email"],
        old_status=old,
        new_status=new,
    ))


def apply_transition(
    db,
    order: dict,
    event: str,
    actor: str,
    target: Optional[str] = None,
    note: Optional[str] = None,
    changes: Optional[dict] = None,
    expected_version: Optional[int] = None,
    emit: Optional[Callable] = None,
) -> dict:
    """Move an order through one lifecycle event and record it in status_history."""
    _check_version(order, expected_version)
    old = order["status"]
    new = next_status(old, event, target)
    now = utcnow()
    changes = dict(changes or {}, status=new)
    if new == "completed" and not order.get("is_delivered"):
        changes["is_delivered"] = True
        changes["delivered_at"] = now
    entry = {
        "status": new,
        "timestamp": now,
        "note": note or f"Status changed from {old} to {new} by {actor}",
    }
    updated = _commit(db, order, changes, entry)
    logger.info("Order %s: %s -> %s (%s)", order["_id"], old, new, event)
    _notify_status(db, updated, old, new, emit)
    return updated


def update_status(db, order_id, status: str, note: Optional[str] = None,
                  expected_version: Optional[int] = None, emit: Optional[Callable] = None) -> dict:
    """Admin status update. Any status from the admin set, from any current status."""
    order = load_order(db, order_id)
    return apply_transition(
        db, order, "set_status", "admin",
        target=status, note=note, expected_version=expected_version, emit=emit,
    )


def cancel_order(db, order_id, user: dict, expected_version: Optional[int] = None,
                 emit: Optional[Callable] = None) -> dict:
    order = load_order_for(db, order_id, user, action="cancel")
    actor = "customer" if is_owner(order, user) else "admin"
    return apply_transition(db, order, "cancel", actor, expected_version=expected_version, emit=emit)


# Payment
def reconcile_payment(db, order_id, user: dict, payment_result: dict,
                      emit: Optional[Callable] = None) -> dict:
    """Mark an order paid and confirmed.

    Only the owner may pay. Re-confirming a paid order leaves it as it is.
    """
    order = load_order(db, order_id)
    if not is_owner(order, user):
        raise ForbiddenError("Not authorized to access this order")
    if order.get("is_paid"):
        logger.info("Order %s is already paid, nothing to reconcile", order["_id"])
        return order

    changes = {"is_paid": True, "paid_at": utcnow(), "payment_result": payment_result}
    if order["status"] == "confirmed":
        return _commit(db, order, changes)
    return apply_transition(db, order, "pay", "payment", changes=changes, emit=emit)


def refund_order(db, order_id, reason: str, emit: Optional[Callable] = None) -> dict:
    order = load_order(db, order_id)
    changes = {"refunded_at": utcnow(), "refund_reason": reason}
    return apply_transition(
        db, order, "refund", "admin",
        note=f"Refunded: {reason}", changes=changes, emit=emit,
    )
