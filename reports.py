"""Admin reporting: dashboard statistics and revenue breakdowns."""

from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from database import utcnow

REVENUE_PERIODS = {
    "week": (7, "%Y-%m-%d"),
    "month": (30, "%Y-%m-%d"),
    "quarter": (90, "%G-W%V"),
    "year": (365, "%Y-%m"),
}


def _total(db, collection: str, match: dict, field: str = "$total_price") -> float:
    rows = list(db[collection].aggregate([
        {"$match": match},
        {"$group": {"_id": None, "total": {"$sum": field}}},
    ]))
    return rows[0]["total"] if rows else 0


def _average_rating(db) -> float:
    rows = list(db["feedback"].aggregate([
        {"$match": {"is_approved": True}},
        {"$group": {"_id": None, "avg_rating": {"$avg": "$rating"}}},
    ]))
    return rows[0]["avg_rating"] if rows and rows[0]["avg_rating"] is not None else 0


def _bucket(orders: Iterable[dict], key: Callable[[datetime], str]) -> List[dict]:
    buckets: Dict[str, dict] = {}
    for order in orders:
        label = key(order["created_at"])
        bucket = buckets.setdefault(label, {"date": label, "revenue": 0, "orders": 0})
        bucket["revenue"] += order.get("total_price", 0)
        bucket["orders"] += 1
    for bucket in buckets.values():
        bucket["avg_order_value"] = bucket["revenue"] / bucket["orders"]
    return [buckets[label] for label in sorted(buckets)]


def _paid_since(db, start: datetime):
    return db["order"].find(
        {"created_at": {"$gte": start}, "is_paid": True},
        {"created_at": 1, "total_price": 1, "order_items": 1},
    )


def top_services(db, limit: int = 5) -> List[dict]:
    rows = list(db["order"].aggregate([
        {"$unwind": "$order_items"},
        {"$group": {
            "_id": "$order_items.service",
            "total_orders": {"$sum": 1},
            "total_revenue": {"$sum": "$order_items.subtotal"},
        }},
        {"$sort": {"total_orders": -1}},
    ]))
    services = {s["_id"]: s for s in db["service"].find({"_id": {"$in": [r["_id"] for r in rows]}})}
    result = []
    for row in rows:
        service = services.get(row["_id"])
        if service is None:
            continue
        result.append({
            "_id": row["_id"],
            "service_name": service["name"],
            "category": service.get("category"),
            "total_orders": row["total_orders"],
            "total_revenue": row["total_revenue"],
        })
        if len(result) == limit:
            break
    return result


def recent_feedback(db, limit: int = 5) -> List[dict]:
    items = list(db["feedback"].find({"is_approved": True}).sort("created_at", -1).limit(limit))
    user_ids = [f["user"] for f in items]
    service_ids = [f["service"] for f in items if f.get("service")]
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": user_ids}}, {"name": 1})}
    services = {s["_id"]: s for s in db["service"].find({"_id": {"$in": service_ids}}, {"name": 1})}
    for f in items:
        f["user"] = users.get(f["user"], f["user"])
        if f.get("service"):
            f["service"] = services.get(f["service"], f["service"])
    return items


def dashboard_stats(db, period_days: int = 30, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    start = now - timedelta(days=period_days)

    status_rows = db["order"].aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])
    trend = _bucket(_paid_since(db, now - timedelta(days=7)), lambda d: d.strftime("%Y-%m-%d"))

    return {
        "overview": {
            "total_users": db["user"].count_documents({"is_admin": False}),
            "total_orders": db["order"].count_documents({}),
            "total_services": db["service"].count_documents({"is_active": True}),
            "total_revenue": _total(db, "order", {"is_paid": True}),
            "average_rating": _average_rating(db),
        },
        "period": {
            "days": period_days,
            "orders": db["order"].count_documents({"created_at": {"$gte": start}}),
            "revenue": _total(db, "order", {"created_at": {"$gte": start}, "is_paid": True}),
            "new_users": db["user"].count_documents({"created_at": {"$gte": start}, "is_admin": False}),
        },
        "orders_by_status": {row["_id"]: row["count"] for row in status_rows},
        "revenue_trend": [{k: v for k, v in b.items() if k != "avg_order_value"} for b in trend],
        "top_services": top_services(db),
        "recent_feedback": recent_feedback(db),
        "unread_contacts": db["contact"].count_documents({"is_read": False}),
    }


def revenue_report(db, period: str = "month", now: Optional[datetime] = None) -> dict:
    days, fmt = REVENUE_PERIODS.get(period, REVENUE_PERIODS["month"])
    now = now or utcnow()
    orders = list(_paid_since(db, now - timedelta(days=days)))

    totals = [o.get("total_price", 0) for o in orders]
    summary = {
        "total_revenue": sum(totals),
        "total_orders": len(totals),
        "avg_order_value": sum(totals) / len(totals) if totals else 0,
        "max_order_value": max(totals) if totals else 0,
        "min_order_value": min(totals) if totals else 0,
    }

    service_ids = {item["service"] for o in orders for item in o.get("order_items", [])}
    categories = {
        s["_id"]: s.get("category")
        for s in db["service"].find({"_id": {"$in": list(service_ids)}}, {"category": 1})
    }
    by_category: Dict[str, dict] = {}
    for order in orders:
        for item in order.get("order_items", []):
            category = categories.get(item["service"])
            if category is None:
                continue
            row = by_category.setdefault(category, {"_id": category, "revenue": 0, "orders": 0})
            row["revenue"] += item.get("subtotal", 0)
            row["orders"] += 1

    return {
        "period": period,
        "summary": summary,
        "revenue_data": _bucket(orders, lambda d: d.strftime(fmt)),
        "category_revenue": sorted(by_category.values(), key=lambda r: r["revenue"], reverse=True),
    }


def user_order_stats(db, user_id) -> dict:
    rows = list(db["order"].aggregate([
        {"$match": {"user": user_id}},
        {"$group": {
            "_id": None,
            "total_orders": {"$sum": 1},
            "total_spent": {"$sum": "$total_price"},
            "avg_order_value": {"$avg": "$total_price"},
        }},
    ]))
    if not rows:
        return {"total_orders": 0, "total_spent": 0, "avg_order_value": 0}
    row = rows[0]
    row.pop("_id", None)
    return row


def payment_stats(db, user_id) -> dict:
    rows = list(db["order"].aggregate([
        {"$match": {"user": user_id, "is_paid": True}},
        {"$group": {
            "_id": None,
            "total_spent": {"$sum": "$total_price"},
            "total_orders": {"$sum": 1},
            "average_order_value": {"$avg": "$total_price"},
        }},
    ]))
    if not rows:
        return {"total_spent": 0, "total_orders": 0, "average_order_value": 0}
    row = rows[0]
    row.pop("_id", None)
    return row
