"""
Seed the database with an admin, sample customers, the service catalog, and a
couple of orders with feedback.

    python seed.py

Existing users, services, orders and feedback are removed first.
"""

import logging
from datetime import timedelta

from passlib.context import CryptContext

from database import create_document, ensure_indexes, get_db, utcnow
from schemas import SUB_SERVICE_TYPES, Feedback, Order, Service, SubService, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SEED_PASSWORD = "password123"

ADMIN = {
    "name": "Admin User",
    "email": "admin@freshwash.com",
    "phone": "9876543210",
    "address": {"street": "123 Admin Street", "city": "Delhi", "state": "Delhi", "zip_code": "110001"},
    "is_admin": True,
}

CUSTOMERS = [
    {
        "name": "John Doe",
        "email": "john@example.com",
        "phone": "9876543211",
        "address": {"street": "456 Customer Street", "city": "Mumbai", "state": "Maharashtra", "zip_code": "400001"},
    },
    {
        "name": "Jane Smith",
        "email": "jane@example.com",
        "phone": "9876543212",
        "address": {"street": "789 User Avenue", "city": "Bangalore", "state": "Karnataka", "zip_code": "560001"},
    },
    {"name": "Mike Wilson", "email": "mike@example.com", "phone": "9876543213"},
]

IMAGE = "https://images.unsplash.com/photo-{}?w=400&h=300&fit=crop"

# name, category, description, (wash, iron, dryClean, washAndIron) prices (0 = not offered), image, estimated time
CATALOG = [
    ("Cotton Shirt", "Shirts",
     "Regular cotton shirts - comfortable everyday wear that needs gentle care and professional cleaning.",
     (25, 15, 0, 35), "1596755094514-f87e34085b2c", "24-36 hours"),
    ("Formal Shirt", "Shirts",
     "Dress shirts for business and formal occasions. Requires special care for crisp, professional appearance.",
     (30, 20, 50, 45), "1602810318383-e386cc2a3ccf", "24-48 hours"),
    ("Designer Shirt", "Shirts",
     "Premium designer shirts with special fabric that requires expert handling and care.",
     (0, 30, 80, 0), "1620799140408-edc6dcb6d633", "48-72 hours"),
    ("Casual Pants", "Pants",
     "Everyday casual pants including jeans, chinos, and khakis. Perfect for regular wear.",
     (35, 20, 60, 50), "1473966968600-fa801b869a1a", "24-48 hours"),
    ("Formal Trousers", "Pants",
     "Business and formal trousers that need professional pressing for a sharp, clean look.",
     (40, 25, 70, 60), "1624378439575-d8705ad7ae80", "24-48 hours"),
    ("Premium Pants", "Pants",
     "High-end pants made from delicate fabrics requiring specialized dry cleaning treatment.",
     (0, 35, 90, 0), "1506629082955-511b1aa562c8", "48-72 hours"),
    ("Casual Dress", "Dresses",
     "Everyday dresses perfect for casual outings, made from comfortable and easy-care fabrics.",
     (45, 25, 75, 65), "1595777457583-95e059d581b8", "24-48 hours"),
    ("Party Dress", "Dresses",
     "Special occasion dresses with embellishments and delicate details requiring careful handling.",
     (0, 40, 120, 0), "1566174053879-31528523f8ae", "48-72 hours"),
    ("Wedding Dress", "Dresses",
     "Premium wedding and formal gowns requiring expert dry cleaning and preservation techniques.",
     (0, 60, 200, 0), "1519657337289-077653f724ed", "72-96 hours"),
    ("Bed Sheets", "Bedding",
     "Single and double bed sheets, pillowcases, and fitted sheets for a fresh, clean sleep.",
     (50, 30, 0, 75), "1631049307264-da0ec9d70304", "24-48 hours"),
    ("Comforter", "Bedding",
     "Heavy comforters, quilts, and duvets requiring specialized washing and drying equipment.",
     (80, 0, 120, 0), "1522771739844-6a9f6d5f14af", "48-72 hours"),
    ("Blankets", "Bedding",
     "Various types of blankets including wool, cotton, and synthetic materials.",
     (60, 25, 90, 80), "1600369672890-ac00f1907858", "24-48 hours"),
    ("Casual Jacket", "Jackets",
     "Everyday jackets and windbreakers for casual wear and light weather protection.",
     (60, 35, 100, 90), "1551028719-00167b16eac5", "48-72 hours"),
    ("Suit Jacket", "Jackets",
     "Business suits and formal blazers requiring professional dry cleaning and pressing.",
     (0, 50, 150, 0), "1507679799987-c73779587ccf", "48-72 hours"),
    ("Winter Coat", "Jackets",
     "Heavy winter coats and parkas with special insulation requiring careful cleaning.",
     (0, 0, 180, 0), "1539533018447-63fcce2678e3", "72-96 hours"),
    ("Ties & Scarves", "Accessories",
     "Delicate neckties, bow ties, and scarves made from silk and other fine materials.",
     (0, 20, 40, 0), "1591729652581-abd20ff6944a", "24-48 hours"),
    ("Caps & Hats", "Accessories",
     "Various types of headwear including baseball caps, formal hats, and beanies.",
     (30, 0, 50, 0), "1588850561407-ed78c282e89b", "24-48 hours"),
]

SPECIAL_INSTRUCTIONS = {"Wedding Dress": "Special handling for beading and delicate fabrics"}


def build_service(name, category, description, prices, image, estimated_time) -> Service:
    return Service(
        name=name,
        category=category,
        description=description,
        services={k: SubService(available=p > 0, price=p) for k, p in zip(SUB_SERVICE_TYPES, prices)},
        image=IMAGE.format(image),
        estimated_time=estimated_time,
        special_instructions=SPECIAL_INSTRUCTIONS.get(name),
    )


def seed_services(database) -> list:
    return [create_document(database, "service", build_service(*row)) for row in CATALOG]


def _user(data: dict, password_hash: str) -> User:
    return User(password_hash=password_hash, **data)


def seed(database) -> dict:
    for name in ("user", "service", "order", "feedback"):
        database[name].delete_many({})
    logger.info("Cleared existing data")

    password_hash = pwd_context.hash(SEED_PASSWORD)
    admin = create_document(database, "user", _user(ADMIN, password_hash))
    customers = [create_document(database, "user", _user(c, password_hash)) for c in CUSTOMERS]
    services = seed_services(database)

    now = utcnow()
    john, jane, mike = customers
    orders = [
        create_document(database, "order", Order(
            user=john["_id"],
            order_items=[
                {"service": services[0]["_id"], "service_type": "washAndIron", "quantity": 2, "price": 35, "subtotal": 70},
                {"service": services[3]["_id"], "service_type": "wash", "quantity": 1, "price": 35, "subtotal": 35},
            ],
            shipping_address={
                "name": "John Doe", "phone": "9876543211", "street": "456 Customer Street",
                "city": "Mumbai", "state": "Maharashtra", "zip_code": "400001",
            },
            payment_method="stripe",
            items_price=105,
            tax_price=10.5,
            total_price=115.5,
            is_paid=True,
            paid_at=now - timedelta(days=3),
            status="completed",
            is_delivered=True,
            delivered_at=now - timedelta(days=2),
        )),
        create_document(database, "order", Order(
            user=jane["_id"],
            order_items=[
                {"service": services[1]["_id"], "service_type": "dryClean", "quantity": 1, "price": 50, "subtotal": 50},
            ],
            shipping_address={
                "name": "Jane Smith", "phone": "9876543212", "street": "789 User Avenue",
                "city": "Bangalore", "state": "Karnataka", "zip_code": "560001",
            },
            payment_method="stripe",
            items_price=50,
            tax_price=5,
            total_price=55,
            is_paid=True,
            paid_at=now,
            status="in-progress",
        )),
    ]

    feedback = [
        Feedback(
            user=john["_id"], order=orders[0]["_id"], service=services[0]["_id"], rating=5,
            comment="Excellent service! My shirts came back perfectly clean and pressed. Will definitely use again.",
            service_quality=5, delivery_speed=4, value_for_money=5,
        ),
        Feedback(
            user=jane["_id"], order=orders[1]["_id"], service=services[1]["_id"], rating=4,
            comment="Good quality dry cleaning. The shirt looks great, pickup and delivery was on time.",
            service_quality=4, delivery_speed=4, value_for_money=4,
        ),
        Feedback(
            user=mike["_id"], rating=5,
            comment="Amazing service! Professional staff, quick turnaround, and reasonable prices. Highly recommended!",
            service_quality=5, delivery_speed=5, value_for_money=5,
        ),
    ]
    for item in feedback:
        create_document(database, "feedback", item.model_dump(exclude_none=True))

    return {"admin": admin, "customers": customers, "services": services, "orders": orders}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    database = get_db()
    ensure_indexes(database)
    result = seed(database)
    logger.info("Database seeded successfully")
    logger.info("Admin user: %s / %s", ADMIN["email"], SEED_PASSWORD)
    logger.info("Test users: %d", len(result["customers"]))
    logger.info("Services: %d", len(result["services"]))
    logger.info("Sample orders: %d", len(result["orders"]))
