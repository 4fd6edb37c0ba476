import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

import auth
import cart
import favorites
import orders
import pc_builds
import products
import reviews
import shipping
import users
from auth import CurrentUser, require
from config import Settings
from database import Database, get_database
from errors import register_error_handlers
from notifications import Notifier
from payments import PaymentGateway
from schemas import Category, Product, Section, Subcategory

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    if app.state.db is None:
        app.state.db = Database.from_settings(settings)
    app.state.db.ensure_indexes()
    logger.info("%s API started", settings.app_name)
    yield
    app.state.db.close()


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    notifier: Optional[Notifier] = None,
    payments: Optional[PaymentGateway] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(title=f"{settings.app_name} API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database
    app.state.notifier = notifier or Notifier(settings)
    app.state.payments = payments or PaymentGateway(settings.payment_mode)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    for module in (auth, users, products, cart, pc_builds, orders, shipping, reviews, favorites):
        app.include_router(module.router)

    app.add_api_route("/", root, methods=["GET"])
    app.add_api_route("/test", test_database, methods=["GET"])
    app.add_api_route("/seed", seed, methods=["POST"])
    return app


# Routes
def root(request: Request):
    return {"message": f"{request.app.state.settings.app_name} API is running"}


def test_database(request: Request):
    db: Optional[Database] = request.app.state.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    if db is not None:
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            collections = db.list_collection_names()
            response["collections"] = collections[:10]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"

    return response


SAMPLE_PRODUCTS = [
    {"name": "Intel Core i7-12700K", "section": Section.COMPONENTS, "category": Category.PROCESSORS, "brand": "Intel", "price": 6999.0, "stock": 10, "description": "12th Gen 12-Core Processor"},
    {"name": "AMD Ryzen 7 5800X", "section": Section.COMPONENTS, "category": Category.PROCESSORS, "brand": "AMD", "price": 4999.0, "stock": 8},
    {"name": "NVIDIA GeForce RTX 4070", "section": Section.COMPONENTS, "category": Category.GRAPHICS_CARDS, "brand": "NVIDIA", "price": 11999.0, "stock": 5, "is_featured": True},
    {"name": "Corsair Vengeance 16GB DDR4", "section": Section.COMPONENTS, "category": Category.RAM_MEMORY, "brand": "Corsair", "price": 1199.0, "stock": 25},
    {"name": "Samsung 980 PRO 1TB NVMe SSD", "section": Section.STORAGE_FLASH, "category": Category.SSD, "brand": "Samsung", "price": 2599.0, "stock": 15},
    {"name": "ASUS ROG Strix Z690-E", "section": Section.COMPONENTS, "category": Category.MOTHERBOARDS, "brand": "ASUS", "price": 6999.0, "stock": 6},
    {"name": "EVGA 750W Gold PSU", "section": Section.COMPONENTS, "category": Category.POWER_SUPPLIES, "brand": "EVGA", "price": 2399.0, "stock": 12},
    {"name": "Logitech G Pro Mechanical Keyboard", "section": Section.PERIPHERALS, "category": Category.KEYBOARDS, "brand": "Logitech", "price": 1999.0, "stock": 20, "is_new": True},
    {"name": "Elden Ring (Steam)", "section": Section.VIDEO_GAMES, "category": Category.PLATFORMS, "subcategory": Subcategory.STEAM, "brand": "Bandai Namco", "price": 899.0, "stock": 50, "discount_percentage": 20},
]


# Simple seed endpoint to create demo products (admin only)
def seed(db: Database = Depends(get_database), user: CurrentUser = Depends(require("seed"))):
    created = 0
    for p in SAMPLE_PRODUCTS:
        if not db["product"].find_one({"name": p["name"]}):
            db.create_document("product", Product(**p))
            created += 1
    logger.info("Seeded %d demo products", created)
    return {"status": "ok", "created": created}


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
