import re
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from pymongo import DESCENDING, ReturnDocument

from auth import CurrentUser, require
from database import Database, get_database, page_meta, serialize_doc, to_object_id, utcnow
from errors import NotFoundError
from schemas import Category, Product, Section, Subcategory

router = APIRouter(prefix="/api/products", tags=["products"])


def effective_price(product: dict) -> float:
    """Unit price after the product's discount percentage."""
    discount = product.get("discount_percentage") or 0
    return float(product.get("price", 0)) * (1 - discount / 100)


def get_product(db: Database, product_id: str) -> dict:
    oid = to_object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if not product:
        raise NotFoundError("Producto no encontrado.")
    return product


def list_products(db: Database, filters: dict, page: int = 1, limit: int = 20) -> dict:
    query = {}
    if filters.get("q"):
        query["name"] = {"$regex": re.escape(filters["q"]), "$options": "i"}
    for key in ("section", "category", "subcategory", "brand", "is_featured", "is_new"):
        if filters.get(key) is not None:
            query[key] = filters[key]
    total = db["product"].count_documents(query)
    items = db.get_documents(
        "product", query, limit=limit, skip=(page - 1) * limit, sort=[("created_at", DESCENDING)]
    )
    return {"data": items, "meta": page_meta(total, page, limit)}


def create_product(db: Database, product: Product) -> dict:
    product_id = db.create_document("product", product)
    return db["product"].find_one({"_id": to_object_id(product_id)})


def update_product(db: Database, product_id: str, changes: dict) -> dict:
    oid = to_object_id(product_id)
    if oid is None:
        raise NotFoundError("Producto no encontrado.")
    changes = dict(changes)
    changes["updated_at"] = utcnow()
    product = db["product"].find_one_and_update(
        {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if not product:
        raise NotFoundError("Producto no encontrado.")
    return product


def update_stock(db: Database, product_id: str, stock: int) -> dict:
    return update_product(db, product_id, {"stock": stock})


def update_discount(db: Database, product_id: str, discount_percentage: float) -> dict:
    return update_product(db, product_id, {"discount_percentage": discount_percentage})


def delete_product(db: Database, product_id: str) -> None:
    oid = to_object_id(product_id)
    result = db["product"].delete_one({"_id": oid}) if oid else None
    if not result or result.deleted_count == 0:
        raise NotFoundError("Producto no encontrado.")


# Routes

class ProductUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    brand: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    section: Optional[Section] = None
    category: Optional[Category] = None
    subcategory: Optional[Subcategory] = None
    images: Optional[List[str]] = None
    videos: Optional[List[str]] = None
    specs: Optional[Dict[str, Union[str, int, float]]] = None


class StockIn(BaseModel):
    stock: int = Field(..., ge=0)


class DiscountIn(BaseModel):
    discount_percentage: float = Field(..., ge=0, le=100)


class FeaturedIn(BaseModel):
    is_featured: bool


class NewIn(BaseModel):
    is_new: bool


@router.get("")
def list_products_route(
    q: Optional[str] = None,
    section: Optional[Section] = None,
    category: Optional[Category] = None,
    subcategory: Optional[Subcategory] = None,
    brand: Optional[str] = None,
    is_featured: Optional[bool] = None,
    is_new: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Database = Depends(get_database),
):
    filters = {
        "q": q,
        "section": section.value if section else None,
        "category": category.value if category else None,
        "subcategory": subcategory.value if subcategory else None,
        "brand": brand,
        "is_featured": is_featured,
        "is_new": is_new,
    }
    result = list_products(db, filters, page, limit)
    return {"data": serialize_doc(result["data"]), "meta": result["meta"]}


@router.get("/{product_id}")
def get_product_route(product_id: str, db: Database = Depends(get_database)):
    return serialize_doc(get_product(db, product_id))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product_route(
    payload: Product,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("products:manage")),
):
    product = create_product(db, payload)
    return {"message": "Producto creado exitosamente", "product": serialize_doc(product)}


@router.put("/{product_id}")
def update_product_route(
    product_id: str,
    payload: ProductUpdateIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("products:manage")),
):
    product = update_product(db, product_id, payload.model_dump(exclude_none=True, mode="json"))
    return {"message": "Producto actualizado exitosamente", "product": serialize_doc(product)}


@router.patch("/{product_id}/stock")
def update_stock_route(
    product_id: str,
    payload: StockIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("products:manage")),
):
    product = update_stock(db, product_id, payload.stock)
    return {"message": "Stock actualizado", "product": serialize_doc(product)}


@router.patch("/{product_id}/discount")
def update_discount_route(
    product_id: str,
    payload: DiscountIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("products:manage")),
):
    product = update_discount(db, product_id, payload.discount_percentage)
    return {"message": "Descuento actualizado", "product": serialize_doc(product)}


@router.patch("/{product_id}/featured")
def update_featured_route(
    product_id: str,
    payload: FeaturedIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("products:manage")),
):
    product = update_product(db, product_id, {"is_featured": payload.is_featured})
    return {"message": "Estado de destacado actualizado", "product": serialize_doc(product)}


@router.patch("/{product_id}/new")
def update_new_route(
    product_id: str,
    payload: NewIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("products:manage")),
):
    product = update_product(db, product_id, {"is_new": payload.is_new})
    return {"message": "Estado de nuevo actualizado", "product": serialize_doc(product)}


@router.delete("/{product_id}")
def delete_product_route(
    product_id: str,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("products:manage")),
):
    delete_product(db, product_id)
    return {"message": "Producto eliminado exitosamente"}
