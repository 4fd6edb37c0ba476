"""
Cart manager.

One cart document per user holds the pending line items. Stock is checked
against the live product when a line is mutated, it is never reserved.
"""
import logging
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from auth import CurrentUser, require
from database import Database, get_database, serialize_doc, to_object_id, utcnow
from errors import BadRequestError, NotFoundError
from schemas import CartItem

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])


def _find_cart(db: Database, user_id: str) -> Optional[dict]:
    return db["cart"].find_one({"user_id": user_id})


def _save_items(db: Database, user_id: str, items: List[dict]) -> dict:
    now = utcnow()
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )
    return _find_cart(db, user_id)


def _load_product(db: Database, product_id: str) -> Optional[dict]:
    oid = to_object_id(product_id)
    return db["product"].find_one({"_id": oid}) if oid else None


def _matching_line(items: List[dict], product_id: str, variation: Optional[str]) -> Optional[dict]:
    return next(
        (i for i in items if i["product_id"] == product_id and i.get("selected_variation") == variation),
        None,
    )


def _new_line(product: dict, quantity: int, variation: Optional[str]) -> dict:
    line = CartItem(
        product_id=str(product["_id"]),
        quantity=quantity,
        price_at_addition=float(product["price"]),
        selected_variation=variation,
    )
    return {"_id": ObjectId(), **line.model_dump()}


def get_cart(db: Database, user_id: str) -> dict:
    cart = _find_cart(db, user_id)
    if not cart or not cart.get("items"):
        raise NotFoundError("No hay artículos en tu carrito.")
    ids = [to_object_id(i["product_id"]) for i in cart["items"]]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": [i for i in ids if i]}})}
    for item in cart["items"]:
        item["product"] = products.get(item["product_id"])
    return cart


def add_item(db: Database, user_id: str, product_id: str, quantity: int, variation: Optional[str] = None) -> dict:
    product = _load_product(db, product_id)
    if not product:
        raise NotFoundError("Producto no disponible.")
    stock = product.get("stock", 0)
    if stock < quantity:
        raise BadRequestError(f"No hay suficiente stock disponible. Solo quedan {stock} unidades.")

    cart = _find_cart(db, user_id) or {"items": []}
    items = cart["items"]
    existing = _matching_line(items, str(product["_id"]), variation)
    if existing:
        new_quantity = existing["quantity"] + quantity
        if stock < new_quantity:
            raise BadRequestError(f"No puedes añadir más. Solo quedan {stock} unidades de este producto.")
        existing["quantity"] = new_quantity
    else:
        items.append(_new_line(product, quantity, variation))
    return _save_items(db, user_id, items)


def update_item(
    db: Database,
    user_id: str,
    item_id: str,
    quantity: Optional[int] = None,
    variation: Optional[str] = None,
) -> dict:
    cart = _find_cart(db, user_id)
    if not cart:
        raise NotFoundError("Carrito no encontrado")
    oid = to_object_id(item_id)
    items = cart.get("items", [])
    item = next((i for i in items if oid is not None and i["_id"] == oid), None)
    if item is None:
        raise NotFoundError("Producto no encontrado en el carrito")

    others = [i for i in items if i is not item]
    twin = None
    if variation is not None and variation != item.get("selected_variation"):
        twin = _matching_line(others, item["product_id"], variation)

    if quantity is not None or twin is not None:
        if quantity is not None and quantity < 1:
            raise BadRequestError("La cantidad debe ser al menos 1.")
        product = _load_product(db, item["product_id"])
        if not product:
            _save_items(db, user_id, others)
            raise NotFoundError("Producto asociado al ítem ya no disponible. Ítem eliminado del carrito.")
        stock = product.get("stock", 0)
        if quantity is not None:
            if stock < quantity:
                raise BadRequestError(f"No hay suficiente stock disponible. Solo quedan {stock} unidades.")
            item["quantity"] = quantity

    if twin is not None:
        # Same product and variation: fold this line into the existing one.
        merged = twin["quantity"] + item["quantity"]
        if stock < merged:
            raise BadRequestError(f"No puedes añadir más. Solo quedan {stock} unidades de este producto.")
        twin["quantity"] = merged
        return _save_items(db, user_id, others)

    if variation is not None:
        item["selected_variation"] = variation

    return _save_items(db, user_id, items)


def remove_item(db: Database, user_id: str, item_id: str) -> None:
    cart = _find_cart(db, user_id)
    if not cart:
        return
    oid = to_object_id(item_id)
    remaining = [i for i in cart.get("items", []) if i["_id"] != oid]
    if len(remaining) != len(cart.get("items", [])):
        _save_items(db, user_id, remaining)


def clear_cart(db: Database, user_id: str) -> None:
    cart = _find_cart(db, user_id)
    if not cart or not cart.get("items"):
        return
    _save_items(db, user_id, [])


def sync_cart(db: Database, user_id: str, client_items: List[dict]) -> dict:
    """Merge items kept by the client before login into the stored cart."""
    cart = _find_cart(db, user_id) or {"items": []}
    items = cart["items"]

    for local in client_items:
        product_id = local.get("product_id")
        variation = local.get("selected_variation")
        if to_object_id(product_id) is None:
            logger.warning("[sync_cart] invalid product id %s, skipping item", product_id)
            continue
        product = _load_product(db, product_id)
        if not product:
            logger.warning("[sync_cart] product %s not found, skipping item", product_id)
            continue

        stock = product.get("stock", 0)
        quantity = local.get("quantity", 0)
        if stock < quantity:
            quantity = stock
            logger.warning("[sync_cart] not enough stock for %s, quantity clamped to %s", product["name"], quantity)
        if quantity <= 0:
            continue

        existing = _matching_line(items, str(product["_id"]), variation)
        if existing:
            existing["quantity"] = min(existing["quantity"] + quantity, stock)
        else:
            items.append(_new_line(product, quantity, variation))

    return _save_items(db, user_id, items)


# Routes

class AddToCartIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1, le=100)
    selected_variation: Optional[str] = Field(None, min_length=1, max_length=100)


class UpdateCartItemIn(BaseModel):
    quantity: Optional[int] = Field(None, le=100)
    selected_variation: Optional[str] = Field(None, min_length=1, max_length=100)


class SyncItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=0)
    selected_variation: Optional[str] = None


class SyncCartIn(BaseModel):
    items: List[SyncItemIn]


@router.get("")
def get_cart_route(db: Database = Depends(get_database), user: CurrentUser = Depends(require("cart"))):
    return serialize_doc(get_cart(db, user.id))


@router.post("", status_code=status.HTTP_201_CREATED)
def add_item_route(
    payload: AddToCartIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("cart")),
):
    cart = add_item(db, user.id, payload.product_id, payload.quantity, payload.selected_variation)
    return {"message": "Producto añadido al carrito", "cart": serialize_doc(cart)}


@router.patch("/items/{item_id}")
def update_item_route(
    item_id: str,
    payload: UpdateCartItemIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("cart")),
):
    cart = update_item(db, user.id, item_id, payload.quantity, payload.selected_variation)
    return {"message": "Ítem actualizado", "cart": serialize_doc(cart)}


@router.delete("/items/{item_id}")
def remove_item_route(item_id: str, db: Database = Depends(get_database), user: CurrentUser = Depends(require("cart"))):
    remove_item(db, user.id, item_id)
    return {"message": "Producto eliminado del carrito"}


@router.delete("/items")
def clear_cart_route(db: Database = Depends(get_database), user: CurrentUser = Depends(require("cart"))):
    clear_cart(db, user.id)
    return {"message": "Carrito vaciado correctamente"}


@router.post("/sync")
def sync_cart_route(
    payload: SyncCartIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("cart")),
):
    cart = sync_cart(db, user.id, [i.model_dump() for i in payload.items])
    return serialize_doc(cart)
