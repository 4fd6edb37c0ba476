from collections import Counter
from typing import List

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

import cart as cart_service
from auth import CurrentUser, require
from database import Database, get_database, serialize_doc, to_object_id
from errors import BadRequestError, NotFoundError

router = APIRouter(prefix="/api/pc-build", tags=["pc-build"])


def add_build_to_cart(db: Database, user_id: str, components: List[dict]) -> dict:
    """
    Add every chosen component to the cart, or none of them.

    Quantities already sitting in the cart count against the stock of each
    component, so a build never partially lands in the cart.
    """
    if not components:
        raise BadRequestError("Debes seleccionar al menos un componente.")

    requested = Counter()
    for component in components:
        requested[component["product_id"]] += component.get("quantity", 1)

    existing = db["cart"].find_one({"user_id": user_id}) or {"items": []}
    in_cart = Counter()
    for item in existing["items"]:
        in_cart[item["product_id"]] += item["quantity"]

    for product_id, quantity in requested.items():
        oid = to_object_id(product_id)
        if oid is None:
            raise BadRequestError(f"ID de producto inválido: {product_id}")
        product = db["product"].find_one({"_id": oid})
        if not product:
            raise NotFoundError(f"Producto {product_id} no encontrado.")
        stock = product.get("stock", 0)
        if stock < quantity + in_cart[str(oid)]:
            raise BadRequestError(f"Stock insuficiente para {product['name']}. Disponible: {stock}.")

    cart = None
    for component in components:
        cart = cart_service.add_item(db, user_id, component["product_id"], component.get("quantity", 1))
    return cart


class BuildComponentIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1, le=100)


class BuildIn(BaseModel):
    products: List[BuildComponentIn]


@router.post("", status_code=status.HTTP_201_CREATED)
def add_build_route(
    payload: BuildIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("cart")),
):
    cart = add_build_to_cart(db, user.id, [c.model_dump() for c in payload.products])
    return {"message": "Componentes añadidos al carrito", "cart": serialize_doc(cart)}
