from typing import List

from fastapi import APIRouter, Depends, status

from auth import CurrentUser, require
from database import Database, get_database, serialize_doc, to_object_id, utcnow
from errors import BadRequestError, ConflictError, NotFoundError

router = APIRouter(prefix="/api/favorites", tags=["favorites"])


def get_favorites(db: Database, user_id: str) -> List[dict]:
    user = db["user"].find_one({"_id": to_object_id(user_id)}, {"favorites": 1}) or {}
    ids = [to_object_id(p) for p in user.get("favorites", [])]
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": [i for i in ids if i]}})}
    # Keep the order in which they were added, skipping deleted products
    return [products[i] for i in ids if i in products]


def add_favorite(db: Database, user_id: str, product_id: str) -> None:
    oid = to_object_id(product_id)
    if oid is None:
        raise BadRequestError("ID de producto inválido.")
    if not db["product"].find_one({"_id": oid}):
        raise NotFoundError("Producto no encontrado.")
    result = db["user"].update_one(
        {"_id": to_object_id(user_id), "favorites": {"$ne": str(oid)}},
        {"$push": {"favorites": str(oid)}, "$set": {"updated_at": utcnow()}},
    )
    if not result.matched_count:
        raise ConflictError("El producto ya está en tus favoritos.")


def remove_favorite(db: Database, user_id: str, product_id: str) -> None:
    db["user"].update_one(
        {"_id": to_object_id(user_id)},
        {"$pull": {"favorites": product_id}, "$set": {"updated_at": utcnow()}},
    )


@router.get("")
def get_favorites_route(db: Database = Depends(get_database), user: CurrentUser = Depends(require("favorites"))):
    return serialize_doc(get_favorites(db, user.id))


@router.post("/{product_id}", status_code=status.HTTP_201_CREATED)
def add_favorite_route(
    product_id: str,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("favorites")),
):
    add_favorite(db, user.id, product_id)
    return {"message": "Producto agregado a favoritos"}


@router.delete("/{product_id}")
def remove_favorite_route(
    product_id: str,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("favorites")),
):
    remove_favorite(db, user.id, product_id)
    return {"message": "Producto eliminado de favoritos"}
