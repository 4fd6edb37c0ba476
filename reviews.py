import logging
import math
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator
from pymongo import DESCENDING, ReturnDocument

from auth import CurrentUser, require
from database import Database, get_database, serialize_doc, to_object_id, utcnow
from errors import ForbiddenError, NotFoundError
from schemas import RATING_STEPS, Review, Role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


def round_half_up(value: float) -> float:
    """Round to the nearest 0.5, halves going up (4.25 -> 4.5)."""
    return math.floor(value * 2 + 0.5) / 2


def refresh_product_rating(db: Database, product_id: str) -> float:
    result = list(db["review"].aggregate([
        {"$match": {"product_id": product_id}},
        {"$group": {"_id": "$product_id", "avg_rating": {"$avg": "$rating"}}},
    ]))
    rating = round_half_up(result[0]["avg_rating"]) if result else 0
    db["product"].update_one(
        {"_id": to_object_id(product_id)}, {"$set": {"rating": rating, "updated_at": utcnow()}}
    )
    logger.debug("Product %s rating is now %s", product_id, rating)
    return rating


def get_review(db: Database, review_id: str) -> dict:
    oid = to_object_id(review_id)
    review = db["review"].find_one({"_id": oid}) if oid else None
    if not review:
        raise NotFoundError("Reseña no encontrada.")
    return review


def list_reviews(db: Database, product_id: Optional[str] = None) -> List[dict]:
    query = {"product_id": product_id} if product_id else {}
    return db.get_documents("review", query, sort=[("created_at", DESCENDING)])


def create_review(db: Database, user: CurrentUser, payload: "ReviewIn") -> dict:
    oid = to_object_id(payload.product_id)
    if oid is None or not db["product"].find_one({"_id": oid}):
        raise NotFoundError("Producto no encontrado.")

    review = Review(
        user_id=user.id,
        user_name=user.display_name,
        product_id=str(oid),
        rating=payload.rating,
        text=payload.text,
        images=payload.images,
        videos=payload.videos,
    )
    review_id = db.create_document("review", review)
    refresh_product_rating(db, str(oid))
    return db["review"].find_one({"_id": to_object_id(review_id)})


def update_review(db: Database, review_id: str, user: CurrentUser, changes: dict) -> dict:
    review = get_review(db, review_id)
    if review["user_id"] != user.id:
        raise ForbiddenError("No tienes permiso para modificar esta reseña.")
    changes = dict(changes, updated_at=utcnow())
    updated = db["review"].find_one_and_update(
        {"_id": review["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    refresh_product_rating(db, review["product_id"])
    return updated


def delete_review(db: Database, review_id: str, user: CurrentUser) -> None:
    review = get_review(db, review_id)
    if review["user_id"] != user.id and user.role != Role.ADMIN.value:
        raise ForbiddenError("No tienes permiso para modificar esta reseña.")
    db["review"].delete_one({"_id": review["_id"]})
    refresh_product_rating(db, review["product_id"])


# Routes

def _check_rating(value):
    if value is not None and value not in RATING_STEPS:
        raise ValueError("La calificación debe ser un múltiplo de 0.5 entre 0.5 y 5.")
    return value


class ReviewIn(BaseModel):
    product_id: str
    rating: float
    text: Optional[str] = Field(None, max_length=1000)
    images: List[str] = Field(default_factory=list)
    videos: List[str] = Field(default_factory=list)

    @field_validator("rating")
    @classmethod
    def check_rating(cls, value):
        return _check_rating(value)


class ReviewUpdateIn(BaseModel):
    rating: Optional[float] = None
    text: Optional[str] = Field(None, max_length=1000)
    images: Optional[List[str]] = None
    videos: Optional[List[str]] = None

    @field_validator("rating")
    @classmethod
    def check_rating(cls, value):
        return _check_rating(value)


@router.get("")
def list_reviews_route(product_id: Optional[str] = None, db: Database = Depends(get_database)):
    return serialize_doc(list_reviews(db, product_id))


@router.get("/{review_id}")
def get_review_route(review_id: str, db: Database = Depends(get_database)):
    return serialize_doc(get_review(db, review_id))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_review_route(
    payload: ReviewIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("reviews:write")),
):
    review = create_review(db, user, payload)
    return {"message": "Reseña creada", "review": serialize_doc(review)}


@router.put("/{review_id}")
def update_review_route(
    review_id: str,
    payload: ReviewUpdateIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("reviews:write")),
):
    review = update_review(db, review_id, user, payload.model_dump(exclude_none=True))
    return {"message": "Reseña actualizada", "review": serialize_doc(review)}


@router.delete("/{review_id}")
def delete_review_route(
    review_id: str,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("reviews:delete")),
):
    delete_review(db, review_id, user)
    return {"message": "Reseña eliminada"}
