"""
Shipment tracker.

Simulates a carrier: one shipment per order with an append-only log of
tracking events. Clients only see the shipments of their own orders.
"""
import logging
import random
import string
import time
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import CurrentUser, require
from database import Database, get_database, page_meta, serialize_doc, to_object_id, utcnow
from errors import BadRequestError, ConflictError, NotFoundError
from schemas import Address, Shipment, ShipmentItem, ShipmentStatus, TrackingEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/shipping", tags=["shipping"])

TERMINAL_SHIPMENT_STATUSES = {ShipmentStatus.DELIVERED.value, ShipmentStatus.CANCELLED.value}


def new_tracking_number() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=9))
    return f"SIM-{int(time.time() * 1000)}-{suffix}"


def create_shipment(
    db: Database,
    order_id: str,
    shipping_address: dict,
    items: List[dict],
    provider: str,
    estimated_delivery_date: Optional[datetime] = None,
) -> dict:
    order_oid = to_object_id(order_id)
    if order_oid is None:
        raise BadRequestError("ID de pedido inválido.")
    for item in items:
        if to_object_id(item["product_id"]) is None:
            raise BadRequestError(f"ID de producto inválido: {item['product_id']}")

    order = db["order"].find_one({"_id": order_oid})
    if not order:
        raise NotFoundError("Pedido no encontrado.")
    if db["shipment"].find_one({"order_id": str(order_oid)}):
        raise ConflictError("Ya existe un envío para este pedido.")

    shipment = Shipment(
        order_id=str(order_oid),
        user_id=order["user_id"],
        tracking_number=new_tracking_number(),
        shipping_provider=provider,
        shipping_address=Address(**shipping_address),
        items=[ShipmentItem(product_id=i["product_id"], quantity=i["quantity"]) for i in items],
        estimated_delivery_date=estimated_delivery_date,
        tracking_events=[
            TrackingEvent(status=ShipmentStatus.PENDING_PICKUP, timestamp=utcnow(), notes="Envío creado")
        ],
    )
    try:
        shipment_id = db.create_document("shipment", shipment)
    except DuplicateKeyError:
        raise ConflictError("Ya existe un envío para este pedido.")

    logger.info("Shipment created for order %s with tracking %s", order_id, shipment.tracking_number)
    return db["shipment"].find_one({"_id": to_object_id(shipment_id)})


def get_shipment_by_id(db: Database, shipment_id: str, scope: Optional[dict] = None) -> dict:
    oid = to_object_id(shipment_id)
    if oid is None:
        raise BadRequestError("ID de envío inválido.")
    shipment = db["shipment"].find_one({"_id": oid, **(scope or {})})
    if not shipment:
        raise NotFoundError("Envío no encontrado.")
    return shipment


def get_shipment_by_tracking_number(db: Database, tracking_number: str, scope: Optional[dict] = None) -> dict:
    shipment = db["shipment"].find_one({"tracking_number": tracking_number, **(scope or {})})
    if not shipment:
        raise NotFoundError("Número de seguimiento no encontrado.")
    return shipment


def update_shipment_status(
    db: Database,
    shipment_id: str,
    new_status: str,
    location: Optional[str] = None,
    notes: Optional[str] = None,
) -> dict:
    shipment = get_shipment_by_id(db, shipment_id)
    if shipment["current_status"] == new_status:
        logger.warning("Shipment %s already has status %s, nothing to update", shipment_id, new_status)
        return shipment
    if shipment["current_status"] in TERMINAL_SHIPMENT_STATUSES:
        raise BadRequestError(f"No se puede actualizar un envío con estado {shipment['current_status']}.")

    event = TrackingEvent(status=new_status, timestamp=utcnow(), location=location, notes=notes)
    updated = db["shipment"].find_one_and_update(
        {"_id": shipment["_id"]},
        {
            "$set": {"current_status": new_status, "updated_at": utcnow()},
            "$push": {"tracking_events": event.model_dump()},
        },
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Shipment %s moved to %s", shipment_id, new_status)
    return updated


def list_shipments(db: Database, filters: dict, page: int = 1, limit: int = 10) -> dict:
    query = {}
    if filters.get("status"):
        query["current_status"] = filters["status"]
    if filters.get("order_id"):
        oid = to_object_id(filters["order_id"])
        if oid is None:
            raise BadRequestError("ID de pedido inválido.")
        query["order_id"] = str(oid)
    if filters.get("shipping_provider"):
        query["shipping_provider"] = filters["shipping_provider"]

    total = db["shipment"].count_documents(query)
    data = db.get_documents(
        "shipment", query, limit=limit, skip=(page - 1) * limit, sort=[("created_at", DESCENDING)]
    )
    return {"data": data, "meta": page_meta(total, page, limit)}


# Routes

class ShipmentIn(BaseModel):
    order_id: str
    shipping_address: Address
    items: List[ShipmentItem] = Field(..., min_length=1)
    shipping_provider: str = Field(..., min_length=1)
    estimated_delivery_date: Optional[datetime] = None


class ShipmentStatusIn(BaseModel):
    status: ShipmentStatus
    location: Optional[str] = None
    notes: Optional[str] = None


@router.post("", status_code=status.HTTP_201_CREATED)
def create_shipment_route(
    payload: ShipmentIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("shipping:manage")),
):
    shipment = create_shipment(
        db,
        payload.order_id,
        payload.shipping_address.model_dump(),
        [i.model_dump() for i in payload.items],
        payload.shipping_provider,
        payload.estimated_delivery_date,
    )
    return {"message": "Envío creado", "shipment": serialize_doc(shipment)}


@router.get("")
def list_shipments_route(
    status_filter: Optional[ShipmentStatus] = Query(None, alias="status"),
    order_id: Optional[str] = None,
    shipping_provider: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("shipping:manage")),
):
    filters = {
        "status": status_filter.value if status_filter else None,
        "order_id": order_id,
        "shipping_provider": shipping_provider,
    }
    result = list_shipments(db, filters, page, limit)
    return {"data": serialize_doc(result["data"]), "meta": result["meta"]}


@router.get("/track/{tracking_number}")
def track_shipment_route(
    tracking_number: str,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("shipping:read")),
):
    return serialize_doc(get_shipment_by_tracking_number(db, tracking_number, user.scope))


@router.get("/{shipment_id}")
def get_shipment_route(
    shipment_id: str,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("shipping:read")),
):
    return serialize_doc(get_shipment_by_id(db, shipment_id, user.scope))


@router.patch("/{shipment_id}/status")
def update_shipment_status_route(
    shipment_id: str,
    payload: ShipmentStatusIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("shipping:manage")),
):
    shipment = update_shipment_status(db, shipment_id, payload.status.value, payload.location, payload.notes)
    return {"message": "Estado del envío actualizado", "shipment": serialize_doc(shipment)}
