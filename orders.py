"""
Order lifecycle.

Orders are snapshots taken at purchase time: item names and unit prices
are copied from the catalog and never change afterwards. Stock moves only
inside a unit of work, so an order either takes all of its stock or none.

order_status transitions:

    pending / processing / on_hold / payment_failed -> any
    shipped                                         -> any but cancelled
    delivered, cancelled, refunded                  -> (terminal)
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, Field, ValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

import shipping
from auth import CurrentUser, require
from config import Settings, get_settings
from database import Database, get_database, page_meta, serialize_doc, to_object_id, utcnow
from errors import (
    AppError,
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InternalServerError,
    NotFoundError,
)
from notifications import Notifier, get_notifier
from payments import PaymentFailed, PaymentGateway, get_payments
from products import effective_price
from schemas import (
    Address,
    Order,
    OrderItem,
    OrderStatus,
    PaymentDetails,
    PaymentStatus,
    PaymentType,
    ShipmentStatus,
    ShippingStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

TERMINAL_STATUSES = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value}
NOT_CANCELLABLE = TERMINAL_STATUSES | {OrderStatus.SHIPPED.value}

STATUS_TIMESTAMPS = {
    OrderStatus.SHIPPED.value: "shipped_at",
    OrderStatus.DELIVERED.value: "delivered_at",
    OrderStatus.CANCELLED.value: "cancelled_at",
    OrderStatus.REFUNDED.value: "refunded_at",
}

DEFAULT_DELIVERY_DAYS = 5


@contextmanager
def _order_operation(action: str, message: str):
    """Let domain errors through, turn anything else into a logged 500."""
    try:
        yield
    except AppError:
        raise
    except Exception:
        logger.exception("Failed to %s", action)
        raise InternalServerError(message)


def _load_order(db: Database, order_id: str) -> dict:
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFoundError("Pedido no encontrado.")
    return order


def _restore_stock(uow, order: dict) -> None:
    for item in order["items"]:
        oid = to_object_id(item["product_id"])
        if oid is None or not uow.increment("product", oid, "stock", item["quantity"]):
            logger.warning("Product %s of order %s no longer exists, stock not restored", item["product_id"], order["_id"])


# Creation

def _place_order(uow, user_id: str, payload: "OrderIn", payments: PaymentGateway) -> dict:
    user_oid = to_object_id(user_id)
    if user_oid is None or not uow.find_one("user", {"_id": user_oid}):
        raise NotFoundError("Usuario no encontrado.")

    items: List[OrderItem] = []
    subtotal = 0.0
    for line in payload.items:
        oid = to_object_id(line.product_id)
        product = uow.find_one("product", {"_id": oid}) if oid else None
        if not product:
            raise BadRequestError(f"Producto con ID {line.product_id} no encontrado.")
        if product.get("stock", 0) < line.quantity:
            raise ConflictError(
                f"Stock insuficiente para el producto: {product['name']}. "
                f"Disponible: {product.get('stock', 0)}, Solicitado: {line.quantity}"
            )

        unit_price = effective_price(product)
        items.append(
            OrderItem(
                product_id=str(oid),
                name=product["name"],
                price_at_addition=round(unit_price, 2),
                quantity=line.quantity,
                selected_variation=line.selected_variation,
                image_url=(product.get("images") or [None])[0],
                discount_percentage_applied=product.get("discount_percentage") or 0,
            )
        )
        subtotal += unit_price * line.quantity

        if not uow.increment("product", oid, "stock", -line.quantity, floor=0):
            raise ConflictError(f"Stock insuficiente para el producto: {product['name']}.")

    subtotal = round(subtotal, 2)
    total = round(subtotal + payload.shipping_cost + payload.tax_amount - payload.discount_amount, 2)
    if total < 0:
        raise BadRequestError("El monto total del pedido no puede ser negativo.")

    method = payload.payment_method
    try:
        payment = payments.charge(total, method.model_dump())
    except PaymentFailed as exc:
        raise ConflictError(f"Falló el procesamiento del pago: {exc}")

    order = Order(
        user_id=user_id,
        items=items,
        subtotal=subtotal,
        shipping_cost=payload.shipping_cost,
        tax_amount=payload.tax_amount,
        discount_amount=payload.discount_amount,
        total_amount=total,
        order_status=OrderStatus.PROCESSING if payment.settled else OrderStatus.PENDING,
        payment_status=PaymentStatus.PAID if payment.settled else PaymentStatus.PENDING,
        shipping_status=ShippingStatus.PENDING,
        shipping_address=payload.shipping_address,
        billing_address=payload.billing_address or payload.shipping_address,
        payment_details=PaymentDetails(
            type=method.type,
            transaction_id=payment.transaction_id,
            last4=payment.last4,
            provider=payment.provider,
        ),
    )
    doc = order.model_dump()
    uow.insert_one("order", doc)
    return doc


def _ship_order(db: Database, order: dict, settings: Settings) -> None:
    eta = utcnow() + timedelta(days=DEFAULT_DELIVERY_DAYS)
    shipment = shipping.create_shipment(
        db,
        str(order["_id"]),
        order["shipping_address"],
        [{"product_id": i["product_id"], "quantity": i["quantity"]} for i in order["items"]],
        settings.default_shipping_provider,
        eta,
    )
    changes = {
        "tracking_number": shipment["tracking_number"],
        "shipping_provider": shipment["shipping_provider"],
        "estimated_delivery_date": eta,
        "updated_at": utcnow(),
    }
    db["order"].update_one({"_id": order["_id"]}, {"$set": changes})
    order.update(changes)


def _notify(db: Database, notifier: Optional[Notifier], order: dict, message: str) -> None:
    if notifier is None:
        return
    user = db["user"].find_one({"_id": to_object_id(order["user_id"])})
    if not user:
        return
    getattr(notifier, message)(user["email"], user.get("name", ""), order)


def create_order(
    db: Database,
    user_id: str,
    payload: "OrderIn",
    payments: PaymentGateway,
    settings: Settings,
    notifier: Optional[Notifier] = None,
) -> dict:
    with _order_operation("create order", "Error interno al procesar el pedido."):
        with db.unit_of_work() as uow:
            order = _place_order(uow, user_id, payload, payments)
    logger.info("Order %s created for user %s (total %.2f)", order["_id"], user_id, order["total_amount"])

    if settings.auto_create_shipment:
        try:
            _ship_order(db, order, settings)
        except (AppError, PyMongoError, ValidationError):
            logger.exception("Automatic shipment failed for order %s", order["_id"])
    _notify(db, notifier, order, "order_confirmation")
    return order


# Transitions

def cancel_order(db: Database, order_id: str, user: CurrentUser, notifier: Optional[Notifier] = None) -> dict:
    oid = to_object_id(order_id)
    if oid is None:
        raise NotFoundError("Pedido no encontrado.")

    with _order_operation("cancel order", "Error interno al cancelar el pedido."):
        with db.unit_of_work() as uow:
            order = uow.find_one("order", {"_id": oid})
            if not order:
                raise NotFoundError("Pedido no encontrado.")
            if not user.is_staff and order["user_id"] != user.id:
                raise ForbiddenError("No tienes permisos para cancelar este pedido.")
            if order["order_status"] in NOT_CANCELLABLE:
                raise BadRequestError(f"No se puede cancelar un pedido en estado '{order['order_status']}'.")

            now = utcnow()
            changes = {
                "order_status": OrderStatus.CANCELLED.value,
                "payment_status": PaymentStatus.REFUNDED.value,
                "cancelled_at": now,
                "updated_at": now,
            }
            result = uow.update_one(
                "order",
                {"_id": oid, "order_status": order["order_status"]},
                {"$set": changes},
                undo={"$set": {
                    "order_status": order["order_status"],
                    "payment_status": order["payment_status"],
                    "cancelled_at": order.get("cancelled_at"),
                }},
                undo_filter={"_id": oid},
            )
            if not result.matched_count:
                raise ConflictError("El pedido cambió de estado, intenta de nuevo.")
            _restore_stock(uow, order)
            order.update(changes)

    logger.info("Order %s cancelled by %s", order_id, user.id)
    _cancel_shipment(db, order_id)
    _notify(db, notifier, order, "order_cancelled")
    return order


def _cancel_shipment(db: Database, order_id: str) -> None:
    shipment = db["shipment"].find_one({"order_id": order_id})
    if not shipment or shipment["current_status"] in shipping.TERMINAL_SHIPMENT_STATUSES:
        return
    try:
        shipping.update_shipment_status(
            db, str(shipment["_id"]), ShipmentStatus.CANCELLED.value, notes="Pedido cancelado"
        )
    except (AppError, PyMongoError):
        logger.exception("Could not cancel shipment of order %s", order_id)


def update_order_status(db: Database, order_id: str, new_status: str, notes: Optional[str] = None) -> dict:
    oid = to_object_id(order_id)
    if oid is None:
        raise NotFoundError("Pedido no encontrado.")

    with _order_operation("update order status", "Error interno al actualizar el estado del pedido."):
        with db.unit_of_work() as uow:
            order = uow.find_one("order", {"_id": oid})
            if not order:
                raise NotFoundError("Pedido no encontrado.")
            old_status = order["order_status"]
            cancelling = new_status == OrderStatus.CANCELLED.value
            if old_status in TERMINAL_STATUSES:
                raise BadRequestError(f"No se puede cambiar el estado de un pedido en estado '{old_status}'.")
            if cancelling and old_status in NOT_CANCELLABLE:
                raise BadRequestError(f"No se puede cancelar un pedido en estado '{old_status}'.")
            if new_status == OrderStatus.DELIVERED.value and old_status != OrderStatus.SHIPPED.value:
                raise BadRequestError(
                    f"Un pedido solo puede pasar a '{OrderStatus.DELIVERED.value}' "
                    f"si está '{OrderStatus.SHIPPED.value}'."
                )

            now = utcnow()
            changes = {"order_status": new_status, "updated_at": now}
            undo = {"order_status": old_status, "notes": order.get("notes")}
            if cancelling:
                changes["payment_status"] = PaymentStatus.REFUNDED.value
                undo["payment_status"] = order["payment_status"]
            stamp = STATUS_TIMESTAMPS.get(new_status)
            if stamp:
                changes[stamp] = now
                undo[stamp] = order.get(stamp)
            if notes:
                line = f"{now.isoformat()}: {notes}"
                changes["notes"] = f"{order['notes']}\n{line}" if order.get("notes") else line

            result = uow.update_one(
                "order",
                {"_id": oid, "order_status": old_status},
                {"$set": changes},
                undo={"$set": undo},
                undo_filter={"_id": oid},
            )
            if not result.matched_count:
                raise ConflictError("El pedido cambió de estado, intenta de nuevo.")
            if cancelling:
                _restore_stock(uow, order)
            order.update(changes)

    logger.info("Order %s moved from %s to %s", order_id, old_status, new_status)
    if cancelling:
        _cancel_shipment(db, order_id)
    return order


def update_payment_status(
    db: Database, order_id: str, payment_status: str, transaction_id: Optional[str] = None
) -> dict:
    oid = to_object_id(order_id)
    changes = {"payment_status": payment_status, "updated_at": utcnow()}
    if transaction_id:
        changes["payment_details.transaction_id"] = transaction_id
    order = db["order"].find_one_and_update(
        {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
    ) if oid else None
    if not order:
        raise NotFoundError("Pedido no encontrado.")
    return order


def update_shipping_details(
    db: Database,
    order_id: str,
    tracking_number: str,
    shipping_provider: str,
    estimated_delivery_date: Optional[datetime] = None,
) -> dict:
    oid = to_object_id(order_id)
    now = utcnow()
    changes = {
        "tracking_number": tracking_number,
        "shipping_provider": shipping_provider,
        "shipping_status": ShippingStatus.SHIPPED.value,
        "estimated_delivery_date": estimated_delivery_date,
        "shipped_at": now,
        "updated_at": now,
    }
    order = db["order"].find_one_and_update(
        {"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER
    ) if oid else None
    if not order:
        raise NotFoundError("Pedido no encontrado.")
    return order


# Reads

def _attach_owners(db: Database, orders: List[dict], fields: dict) -> List[dict]:
    ids = {to_object_id(o["user_id"]) for o in orders} - {None}
    owners = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": list(ids)}}, fields)}
    for order in orders:
        order["user"] = owners.get(order["user_id"])
    return orders


def get_orders_by_user_id(db: Database, user_id: str, page: int = 1, limit: int = 10) -> dict:
    query = {"user_id": user_id}
    total = db["order"].count_documents(query)
    data = db.get_documents("order", query, limit=limit, skip=(page - 1) * limit, sort=[("created_at", DESCENDING)])
    return {"data": data, "meta": page_meta(total, page, limit)}


def get_all_orders(db: Database, filters: dict, page: int = 1, limit: int = 10) -> dict:
    query = {}
    if filters.get("order_status"):
        query["order_status"] = filters["order_status"]
    total = db["order"].count_documents(query)
    data = db.get_documents("order", query, limit=limit, skip=(page - 1) * limit, sort=[("created_at", DESCENDING)])
    _attach_owners(db, data, {"name": 1, "last_name": 1, "email": 1})
    return {"data": data, "meta": page_meta(total, page, limit)}


def get_order_detail_by_id(db: Database, order_id: str) -> dict:
    order = _load_order(db, order_id)
    _attach_owners(db, [order], {"name": 1, "last_name": 1, "email": 1, "phone": 1, "addresses": 1})
    return order


def get_client_order_by_id(db: Database, user_id: str, order_id: str) -> dict:
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid, "user_id": user_id}) if oid else None
    if not order:
        raise NotFoundError("Pedido no encontrado o no pertenece a este usuario.")
    return order


# Routes

class OrderLineIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1, le=100)
    selected_variation: Optional[str] = None


class PaymentMethodIn(BaseModel):
    type: PaymentType
    last4: Optional[str] = Field(None, pattern=r"^\d{4}$")
    provider: Optional[str] = None
    payment_gateway_token: Optional[str] = None


class OrderIn(BaseModel):
    items: List[OrderLineIn] = Field(..., min_length=1)
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: PaymentMethodIn
    shipping_cost: float = Field(0, ge=0)
    tax_amount: float = Field(0, ge=0)
    discount_amount: float = Field(0, ge=0)


class OrderStatusIn(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=500)


class PaymentStatusIn(BaseModel):
    payment_status: PaymentStatus
    transaction_id: Optional[str] = None


class ShippingDetailsIn(BaseModel):
    tracking_number: str = Field(..., min_length=1)
    shipping_provider: str = Field(..., min_length=1)
    estimated_delivery_date: Optional[datetime] = None


@router.post("", status_code=status.HTTP_201_CREATED)
def create_order_route(
    payload: OrderIn,
    background_tasks: BackgroundTasks,
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
    payments: PaymentGateway = Depends(get_payments),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(require("orders:create")),
):
    order = create_order(db, user.id, payload, payments, settings)
    background_tasks.add_task(_notify, db, notifier, order, "order_confirmation")
    return {"message": "Pedido creado exitosamente", "order": serialize_doc(order)}


@router.get("")
def list_orders_route(
    order_status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("orders:read")),
):
    if user.scope:
        result = get_orders_by_user_id(db, user.id, page, limit)
    else:
        result = get_all_orders(db, {"order_status": order_status.value if order_status else None}, page, limit)
    return {"data": serialize_doc(result["data"]), "meta": result["meta"]}


@router.get("/{order_id}")
def get_order_route(
    order_id: str,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("orders:read")),
):
    if user.scope:
        return serialize_doc(get_client_order_by_id(db, user.id, order_id))
    return serialize_doc(get_order_detail_by_id(db, order_id))


@router.patch("/{order_id}/cancel")
def cancel_order_route(
    order_id: str,
    background_tasks: BackgroundTasks,
    db: Database = Depends(get_database),
    notifier: Notifier = Depends(get_notifier),
    user: CurrentUser = Depends(require("orders:cancel")),
):
    order = cancel_order(db, order_id, user)
    background_tasks.add_task(_notify, db, notifier, order, "order_cancelled")
    return {"message": "Pedido cancelado exitosamente", "order": serialize_doc(order)}


@router.patch("/{order_id}/status")
def update_order_status_route(
    order_id: str,
    payload: OrderStatusIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("orders:manage")),
):
    order = update_order_status(db, order_id, payload.status.value, payload.notes)
    return {"message": "Estado del pedido actualizado", "order": serialize_doc(order)}


@router.patch("/{order_id}/payment-status")
def update_payment_status_route(
    order_id: str,
    payload: PaymentStatusIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("orders:manage")),
):
    order = update_payment_status(db, order_id, payload.payment_status.value, payload.transaction_id)
    return {"message": "Estado de pago actualizado", "order": serialize_doc(order)}


@router.patch("/{order_id}/shipping-details")
def update_shipping_details_route(
    order_id: str,
    payload: ShippingDetailsIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("orders:manage")),
):
    order = update_shipping_details(
        db, order_id, payload.tracking_number, payload.shipping_provider, payload.estimated_delivery_date
    )
    return {"message": "Detalles de envío actualizados", "order": serialize_doc(order)}
