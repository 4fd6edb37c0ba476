from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from auth import CurrentUser, get_password_hash, public_user, require, verify_password
from database import Database, get_database, serialize_doc, to_object_id, utcnow
from errors import NotFoundError, UnauthorizedError
from schemas import Address, PaymentMethod, PaymentType

router = APIRouter(prefix="/api/users", tags=["users"])


def _load_user(db: Database, user_id: str) -> dict:
    oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise NotFoundError("Usuario no encontrado")
    return user


def _save(db: Database, user: dict, fields: dict) -> None:
    fields = dict(fields, updated_at=utcnow())
    db["user"].update_one({"_id": user["_id"]}, {"$set": fields})
    user.update(fields)


def _find_entry(entries: List[dict], entry_id: str) -> Optional[dict]:
    oid = to_object_id(entry_id)
    return next((e for e in entries if oid is not None and e.get("_id") == oid), None)


# Profile

def get_profile(db: Database, user_id: str) -> dict:
    return _load_user(db, user_id)


def update_profile(db: Database, user_id: str, changes: dict) -> dict:
    user = _load_user(db, user_id)
    if changes:
        _save(db, user, changes)
    return user


def change_password(db: Database, user_id: str, current_password: str, new_password: str) -> None:
    user = _load_user(db, user_id)
    if not verify_password(current_password, user.get("password_hash", "")):
        raise UnauthorizedError("La contraseña actual es incorrecta")
    _save(db, user, {"password_hash": get_password_hash(new_password)})


def soft_delete_user(db: Database, user_id: str) -> None:
    user = _load_user(db, user_id)
    if user.get("is_deleted"):
        raise UnauthorizedError("Esta cuenta ya ha sido eliminada.")
    _save(db, user, {"is_deleted": True})


# Addresses
#
# The whole list is rewritten in a single update so the single-default
# invariant never holds only half way.

def get_addresses(db: Database, user_id: str) -> List[dict]:
    return _load_user(db, user_id).get("addresses", [])


def add_address(db: Database, user_id: str, address: Address) -> List[dict]:
    user = _load_user(db, user_id)
    addresses = [dict(a) for a in user.get("addresses", [])]
    entry = {"_id": ObjectId(), **address.model_dump()}
    if entry["is_default"]:
        for a in addresses:
            a["is_default"] = False
    addresses.append(entry)
    _save(db, user, {"addresses": addresses})
    return addresses


def update_address(db: Database, user_id: str, address_id: str, changes: dict) -> dict:
    user = _load_user(db, user_id)
    addresses = [dict(a) for a in user.get("addresses", [])]
    address = _find_entry(addresses, address_id)
    if address is None:
        raise NotFoundError("Dirección no encontrada")
    if changes.get("is_default"):
        for a in addresses:
            a["is_default"] = False
    address.update(changes)
    _save(db, user, {"addresses": addresses})
    return address


def delete_address(db: Database, user_id: str, address_id: str) -> None:
    user = _load_user(db, user_id)
    addresses = user.get("addresses", [])
    address = _find_entry(addresses, address_id)
    if address is None:
        raise NotFoundError("Dirección no encontrada")
    _save(db, user, {"addresses": [a for a in addresses if a is not address]})


def set_default_address(db: Database, user_id: str, address_id: str) -> dict:
    return update_address(db, user_id, address_id, {"is_default": True})


# Payment methods

def get_payment_methods(db: Database, user_id: str) -> List[dict]:
    return _load_user(db, user_id).get("payment_methods", [])


def add_payment_method(db: Database, user_id: str, method: PaymentMethod) -> List[dict]:
    user = _load_user(db, user_id)
    methods = list(user.get("payment_methods", []))
    methods.append({"_id": ObjectId(), **method.model_dump()})
    _save(db, user, {"payment_methods": methods})
    return methods


def update_payment_method(db: Database, user_id: str, method_id: str, changes: dict) -> dict:
    user = _load_user(db, user_id)
    methods = [dict(m) for m in user.get("payment_methods", [])]
    method = _find_entry(methods, method_id)
    if method is None:
        raise NotFoundError("Método de pago no encontrado")
    method.update(changes)
    _save(db, user, {"payment_methods": methods})
    return method


def delete_payment_method(db: Database, user_id: str, method_id: str) -> None:
    user = _load_user(db, user_id)
    methods = user.get("payment_methods", [])
    method = _find_entry(methods, method_id)
    if method is None:
        raise NotFoundError("Método de pago no encontrado")
    _save(db, user, {"payment_methods": [m for m in methods if m is not method]})


# Routes

class ProfileUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=60)
    last_name: Optional[str] = Field(None, min_length=1, max_length=60)
    second_last_name: Optional[str] = Field(None, max_length=60)
    phone: Optional[str] = None


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=72)


class AddressUpdateIn(BaseModel):
    postal_code: Optional[str] = Field(None, min_length=1)
    street: Optional[str] = Field(None, min_length=1)
    external_number: Optional[str] = None
    internal_number: Optional[str] = None
    neighborhood: Optional[str] = Field(None, min_length=1)
    city: Optional[str] = Field(None, min_length=1)
    state: Optional[str] = Field(None, min_length=1)
    country: Optional[str] = Field(None, min_length=1)
    is_default: Optional[bool] = None


class PaymentMethodUpdateIn(BaseModel):
    type: Optional[PaymentType] = None
    last4: Optional[str] = Field(None, pattern=r"^\d{4}$")
    provider: Optional[str] = None
    expiration: Optional[str] = Field(None, pattern=r"^(0[1-9]|1[0-2])/\d{2}$")


@router.get("/me")
def get_profile_route(db: Database = Depends(get_database), user: CurrentUser = Depends(require("account"))):
    return public_user(get_profile(db, user.id))


@router.patch("/me")
def update_profile_route(
    payload: ProfileUpdateIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("account")),
):
    updated = update_profile(db, user.id, payload.model_dump(exclude_none=True))
    return {"message": "Perfil actualizado", "user": public_user(updated)}


@router.patch("/change-password")
def change_password_route(
    payload: ChangePasswordIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("account")),
):
    change_password(db, user.id, payload.current_password, payload.new_password)
    return {"message": "Contraseña actualizada correctamente"}


@router.delete("/me")
def delete_account_route(db: Database = Depends(get_database), user: CurrentUser = Depends(require("account"))):
    soft_delete_user(db, user.id)
    return {"message": "Cuenta eliminada correctamente"}


@router.get("/addresses")
def get_addresses_route(db: Database = Depends(get_database), user: CurrentUser = Depends(require("account"))):
    return serialize_doc(get_addresses(db, user.id))


@router.post("/addresses", status_code=status.HTTP_201_CREATED)
def add_address_route(
    payload: Address,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("account")),
):
    return {"message": "Dirección agregada", "addresses": serialize_doc(add_address(db, user.id, payload))}


@router.patch("/addresses/{address_id}")
def update_address_route(
    address_id: str,
    payload: AddressUpdateIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("account")),
):
    address = update_address(db, user.id, address_id, payload.model_dump(exclude_none=True))
    return {"message": "Dirección actualizada", "address": serialize_doc(address)}


@router.delete("/addresses/{address_id}")
def delete_address_route(
    address_id: str,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("account")),
):
    delete_address(db, user.id, address_id)
    return {"message": "Dirección eliminada"}


@router.patch("/addresses/{address_id}/set-default")
def set_default_address_route(
    address_id: str,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("account")),
):
    address = set_default_address(db, user.id, address_id)
    return {"message": "Dirección predeterminada actualizada", "address": serialize_doc(address)}


@router.get("/payment-methods")
def get_payment_methods_route(db: Database = Depends(get_database), user: CurrentUser = Depends(require("account"))):
    return serialize_doc(get_payment_methods(db, user.id))


@router.post("/payment-methods", status_code=status.HTTP_201_CREATED)
def add_payment_method_route(
    payload: PaymentMethod,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("account")),
):
    methods = add_payment_method(db, user.id, payload)
    return {"message": "Método de pago agregado", "payment_methods": serialize_doc(methods)}


@router.patch("/payment-methods/{method_id}")
def update_payment_method_route(
    method_id: str,
    payload: PaymentMethodUpdateIn,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("account")),
):
    method = update_payment_method(db, user.id, method_id, payload.model_dump(exclude_none=True))
    return {"message": "Método de pago actualizado", "payment_method": serialize_doc(method)}


@router.delete("/payment-methods/{method_id}")
def delete_payment_method_route(
    method_id: str,
    db: Database = Depends(get_database),
    user: CurrentUser = Depends(require("account")),
):
    delete_payment_method(db, user.id, method_id)
    return {"message": "Método de pago eliminado"}
