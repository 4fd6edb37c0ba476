import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

from config import Settings, get_settings
from database import Database, get_database, serialize_doc, to_object_id, utcnow
from errors import ConflictError, ForbiddenError, UnauthorizedError
from schemas import STAFF_ROLES, Role, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def token_for_user(user: dict, settings: Settings) -> str:
    return create_access_token(
        {"sub": str(user["_id"]), "role": user.get("role", Role.CLIENT.value), "name": user.get("name", "")},
        settings,
    )


def public_user(user: dict) -> dict:
    doc = {k: v for k, v in user.items() if k != "password_hash"}
    return serialize_doc(doc)


class CurrentUser(BaseModel):
    id: str
    role: str
    name: str
    last_name: str = ""
    email: str
    scope: dict = Field(default_factory=dict)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def display_name(self) -> str:
        return f"{self.name} {self.last_name}".strip()


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Database = Depends(get_database),
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise UnauthorizedError("No estás autenticado.")
    try:
        payload = jwt.decode(credentials.credentials, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise UnauthorizedError("Token inválido o expirado.")

    user_id = to_object_id(payload.get("sub"))
    if user_id is None:
        raise UnauthorizedError("Token inválido o expirado.")
    user = db["user"].find_one({"_id": user_id, "is_deleted": {"$ne": True}})
    if not user:
        raise UnauthorizedError("Token inválido o expirado.")
    return CurrentUser(
        id=str(user["_id"]),
        role=user.get("role", Role.CLIENT.value),
        name=user.get("name", ""),
        last_name=user.get("last_name", ""),
        email=user.get("email", ""),
    )


# Authorization policy

ALL_ROLES = frozenset(r.value for r in Role)
STAFF = frozenset(STAFF_ROLES)
CLIENT = frozenset({Role.CLIENT.value})

CAPABILITIES = {
    "account": ALL_ROLES,
    "cart": ALL_ROLES,
    "favorites": ALL_ROLES,
    "orders:create": CLIENT,
    "orders:read": ALL_ROLES,
    "orders:cancel": ALL_ROLES,
    "orders:manage": STAFF,
    "products:manage": STAFF,
    "reviews:write": CLIENT,
    "reviews:delete": CLIENT | {Role.ADMIN.value},
    "shipping:read": ALL_ROLES,
    "shipping:manage": STAFF,
    "seed": frozenset({Role.ADMIN.value}),
}

# Clients only ever see their own documents for these
OWNER_SCOPED = {"orders:read", "shipping:read"}


@dataclass
class Decision:
    allowed: bool
    scope: dict = field(default_factory=dict)


def authorize(user: CurrentUser, capability: str) -> Decision:
    roles = CAPABILITIES.get(capability)
    if roles is None or user.role not in roles:
        return Decision(False)
    if capability in OWNER_SCOPED and not user.is_staff:
        return Decision(True, {"user_id": user.id})
    return Decision(True)


def require(capability: str):
    """Route dependency resolving the caller and enforcing ``capability``."""

    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        decision = authorize(user, capability)
        if not decision.allowed:
            raise ForbiddenError("No tienes permisos para acceder a esta ruta.")
        return user.model_copy(update={"scope": decision.scope})

    return dependency


# Service

def register_user(db: Database, payload: "RegisterIn") -> dict:
    email = payload.email.lower()
    existing = db["user"].find_one({"email": email})
    if existing and existing.get("is_deleted"):
        raise ConflictError("Tu cuenta estaba eliminada. Contacta a soporte para reactivarla.")
    if existing:
        raise ConflictError("El correo electrónico ya está registrado.")

    user = User(
        name=payload.name,
        last_name=payload.last_name,
        second_last_name=payload.second_last_name,
        email=email,
        password_hash=get_password_hash(payload.password),
        phone=payload.phone,
    )
    try:
        user_id = db.create_document("user", user)
    except DuplicateKeyError:
        raise ConflictError("El correo electrónico ya está registrado.")
    logger.info("Registered user %s", user_id)
    return db["user"].find_one({"_id": to_object_id(user_id)})


def login_user(db: Database, email: str, password: str) -> dict:
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise UnauthorizedError("Credenciales inválidas.")
    if user.get("is_deleted"):
        raise UnauthorizedError("Tu cuenta fue eliminada.")
    now = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login_at": now}})
    user["last_login_at"] = now
    return user


# Routes

class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=60)
    last_name: str = Field(..., min_length=1, max_length=60)
    second_last_name: str = Field("", max_length=60)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    phone: Optional[str] = None


class LoginIn(BaseModel):
    email: EmailStr
    password: str


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, db: Database = Depends(get_database)):
    user = register_user(db, payload)
    return {"message": "Usuario registrado exitosamente.", "user": public_user(user)}


@router.post("/login")
def login(payload: LoginIn, db: Database = Depends(get_database), settings: Settings = Depends(get_settings)):
    user = login_user(db, payload.email, payload.password)
    return {
        "access_token": token_for_user(user, settings),
        "token_type": "bearer",
        "user": public_user(user),
    }
