import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import get_password_hash, token_for_user
from config import Settings
from database import Database, to_object_id
from main import create_app
from notifications import Notifier
from payments import PaymentGateway
from schemas import Category, Product, Section, User

PASSWORD = "Sup3rSecret!"

ADDRESS = {
    "postal_code": "44100",
    "street": "Av. Juárez",
    "external_number": "120",
    "neighborhood": "Centro",
    "city": "Guadalajara",
    "state": "Jalisco",
    "country": "México",
}


class RecordingNotifier(Notifier):
    """Keeps the messages instead of talking to an SMTP server."""

    def __init__(self, settings):
        super().__init__(settings)
        self.sent = []

    def send(self, to, subject, text, html=None):
        self.sent.append({"to": to, "subject": subject, "text": text})
        return True


@pytest.fixture
def settings():
    return Settings(secret_key="test-secret", log_level="WARNING")


@pytest.fixture
def database():
    db = Database(mongomock.MongoClient(), "ratacueva_test")
    db.ensure_indexes()
    return db


@pytest.fixture
def notifier(settings):
    return RecordingNotifier(settings)


@pytest.fixture
def payments():
    return PaymentGateway("sync")


@pytest.fixture
def app(settings, database, notifier, payments):
    return create_app(settings=settings, database=database, notifier=notifier, payments=payments)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(database):
    counter = {"n": 0}

    def factory(role="client", name="Ana", last_name="López", **extra):
        counter["n"] += 1
        user = User(
            name=name,
            last_name=last_name,
            email=f"{role}{counter['n']}@example.com",
            password_hash=get_password_hash(PASSWORD),
            role=role,
            **extra,
        )
        user_id = database.create_document("user", user)
        return database["user"].find_one({"_id": to_object_id(user_id)})

    return factory


@pytest.fixture
def headers_for(settings):
    def factory(user):
        return {"Authorization": f"Bearer {token_for_user(user, settings)}"}

    return factory


@pytest.fixture
def client_user(make_user):
    return make_user("client")


@pytest.fixture
def other_client(make_user):
    return make_user("client", name="Luis", last_name="Pérez")


@pytest.fixture
def employee_user(make_user):
    return make_user("employee", name="Eva")


@pytest.fixture
def admin_user(make_user):
    return make_user("admin", name="Root")


@pytest.fixture
def client_headers(client_user, headers_for):
    return headers_for(client_user)


@pytest.fixture
def employee_headers(employee_user, headers_for):
    return headers_for(employee_user)


@pytest.fixture
def admin_headers(admin_user, headers_for):
    return headers_for(admin_user)


@pytest.fixture
def make_product(database):
    def factory(name="RTX 4070", price=100.0, stock=10, **extra):
        extra.setdefault("section", Section.COMPONENTS)
        extra.setdefault("category", Category.GRAPHICS_CARDS)
        product = Product(name=name, price=price, stock=stock, **extra)
        return database.create_document("product", product)

    return factory


@pytest.fixture
def stock_of(database):
    def read(product_id):
        return database["product"].find_one({"_id": to_object_id(product_id)})["stock"]

    return read


@pytest.fixture
def address():
    return dict(ADDRESS)


@pytest.fixture
def password():
    return PASSWORD
