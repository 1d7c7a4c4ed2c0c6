import pytest
from fastapi.testclient import TestClient

from config import Settings
from errors import EmailSendError
from main import create_app
from schemas import CategoryIn, ProductIn, RegisterRequest


class RecordingNotifier:
    """Stands in for MailerSend: remembers every message, optionally fails."""

    def __init__(self):
        self.password_resets = []
        self.confirmations = []
        self.fail = False

    def send_password_reset(self, to_email, name, new_password):
        if self.fail:
            raise EmailSendError("Failed to send email: 500")
        self.password_resets.append({"email": to_email, "name": name, "password": new_password})

    def send_order_confirmation(self, to_email, name, order_id, address, items,
                                subtotal, shipping, tax, discount, total):
        if self.fail:
            raise EmailSendError("Failed to send email: 500")
        self.confirmations.append({
            "email": to_email,
            "name": name,
            "order_id": order_id,
            "address": address,
            "items": items,
            "subtotal": subtotal,
            "shipping": shipping,
            "tax": tax,
            "discount": discount,
            "total": total,
        })

    def close(self):
        pass


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(notifier):
    app = create_app(Settings(database_url="sqlite://", log_level="WARNING"), notifier=notifier)
    app.state.db.create_all()
    yield app
    app.state.db.dispose()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def user(app):
    return app.state.users.register(
        RegisterRequest(email="jane@example.com", password="secret123", name="jane doe", username="jane")
    )


@pytest.fixture
def other_user(app):
    return app.state.users.register(
        RegisterRequest(email="bob@example.com", password="secret123", name="bob", username="bob")
    )


@pytest.fixture
def category(app):
    return app.state.categories.create([CategoryIn(title="Laptops", image="https://img/laptops.png")])[0]


@pytest.fixture
def catalog(app, category):
    """Three products: 500, 750 and 1200."""
    return app.state.products.create([
        ProductIn(title="Headphones", price=500, description="Noise canceling", category_id=category.id,
                  image="http://img/headphones.png"),
        ProductIn(title="Tablet", price=750, description="10 inch", category_id=category.id,
                  image="https://img/tablet.png"),
        ProductIn(title="Laptop", price=1200, description="Ultralight", category_id=category.id, image=None),
    ])
