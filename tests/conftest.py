from __future__ import annotations

from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from warehouse_erp import create_app
from warehouse_erp.extensions import db
from warehouse_erp.models import Product, PurchaseOrder, Shop, Supplier, User
from warehouse_erp.security.decorators import KNOWN_PERMISSIONS
from warehouse_erp.services.order_service import PurchaseLineInput, create_purchase_order


class TestConfig:
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"
    LOG_LEVEL = "WARNING"
    SHARE_BASE_URL = "https://erp.example.com"
    SHARE_DEFAULT_EXPIRES_HOURS = 168
    SHARE_MAX_EXPIRES_HOURS = 8760
    STATISTICS_MAX_PRODUCT_STATUSES = 100
    # An in-memory database lives on a single shared connection.
    STATISTICS_ENABLE_PARALLEL_QUERIES = False
    STATISTICS_ENABLE_CACHE = False
    STATISTICS_CACHE_EXPIRATION = 300
    STATISTICS_CACHE_MAX_ENTRIES = 1024
    STATISTICS_MAX_WORKERS = 3


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def file_app(tmp_path):
    class FileDatabaseConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'warehouse_erp.db'}"
        STATISTICS_ENABLE_PARALLEL_QUERIES = True

    app = create_app(FileDatabaseConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def file_catalog(file_app) -> dict[str, object]:
    catalog = seed_catalog()
    catalog["operator"] = _seed_operator()
    return catalog


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def operator(app) -> User:
    return _seed_operator()


@pytest.fixture()
def catalog(app) -> dict[str, object]:
    return seed_catalog()


@pytest.fixture()
def make_order(app, operator, catalog):
    def _make_order(lines: list[tuple[str, int, str]], shop: Shop | None = None) -> PurchaseOrder:
        """``lines`` are (product key, quantity, unit price) tuples."""
        return create_purchase_order(
            shop_id=(shop or catalog["shop"]).id,
            supplier_id=catalog["supplier"].supplier_id,
            operator_id=operator.id,
            lines=[
                PurchaseLineInput(
                    product_id=catalog["products"][key].id,
                    quantity=quantity,
                    unit_price=Decimal(price),
                )
                for key, quantity, price in lines
            ],
        )

    return _make_order


@pytest.fixture()
def auth_headers(app, operator):
    def _auth_headers(*permissions: str) -> dict[str, str]:
        token = create_access_token(
            identity=str(operator.id),
            additional_claims={"permissions": sorted(permissions or KNOWN_PERMISSIONS)},
        )
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


def _seed_operator() -> User:
    user = User(email="buyer@example.com", name="Purchasing Buyer", is_active=True)
    db.session.add(user)
    db.session.commit()
    db.session.refresh(user)
    return user


def seed_catalog() -> dict[str, object]:
    shop = Shop(nickname="Main Street Shop", responsible_person="Dana")
    other_shop = Shop(nickname="Harbour Shop", responsible_person="Lee")
    supplier = Supplier(
        supplier_code="ACME", supplier_name="Acme Textiles", contact_person="Sam", phone_number="555-0100"
    )
    products = {
        "A": Product(code="TS-001", sku="TS-001-WH", product_name="T-shirt", specification="M", color="white"),
        "B": Product(code="TS-002", sku="TS-002-BK", product_name="T-shirt", specification="L", color="black"),
        "C": Product(code="HD-001", sku="HD-001-GR", product_name="Hoodie", specification="XL", color="grey"),
    }
    db.session.add_all([shop, other_shop, supplier, *products.values()])
    db.session.commit()
    return {"shop": shop, "other_shop": other_shop, "supplier": supplier, "products": products}
