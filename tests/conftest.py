import pytest
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RESERVATION_SWEEP_ENABLED", "false")
os.environ.setdefault("LEDGER_RETRY_BACKOFF_SECONDS", "0")

import stockledger.models  # noqa: F401
from stockledger.core.clock import FixedClock
from stockledger.core.deps import get_db
from stockledger.core.id_utils import generate_shortuuid
from stockledger.db.base import Base
from stockledger.main import app
from stockledger.models.location import Location
from stockledger.models.product import Product, ProductVariant

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


@dataclass
class Catalog:
    tenant_id: str
    product_id: str
    variant_id: str
    second_variant_id: str
    warehouse_id: str
    store_id: str
    outlet_id: str


@pytest.fixture()
def session_local():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_local):
    session = session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def test_context(session_local):
    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()


@pytest.fixture()
def clock():
    return FixedClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def seed_catalog(session_local):
    """Creates one product with two variants and three locations (one inactive) for a tenant."""

    def _seed(tenant_id: str = TENANT, *, category: str = "Singles", unit_price: str = "12.50") -> Catalog:
        db = session_local()
        try:
            product = Product(id=generate_shortuuid(), tenant_id=tenant_id, name="Alpha Starter", category=category)
            variant = ProductVariant(
                id=generate_shortuuid(),
                tenant_id=tenant_id,
                product_id=product.id,
                title="Alpha Starter - NM",
                sku=f"ALP-NM-{generate_shortuuid()[:6]}",
                unit_price=Decimal(unit_price),
            )
            second = ProductVariant(
                id=generate_shortuuid(),
                tenant_id=tenant_id,
                product_id=product.id,
                title="Alpha Starter - LP",
                sku=f"ALP-LP-{generate_shortuuid()[:6]}",
                unit_price=Decimal("4.00"),
            )
            warehouse = Location(id=generate_shortuuid(), tenant_id=tenant_id, name="Main Warehouse", code="WH")
            store = Location(
                id=generate_shortuuid(),
                tenant_id=tenant_id,
                name="High Street",
                code="ST",
                type="store",
            )
            outlet = Location(
                id=generate_shortuuid(),
                tenant_id=tenant_id,
                name="Closed Outlet",
                code="OUT",
                type="store",
                is_active=False,
            )
            db.add(product)
            db.flush()
            db.add_all([variant, second, warehouse, store, outlet])
            db.commit()
            return Catalog(
                tenant_id=tenant_id,
                product_id=product.id,
                variant_id=variant.id,
                second_variant_id=second.id,
                warehouse_id=warehouse.id,
                store_id=store.id,
                outlet_id=outlet.id,
            )
        finally:
            db.close()

    return _seed


@pytest.fixture()
def catalog(seed_catalog):
    return seed_catalog()
