from __future__ import annotations

from decimal import Decimal
import os
import sys

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import importlib

fastapi_app = importlib.import_module("app.main").app
from app.db.base import Base
from app.db.session import get_db

# Ensure all models are registered with SQLAlchemy metadata
import app.models  # noqa: F401
from app.models.doc_lookups import DocumentTypeLookup
from app.models.purchase_order import PurchaseOrderHeader, PurchaseOrderItem
from app.models.shipment import Shipment


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _connection_record):
        # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves.
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def session_factory(engine):
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    # Committed fixture rows stay readable without a new BEGIN on the shared connection.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def client(session_factory):
    def _override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    with TestClient(fastapi_app) as test_client:
        yield test_client
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def make_po(db_session):
    counter = {"n": 0}

    def _make(quantities=(100,), transport_mode="SEA") -> PurchaseOrderHeader:
        counter["n"] += 1
        po = PurchaseOrderHeader(
            po_number=f"PO-{counter['n']:04d}",
            vendor_id=7,
            transport_mode=transport_mode,
        )
        for index, qty in enumerate(quantities, start=1):
            po.items.append(
                PurchaseOrderItem(
                    item_number=index,
                    product_id=500 + index,
                    item_name=f"Item {index}",
                    quantity=Decimal(str(qty)),
                )
            )
        db_session.add(po)
        db_session.commit()
        return po

    return _make


@pytest.fixture
def make_shipment(db_session):
    def _make(po: PurchaseOrderHeader, stage: int = 1, b2b: int = 0, ss: int = 0, **columns) -> Shipment:
        shipment = Shipment(
            po_id=po.id,
            vendor_id=po.vendor_id,
            transport_mode=po.transport_mode,
            shipment_stage_id=stage,
            containers_back_to_back=b2b,
            containers_stock_sales=ss,
            no_containers=b2b + ss,
            **columns,
        )
        db_session.add(shipment)
        db_session.commit()
        return shipment

    return _make


@pytest.fixture
def doc_type(db_session):
    def _make(code: str, name: str) -> DocumentTypeLookup:
        row = DocumentTypeLookup(code=code, name=name, is_active=True)
        db_session.add(row)
        db_session.commit()
        return row

    return _make
