"""
Shared fixtures: in-memory database, scripted tracking provider and order factories.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TRACKING_MY_API_KEY"] = ""

import pytest

from shiptrack.database import Base, SessionLocal, engine
from shiptrack.models import Order, OrderStatus
from shiptrack.services.tracking_provider import ProviderResponse


NOT_FOUND = ProviderResponse(ok=False, status_code=404, data={"message": "Tracking not found"}, error="Tracking not found")


class FakeProvider:
    """
    Scripted TrackingProvider. Each slot holds a ProviderResponse, an exception
    to raise, or a list of those consumed in order (the last one repeats).
    Every call is recorded in `calls` as (method, *args).
    """

    def __init__(self, register=None, courier=None, generic=None, listing=None):
        self.responses = {
            "register": register if register is not None else ProviderResponse(ok=True, status_code=201, data={}),
            "courier": courier if courier is not None else NOT_FOUND,
            "generic": generic if generic is not None else NOT_FOUND,
            "list": listing if listing is not None else ProviderResponse(ok=True, status_code=200, data={"trackings": []}),
        }
        self.calls = []

    def _next(self, slot):
        value = self.responses[slot]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, Exception):
            raise value
        return value

    async def register_tracking(self, tracking_number, courier_code):
        self.calls.append(("register", tracking_number, courier_code))
        return self._next("register")

    async def get_courier_tracking(self, courier_code, tracking_number):
        self.calls.append(("courier", courier_code, tracking_number))
        return self._next("courier")

    async def get_tracking(self, tracking_number):
        self.calls.append(("generic", tracking_number))
        return self._next("generic")

    async def list_trackings(self):
        self.calls.append(("list",))
        return self._next("list")

    def methods_called(self):
        return [call[0] for call in self.calls]


def ok(data, status_code=200):
    return ProviderResponse(ok=True, status_code=status_code, data=data)


def tracking_payload(*checkpoints, short_link=None, status=None, courier="poslaju"):
    """A single-tracking body in the {tracking: {...}} shape, checkpoints newest first."""
    tracking = {"tracking_number": "ER123456789MY", "courier": courier, "checkpoints": list(checkpoints)}
    if short_link:
        tracking["short_link"] = short_link
    if status:
        tracking["status"] = status
    return {"tracking": tracking}


def checkpoint(time, message, status="in_transit", location=""):
    return {"checkpoint_time": time, "message": message, "status": status, "location": location}


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_order(db_session):
    """Factory: persisted order, shippable by default."""
    counter = {"n": 0}

    def _make(status=OrderStatus.PENDING, tracking_number="ER123456789MY", courier_code="poslaju", **kwargs):
        counter["n"] += 1
        order = Order(
            order_number=kwargs.pop("order_number", f"ORD-{counter['n']:04d}"),
            status=status,
            tracking_number=tracking_number,
            courier_code=courier_code,
            **kwargs,
        )
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture
def fake_provider():
    return FakeProvider()
