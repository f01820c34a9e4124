"""Shared fixtures: a file-backed SQLite registry and a scripted vendor."""

import asyncio
import json
import os
from datetime import timedelta, timezone

# Must be set before accessbridge.database creates its module-level engine
os.environ["DATABASE_URL"] = "sqlite://"

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from accessbridge.database import init_db
from accessbridge.models import Resident
from accessbridge.schemas import ResidentKind, ResidentStatus
from accessbridge.services import build_services
from accessbridge.vendor import PERSON_ADD_PATH

TZ = timezone(timedelta(hours=2))

APP_KEY = "test-key"
APP_SECRET = "test-secret"
BASE_URL = "https://vendor.test/artemis"


def envelope(data=None, code="0", msg="success") -> dict:
    return {"code": code, "msg": msg, "data": data}


class VendorStub:
    """Scripted vendor behind an httpx.MockTransport.

    `responses` maps a URL path to a payload dict, an httpx.Response, or a
    callable taking the request and returning either (it may also raise).
    Unscripted paths answer a bare success envelope. Person creation hands
    out P1001, P1002, ... unless scripted.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: dict = {PERSON_ADD_PATH: self._next_person}
        self._person_seq = 1000

    def _next_person(self, request):
        self._person_seq += 1
        return envelope(f"P{self._person_seq}")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        # Yield so concurrent callers interleave around the vendor round trip
        await asyncio.sleep(0)
        answer = self.responses.get(request.url.path, envelope())
        if callable(answer):
            answer = answer(request)
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json=answer)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def bodies(self, path: str) -> list:
        return [json.loads(r.content) for r in self.calls(path) if r.content]


@pytest.fixture
def db_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'registry.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False)


@pytest.fixture
def vendor_stub():
    return VendorStub()


@pytest.fixture
def services(session_factory, vendor_stub):
    services = build_services(session_factory, transport=vendor_stub.transport(), tz=TZ)
    services.config.set("VENDOR_BASE_URL", BASE_URL)
    services.config.set("VENDOR_APP_KEY", APP_KEY)
    services.config.set("VENDOR_APP_SECRET", APP_SECRET)
    return services


@pytest.fixture
def seed_resident(session_factory):
    """Insert a registry row directly, bypassing the vendor."""

    def _seed(
        local_code: str,
        vendor_id: str | None = "P-seed",
        *,
        name: str = "Seed Resident",
        email: str | None = None,
        community: str = "maple",
        unit_id: str = "A-101",
        status: ResidentStatus = ResidentStatus.ACTIVE,
    ) -> None:
        with session_factory() as db:
            db.add(Resident(
                local_code=local_code,
                vendor_id=vendor_id,
                name=name,
                email=email or f"resident{local_code}@example.com",
                community=community,
                unit_id=unit_id,
                kind=ResidentKind.RESIDENT,
                valid_from="2025-01-01T00:00:00+02:00",
                valid_to="2026-01-01T00:00:00+02:00",
                status=status,
            ))
            db.commit()

    return _seed
