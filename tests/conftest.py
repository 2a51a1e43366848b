"""
Pytest configuration and fixtures
"""

import io
import json
import os
import uuid
from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator, Dict, Optional, Set

import httpx
import pytest
import pytest_asyncio
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import build_engine, build_session_maker
from enrichment.imagery_client import ImageryClient
from enrichment.indices import INDEX_SPECS, IndexKind
from enrichment.result_cache import ResultCache
from enrichment.token_cache import TokenCache
from models import Base, EnvironmentalMetric, Measurement, User

TOKEN_URL = "https://identity.test/token"
PROCESS_URL = "https://process.test/api/v1/process"


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """
    Create test database engine.

    Uses a throwaway SQLite file (several connections see the same data)
    unless TEST_DATABASE_URL points at another database.
    """
    database_url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    engine = build_engine(database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return build_session_maker(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


# ============================================================================
# Data factories
# ============================================================================

@pytest.fixture
def create_user(session_maker):
    async def _create(plan_tier: str = "free", subscription_started_at: Optional[datetime] = None, email=None):
        async with session_maker() as session:
            async with session.begin():
                user = User(
                    email=email or f"user-{uuid.uuid4().hex[:12]}@example.org",
                    plan_tier=plan_tier,
                    subscription_started_at=subscription_started_at,
                )
                session.add(user)
        return user
    return _create


@pytest.fixture
def create_metric(session_maker):
    async def _create(name: str = "water_temperature", expected_min=None, expected_max=None):
        async with session_maker() as session:
            async with session.begin():
                metric = EnvironmentalMetric(
                    name=name,
                    unit="C",
                    expected_min=expected_min,
                    expected_max=expected_max,
                )
                session.add(metric)
        return metric
    return _create


@pytest.fixture
def create_measurement(session_maker):
    async def _create(user, metric, campaign_id: int = 1, **fields):
        fields.setdefault("value", Decimal("18.5000"))
        fields.setdefault("collected_at", datetime(2025, 8, 15, 10, 30))
        async with session_maker() as session:
            async with session.begin():
                measurement = Measurement(
                    user_id=user.id,
                    metric_id=metric.id,
                    campaign_id=campaign_id,
                    **fields,
                )
                session.add(measurement)
        return measurement
    return _create


# ============================================================================
# Imagery service stub
# ============================================================================

def make_png(pixel_value: int, width: int = 50, height: int = 50) -> bytes:
    """Grayscale-in-RGB PNG with every pixel set to pixel_value"""
    image = Image.new("RGB", (width, height), (pixel_value, pixel_value, pixel_value))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class ImageryServiceStub:
    """
    In-memory identity + processing endpoints for httpx.MockTransport.

    Attributes:
        pixels: Pixel value returned per index (default 191 -> ~0.5 for normalized indices)
        failing: Indices answered with HTTP 500
        unauthorized_once: Answer the next processing call with 401
        token_status: Status code of the identity endpoint
        acquisition_days: When set, only these ISO days have a scene; other
            days answer index requests with 400 and true colour with a black tile
    """

    def __init__(self):
        self.pixels: Dict[IndexKind, int] = {kind: 191 for kind in IndexKind}
        self.failing: Set[IndexKind] = set()
        self.unauthorized_once = False
        self.token_status = 200
        self.acquisition_days: Optional[Set[str]] = None
        self.token_requests = 0
        self.process_requests = []
        self._scripts = {spec.evalscript: kind for kind, spec in INDEX_SPECS.items()}

    def index_for(self, body: dict) -> Optional[IndexKind]:
        return self._scripts.get(body.get("evalscript"))

    @staticmethod
    def day_of(body: dict) -> str:
        return body["input"]["data"][0]["dataFilter"]["timeRange"]["from"][:10]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            self.token_requests += 1
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(
                200, json={"access_token": f"token-{self.token_requests}", "expires_in": 3600}
            )

        body = json.loads(request.content)
        self.process_requests.append(body)

        if self.unauthorized_once:
            self.unauthorized_once = False
            return httpx.Response(401, json={"error": "token expired"})

        kind = self.index_for(body)
        if kind in self.failing:
            return httpx.Response(500, text="processing failed")

        day = self.day_of(body)
        if self.acquisition_days is not None and day not in self.acquisition_days:
            if kind is not None:
                return httpx.Response(400, json={"error": f"no data for {day}"})
            pixel = 0
        else:
            pixel = self.pixels.get(kind, 128) if kind else 128
        width = body["output"]["width"]
        height = body["output"]["height"]
        return httpx.Response(200, content=make_png(pixel, width, height), headers={"Content-Type": "image/png"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def imagery_stub():
    return ImageryServiceStub()


@pytest_asyncio.fixture
async def imagery_client(imagery_stub):
    client = ImageryClient(
        token_cache=TokenCache(client_id="client", client_secret="secret", token_url=TOKEN_URL),
        result_cache=ResultCache(ttl_seconds=3600, maxsize=128),
        transport=imagery_stub.transport(),
        process_url=PROCESS_URL,
        timeout=5.0,
    )
    yield client
    await client.aclose()


@pytest.fixture
def png():
    """PNG factory: png(pixel_value, width=50, height=50) -> bytes"""
    return make_png
