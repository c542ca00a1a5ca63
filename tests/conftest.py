import asyncio
import os
import secrets
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'affiliate_core' resolves without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from affiliate_core.main import app  # type: ignore
from affiliate_core.database import Base  # type: ignore
from affiliate_core.api import deps  # type: ignore
"""Pytest fixtures and factories.

SQLAlchemy relationship configuration requires all model modules to be imported
before Base.metadata.create_all(), otherwise back_populates targets might not exist yet.
"""
from affiliate_core.models.db import Campaign, Deal, Order, User
from affiliate_core.models.db.enums import AffiliateStatus, CampaignStatus, DealType, UserStatus, WalletBucket
from affiliate_core.integrations.base import ExtractionProvider, ExtractionResult
from affiliate_core.errors import ExternalDependencyError
from affiliate_core.services import wallet_ledger
from affiliate_core.services.proof_extraction_cache import ProofExtractionCache
from affiliate_core.services.realtime import GLOBAL_REALTIME_HUB

# File-based SQLite so concurrency tests can hold two independent connections.
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_core.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

import affiliate_core.database as _core_database  # noqa: E402
_core_database.SessionLocal = TestingSessionLocal  # type: ignore


@pytest.fixture(scope="session", autouse=True)
def _test_db_file():
    yield
    engine.dispose()
    try:
        os.remove("test_core.db")
    except OSError:
        pass


@pytest.fixture(autouse=True)
def _database():
    """Fresh schema per test; the suite relies on exact row counts."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session(_database):
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def session_factory(_database):
    """Extra independent sessions, e.g. to race two writers."""
    opened = []

    def _open():
        s = TestingSessionLocal()
        opened.append(s)
        return s
    yield _open
    for s in opened:
        s.close()


# Override dependency
def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

app.dependency_overrides[deps.get_db] = _override_get_db


# ---------- Extraction provider double ----------

class FakeProvider(ExtractionProvider):
    """Counts calls; can be told to fail or to stall."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.fields: Dict[str, Any] = {"order_id": "402-1", "amount_paise": 149900}
        self.confidence: Optional[float] = 0.93
        self.fail = False
        self.delay = 0.0

    async def extract(self, proof_type: str, image: str, expectations: Dict[str, Any]) -> ExtractionResult:
        self.calls.append({"proof_type": proof_type, "image": image, "expectations": dict(expectations)})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ExternalDependencyError("EXTRACTION_FAILED", "Extraction provider returned status 500", {"status_code": 500})
        return ExtractionResult(fields=dict(self.fields), confidence=self.confidence)


@pytest.fixture()
def fake_provider():
    return FakeProvider()


@pytest.fixture()
def extraction_cache(fake_provider):
    cache = ProofExtractionCache(fake_provider, timeout_seconds=5, per_key_lock=True)
    app.state.extraction_cache = cache  # type: ignore[attr-defined]
    yield cache
    app.state.extraction_cache = None  # type: ignore[attr-defined]


@pytest.fixture()
def client(extraction_cache):
    return TestClient(app)


@pytest.fixture()
def realtime_events():
    events = []
    unsubscribe = GLOBAL_REALTIME_HUB.subscribe(events.append)
    yield events
    unsubscribe()


# ---------- Data factory helpers ----------

@pytest.fixture()
def user_factory(db_session):
    def _create(
        *roles: str,
        name: Optional[str] = None,
        status: UserStatus = UserStatus.ACTIVE,
        mediator_code: Optional[str] = None,
        parent_code: Optional[str] = None,
    ) -> User:
        suffix = secrets.token_hex(3)
        u = User(
            name=name or f"User {suffix}",
            email=f"{suffix}@example.com",
            api_key=f"key_{secrets.token_hex(12)}",
            roles=list(roles or ("shopper",)),
            status=status,
            mediator_code=mediator_code,
            parent_code=parent_code,
        )
        db_session.add(u)
        db_session.commit()
        db_session.refresh(u)
        return u
    return _create


@pytest.fixture()
def campaign_factory(db_session):
    def _create(brand: User, *, status: CampaignStatus = CampaignStatus.ACTIVE, title: str = "Festive Sale") -> Campaign:
        c = Campaign(title=title, brand_user_id=brand.id, status=status)
        db_session.add(c)
        db_session.commit()
        db_session.refresh(c)
        return c
    return _create


@pytest.fixture()
def deal_factory(db_session):
    def _create(
        campaign: Optional[Campaign],
        mediator_code: str,
        *,
        payout_paise: int = 30000,
        commission_paise: int = 20000,
        deal_type: DealType = DealType.DISCOUNT,
        settlement_cap: Optional[int] = None,
        active: bool = True,
    ) -> Deal:
        d = Deal(
            campaign_id=campaign.id if campaign else None,
            mediator_code=mediator_code,
            title="Kettle deal",
            deal_type=deal_type,
            price_paise=149900,
            payout_paise=payout_paise,
            commission_paise=commission_paise,
            settlement_cap=settlement_cap,
            active=active,
        )
        db_session.add(d)
        db_session.commit()
        db_session.refresh(d)
        return d
    return _create


@pytest.fixture()
def order_factory(db_session):
    """Insert an order row directly in any lifecycle state."""
    def _create(
        buyer: User,
        *,
        deal: Optional[Deal] = None,
        brand: Optional[User] = None,
        mediator_code: Optional[str] = None,
        affiliate_status: AffiliateStatus = AffiliateStatus.UNCHECKED,
        commission_paise: Optional[int] = None,
        screenshots: Optional[Dict[str, str]] = None,
        **overrides: Any,
    ) -> Order:
        commission = commission_paise if commission_paise is not None else (deal.commission_paise if deal else 0)
        fields: Dict[str, Any] = dict(
            user_id=buyer.id,
            brand_user_id=brand.id if brand else None,
            deal_id=deal.id if deal else None,
            mediator_code=mediator_code if mediator_code is not None else (deal.mediator_code if deal else None),
            buyer_name=buyer.name,
            external_order_id=f"402-{secrets.token_hex(3)}",
            items=[{"product_id": "B0C1", "title": "Kettle", "quantity": 1, "price_paise": 149900, "commission_paise": commission}],
            total_paise=149900,
            affiliate_status=affiliate_status,
            screenshots=dict(screenshots or {}),
            verification={},
        )
        fields.update(overrides)
        o = Order(**fields)
        db_session.add(o)
        db_session.commit()
        db_session.refresh(o)
        return o
    return _create


@pytest.fixture()
def fund_wallet(db_session):
    def _fund(user: User, amount_paise: int, bucket: WalletBucket = WalletBucket.AVAILABLE):
        wallet_ledger.credit(db_session, user.id, bucket, amount_paise, txn_type="test_funding")
        db_session.commit()
        return wallet_ledger.get_wallet(db_session, user.id)
    return _fund


@pytest.fixture()
def auth():
    def _headers(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {user.api_key}"}
    return _headers
